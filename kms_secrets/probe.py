"""
Probe regions for existing key infrastructure.

Each region is checked for the label's CloudFormation stack and KMS alias and
classified as present, absent, or in error. All regions are probed before any
error is reported so the operator sees every problem at once.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from kms_secrets.clients import ClientFactory
from kms_secrets.cloudformation import stack_exists
from kms_secrets.errors import InconsistentStackError, KmsSecretsError, RegionProbeError
from kms_secrets.kms import find_enabled_alias

logger = logging.getLogger(__name__)

PRESENT = 'present'
ABSENT = 'absent'
ERROR = 'error'

@dataclass(frozen=True)
class RegionProbe:
    region: str
    state: str
    key_arn: str = ''
    errors: Tuple[Exception, ...] = field(default_factory=tuple)

def classify_region(stack_found: bool, alias_found: bool, alias_enabled: bool = True) -> str:
    if alias_found:
        return PRESENT if alias_enabled else ERROR
    if stack_found:
        return ERROR
    return ABSENT

def inconsistent_stack_message(region: str, stack_name: str, alias_name: str) -> str:
    return (
        f"A CloudFormation stack named '{stack_name}' exists, but the corresponding key alias "
        f"'{alias_name}' does not. The most likely cause of this is that a key was incompletely "
        f"deleted. You can resolve this by deleting the stack or by using an alternate label. "
        f"To delete the stack, run: aws --region {region} cloudformation delete-stack "
        f"--stack-name {stack_name}"
    )

def describe_error(error: Exception) -> str:
    if isinstance(error, ClientError):
        return f"{error.response['Error'].get('Code', 'Unknown')}: {error.response['Error'].get('Message', '')}"
    return str(error)

def probe_region(factory: ClientFactory, region: str, stack_name: str, alias_name: str) -> RegionProbe:
    """Check one region; failures are captured in the result, never raised."""
    errors = []
    stack_found = False
    alias_arn = ''

    try:
        stack_found = stack_exists(factory.cloudformation(region), stack_name)
    except (BotoCoreError, ClientError, KmsSecretsError) as e:
        errors.append(e)

    try:
        alias_arn = find_enabled_alias(factory.kms(region), alias_name, region)
    except (BotoCoreError, ClientError, KmsSecretsError) as e:
        errors.append(e)

    state = classify_region(stack_found, bool(alias_arn))
    if state == ERROR:
        errors.append(InconsistentStackError(inconsistent_stack_message(region, stack_name, alias_name)))
    if errors:
        return RegionProbe(region=region, state=ERROR, errors=tuple(errors))
    return RegionProbe(region=region, state=state, key_arn=alias_arn)

def probe_regions(factory: ClientFactory, regions: List[str], stack_name: str,
                  alias_name: str) -> List[RegionProbe]:
    """Probe every region in sorted order without stopping on errors."""
    return [probe_region(factory, region, stack_name, alias_name) for region in sorted(regions)]

def fold_probes(probes: List[RegionProbe]) -> Tuple[Dict[str, str], List[str]]:
    """Split probe results into existing keys and missing regions.

    Every region error is logged; if there was at least one, a single
    RegionProbeError carrying the original exceptions is raised after all of
    them have been reported.
    """
    existing = {}
    missing = []
    failures = []

    for probe in probes:
        if probe.state == PRESENT:
            existing[probe.region] = probe.key_arn
        elif probe.state == ABSENT:
            missing.append(probe.region)
        else:
            for error in probe.errors:
                logger.error(f"{probe.region}: {describe_error(error)}")
                failures.append((probe.region, error))

    if failures:
        raise RegionProbeError('Please manually resolve the issues and try again.', failures)
    return existing, missing
