"""
Provision KMS keys in every requested region that does not have one yet.

Regions are probed first; missing regions are then created concurrently, one
worker thread per region, each running its own CloudFormation stack to
completion. Worker failures are collected after all workers have joined and
reported together.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from kms_secrets.arns import construct_arns
from kms_secrets.clients import ClientFactory, get_caller_identity
from kms_secrets.cloudformation import CloudFormationStack, truefalse
from kms_secrets.errors import GapPolicyError, MissingStackOutputError, ProvisioningError
from kms_secrets.kms import cf_stack_name, create_alias, kms_alias_name
from kms_secrets.probe import fold_probes, probe_regions

logger = logging.getLogger(__name__)

KEY_ARN_OUTPUT = 'KeyArn'

@dataclass(frozen=True)
class ProvisioningRequest:
    label: str
    regions: Tuple[str, ...]
    administrators: str = ''
    users: str = ''
    create_missing_keys: bool = False
    create_simple_roles: bool = False
    disable_iam_policies: bool = False
    algorithm: str = 'aesgcm256'
    template_url: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'regions', tuple(sorted(set(self.regions))))

    @property
    def alias_name(self) -> str:
        return kms_alias_name(self.label)

    @property
    def stack_name(self) -> str:
        return cf_stack_name(self.label)

def pluralize(word: str, count: int) -> str:
    return word + 's' if count > 1 else word

def friendly_join(words: List[str]) -> str:
    words = sorted(words)
    if not words:
        return ''
    if len(words) == 1:
        return words[0]
    return ', '.join(words[:-1]) + ' and ' + words[-1]

def check_gap_policy(request: ProvisioningRequest, existing: Dict[str, str], missing: List[str]) -> None:
    """Refuse to extend an existing key set to new regions unless asked to."""
    if existing and missing and not request.create_missing_keys:
        raise GapPolicyError(
            f"You've requested to use {len(request.regions)} regions, but {len(existing)} regions "
            f"already have keys provisioned for label '{request.label}'. If you'd like the additional "
            f"regions to be provisioned, re-run this command with the --create-missing-keys flag. "
            f"If you'd like to use a new set of keys, re-run with the --label flag. If you'd like to "
            f"choose a different set of regions, use the --regions flag. "
            f"Run 'kms-secrets kms init --help' for more information."
        )

def stack_parameters(request: ProvisioningRequest, admin_arns: List[str], user_arns: List[str]) -> Dict[str, str]:
    return {
        'AdministratorPrincipals': ','.join(admin_arns),
        'UserPrincipals': ','.join(user_arns),
        'KeyDescription': f"Key used for securing secrets ({request.label}).",
        'CreateSimpleRoles': truefalse(request.create_simple_roles),
        'AllowIAMPoliciesToControlKeyAccess': truefalse(not request.disable_iam_policies),
    }

def create_key_in_region(factory: ClientFactory, request: ProvisioningRequest, region: str,
                         admin_arns: List[str], user_arns: List[str], template_body: str) -> str:
    """Create the key stack and alias in one region and return the alias ARN."""
    stack = CloudFormationStack(
        region=region,
        stack_name=request.stack_name,
        params=stack_parameters(request, admin_arns, user_arns),
        template_body=None if request.template_url else template_body,
        template_url=request.template_url or None,
    )
    outputs = stack.create_and_wait(factory.cloudformation(region))

    key_arn = outputs.get(KEY_ARN_OUTPUT)
    if not key_arn:
        raise MissingStackOutputError(
            f"Stack {request.stack_name} does not have an Output named {KEY_ARN_OUTPUT}."
        )
    return create_alias(factory.kms(region), region, request.alias_name, key_arn)

def _timed_create(factory, request, region, admin_arns, user_arns, template_body) -> str:
    started = time.monotonic()
    logger.info(f"{region}: Creating resources using CloudFormation. This may take a while.")
    try:
        return create_key_in_region(factory, request, region, admin_arns, user_arns, template_body)
    finally:
        logger.info(f"{region}: finished in {time.monotonic() - started:.1f}s.")

def provision_missing_regions(factory: ClientFactory, request: ProvisioningRequest, missing: List[str],
                              admin_arns: List[str], user_arns: List[str],
                              template_body: str) -> Dict[str, str]:
    """Create keys in all missing regions concurrently.

    Every worker runs to completion. Each one writes only its own region's
    slot; failures are gathered after the join and raised together.
    """
    if not missing:
        return {}

    created = {}
    errors = []

    # One worker per region, no cap: each spends nearly all its time waiting on CloudFormation
    with ThreadPoolExecutor(max_workers=len(missing)) as executor:
        future_to_region = {
            executor.submit(_timed_create, factory, request, region, admin_arns, user_arns, template_body): region
            for region in missing
        }
        wait(future_to_region)

    for future, region in sorted(future_to_region.items(), key=lambda item: item[1]):
        try:
            created[region] = future.result()
        except Exception as e:
            logger.error(f"{region}: {e}")
            errors.append((region, e))

    if errors:
        raise ProvisioningError(
            f"Failed to provision {len(errors)} of {len(missing)} {pluralize('region', len(missing))}.",
            errors,
        )
    return created

def discover_or_create_keys(factory: ClientFactory, request: ProvisioningRequest,
                            template_body: str) -> Dict[str, str]:
    """Return region -> alias ARN for every requested region, creating keys as needed."""
    logger.info(f"Checking {friendly_join(list(request.regions))} for the '{request.label}' label.")

    probes = probe_regions(factory, list(request.regions), request.stack_name, request.alias_name)
    existing, missing = fold_probes(probes)
    check_gap_policy(request, existing, missing)

    if existing:
        logger.info(f"Found {len(existing)} pre-existing {pluralize('key', len(existing))}.")
    if not missing:
        return dict(existing)

    admin_arns, user_arns = construct_arns(get_caller_identity(factory), request.administrators, request.users)
    logger.info(f"{pluralize('Region', len(missing))} {friendly_join(missing)} need to be provisioned.")

    created = provision_missing_regions(factory, request, missing, admin_arns, user_arns, template_body)

    region_keys = dict(existing)
    region_keys.update(created)
    return region_keys
