"""
Tear down the KMS keys provisioned for a label.

In each region the label's alias is deleted first and then its CloudFormation
stack, which schedules the key for deletion. Nothing is deleted unless the
caller asks for a destructive run; otherwise the resources that would be
removed are only reported.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List

from kms_secrets.clients import ClientFactory
from kms_secrets.cloudformation import delete_stack_and_wait, stack_exists
from kms_secrets.errors import DeprovisionError
from kms_secrets.kms import cf_stack_name, get_alias_by_name, kms_alias_name
from kms_secrets.provision import pluralize

logger = logging.getLogger(__name__)

def find_label_resources(factory: ClientFactory, region: str, label: str) -> Dict[str, str]:
    """Return the alias ARN and stack name present in a region for a label."""
    resources = {}
    alias = get_alias_by_name(factory.kms(region), kms_alias_name(label))
    if alias is not None:
        resources['alias'] = alias['AliasArn']
    if stack_exists(factory.cloudformation(region), cf_stack_name(label)):
        resources['stack'] = cf_stack_name(label)
    return resources

def deprovision_region(factory: ClientFactory, region: str, label: str, resources: Dict[str, str]) -> None:
    if 'alias' in resources:
        logger.info(f"{region}: deleting alias {kms_alias_name(label)}.")
        factory.kms(region).delete_alias(AliasName=kms_alias_name(label))
    if 'stack' in resources:
        delete_stack_and_wait(factory.cloudformation(region), region, resources['stack'])

def deprovision_label(factory: ClientFactory, label: str, regions: List[str],
                      destructive: bool = False) -> Dict[str, Dict[str, str]]:
    """Return region -> resources found for the label, deleting them when destructive.

    Regions with nothing to remove are left out. All regions are inspected
    before anything is deleted.
    """
    plan = {}
    for region in sorted(set(regions)):
        resources = find_label_resources(factory, region, label)
        if resources:
            plan[region] = resources
        else:
            logger.info(f"{region}: nothing to deprovision for the '{label}' label.")

    if not plan:
        return plan
    if not destructive:
        logger.warning(f"Re-run with --destructive to delete the resources listed for the '{label}' label.")
        return plan

    errors = []
    with ThreadPoolExecutor(max_workers=len(plan)) as executor:
        future_to_region = {
            executor.submit(deprovision_region, factory, region, label, resources): region
            for region, resources in plan.items()
        }
        wait(future_to_region)

    for future, region in sorted(future_to_region.items(), key=lambda item: item[1]):
        try:
            future.result()
        except Exception as e:
            logger.error(f"{region}: {e}")
            errors.append((region, e))

    if errors:
        raise DeprovisionError(
            f"Failed to deprovision {len(errors)} of {len(plan)} {pluralize('region', len(plan))}.", errors)
    return plan
