"""
KMS helpers: alias naming, alias discovery and creation, and grant listing
across the regions that share one alias.
"""

import logging
from typing import Dict, List, Optional

from kms_secrets.clients import ClientFactory
from kms_secrets.errors import KmsSecretsError

logger = logging.getLogger(__name__)

KMS_LABEL = 'kms'
NAME_PREFIX = 'kms-secrets-'

def kms_alias_name(label: str) -> str:
    return f"alias/{NAME_PREFIX}{label}"

def cf_stack_name(label: str) -> str:
    return f"{NAME_PREFIX}{label}"

class DisabledKeyError(KmsSecretsError):
    """An alias matches the label but points at a disabled key."""

def get_alias_by_name(kms_client, alias_name: str) -> Optional[Dict]:
    """Get the alias list entry named alias_name, with pagination."""
    paginator = kms_client.get_paginator('list_aliases')
    for page in paginator.paginate():
        for alias in page.get('Aliases', []):
            if alias.get('AliasName') == alias_name:
                return alias
    return None

def find_enabled_alias(kms_client, alias_name: str, region: str) -> str:
    """Return the ARN of alias_name if it exists and its key is enabled, else ''."""
    alias = get_alias_by_name(kms_client, alias_name)
    if alias is None:
        return ''

    key_metadata = kms_client.describe_key(KeyId=alias['TargetKeyId'])['KeyMetadata']
    if not key_metadata.get('Enabled', False):
        raise DisabledKeyError(
            f"There is a KMS key in {region} with a matching alias, but the key is disabled. "
            f"If the alias is no longer in use, you may try again after deleting the alias. "
            f"To delete the alias, run: aws --region {region} kms delete-alias --alias-name {alias_name}"
        )
    return alias['AliasArn']

def create_alias(kms_client, region: str, alias_name: str, key_arn: str) -> str:
    """Point alias_name at key_arn and return the new alias's ARN."""
    logger.info(f"{region}: creating alias '{alias_name}' for key {key_arn}.")
    kms_client.create_alias(AliasName=alias_name, TargetKeyId=key_arn)

    logger.info(f"{region}: fetching ARN for the new alias.")
    alias = get_alias_by_name(kms_client, alias_name)
    if alias is None:
        raise KmsSecretsError('failed to discover ARN of new alias')
    return alias['AliasArn']

def list_key_grants(kms_client, key_id: str) -> List[Dict]:
    """Get grants for a KMS key, with pagination."""
    paginator = kms_client.get_paginator('list_grants')
    grants = []
    for page in paginator.paginate(KeyId=key_id):
        grants.extend(page.get('Grants', []))
    return grants

class MultiRegionKey:
    """One alias name provisioned in several regions."""

    def __init__(self, factory: ClientFactory, alias_name: str, regions: List[str]):
        self.factory = factory
        self.alias_name = alias_name
        self.regions = sorted(set(regions))

    def target_key_arn(self, region: str) -> str:
        """ARN of the key the alias points at in region."""
        kms_client = self.factory.kms(region)
        alias = get_alias_by_name(kms_client, self.alias_name)
        if alias is None or not alias.get('TargetKeyId'):
            raise KmsSecretsError(f"{region}: alias {self.alias_name} does not exist.")
        return kms_client.describe_key(KeyId=alias['TargetKeyId'])['KeyMetadata']['Arn']

    def get_grant_details(self) -> Dict[str, List[Dict]]:
        """Map each region to the grants on the key the alias targets there."""
        region_grants = {}
        for region in self.regions:
            region_grants[region] = list_key_grants(self.factory.kms(region), self.target_key_arn(region))
            logger.debug(f"{region}: {len(region_grants[region])} grants on {self.alias_name}")
        return region_grants

    def create_grant(self, grant_name: str, grant_request: Dict) -> Dict[str, str]:
        """Create the same named grant on the key in every region; return region -> grant ID.

        KMS treats a repeated request with the same name and parameters as the
        same grant, so running this twice returns the existing IDs.
        """
        grant_ids = {}
        for region in self.regions:
            key_arn = self.target_key_arn(region)
            response = self.factory.kms(region).create_grant(KeyId=key_arn, Name=grant_name, **grant_request)
            grant_ids[region] = response['GrantId']
            logger.info(f"{region}: grant {grant_name} is {grant_ids[region]} on {self.alias_name}.")
        return grant_ids

    def retire_grant(self, grant_name: str, revoke: bool = False) -> Dict[str, List[str]]:
        """Retire (or revoke) every grant called grant_name; return region -> removed grant IDs."""
        removed = {}
        for region in self.regions:
            kms_client = self.factory.kms(region)
            key_arn = self.target_key_arn(region)
            for grant in list_key_grants(kms_client, key_arn):
                if grant.get('Name') != grant_name:
                    continue
                if revoke:
                    kms_client.revoke_grant(KeyId=key_arn, GrantId=grant['GrantId'])
                else:
                    kms_client.retire_grant(KeyId=key_arn, GrantId=grant['GrantId'])
                removed.setdefault(region, []).append(grant['GrantId'])
                logger.info(f"{region}: {'revoked' if revoke else 'retired'} grant {grant['GrantId']} "
                            f"on {self.alias_name}.")
        return removed
