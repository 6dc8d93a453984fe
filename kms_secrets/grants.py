"""
List, create and retire the KMS grants protecting a stored secret.

A secret's values name the KMS alias ARNs that encrypted it. Each alias is
looked up in every region it was used in, and the per-region grants are folded
by grant name into one logical grant that records its grant ID per region.
Grants created here carry the same name in every region so they fold together.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from kms_secrets.arns import clean_arn
from kms_secrets.clients import ClientFactory, get_caller_identity
from kms_secrets.errors import GrantsError
from kms_secrets.kms import KMS_LABEL, MultiRegionKey
from kms_secrets.store import FileStore, Value, filter_by_key_manager

logger = logging.getLogger(__name__)

# Operations a grant may allow
GRANT_OPERATIONS = [
    'Decrypt',
    'Encrypt',
    'GenerateDataKey',
    'GenerateDataKeyWithoutPlaintext',
    'ReEncryptFrom',
    'ReEncryptTo',
    'CreateGrant',
    'RetireGrant',
    'DescribeKey',
]
DEFAULT_GRANT_OPERATIONS = 'Decrypt,RetireGrant'

# Encryption context key binding a ciphertext to the name it is stored under
SECRET_NAME_CONTEXT = 'SecretName'
GRANT_NAME_PREFIX = 'kms-secrets-'

@dataclass
class AggregatedGrant:
    grantee_principal: str
    retiring_principal: Optional[str] = None
    encryption_context_subset: Dict[str, str] = field(default_factory=dict)
    operations: List[str] = field(default_factory=list)
    grant_ids: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_grant(cls, grant: Dict[str, Any]) -> 'AggregatedGrant':
        constraints = grant.get('Constraints') or {}
        return cls(
            grantee_principal=grant.get('GranteePrincipal', ''),
            retiring_principal=grant.get('RetiringPrincipal'),
            encryption_context_subset=dict(constraints.get('EncryptionContextSubset') or {}),
            operations=list(grant.get('Operations', [])),
        )

    def matches(self, grant: Dict[str, Any]) -> bool:
        other = AggregatedGrant.from_grant(grant)
        return (self.grantee_principal == other.grantee_principal
                and self.retiring_principal == other.retiring_principal
                and self.encryption_context_subset == other.encryption_context_subset
                and sorted(self.operations) == sorted(other.operations))

    def to_dict(self) -> Dict[str, Any]:
        data = {'GranteePrincipal': self.grantee_principal}
        if self.retiring_principal:
            data['RetiringPrincipal'] = self.retiring_principal
        if self.encryption_context_subset:
            data['EncryptionContextSubset'] = dict(self.encryption_context_subset)
        data['Operations'] = list(self.operations)
        data['GrantIds'] = dict(self.grant_ids)
        return data

    def to_request(self) -> Dict[str, Any]:
        """Keyword arguments for kms.create_grant, without KeyId and Name."""
        request = {
            'GranteePrincipal': self.grantee_principal,
            'Operations': list(self.operations),
        }
        if self.retiring_principal:
            request['RetiringPrincipal'] = self.retiring_principal
        if self.encryption_context_subset:
            request['Constraints'] = {'EncryptionContextSubset': dict(self.encryption_context_subset)}
        return request

    def grant_name(self) -> str:
        """Name derived from the grant's parameters, identical in every region."""
        digest = hashlib.sha256(json.dumps(self.to_request(), sort_keys=True).encode('utf-8')).hexdigest()
        return f"{GRANT_NAME_PREFIX}{digest[:16]}"

def parse_alias_arn(arn: str):
    """Split arn:<partition>:kms:<region>:<account>:alias/<name> into (alias name, region)."""
    parts = arn.split(':', 5)
    if len(parts) != 6 or parts[0] != 'arn' or parts[2] != 'kms' or not parts[5].startswith('alias/'):
        raise GrantsError(f"The key ID {arn} is not a KMS alias ARN.")
    return parts[5], parts[3]

def resolve_values_to_aliases_and_regions(values: List[Value]) -> Dict[str, List[str]]:
    """Map each alias name to the sorted regions its ARNs were used in."""
    aliases = {}
    for value in values:
        alias_name, region = parse_alias_arn(value.key_id)
        aliases.setdefault(alias_name, set()).add(region)
    return {alias_name: sorted(regions) for alias_name, regions in aliases.items()}

def grant_key(grant: Dict[str, Any]) -> str:
    """Name a grant is folded under; an unnamed grant stands alone under its ID."""
    return grant.get('Name') or grant['GrantId']

def aggregate_grants(region_grants: Dict[str, List[Dict[str, Any]]]) -> Dict[str, AggregatedGrant]:
    """Group grants by name and collect their IDs by region.

    The first grant seen for a name (regions in sorted order) supplies the
    grantee, retiring principal, operations and constraints. Later grants with
    the same name that disagree are kept out of those fields and logged.
    Unnamed grants are never folded together. A second grant with the same
    name in one region is logged and its ID is not recorded.
    """
    by_name = {}
    for region in sorted(region_grants):
        for grant in region_grants[region]:
            name = grant_key(grant)
            entry = by_name.get(name)
            if entry is None:
                entry = AggregatedGrant.from_grant(grant)
                by_name[name] = entry
            elif region in entry.grant_ids:
                logger.warning(f"{region}: grant '{name}' appears more than once; keeping "
                               f"{entry.grant_ids[region]} and ignoring {grant['GrantId']}.")
                continue
            elif not entry.matches(grant):
                logger.warning(f"{region}: grant '{name}' ({grant['GrantId']}) differs from "
                               f"the grant of the same name in {sorted(entry.grant_ids)}.")
            entry.grant_ids[region] = grant['GrantId']
    return by_name

def list_grants_for_secret(factory: ClientFactory, store: FileStore, name: str) -> Dict[str, Dict[str, Dict]]:
    """Return alias name -> grant name -> aggregated grant for a secret."""
    values = filter_by_key_manager(store.get(name), KMS_LABEL)
    aliases = resolve_values_to_aliases_and_regions(values)

    output = {}
    for alias_name in sorted(aliases):
        mrk = MultiRegionKey(factory, alias_name, aliases[alias_name])
        grants = aggregate_grants(mrk.get_grant_details())
        if grants:
            output[alias_name] = {grant_name: grant.to_dict() for grant_name, grant in grants.items()}
    return output

def parse_operations(value: str) -> List[str]:
    operations = sorted({op.strip() for op in value.split(',') if op.strip()})
    unknown = [op for op in operations if op not in GRANT_OPERATIONS]
    if unknown:
        raise GrantsError(f"Unknown grant operations: {', '.join(unknown)}. "
                          f"Valid operations are {', '.join(GRANT_OPERATIONS)}.")
    if not operations:
        raise GrantsError('At least one grant operation is required.')
    return operations

def secret_aliases(store: FileStore, name: str) -> Dict[str, List[str]]:
    aliases = resolve_values_to_aliases_and_regions(filter_by_key_manager(store.get(name), KMS_LABEL))
    if not aliases:
        raise GrantsError(f"{name} has no values encrypted with a KMS key.")
    return aliases

def create_grants_for_secret(factory: ClientFactory, store: FileStore, name: str, grantee: str,
                             retiring: str = '', operations: str = DEFAULT_GRANT_OPERATIONS,
                             all_names: bool = False) -> Dict[str, Dict[str, Dict]]:
    """Grant a principal access to every key protecting a secret.

    Unless all_names is set, the grant only applies to ciphertexts whose
    encryption context names this secret. Returns the same shape as
    list_grants_for_secret.
    """
    aliases = secret_aliases(store, name)
    account_id = get_caller_identity(factory)['Account']

    grant = AggregatedGrant(
        grantee_principal=clean_arn(account_id, grantee),
        retiring_principal=clean_arn(account_id, retiring) or None,
        encryption_context_subset={} if all_names else {SECRET_NAME_CONTEXT: name},
        operations=parse_operations(operations),
    )
    if not grant.grantee_principal:
        raise GrantsError('A grantee principal is required.')
    grant_name = grant.grant_name()

    output = {}
    for alias_name in sorted(aliases):
        mrk = MultiRegionKey(factory, alias_name, aliases[alias_name])
        created = replace(grant, grant_ids=mrk.create_grant(grant_name, grant.to_request()))
        output[alias_name] = {grant_name: created.to_dict()}
    return output

def retire_grants_for_secret(factory: ClientFactory, store: FileStore, name: str, grant_name: str,
                             revoke: bool = False) -> Dict[str, Dict[str, List[str]]]:
    """Retire the named grant on every key protecting a secret; return alias -> region -> grant IDs."""
    aliases = secret_aliases(store, name)

    output = {}
    for alias_name in sorted(aliases):
        removed = MultiRegionKey(factory, alias_name, aliases[alias_name]).retire_grant(grant_name, revoke)
        if removed:
            output[alias_name] = removed
    if not output:
        raise GrantsError(f"No grant named {grant_name} was found on the keys protecting {name}.")
    return output
