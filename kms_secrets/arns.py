"""
Canonicalize IAM principal references into full ARNs.

Users may be referenced by their naked username (ex: 'jeff') or prefixed with
user/ (ex: 'user/jeff'). Roles may be prefixed with role/ (ex: 'role/webserver').
The naked and prefixed forms are composed into a full ARN using the account ID
of the caller. Principals prefixed with arn: are passed to AWS verbatim.
"""

import logging
from typing import Dict, Iterable, List, Tuple

from kms_secrets.errors import ArnValidationError

logger = logging.getLogger(__name__)

SHORT_FORM_PREFIXES = ('user/', 'role/')

def clean_arn(account_id: str, arn: str) -> str:
    """Expand a single principal token, or return '' for a blank one."""
    arn = arn.strip()
    if not arn:
        return ''
    if arn.startswith('arn:'):
        return arn
    if arn.startswith(SHORT_FORM_PREFIXES):
        return f"arn:aws:iam::{account_id}:{arn}"
    return f"arn:aws:iam::{account_id}:user/{arn}"

def clean_arn_list(account_id: str, arns: str) -> List[str]:
    """Canonicalize a comma-delimited list into a sorted, de-duplicated list."""
    cleaned = set()
    for token in arns.split(','):
        arn = clean_arn(account_id, token)
        if arn:
            cleaned.add(arn)
    return sorted(cleaned)

def validate_arn_list(arns: Iterable[str], kind: str) -> None:
    if not list(arns):
        raise ArnValidationError(f"{kind} ARNs: There must be at least one entry.")

def construct_arns(identity: Dict, administrators: str, users: str) -> Tuple[List[str], List[str]]:
    """Build the administrator and user lists for a new key policy.

    The caller's own ARN is always added to both lists so that whoever runs
    the command can manage and use the keys it creates.
    """
    account_id = identity['Account']
    caller_arn = identity['Arn']
    logger.info(f"Detected account ID #{account_id} and that I am {caller_arn}.")

    admin_arns = clean_arn_list(account_id, f"{administrators or ''},{caller_arn}")
    validate_arn_list(admin_arns, 'Administrator')
    user_arns = clean_arn_list(account_id, f"{users or ''},{caller_arn}")
    validate_arn_list(user_arns, 'User')

    logger.info(f"Administrative actions will be allowed by {admin_arns}")
    logger.info(f"User actions will be allowed by {user_arns}")
    return admin_arns, user_arns
