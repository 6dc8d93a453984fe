"""Merge discovered and created keys into the secrets file's key template."""

import logging
from typing import Dict, List, Optional

from kms_secrets.errors import NameNotFoundError, NewStoreError
from kms_secrets.kms import KMS_LABEL
from kms_secrets.store import KEY_TEMPLATE_NAME, FileStore, Value

logger = logging.getLogger(__name__)

def reconcile_key_template(region_keys: Dict[str, str], algorithm: str,
                           existing: Optional[List[Value]] = None,
                           key_manager: str = KMS_LABEL) -> List[Value]:
    """Merge region_keys into existing template entries.

    Entries are keyed by key manager + key ID. Existing entries are carried
    over untouched; an entry for one of region_keys is replaced so that a new
    algorithm takes effect without duplicating it.
    """
    by_key = {}
    for value in existing or []:
        by_key[value.key_manager + value.key_id] = value

    for key_arn in region_keys.values():
        by_key[key_manager + key_arn] = Value(key_id=key_arn, key_manager=key_manager, algorithm=algorithm)

    return sorted(by_key.values(), key=lambda value: (value.key_id, value.key_manager))

def read_key_template(store: FileStore) -> List[Value]:
    """Read the key template, treating a missing name or file as empty."""
    try:
        return store.get(KEY_TEMPLATE_NAME)
    except (NameNotFoundError, NewStoreError):
        return []

def update_key_template(store: FileStore, region_keys: Dict[str, str], algorithm: str) -> List[Value]:
    updated = reconcile_key_template(region_keys, algorithm, read_key_template(store))
    store.put(KEY_TEMPLATE_NAME, updated)

    count = len(region_keys)
    keys = ', '.join(sorted(region_keys.values()))
    logger.info(f"The template used by {store.filename} has been updated to include "
                f"{'keys' if count > 1 else 'key'}: {keys}.")
    return updated
