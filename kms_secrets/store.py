"""
Flat-file YAML secret store.

The file maps each secret name to a list of values. A value records which key
encrypted it (key_id, key_manager, algorithm) plus whatever ciphertext fields
the encryption layer stored alongside; those extra fields are kept verbatim.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List

import yaml

from kms_secrets.errors import NameNotFoundError, NewStoreError, StoreError

logger = logging.getLogger(__name__)

# Name under which the key template is stored
KEY_TEMPLATE_NAME = '_keys'

KEY_FIELDS = ('key_id', 'key_manager', 'algorithm')

@dataclass(frozen=True)
class Value:
    key_id: str
    key_manager: str
    algorithm: str
    extra: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Value':
        return cls(
            key_id=data.get('key_id', ''),
            key_manager=data.get('key_manager', ''),
            algorithm=data.get('algorithm', ''),
            extra={k: v for k, v in data.items() if k not in KEY_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'key_id': self.key_id,
            'key_manager': self.key_manager,
            'algorithm': self.algorithm,
        }
        data.update(self.extra)
        return data

def filter_by_key_manager(values: List[Value], key_manager: str) -> List[Value]:
    return [value for value in values if value.key_manager == key_manager]

class FileStore:
    """Reads and writes named value lists in a single YAML file."""

    def __init__(self, filename: str):
        self.filename = filename

    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        try:
            with open(self.filename, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise NewStoreError(f"{self.filename} does not exist yet.") from e
        except yaml.YAMLError as e:
            raise StoreError(f"{self.filename} is not valid YAML: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StoreError(f"{self.filename} must contain a mapping of names to values.")
        return data

    def get(self, name: str) -> List[Value]:
        data = self._load()
        if name not in data:
            raise NameNotFoundError(f"{name} not found in {self.filename}.")
        return [Value.from_dict(entry) for entry in data[name] or []]

    def put(self, name: str, values: List[Value]) -> None:
        """Replace every value stored under name."""
        try:
            data = self._load()
        except NewStoreError:
            data = {}
        data[name] = [value.to_dict() for value in values]

        directory = os.path.dirname(os.path.abspath(self.filename))
        os.makedirs(directory, exist_ok=True)
        # A failed dump leaves the existing file untouched
        fd, temp_path = tempfile.mkstemp(dir=directory, prefix='.', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)
            os.replace(temp_path, self.filename)
        except BaseException:
            os.unlink(temp_path)
            raise
        logger.debug(f"Wrote {len(values)} values for {name} to {self.filename}")
