"""Environment-driven defaults for the command line flags."""

import os
from typing import List

from kms_secrets.errors import ConfigurationError

DEFAULT_REGIONS = 'us-east-1,us-west-1,us-west-2'
DEFAULT_LABEL = 'default'
DEFAULT_ALGORITHM = 'aesgcm256'

# Algorithms understood by the secret envelope format
ALGORITHMS = ['aesgcm256', 'secretbox']

def split_regions(value: str) -> List[str]:
    """Split a comma-delimited region list, dropping blanks and duplicates."""
    return sorted({region.strip() for region in value.split(',') if region.strip()})

def require_regions(regions: List[str]) -> List[str]:
    if not regions:
        raise ConfigurationError('At least one region is required; check --regions or KMS_SECRETS_REGIONS.')
    return regions

def default_regions() -> List[str]:
    return split_regions(os.environ.get('KMS_SECRETS_REGIONS', DEFAULT_REGIONS))

def default_label() -> str:
    return os.environ.get('KMS_SECRETS_LABEL', DEFAULT_LABEL)

def default_algorithm() -> str:
    return os.environ.get('KMS_SECRETS_ALGORITHM', DEFAULT_ALGORITHM)

def default_filename():
    """Secrets file from the environment, or None when the flag is required."""
    return os.environ.get('KMS_SECRETS_FILENAME') or None

def default_log_level() -> str:
    return os.environ.get('LOG_LEVEL', 'INFO').upper()
