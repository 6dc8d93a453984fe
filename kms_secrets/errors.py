"""Exceptions raised by kms-secrets."""

from typing import List, Tuple

class KmsSecretsError(Exception):
    """Base class for all kms-secrets failures."""

class ArnValidationError(KmsSecretsError):
    """A principal list was empty after canonicalization."""

class ConfigurationError(KmsSecretsError):
    """Command input that cannot be acted on, such as an empty region list."""

class RegionProbeError(KmsSecretsError):
    """One or more regions are in a state that needs manual attention.

    ``errors`` holds every ``(region, exception)`` pair in the order probed.
    """

    def __init__(self, message: str, errors: List[Tuple[str, Exception]] = None):
        super().__init__(message)
        self.errors = list(errors or [])

class InconsistentStackError(KmsSecretsError):
    """A region has the label's stack but not its alias."""

class GapPolicyError(KmsSecretsError):
    """Some regions have keys and others don't, and filling gaps wasn't requested."""

class MissingStackOutputError(KmsSecretsError):
    """A created stack did not expose the expected output."""

class RegionalError(KmsSecretsError):
    """One or more per-region operations failed.

    ``errors`` holds every ``(region, exception)`` pair, sorted by region.
    """

    def __init__(self, message: str, errors: List[Tuple[str, Exception]] = None):
        super().__init__(message)
        self.errors = sorted(errors or [], key=lambda item: item[0])

    def __str__(self):
        if not self.errors:
            return super().__str__()
        details = '; '.join(f"{region}: {error}" for region, error in self.errors)
        return f"{super().__str__()} {details}"

class ProvisioningError(RegionalError):
    """One or more regional provisioning workers failed."""

class DeprovisionError(RegionalError):
    """One or more regions could not be torn down."""

class GrantsError(KmsSecretsError):
    """A stored value could not be resolved to a KMS alias, or a grant change failed."""

class StoreError(KmsSecretsError):
    """Base class for secret store failures."""

class NameNotFoundError(StoreError):
    """The requested name is not present in the store."""

class NewStoreError(StoreError):
    """The store file does not exist yet."""
