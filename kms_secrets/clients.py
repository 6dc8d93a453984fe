"""
Per-region AWS client creation.

Every collaborator receives a ClientFactory and asks it for a client in the
region it is working on; nothing reads a process-wide session.
"""

import logging
from typing import Dict, Optional

import boto3

logger = logging.getLogger(__name__)

class ClientFactory:
    """Hands out boto3 clients bound to a session and a region."""

    def __init__(self, session: Optional[boto3.Session] = None):
        self.session = session or boto3.Session()

    @classmethod
    def from_profile(cls, profile: Optional[str] = None) -> 'ClientFactory':
        if profile:
            return cls(boto3.Session(profile_name=profile))
        return cls()

    def client(self, service: str, region: Optional[str] = None):
        if region:
            return self.session.client(service, region_name=region)
        return self.session.client(service)

    def kms(self, region: str):
        return self.client('kms', region)

    def cloudformation(self, region: str):
        return self.client('cloudformation', region)

    def sts(self):
        return self.client('sts')

def get_caller_identity(factory: ClientFactory) -> Dict[str, str]:
    """Return the account ID, ARN and user ID of the current credentials."""
    response = factory.sts().get_caller_identity()
    return {
        'Account': response['Account'],
        'Arn': response['Arn'],
        'UserId': response.get('UserId', ''),
    }
