"""CloudFormation helpers for creating and inspecting per-region key stacks."""

import logging
import os
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

from kms_secrets.errors import KmsSecretsError

logger = logging.getLogger(__name__)

TEMPLATE_PATH = os.path.join(os.path.dirname(__file__), 'templates', 'kms_key.yaml')

def load_key_template() -> str:
    """Read the built-in CloudFormation template for a regional key."""
    with open(TEMPLATE_PATH, 'r', encoding='utf-8') as f:
        return f.read()

def stack_exists(cf_client, stack_name: str) -> bool:
    """Check whether a stack exists; any error other than 'does not exist' propagates."""
    try:
        cf_client.describe_stacks(StackName=stack_name)
        return True
    except ClientError as e:
        error = e.response['Error']
        if error.get('Code') == 'ValidationError' and 'does not exist' in error.get('Message', ''):
            return False
        raise

def truefalse(value: bool) -> str:
    return 'true' if value else 'false'

class CloudFormationStack:
    """A stack to be created in one region from a template body or URL."""

    def __init__(self, region: str, stack_name: str, params: Dict[str, str],
                 template_body: Optional[str] = None, template_url: Optional[str] = None):
        self.region = region
        self.stack_name = stack_name
        self.params = params
        self.template_body = template_body
        self.template_url = template_url

    def parameter_list(self) -> List[Dict[str, str]]:
        return [
            {'ParameterKey': key, 'ParameterValue': value}
            for key, value in sorted(self.params.items())
        ]

    def create_and_wait(self, cf_client) -> Dict[str, str]:
        """Create the stack, block until it completes and return its outputs."""
        request = {
            'StackName': self.stack_name,
            'Capabilities': ['CAPABILITY_IAM'],
            'OnFailure': 'ROLLBACK',
            'Parameters': self.parameter_list(),
        }
        if self.template_url:
            request['TemplateURL'] = self.template_url
        else:
            request['TemplateBody'] = self.template_body

        stack_id = cf_client.create_stack(**request)['StackId']
        logger.info(f"{self.region}: Waiting for CloudFormation stack {stack_id}.")

        # The waiter polls with CloudFormation's own delay and attempt limits
        cf_client.get_waiter('stack_create_complete').wait(StackName=stack_id)

        stacks = cf_client.describe_stacks(StackName=stack_id).get('Stacks', [])
        if not stacks:
            raise KmsSecretsError(f"DescribeStacks returned an empty stack list for {stack_id}.")

        return {
            output['OutputKey']: output['OutputValue']
            for output in stacks[0].get('Outputs', [])
        }

def delete_stack_and_wait(cf_client, region: str, stack_name: str) -> None:
    """Delete a stack and block until CloudFormation reports it gone."""
    cf_client.delete_stack(StackName=stack_name)
    logger.info(f"{region}: Waiting for CloudFormation stack {stack_name} to be deleted.")
    cf_client.get_waiter('stack_delete_complete').wait(StackName=stack_name)
