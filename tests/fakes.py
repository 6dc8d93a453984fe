"""In-memory stand-ins for the boto3 clients used by kms-secrets."""

from botocore.exceptions import ClientError

ACCOUNT_ID = '123456789012'
CALLER_ARN = f"arn:aws:iam::{ACCOUNT_ID}:user/operator"

def client_error(code, message, operation='Operation'):
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)

def alias_arn(region, alias_name):
    return f"arn:aws:kms:{region}:{ACCOUNT_ID}:{alias_name}"

def key_arn(region, key_id):
    return f"arn:aws:kms:{region}:{ACCOUNT_ID}:key/{key_id}"

def key_id_of(key):
    """Accept a bare key ID or a key ARN."""
    return key.rsplit('/', 1)[-1]

class FakePaginator:
    def __init__(self, pages_fn):
        self.pages_fn = pages_fn

    def paginate(self, **kwargs):
        return iter(self.pages_fn(**kwargs))

class FakeWaiter:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def wait(self, StackName):
        self.client.calls.append(('wait', self.name, StackName))
        if self.client.wait_error:
            raise self.client.wait_error

class FakeCloudFormationClient:
    def __init__(self, region, stacks=None, describe_error=None, create_error=None,
                 wait_error=None, outputs=None, delete_error=None):
        self.region = region
        self.stacks = set(stacks or [])
        self.describe_error = describe_error
        self.create_error = create_error
        self.wait_error = wait_error
        self.delete_error = delete_error
        self.outputs = outputs
        self.created = {}
        self.calls = []

    def describe_stacks(self, StackName):
        self.calls.append(('describe_stacks', StackName))
        if self.describe_error:
            raise self.describe_error
        if StackName in self.created:
            outputs = self.outputs
            if outputs is None:
                outputs = [{'OutputKey': 'KeyArn', 'OutputValue': key_arn(self.region, 'new-key')}]
            return {'Stacks': [{'StackId': StackName, 'Outputs': outputs}]}
        if StackName in self.stacks:
            return {'Stacks': [{'StackId': StackName, 'Outputs': []}]}
        raise client_error('ValidationError', f"Stack with id {StackName} does not exist", 'DescribeStacks')

    def create_stack(self, **kwargs):
        self.calls.append(('create_stack', kwargs))
        if self.create_error:
            raise self.create_error
        stack_id = f"arn:aws:cloudformation:{self.region}:{ACCOUNT_ID}:stack/{kwargs['StackName']}/1"
        self.created[stack_id] = kwargs
        self.stacks.add(kwargs['StackName'])
        return {'StackId': stack_id}

    def delete_stack(self, StackName):
        self.calls.append(('delete_stack', StackName))
        if self.delete_error:
            raise self.delete_error
        self.stacks.discard(StackName)

    def get_waiter(self, name):
        assert name in ('stack_create_complete', 'stack_delete_complete')
        return FakeWaiter(self, name)

class FakeKmsClient:
    def __init__(self, region, aliases=None, disabled_keys=None, grants=None, list_error=None,
                 create_alias_error=None, delete_alias_error=None):
        self.region = region
        # alias name -> target key id
        self.aliases = dict(aliases or {})
        self.disabled_keys = set(disabled_keys or [])
        # key id -> list of grants
        self.grants = dict(grants or {})
        self.list_error = list_error
        self.create_alias_error = create_alias_error
        self.delete_alias_error = delete_alias_error
        self.calls = []

    def _alias_pages(self):
        self.calls.append(('list_aliases',))
        if self.list_error:
            raise self.list_error
        entries = [
            {'AliasName': name, 'AliasArn': alias_arn(self.region, name), 'TargetKeyId': target}
            for name, target in sorted(self.aliases.items())
        ]
        # two pages to exercise pagination
        return [{'Aliases': entries[:1]}, {'Aliases': entries[1:]}]

    def _grant_pages(self, KeyId):
        self.calls.append(('list_grants', KeyId))
        return [{'Grants': list(self.grants.get(key_id_of(KeyId), []))}]

    def get_paginator(self, name):
        if name == 'list_aliases':
            return FakePaginator(lambda: self._alias_pages())
        if name == 'list_grants':
            return FakePaginator(self._grant_pages)
        raise AssertionError(f"unexpected paginator {name}")

    def describe_key(self, KeyId):
        self.calls.append(('describe_key', KeyId))
        return {'KeyMetadata': {
            'KeyId': KeyId,
            'Arn': key_arn(self.region, key_id_of(KeyId)),
            'Enabled': KeyId not in self.disabled_keys,
        }}

    def create_alias(self, AliasName, TargetKeyId):
        self.calls.append(('create_alias', AliasName, TargetKeyId))
        if self.create_alias_error:
            raise self.create_alias_error
        self.aliases[AliasName] = TargetKeyId

    def delete_alias(self, AliasName):
        self.calls.append(('delete_alias', AliasName))
        if self.delete_alias_error:
            raise self.delete_alias_error
        del self.aliases[AliasName]

    def create_grant(self, KeyId, Name, **kwargs):
        self.calls.append(('create_grant', KeyId, Name, kwargs))
        grants = self.grants.setdefault(key_id_of(KeyId), [])
        for grant in grants:
            if grant.get('Name') == Name:
                return {'GrantId': grant['GrantId'], 'GrantToken': 'token'}
        grant_id = f"{self.region}-grant-{len(grants) + 1}"
        record = {'Name': Name, 'GrantId': grant_id, 'KeyId': KeyId}
        record.update(kwargs)
        grants.append(record)
        return {'GrantId': grant_id, 'GrantToken': 'token'}

    def _remove_grant(self, operation, KeyId, GrantId):
        self.calls.append((operation, KeyId, GrantId))
        grants = self.grants.get(key_id_of(KeyId), [])
        self.grants[key_id_of(KeyId)] = [g for g in grants if g['GrantId'] != GrantId]

    def retire_grant(self, KeyId, GrantId):
        self._remove_grant('retire_grant', KeyId, GrantId)

    def revoke_grant(self, KeyId, GrantId):
        self._remove_grant('revoke_grant', KeyId, GrantId)

class FakeStsClient:
    def __init__(self):
        self.calls = 0

    def get_caller_identity(self):
        self.calls += 1
        return {'Account': ACCOUNT_ID, 'Arn': CALLER_ARN, 'UserId': 'AIDAEXAMPLE'}

class FakeClientFactory:
    """Hands out one fake client per (service, region) and records every request."""

    def __init__(self):
        self.kms_clients = {}
        self.cf_clients = {}
        self.sts_client = FakeStsClient()

    def add_region(self, region, kms=None, cloudformation=None):
        self.kms_clients[region] = kms or FakeKmsClient(region)
        self.cf_clients[region] = cloudformation or FakeCloudFormationClient(region)

    def kms(self, region):
        return self.kms_clients[region]

    def cloudformation(self, region):
        return self.cf_clients[region]

    def sts(self):
        return self.sts_client

    def create_stack_calls(self):
        return [
            (region, call) for region, client in sorted(self.cf_clients.items())
            for call in client.calls if call[0] == 'create_stack'
        ]

