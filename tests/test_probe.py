import pytest

from kms_secrets.errors import InconsistentStackError, RegionProbeError
from kms_secrets.kms import DisabledKeyError
from kms_secrets.probe import (
    ABSENT,
    ERROR,
    PRESENT,
    RegionProbe,
    classify_region,
    describe_error,
    fold_probes,
    probe_region,
    probe_regions,
)
from tests.fakes import FakeCloudFormationClient, FakeKmsClient, alias_arn, client_error

ALIAS = 'alias/kms-secrets-default'
STACK = 'kms-secrets-default'

@pytest.mark.parametrize('stack_found, alias_found, alias_enabled, expected', [
    (False, False, True, ABSENT),
    (False, False, False, ABSENT),
    (True, False, True, ERROR),
    (True, False, False, ERROR),
    (False, True, True, PRESENT),
    (True, True, True, PRESENT),
    (False, True, False, ERROR),
    (True, True, False, ERROR),
])
def test_classification_is_total(stack_found, alias_found, alias_enabled, expected):
    assert classify_region(stack_found, alias_found, alias_enabled) == expected

def test_present_region(factory):
    factory.add_region('us-east-1',
                       kms=FakeKmsClient('us-east-1', aliases={'alias/other': 'k0', ALIAS: 'k1'}),
                       cloudformation=FakeCloudFormationClient('us-east-1', stacks=[STACK]))
    probe = probe_region(factory, 'us-east-1', STACK, ALIAS)
    assert probe == RegionProbe('us-east-1', PRESENT, key_arn=alias_arn('us-east-1', ALIAS))

def test_absent_region(factory):
    factory.add_region('us-east-1')
    assert probe_region(factory, 'us-east-1', STACK, ALIAS).state == ABSENT

def test_stack_without_alias_is_inconsistent(factory):
    factory.add_region('eu-west-1', cloudformation=FakeCloudFormationClient('eu-west-1', stacks=[STACK]))
    probe = probe_region(factory, 'eu-west-1', STACK, ALIAS)
    assert probe.state == ERROR
    assert isinstance(probe.errors[0], InconsistentStackError)
    assert 'delete-stack --stack-name kms-secrets-default' in str(probe.errors[0])

def test_disabled_key_is_an_error(factory):
    factory.add_region('us-east-1', kms=FakeKmsClient('us-east-1', aliases={ALIAS: 'k1'}, disabled_keys=['k1']))
    probe = probe_region(factory, 'us-east-1', STACK, ALIAS)
    assert probe.state == ERROR
    assert isinstance(probe.errors[0], DisabledKeyError)
    assert 'disabled' in str(probe.errors[0])
    assert 'delete-alias' in str(probe.errors[0])

def test_unexpected_describe_error_is_recorded(factory):
    error = client_error('AccessDenied', 'not allowed', 'DescribeStacks')
    factory.add_region('us-east-1', cloudformation=FakeCloudFormationClient('us-east-1', describe_error=error))
    probe = probe_region(factory, 'us-east-1', STACK, ALIAS)
    assert probe.state == ERROR
    assert probe.errors == (error,)
    assert describe_error(probe.errors[0]) == 'AccessDenied: not allowed'

def test_all_regions_are_probed_and_all_errors_reported(factory, caplog):
    factory.add_region('ap-south-1', cloudformation=FakeCloudFormationClient('ap-south-1', stacks=[STACK]))
    factory.add_region('eu-west-1',
                       kms=FakeKmsClient('eu-west-1', list_error=client_error('ThrottlingException', 'slow down')))
    factory.add_region('us-east-1')

    probes = probe_regions(factory, ['us-east-1', 'eu-west-1', 'ap-south-1'], STACK, ALIAS)
    assert [p.region for p in probes] == ['ap-south-1', 'eu-west-1', 'us-east-1']
    assert factory.kms('us-east-1').calls

    with pytest.raises(RegionProbeError) as excinfo:
        fold_probes(probes)
    assert [region for region, _ in excinfo.value.errors] == ['ap-south-1', 'eu-west-1']
    assert 'ap-south-1: A CloudFormation stack' in caplog.text
    assert 'eu-west-1: ThrottlingException' in caplog.text

def test_fold_splits_existing_and_missing():
    probes = [
        RegionProbe('eu-west-1', ABSENT),
        RegionProbe('us-east-1', PRESENT, key_arn='arn:a'),
    ]
    assert fold_probes(probes) == ({'us-east-1': 'arn:a'}, ['eu-west-1'])

def test_fold_keeps_the_original_exceptions(factory):
    expired = client_error('ExpiredTokenException', 'token expired', 'DescribeStacks')
    factory.add_region('us-east-1', cloudformation=FakeCloudFormationClient('us-east-1', describe_error=expired))

    with pytest.raises(RegionProbeError) as excinfo:
        fold_probes(probe_regions(factory, ['us-east-1'], STACK, ALIAS))
    assert excinfo.value.errors == [('us-east-1', expired)]
