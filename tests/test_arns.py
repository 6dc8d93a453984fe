import pytest

from kms_secrets.arns import clean_arn, clean_arn_list, construct_arns, validate_arn_list
from kms_secrets.errors import ArnValidationError

def test_expands_short_forms():
    assert clean_arn('123', 'jeff') == 'arn:aws:iam::123:user/jeff'
    assert clean_arn('123', 'user/jeff') == 'arn:aws:iam::123:user/jeff'
    assert clean_arn('123', 'role/webserver') == 'arn:aws:iam::123:role/webserver'

def test_full_arns_pass_through():
    arn = 'arn:aws:iam::999:role/other-account'
    assert clean_arn('123', arn) == arn
    assert clean_arn('123', '  arn:aws:sts::123:assumed-role/x/y ') == 'arn:aws:sts::123:assumed-role/x/y'

def test_blank_tokens_are_dropped():
    assert clean_arn('123', '   ') == ''
    assert clean_arn_list('123', ' , ,') == []

def test_canonicalization_is_idempotent():
    for token in ['jeff', 'role/webserver', 'arn:aws:iam::123:user/x']:
        once = clean_arn('123', token)
        assert clean_arn('123', once) == once

def test_list_is_sorted_and_deduplicated():
    result = clean_arn_list('123', 'jeff,role/webserver,arn:aws:iam::123:user/x,user/jeff, jeff ')
    assert result == [
        'arn:aws:iam::123:role/webserver',
        'arn:aws:iam::123:user/jeff',
        'arn:aws:iam::123:user/x',
    ]

def test_empty_list_is_rejected_with_kind():
    with pytest.raises(ArnValidationError, match='Administrator ARNs'):
        validate_arn_list([], 'Administrator')
    with pytest.raises(ArnValidationError, match='User ARNs'):
        validate_arn_list([], 'User')
    validate_arn_list(['arn:aws:iam::123:user/jeff'], 'User')

def test_caller_is_always_administrator_and_user():
    identity = {'Account': '123', 'Arn': 'arn:aws:iam::123:user/me'}
    admins, users = construct_arns(identity, 'role/admin', '')
    assert admins == ['arn:aws:iam::123:role/admin', 'arn:aws:iam::123:user/me']
    assert users == ['arn:aws:iam::123:user/me']

def test_caller_is_not_duplicated():
    identity = {'Account': '123', 'Arn': 'arn:aws:iam::123:user/me'}
    admins, users = construct_arns(identity, 'me', 'user/me')
    assert admins == ['arn:aws:iam::123:user/me']
    assert users == ['arn:aws:iam::123:user/me']
