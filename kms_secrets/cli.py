#!/usr/bin/env python3
"""
kms-secrets command line interface.

Provisions the KMS keys a secrets file is encrypted under, one per region,
tears them down again, and manages the grants that allow principals to use the
keys protecting a secret. Progress is written to stderr; result documents are
written to stdout as YAML.
"""

import argparse
import logging
import sys
from typing import List, Optional

import yaml
from botocore.exceptions import (
    ClientError,
    NoCredentialsError,
    NoRegionError,
    PartialCredentialsError,
    ProfileNotFound,
)

from kms_secrets import __version__, config
from kms_secrets.clients import ClientFactory, get_caller_identity
from kms_secrets.cloudformation import load_key_template
from kms_secrets.deprovision import deprovision_label
from kms_secrets.errors import KmsSecretsError
from kms_secrets.grants import (
    DEFAULT_GRANT_OPERATIONS,
    GRANT_OPERATIONS,
    create_grants_for_secret,
    list_grants_for_secret,
    retire_grants_for_secret,
)
from kms_secrets.provision import ProvisioningRequest, discover_or_create_keys
from kms_secrets.store import FileStore
from kms_secrets.template import update_key_template

logger = logging.getLogger('kms_secrets')

ARN_DETAILS = (
    "Users may be referenced by their naked username (ex: 'jeff') or prefixed with user/ "
    "(ex: 'user/jeff'). Roles may be prefixed with role/ (ex: 'role/webserver'). When the naked "
    "or prefixed forms are used, the full ARN is composed by using the account ID of the user "
    "invoking the command. Principals prefixed with arn: are passed to AWS verbatim."
)

REGION_HINT = 'Check or set the AWS_REGION environment variable.'
CREDENTIALS_HINT = "Configure your credentials using 'aws configure' or environment variables."

# Hints printed after an AWS error with one of these codes
ERROR_HINTS = {
    'ExpiredTokenException': 'Refresh your credentials.',
    'ExpiredToken': 'Refresh your credentials.',
    'InvalidCiphertextException': 'key_ciphertext may be corrupted.',
}

def emit_yaml(document) -> None:
    sys.stdout.write(yaml.safe_dump(document, default_flow_style=False, sort_keys=True))

def add_filename_argument(parser: argparse.ArgumentParser) -> None:
    default = config.default_filename()
    parser.add_argument('-f', '--filename', default=default, required=default is None,
                        help='Name of file storing the secrets (env: KMS_SECRETS_FILENAME)')

def add_region_arguments(parser: argparse.ArgumentParser, action: str) -> None:
    parser.add_argument('--regions', type=config.split_regions,
                        default=config.default_regions(),
                        help=f"Comma-delimited list of regions to {action} keys in (env: KMS_SECRETS_REGIONS)")
    parser.add_argument('-l', '--label', default=config.default_label(),
                        help='Label for the keys; used to name the stacks and aliases (env: KMS_SECRETS_LABEL)')

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='kms-secrets',
        description='Manage the AWS KMS keys and grants behind a secrets file',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  # Provision keys for the 'default' label in three regions
  kms-secrets kms init -f secrets.yml --regions us-east-1,us-west-1,us-west-2

  # Add a region to an existing label
  kms-secrets kms init -f secrets.yml --regions us-east-1,eu-west-1 --create-missing-keys

  # Show the grants on the keys protecting a secret
  kms-secrets kms grants list -f secrets.yml database_password

  # Let a role decrypt one secret, then take the grant away again
  kms-secrets kms grants create -f secrets.yml -g role/webserver database_password
  kms-secrets kms grants retire -f secrets.yml --grant-name kms-secrets-0123abcd database_password

  # Show, then delete, the keys of a label
  kms-secrets kms deprovision --regions us-east-1,eu-west-1 -l staging
  kms-secrets kms deprovision --regions us-east-1,eu-west-1 -l staging --destructive
"""
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('--profile', help='AWS profile to use')
    parser.add_argument('--log-level', default=config.default_log_level(),
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Verbosity of progress messages on stderr (env: LOG_LEVEL)')

    commands = parser.add_subparsers(dest='command', metavar='COMMAND')
    commands.required = True
    kms_parser = commands.add_parser('kms', help='AWS KMS-specific operations.')
    kms_commands = kms_parser.add_subparsers(dest='kms_command', metavar='KMS_COMMAND')
    kms_commands.required = True

    kms_commands.add_parser('get-caller-identity', help='Print the AWS credentials.')

    init = kms_commands.add_parser(
        'init',
        help='Provision KMS keys for a label in each region and record them in the key template.',
    )
    add_region_arguments(init, 'provision')
    init.add_argument('--create-missing-keys', action='store_true',
                      help='Provision regions that are not already configured for the specified label.')
    init.add_argument('--create-simple-roles', action='store_true',
                      help='Create simplified roles that are allowed full encrypt or decrypt privileges '
                           'under the created keys. Requires sufficient IAM privileges to call iam:CreateRole.')
    init.add_argument('-d', '--administrators', default='', metavar='ARN',
                      help='Comma-delimited list of IAM users, IAM roles, and AWS services ARNs that will '
                           'have administration privileges in the key policy attached to the new keys. '
                           + ARN_DETAILS)
    init.add_argument('-u', '--users', default='', metavar='ARN',
                      help='Comma-delimited list of IAM users, IAM roles, and AWS services ARNs that will '
                           'have user privileges in the key policy attached to the new keys. ' + ARN_DETAILS)
    init.add_argument('--disable-iam-policies', action='store_true',
                      help='Create KMS keys that will not evaluate IAM policies. Only the key policy '
                           'document will be evaluated when KMS authorizes API calls; this prevents the '
                           'root account from accessing the key.')
    init.add_argument('--cloudformation-template-url', metavar='URL',
                      help='Full URL to the CloudFormation template to use. Overrides the built-in template.')
    add_filename_argument(init)
    init.add_argument('-a', '--algorithm', default=config.default_algorithm(), choices=config.ALGORITHMS,
                      help='Encryption algorithm recorded for new keys (env: KMS_SECRETS_ALGORITHM)')

    deprovision = kms_commands.add_parser(
        'deprovision',
        help='Delete the aliases and CloudFormation stacks of a label. Lists them unless --destructive is given.',
    )
    add_region_arguments(deprovision, 'delete')
    deprovision.add_argument('--destructive', action='store_true',
                             help='Actually delete the resources. The keys are scheduled for deletion.')

    grants = kms_commands.add_parser('grants', help='Manage KMS grants.')
    grants_commands = grants.add_subparsers(dest='grants_command', metavar='GRANTS_COMMAND')
    grants_commands.required = True

    grants_list = grants_commands.add_parser('list', help='List the grants on the keys protecting a secret.')
    grants_list.add_argument('name', help='Name of the secret to list grants for.')
    add_filename_argument(grants_list)

    grants_create = grants_commands.add_parser(
        'create', help='Grant a principal access to every key protecting a secret.')
    grants_create.add_argument('name', help='Name of the secret to create grants for.')
    add_filename_argument(grants_create)
    grants_create.add_argument('-g', '--grantee-principal', required=True, metavar='ARN',
                               help='Principal that receives the grant. ' + ARN_DETAILS)
    grants_create.add_argument('--retiring-principal', default='', metavar='ARN',
                               help='Principal allowed to retire the grant.')
    grants_create.add_argument('-o', '--operations', default=DEFAULT_GRANT_OPERATIONS,
                               help=f"Comma-delimited list of operations to allow. Valid operations are "
                                    f"{', '.join(GRANT_OPERATIONS)}. Default: {DEFAULT_GRANT_OPERATIONS}")
    grants_create.add_argument('--all-names', action='store_true',
                               help='Do not restrict the grant to ciphertexts stored under this name.')

    grants_retire = grants_commands.add_parser(
        'retire', help='Retire a grant on every key protecting a secret.')
    grants_retire.add_argument('name', help='Name of the secret to retire grants for.')
    add_filename_argument(grants_retire)
    grants_retire.add_argument('--grant-name', required=True,
                               help="Name of the grant, as printed by 'kms grants list'.")
    grants_retire.add_argument('--revoke', action='store_true',
                               help='Revoke the grant instead of retiring it. Requires kms:RevokeGrant.')

    return parser

def run_get_caller_identity(args, factory: ClientFactory) -> None:
    emit_yaml(get_caller_identity(factory))

def run_kms_init(args, factory: ClientFactory) -> None:
    request = ProvisioningRequest(
        label=args.label,
        regions=tuple(config.require_regions(args.regions)),
        administrators=args.administrators,
        users=args.users,
        create_missing_keys=args.create_missing_keys,
        create_simple_roles=args.create_simple_roles,
        disable_iam_policies=args.disable_iam_policies,
        algorithm=args.algorithm,
        template_url=args.cloudformation_template_url,
    )
    template_body = None if request.template_url else load_key_template()
    region_keys = discover_or_create_keys(factory, request, template_body)

    # Only reached when every region has a key; a failed run leaves the file untouched
    update_key_template(FileStore(args.filename), region_keys, request.algorithm)
    if region_keys:
        emit_yaml({region: region_keys[region] for region in sorted(region_keys)})

def run_kms_deprovision(args, factory: ClientFactory) -> None:
    plan = deprovision_label(factory, args.label, config.require_regions(args.regions), args.destructive)
    if plan:
        emit_yaml(plan)

def run_kms_grants_list(args, factory: ClientFactory) -> None:
    output = list_grants_for_secret(factory, FileStore(args.filename), args.name)
    if output:
        emit_yaml(output)

def run_kms_grants_create(args, factory: ClientFactory) -> None:
    emit_yaml(create_grants_for_secret(
        factory, FileStore(args.filename), args.name, args.grantee_principal,
        retiring=args.retiring_principal, operations=args.operations, all_names=args.all_names,
    ))

def run_kms_grants_retire(args, factory: ClientFactory) -> None:
    emit_yaml(retire_grants_for_secret(factory, FileStore(args.filename), args.name, args.grant_name, args.revoke))

GRANTS_COMMANDS = {
    'list': run_kms_grants_list,
    'create': run_kms_grants_create,
    'retire': run_kms_grants_retire,
}

def run_kms_grants(args, factory: ClientFactory) -> None:
    GRANTS_COMMANDS[args.grants_command](args, factory)

COMMANDS = {
    'get-caller-identity': run_get_caller_identity,
    'init': run_kms_init,
    'deprovision': run_kms_deprovision,
    'grants': run_kms_grants,
}

def configure_logging(level: str) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('%(message)s'))
    logger.handlers[:] = [handler]
    logger.setLevel(level)

def print_error(message: str, hint: Optional[str] = None) -> None:
    print(message, file=sys.stderr)
    if hint:
        print(f"Hint: {hint}", file=sys.stderr)

def error_hint(error: Exception) -> Optional[str]:
    if isinstance(error, ClientError):
        return ERROR_HINTS.get(error.response.get('Error', {}).get('Code'))
    if isinstance(error, NoRegionError):
        return REGION_HINT
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return CREDENTIALS_HINT
    return None

def worker_hint(error: KmsSecretsError) -> Optional[str]:
    """Hint for the first wrapped error that has one."""
    for _, inner in getattr(error, 'errors', []):
        hint = error_hint(inner)
        if hint:
            return hint
    return None

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        factory = ClientFactory.from_profile(args.profile)
        COMMANDS[args.kms_command](args, factory)
        return 0
    except KmsSecretsError as e:
        print_error(str(e), worker_hint(e))
    except ClientError as e:
        error = e.response.get('Error', {})
        print_error(f"AWS API Error: {error.get('Message', e)}", error_hint(e))
    except NoRegionError as e:
        print_error(str(e), REGION_HINT)
    except (NoCredentialsError, PartialCredentialsError) as e:
        print_error(f"Error: AWS credentials not found or incomplete: {e}", CREDENTIALS_HINT)
    except ProfileNotFound as e:
        print_error(f"Error: {e}", 'Check the --profile value against ~/.aws/config.')
    except KeyboardInterrupt:
        print_error('Operation cancelled by user.')
    except Exception as e:
        logger.debug('Unexpected error', exc_info=True)
        print_error(f"Unexpected error: {e}")
    return 1

if __name__ == '__main__':
    sys.exit(main())
