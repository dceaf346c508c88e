"""
Account resolution and account-level preconditions.

Account identifiers come from two sources: the accounts file written by
account provisioning (authoritative) and the per-environment fallback in
the configuration. They are resolved once at entry and passed down as an
immutable map.
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from boto3.session import Session
from botocore.exceptions import ClientError
from mypy_boto3_organizations.client import OrganizationsClient

from .aws.helpers import poll_until, translate_client_error
from .aws.sessions import assume_role, get_caller_account_id
from .config import MANAGEMENT_ENVIRONMENT, KeystoneConfig
from .errors import AccountNotActiveError, AccountResolutionError
from .types import Account
from .utils import role_arn

logger = logging.getLogger(__name__)

ACCOUNT_ACTIVE = "ACTIVE"
ACCOUNT_TERMINAL_STATES = {"SUSPENDED", "PENDING_CLOSURE"}


def load_accounts_file(path: str) -> Dict[str, str]:
    """
    Load the environment -> account id map written by account provisioning.

    Args:
        path: Path to the accounts file

    Returns:
        Map of environment name to account id, or an empty dict if the file does not exist

    Raises:
        ValueError: If the file is not a JSON object of string values
    """
    accounts_path = Path(path)
    if not accounts_path.exists():
        logger.info(f"Accounts file {path} not found; using account ids from configuration")
        return {}
    try:
        data = json.loads(accounts_path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Accounts file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Accounts file {path} must contain a JSON object")

    accounts: Dict[str, str] = {}
    for environment, account_id in data.items():
        if account_id in (None, ""):
            continue
        if not isinstance(account_id, str):
            raise ValueError(f"Account id for '{environment}' in {path} must be a string")
        accounts[environment] = account_id
    return accounts


def resolve_management_account_id(configured: Optional[str], file_accounts: Mapping[str, str]) -> Optional[str]:
    """The accounts file wins over the configured management account id."""
    management_id = file_accounts.get(MANAGEMENT_ENVIRONMENT)
    if not management_id:
        return configured
    if configured and configured != management_id:
        logger.warning(f"management_account_id {configured} overridden by accounts file value {management_id}")
    return management_id


def resolve_accounts(
    config: KeystoneConfig,
    file_accounts: Optional[Mapping[str, str]] = None,
    environments: Optional[List[str]] = None,
) -> Mapping[str, Account]:
    """
    Resolve the account of every active environment.

    Args:
        config: Validated Keystone configuration
        file_accounts: Pre-loaded accounts file content; loaded from config.accounts_file when None
        environments: Environments to resolve; defaults to the environments selected for the run

    Returns:
        Read-only map of environment name to Account, in configuration order

    Raises:
        AccountResolutionError: If an environment has no account id in either source
    """
    if file_accounts is None:
        file_accounts = load_accounts_file(config.accounts_file)

    if environments is None:
        environments = config.active_environments()

    resolved: Dict[str, Account] = {}
    for environment in environments:
        env_config = config.environments[environment]
        account_id = file_accounts.get(environment) or env_config.account_id
        if not account_id:
            raise AccountResolutionError(
                f"No account id for environment '{environment}': add it to {config.accounts_file} "
                f"or set environments.{environment}.account_id"
            )
        if env_config.account_id and env_config.account_id != account_id:
            logger.warning(
                f"Environment {environment}: accounts file id {account_id} overrides "
                f"configured fallback {env_config.account_id}"
            )
        resolved[environment] = Account(account_id=account_id, environment=environment, tier=env_config.tier)
    return MappingProxyType(resolved)


def management_account(config: KeystoneConfig) -> Account:
    if not config.management_account_id:
        raise AccountResolutionError("management_account_id must be set in config or the accounts file")
    return Account(
        account_id=config.management_account_id,
        environment=MANAGEMENT_ENVIRONMENT,
        purpose=MANAGEMENT_ENVIRONMENT,
    )


def describe_account_status(org_client: OrganizationsClient, account_id: str) -> str:
    try:
        account = org_client.describe_account(AccountId=account_id)["Account"]
    except ClientError as e:
        translated = translate_client_error(e, "organizations:DescribeAccount", account_id)
        if translated is e:
            raise
        raise translated from e
    return str(account.get("Status", "UNKNOWN"))


def wait_for_account_active(
    org_client: OrganizationsClient,
    account_id: str,
    timeout_seconds: float,
    interval_seconds: float,
) -> None:
    """
    Block until an account is ACTIVE.

    Raises:
        AccountNotActiveError: If the account is suspended or pending closure
        PropagationTimeoutError: If the account does not become ACTIVE in time
    """
    def check() -> Optional[str]:
        status = describe_account_status(org_client, account_id)
        if status == ACCOUNT_ACTIVE:
            return status
        if status in ACCOUNT_TERMINAL_STATES:
            raise AccountNotActiveError(f"Account {account_id} is {status} and cannot be bootstrapped")
        logger.info(f"Account {account_id} is {status}; waiting for ACTIVE")
        return None

    poll_until(check, f"account {account_id} to become ACTIVE", timeout_seconds, interval_seconds)


def get_management_session(config: KeystoneConfig) -> Session:
    """
    Session in the management account.

    The ambient credentials are expected to belong to the management account;
    when they do not, the bootstrap role is assumed there.
    """
    session = Session(region_name=config.region)
    if not config.management_account_id:
        logger.debug("No management_account_id provided, using ambient credentials")
        return session
    if get_caller_account_id(session) == config.management_account_id:
        return session
    arn = role_arn(config.management_account_id, config.bootstrap_role_name)
    return assume_role(arn, "KeystoneManagementSession", session, region=config.region)


def get_account_session(config: KeystoneConfig, management_session: Session, account: Account) -> Session:
    """Assume the bootstrap role in a member account from the management session."""
    if account.account_id == config.management_account_id:
        return management_session
    arn = role_arn(account.account_id, config.bootstrap_role_name)
    try:
        return assume_role(arn, "KeystoneBootstrapSession", management_session, region=config.region)
    except ClientError as e:
        translated = translate_client_error(e, "sts:AssumeRole", arn)
        if translated is e:
            raise
        raise translated from e
