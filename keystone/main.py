from typing import Dict, Mapping, Optional
import argparse
import logging

from botocore.exceptions import ClientError

from .accounts import load_accounts_file, resolve_accounts
from .config import KeystoneConfig
from .errors import KeystoneError
from .output import OutputHandler
from .reconcile.engine import ReconciliationEngine
from .report import console_links, write_outputs
from .usage import accounts_file_path, load_yaml_config, parse_cli_args, merge_configs
from .verify import run_verification

logger = logging.getLogger(__name__)


def setup_configuration(
    cli_args: argparse.Namespace,
    yaml_config: Dict,
    file_accounts: Optional[Mapping[str, str]] = None,
) -> KeystoneConfig:
    """
    Merge and validate configuration from YAML and CLI arguments.

    Args:
        cli_args: Parsed command line arguments
        yaml_config: Configuration loaded from YAML file
        file_accounts: Accounts file content loaded at entry

    Returns:
        Validated KeystoneConfig object

    Raises:
        SystemExit: If configuration validation fails
    """
    try:
        final_config = merge_configs(yaml_config, cli_args, file_accounts)
    except (ValueError, TypeError) as e:
        OutputHandler.error("Configuration Error", e)
        exit(1)

    if final_config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    OutputHandler.success("Final Config", final_config.display_dump())

    return final_config


def run_bootstrap(final_config: KeystoneConfig, file_accounts: Optional[Mapping[str, str]] = None) -> bool:
    """
    Reconcile every selected account and write the run outputs.

    The status table is printed even when the run aborts.

    Args:
        final_config: Validated Keystone configuration
        file_accounts: Accounts file content loaded at entry

    Returns:
        True if every resource converged, False if any resource failed
    """
    engine = ReconciliationEngine(final_config, file_accounts=file_accounts)
    try:
        statuses = engine.run()
    finally:
        OutputHandler.status_table(engine.statuses)

    written = write_outputs(final_config, engine.selected_accounts(), statuses)
    OutputHandler.success("Outputs written", "\n".join(str(path) for path in written))

    failed = engine.failed()
    if failed:
        OutputHandler.warning(
            f"{len(failed)} resource(s) failed",
            "Fix the errors above and re-run; converged resources will be skipped.",
        )
        return False
    return True


def run_verify(final_config: KeystoneConfig, file_accounts: Optional[Mapping[str, str]] = None) -> bool:
    checks = run_verification(final_config, file_accounts=file_accounts)
    OutputHandler.verification_table(checks)
    return all(check.passed for check in checks)


def show_links(final_config: KeystoneConfig, file_accounts: Optional[Mapping[str, str]] = None) -> bool:
    OutputHandler.console_links(console_links(final_config, resolve_accounts(final_config, file_accounts)))
    return True


def main() -> None:
    """Main entry point for Keystone bootstrap."""
    cli_args = parse_cli_args()
    yaml_config = load_yaml_config(cli_args.config)

    # Read once; every command resolves accounts from this snapshot
    try:
        file_accounts = load_accounts_file(accounts_file_path(yaml_config))
    except ValueError as e:
        OutputHandler.error("Configuration Error", e)
        exit(1)

    final_config = setup_configuration(cli_args, yaml_config, file_accounts)

    commands = {
        "bootstrap": run_bootstrap,
        "plan": run_bootstrap,
        "verify": run_verify,
        "links": show_links,
    }

    try:
        succeeded = commands[cli_args.command](final_config, file_accounts)
    except KeystoneError as e:
        OutputHandler.error(type(e).__name__, e)
        logger.error(f"Bootstrap halted: {e}", exc_info=True)
        exit(1)
    except ValueError as e:
        OutputHandler.error("Configuration Error", e)
        logger.error(f"Invalid configuration: {e}", exc_info=True)
        exit(1)
    except ClientError as e:
        error_code = e.response['Error']['Code']
        OutputHandler.error(f"AWS API Error ({error_code})", e)
        logger.error(f"AWS API error: {e}", exc_info=True)
        exit(1)

    if not succeeded:
        exit(1)
