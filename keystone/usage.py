import argparse
import yaml
from typing import Any, Dict, List, Mapping, Optional
from .accounts import load_accounts_file, resolve_management_account_id
from .config import DEFAULT_ACCOUNTS_FILE, KeystoneConfig
from .enums import Phase, TrustTopology

COMMANDS = ("bootstrap", "plan", "verify", "links")


def load_yaml_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Dictionary containing the loaded configuration, or empty dict if file not found
    """
    try:
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"Config file '{path}' not found. Continuing without it.")
        return {}


def parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments for the keystone tool.

    Args:
        argv: Arguments to parse; defaults to sys.argv[1:]

    Returns:
        Parsed command line arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="keystone",
        description="Keystone - bootstrap cross-account deployment trust for a multi-account AWS organization"
    )

    parser.add_argument(
        'command',
        nargs='?',
        choices=COMMANDS,
        default='bootstrap',
        help='bootstrap (default) reconciles resources; plan is a dry run; '
             'verify checks live trust policies; links prints console switch-role links'
    )

    parser.add_argument(
        '--config',
        required=True,
        type=str,
        help='Path to config YAML'
    )

    # Scope of the run
    parser.add_argument(
        '--environment',
        dest='selected_environments',
        action='append',
        help='Limit the run to this environment (repeatable)'
    )
    parser.add_argument(
        '--phase',
        dest='phases',
        action='append',
        choices=[phase.value for phase in Phase],
        help='Limit the run to this phase (repeatable)'
    )
    parser.add_argument(
        '--dry-run',
        dest='dry_run',
        action='store_true',
        default=argparse.SUPPRESS,
        help='Look up resources and report what would change without changing anything'
    )

    # Paths (override YAML if provided)
    parser.add_argument(
        '--state-dir',
        dest='state_dir',
        type=str,
        help='Directory for per-account ledgers (default .keystone/state)'
    )
    parser.add_argument(
        '--output-dir',
        dest='output_dir',
        type=str,
        help='Directory for reports, role ARNs, backend configs and console links (default .keystone/output)'
    )

    # Trust
    parser.add_argument(
        '--management-account-id',
        dest='management_account_id',
        type=str,
        help='AWS Organization management account ID'
    )
    parser.add_argument(
        '--trust-topology',
        dest='trust_topology',
        choices=[topology.value for topology in TrustTopology],
        help='How pipelines reach deployment roles: direct, chained or migration'
    )

    parser.add_argument(
        '--verbose',
        dest='verbose',
        action='store_true',
        default=argparse.SUPPRESS,
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def accounts_file_path(config: Dict[str, Any]) -> str:
    return config.get("accounts_file") or DEFAULT_ACCOUNTS_FILE


def merge_configs(
    yaml_config: Dict[str, Any],
    cli_args: argparse.Namespace,
    file_accounts: Optional[Mapping[str, str]] = None,
) -> KeystoneConfig:
    """
    Merge YAML configuration with CLI arguments and validate the result.

    The management account id recorded in the accounts file takes
    precedence over both sources.

    Args:
        yaml_config: Configuration loaded from YAML file
        cli_args: Parsed command line arguments
        file_accounts: Accounts file content loaded at entry; read from the configured path when None

    Returns:
        Validated KeystoneConfig object

    Raises:
        ValueError: If configuration validation fails
        TypeError: If configuration has type errors
    """
    # Start with YAML
    merged = yaml_config.copy()

    # Apply CLI overrides (only if CLI provided them)
    cli_dict = {
        k: v for k, v in vars(cli_args).items()
        if k in KeystoneConfig.model_fields and v is not None
    }
    merged.update(cli_dict)

    if getattr(cli_args, "command", None) == "plan":
        merged["dry_run"] = True

    if file_accounts is None:
        file_accounts = load_accounts_file(accounts_file_path(merged))
    merged["management_account_id"] = resolve_management_account_id(
        merged.get("management_account_id"), file_accounts
    )

    # Validate and return final config (will raise if required fields missing or wrong types)
    return KeystoneConfig(**merged)
