import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import (
    ACCOUNT_ID_PATTERN,
    ADMINISTRATOR_ACCESS_POLICY_ARN,
    BOOTSTRAP_ROLE_NAME,
    DEFAULT_ADMIN_SESSION_DURATION,
    DEFAULT_AUDIENCE,
    DEFAULT_DEPLOYMENT_SESSION_DURATION,
    DEFAULT_ISSUER_URL,
    DEFAULT_THUMBPRINT,
    MAX_ROLE_MAX_SESSION_DURATION,
    MIN_ROLE_MAX_SESSION_DURATION,
    PRODUCTION_ADMIN_SESSION_CEILING,
    READ_ONLY_ACCESS_POLICY_ARN,
)
from .enums import EnvironmentTier, Phase, TrustTopology
from .utils import account_root_arn


# Centralized defaults for directories
DEFAULT_STATE_DIR = ".keystone/state"
DEFAULT_OUTPUT_DIR = ".keystone/output"
DEFAULT_ACCOUNTS_FILE = "accounts.json"

MANAGEMENT_ENVIRONMENT = "management"

REDACTED = "********"


def _check_account_id(value: Optional[str]) -> Optional[str]:
    if value is not None and not re.match(ACCOUNT_ID_PATTERN, value):
        raise ValueError(f"'{value}' is not a 12-digit AWS account id")
    return value


def _check_session_ceiling(value: int) -> int:
    if not MIN_ROLE_MAX_SESSION_DURATION <= value <= MAX_ROLE_MAX_SESSION_DURATION:
        raise ValueError(
            f"max_session_duration must be between {MIN_ROLE_MAX_SESSION_DURATION} "
            f"and {MAX_ROLE_MAX_SESSION_DURATION} seconds, got {value}"
        )
    return value


def _check_subject_patterns(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return value
    if not value:
        raise ValueError("subject_patterns must not be empty")
    for pattern in value:
        if not pattern.startswith("repo:") or pattern.strip("*:") in ("", "repo"):
            raise ValueError(f"subject pattern '{pattern}' must be scoped to a repository (repo:<owner>/<name>:...)")
    return value


class IdentityProviderConfig(BaseModel):
    issuer_url: str = DEFAULT_ISSUER_URL
    audiences: List[str] = Field(default_factory=lambda: [DEFAULT_AUDIENCE])
    thumbprints: List[str] = Field(default_factory=lambda: [DEFAULT_THUMBPRINT])

    @field_validator("issuer_url")
    @classmethod
    def check_https_issuer(cls, value: str) -> str:
        if not value.startswith("https://"):
            raise ValueError("issuer_url must use https://")
        return value.rstrip("/")

    @field_validator("thumbprints")
    @classmethod
    def check_hex_thumbprints(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one thumbprint is required")
        normalized = [thumbprint.lower().replace(":", "") for thumbprint in value]
        for thumbprint in normalized:
            if not re.match(r'^[0-9a-f]{40}$', thumbprint):
                raise ValueError(f"thumbprint '{thumbprint}' is not a 40-character SHA-1 hex digest")
        return normalized

    @field_validator("audiences")
    @classmethod
    def check_non_empty_audiences(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one audience is required")
        return value


class EnvironmentConfig(BaseModel):
    tier: EnvironmentTier = EnvironmentTier.NONPROD
    # Fallback account id, used only when the accounts file has no entry
    account_id: Optional[str] = None
    subject_patterns: Optional[List[str]] = None
    # MFA for admin roles; production tiers always require it
    admin_require_mfa: Optional[bool] = None

    @field_validator("account_id")
    @classmethod
    def check_valid_account_id(cls, value: Optional[str]) -> Optional[str]:
        return _check_account_id(value)

    @field_validator("subject_patterns")
    @classmethod
    def check_scoped_subjects(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _check_subject_patterns(value)

    @model_validator(mode="after")
    def check_production_requires_mfa(self) -> "EnvironmentConfig":
        if self.tier == EnvironmentTier.PRODUCTION and self.admin_require_mfa is False:
            raise ValueError("admin_require_mfa cannot be disabled for a production-tier environment")
        return self


class DeploymentRoleConfig(BaseModel):
    max_session_duration: int = DEFAULT_DEPLOYMENT_SESSION_DURATION
    path: str = "/"

    @field_validator("max_session_duration")
    @classmethod
    def check_bounded_ceiling(cls, value: int) -> int:
        return _check_session_ceiling(value)

    @field_validator("path")
    @classmethod
    def check_slash_delimited(cls, value: str) -> str:
        if not (value.startswith("/") and value.endswith("/")):
            raise ValueError("path must begin and end with '/'")
        return value


class BrokerConfig(BaseModel):
    """Legacy central broker role in the management account (chained topology)."""
    external_id: Optional[str] = None
    max_session_duration: int = DEFAULT_DEPLOYMENT_SESSION_DURATION
    subject_patterns: Optional[List[str]] = None

    @field_validator("max_session_duration")
    @classmethod
    def check_bounded_ceiling(cls, value: int) -> int:
        return _check_session_ceiling(value)

    @field_validator("subject_patterns")
    @classmethod
    def check_scoped_subjects(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _check_subject_patterns(value)

    @field_validator("external_id")
    @classmethod
    def check_external_id_length(cls, value: Optional[str]) -> Optional[str]:
        # sts:ExternalId accepts 2-1224 characters
        if value is not None and not 2 <= len(value) <= 1224:
            raise ValueError("external_id must be between 2 and 1224 characters")
        return value


class AdminRolesConfig(BaseModel):
    enabled: bool = True
    # Human operator roles/users in the management account; defaults to the
    # management account's IAM identities (principal = account root) gated by MFA
    principals: List[str] = Field(default_factory=list)
    external_id: Optional[str] = None
    require_mfa: bool = False
    max_mfa_age_seconds: Optional[int] = None
    max_session_duration: int = DEFAULT_ADMIN_SESSION_DURATION
    production_max_session_duration: int = PRODUCTION_ADMIN_SESSION_CEILING
    readonly_companion: bool = True
    admin_policy_arn: str = ADMINISTRATOR_ACCESS_POLICY_ARN
    readonly_policy_arn: str = READ_ONLY_ACCESS_POLICY_ARN

    @field_validator("max_session_duration")
    @classmethod
    def check_bounded_ceiling(cls, value: int) -> int:
        return _check_session_ceiling(value)

    @field_validator("production_max_session_duration")
    @classmethod
    def check_production_ceiling(cls, value: int) -> int:
        _check_session_ceiling(value)
        if value > PRODUCTION_ADMIN_SESSION_CEILING:
            raise ValueError(
                f"production_max_session_duration is capped at {PRODUCTION_ADMIN_SESSION_CEILING} seconds"
            )
        return value

    @field_validator("principals")
    @classmethod
    def check_admin_principals(cls, value: List[str]) -> List[str]:
        for principal in value:
            if "*" in principal:
                raise ValueError(f"admin principal '{principal}' must not contain a wildcard")
        # IAM stores a bare account id as the account root ARN
        return [account_root_arn(p) if re.match(ACCOUNT_ID_PATTERN, p) else p for p in value]


class RetryConfig(BaseModel):
    max_attempts: int = 5
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0


class KeystoneConfig(BaseModel):
    project_name: str
    # owner/name of the repository whose workflows may deploy
    repository: str
    region: str = "us-east-1"
    management_account_id: Optional[str] = None
    # Authoritative account map written by account provisioning
    accounts_file: str = DEFAULT_ACCOUNTS_FILE
    environments: Dict[str, EnvironmentConfig]
    identity_provider: IdentityProviderConfig = Field(default_factory=IdentityProviderConfig)
    trust_topology: TrustTopology = TrustTopology.DIRECT
    deployment_role: DeploymentRoleConfig = Field(default_factory=DeploymentRoleConfig)
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    admin_roles: AdminRolesConfig = Field(default_factory=AdminRolesConfig)
    bootstrap_role_name: str = BOOTSTRAP_ROLE_NAME
    # Extra declarative permission fragments (JSON/YAML) from policy authoring
    policy_documents_dir: Optional[str] = None
    # Base directory for per-account reconciliation ledgers
    state_dir: str = DEFAULT_STATE_DIR
    # Base directory for reports, role ids, backend configs and console links
    output_dir: str = DEFAULT_OUTPUT_DIR
    account_poll_timeout_seconds: int = 1800
    account_poll_interval_seconds: int = 10
    retry: RetryConfig = Field(default_factory=RetryConfig)
    dry_run: bool = False
    verbose: bool = False
    # Restrict a run to these environments / phases (CLI)
    selected_environments: Optional[List[str]] = None
    phases: Optional[List[Phase]] = None

    @field_validator("management_account_id")
    @classmethod
    def check_valid_management_account(cls, value: Optional[str]) -> Optional[str]:
        return _check_account_id(value)

    @field_validator("repository")
    @classmethod
    def check_owner_and_name(cls, value: str) -> str:
        if not re.match(r'^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$', value):
            raise ValueError(f"repository must be '<owner>/<name>', got '{value}'")
        return value

    @field_validator("project_name")
    @classmethod
    def check_project_slug(cls, value: str) -> str:
        if not re.match(r'^[a-z][a-z0-9-]{1,30}[a-z0-9]$', value):
            raise ValueError("project_name must be a lowercase slug (letters, digits, hyphens)")
        return value

    @field_validator("environments")
    @classmethod
    def check_environment_names(cls, value: Dict[str, EnvironmentConfig]) -> Dict[str, EnvironmentConfig]:
        if not value:
            raise ValueError("at least one environment is required")
        for name in value:
            if name == MANAGEMENT_ENVIRONMENT:
                raise ValueError(f"'{MANAGEMENT_ENVIRONMENT}' is reserved for the management account")
            if not re.match(r'^[a-z][a-z0-9]{1,15}$', name):
                raise ValueError(f"environment name '{name}' must be a short lowercase token")
        return value

    @model_validator(mode="after")
    def check_chained_requirements(self) -> "KeystoneConfig":
        if self.trust_topology in (TrustTopology.CHAINED, TrustTopology.MIGRATION):
            if not self.management_account_id:
                raise ValueError(f"management_account_id is required for the {self.trust_topology.value} topology")
            if not self.broker.external_id:
                raise ValueError(f"broker.external_id is required for the {self.trust_topology.value} topology")
        if self.admin_roles.enabled and not self.admin_roles.principals and not self.management_account_id:
            raise ValueError(
                "admin_roles needs explicit principals or a management_account_id; "
                "set admin_roles.enabled: false to skip human admin roles"
            )
        if self.selected_environments:
            unknown = set(self.selected_environments) - set(self.environments)
            if unknown:
                raise ValueError(f"unknown environment(s) selected: {sorted(unknown)}")
        return self

    def active_environments(self) -> List[str]:
        """Environments selected for this run, in configuration order."""
        if not self.selected_environments:
            return list(self.environments)
        return [name for name in self.environments if name in self.selected_environments]

    def active_phases(self) -> List[Phase]:
        return list(self.phases) if self.phases else list(Phase)

    def display_dump(self) -> Dict[str, Any]:
        """Configuration as echoed to the console, with external ids masked."""
        data = self.model_dump(mode="json")
        for section in ("broker", "admin_roles"):
            if data[section].get("external_id"):
                data[section]["external_id"] = REDACTED
        return data
