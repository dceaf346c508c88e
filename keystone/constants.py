"""
Constants module for naming templates, trust anchors and session bounds.

This module contains the constants used throughout the Keystone codebase
to build deterministic resource names and policy documents.
"""

from typing import FrozenSet, Tuple

# Federated identity provider defaults (GitHub Actions OIDC)
# Reference: https://docs.github.com/en/actions/deployment/security-hardening-your-deployments/configuring-openid-connect-in-amazon-web-services
DEFAULT_ISSUER_URL = "https://token.actions.githubusercontent.com"
DEFAULT_AUDIENCE = "sts.amazonaws.com"
# echo | openssl s_client -servername token.actions.githubusercontent.com \
#   -connect token.actions.githubusercontent.com:443 | openssl x509 -fingerprint -noout
DEFAULT_THUMBPRINT = "6938fd4d98bab03faadb97b34396831e3780aea1"

# Role assumption actions
ACTION_ASSUME_ROLE = "sts:AssumeRole"
ACTION_ASSUME_ROLE_WITH_WEB_IDENTITY = "sts:AssumeRoleWithWebIdentity"
ACTION_TAG_SESSION = "sts:TagSession"

# Condition keys
CONDITION_EXTERNAL_ID = "sts:ExternalId"
CONDITION_MFA_PRESENT = "aws:MultiFactorAuthPresent"
CONDITION_MFA_AGE = "aws:MultiFactorAuthAge"

# AWS ARN Regex Pattern
# Format: arn:aws:service:region:account-id:resource
AWS_ARN_ACCOUNT_ID_PATTERN = r'^arn:aws:[^:]+:[^:]*:(\d{12}):'
ACCOUNT_ID_PATTERN = r'^\d{12}$'

# Session duration bounds (seconds)
# A role's MaxSessionDuration must be within 1-12 hours; a requested session
# must be at least 15 minutes; role chaining caps a session at 1 hour.
MIN_SESSION_DURATION = 900
MIN_ROLE_MAX_SESSION_DURATION = 3600
MAX_ROLE_MAX_SESSION_DURATION = 43200
ROLE_CHAINING_MAX_SESSION_DURATION = 3600
DEFAULT_DEPLOYMENT_SESSION_DURATION = 3600
DEFAULT_ADMIN_SESSION_DURATION = 43200
PRODUCTION_ADMIN_SESSION_CEILING = 3600

# Naming templates
DEPLOYMENT_ROLE_NAME_TEMPLATE = "GitHubActions-{project}-{env}-Role"
BROKER_ROLE_NAME_TEMPLATE = "GitHubActions-{project}-Central-Role"
ADMIN_ROLE_NAME_TEMPLATE = "{project}-admin-{env}"
READONLY_ROLE_NAME_TEMPLATE = "{project}-readonly-{env}"
STATE_BUCKET_NAME_TEMPLATE = "{project}-state-{env}-{account_id}"
LOCK_TABLE_NAME_TEMPLATE = "{project}-locks-{env}"
STATE_KEY_TEMPLATE = "{stack}/{env}/terraform.tfstate"
BOOTSTRAP_ROLE_NAME = "OrganizationAccountAccessRole"

# Logical stacks stored in each state backend
STATE_STACKS: Tuple[str, ...] = ("foundation", "workload")

# Lock table layout used by the Terraform S3 backend
LOCK_TABLE_HASH_KEY = "LockID"
DIGEST_SUFFIX = "-md5"

# Inline policy names, one per permission fragment
STATE_BACKEND_POLICY_NAME = "keystone-state-backend"
WORKLOAD_POLICY_NAME = "keystone-workload"
READ_ONLY_POLICY_NAME = "keystone-read-only"
BROKER_POLICY_NAME = "keystone-broker-assume"

# AWS managed policies for the human operator path
ADMINISTRATOR_ACCESS_POLICY_ARN = "arn:aws:iam::aws:policy/AdministratorAccess"
READ_ONLY_ACCESS_POLICY_ARN = "arn:aws:iam::aws:policy/ReadOnlyAccess"

# Statement ids allowed to use an unscoped "*" resource.
# Every action in such a statement must be read-only.
READ_ONLY_RESOURCE_EXCEPTIONS: FrozenSet[str] = frozenset({
    "ReadOnlyDescribe",
    "ReadOnlyList",
    "CallerIdentity",
})
READ_ONLY_ACTION_PREFIXES: Tuple[str, ...] = ("Describe", "List", "Get", "Head")

# Tagging
MANAGED_BY = "keystone"

# Console role switching
SWITCH_ROLE_URL = "https://signin.aws.amazon.com/switchrole"

# Output file names
REPORT_FILENAME = "bootstrap-report.json"
ROLE_ARNS_FILENAME = "role-arns.json"
CONSOLE_URLS_FILENAME = "console-urls.txt"
BACKEND_CONFIG_TEMPLATE = "backend-config-{env}.hcl"
