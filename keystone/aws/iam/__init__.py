"""
AWS IAM module.

This module provides functions for managing IAM resources:
- OpenID Connect provider lookup and registration (identity providers)
- Role lookup, creation and in-place update (deployment, broker, admin roles)
- Inline permission fragments and managed policy attachments
"""

# OIDC providers
from .oidc_providers import (
    OidcProviderRecord,
    create_oidc_provider,
    find_oidc_provider,
)

# Roles and their policies
from .roles import (
    RoleRecord,
    attach_managed_policy,
    create_role,
    find_inline_policy,
    find_role,
    list_attached_policy_arns,
    put_inline_policy,
    update_max_session_duration,
    update_trust_policy,
)

__all__ = [
    # OIDC providers
    "OidcProviderRecord",
    "create_oidc_provider",
    "find_oidc_provider",
    # Roles
    "RoleRecord",
    "attach_managed_policy",
    "create_role",
    "find_inline_policy",
    "find_role",
    "list_attached_policy_arns",
    "put_inline_policy",
    "update_max_session_duration",
    "update_trust_policy",
]
