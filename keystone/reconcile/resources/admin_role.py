"""
Human admin roles.

A separate trust path from automation: operators in the management account
switch into these roles from the console. MFA is mandatory for
production-tier environments and the session ceiling is capped there.
"""

from ...enums import Phase, ResourceKind
from ...policies.trust import admin_session_ceiling, admin_trust
from ...types import Role
from ...utils import admin_role_name, readonly_role_name
from ..registry import register_reconciler
from ..roles import RoleReconciler


@register_reconciler("admin_role", ResourceKind.ADMIN_ROLE, Phase.ADMIN, order=30)
class AdminRoleReconciler(RoleReconciler):

    MACHINE_ROLE = False

    def applicable(self) -> bool:
        return self.config.admin_roles.enabled

    def build_role(self) -> Role:
        environment = self.context.environment
        return Role(
            name=admin_role_name(self.config.project_name, environment),
            kind=ResourceKind.ADMIN_ROLE,
            account_id=self.context.account_id,
            environment=environment,
            trust=admin_trust(self.config, environment),
            max_session_duration=admin_session_ceiling(self.config, environment),
            description=f"Human administrator access to {environment}",
            managed_policy_arns=[self.config.admin_roles.admin_policy_arn],
        )


@register_reconciler("readonly_role", ResourceKind.READONLY_ROLE, Phase.ADMIN, order=35)
class ReadOnlyRoleReconciler(RoleReconciler):
    """Companion role with the admin trust and a read-only permission set."""

    MACHINE_ROLE = False

    def applicable(self) -> bool:
        return self.config.admin_roles.enabled and self.config.admin_roles.readonly_companion

    def build_role(self) -> Role:
        environment = self.context.environment
        return Role(
            name=readonly_role_name(self.config.project_name, environment),
            kind=ResourceKind.READONLY_ROLE,
            account_id=self.context.account_id,
            environment=environment,
            trust=admin_trust(self.config, environment),
            max_session_duration=admin_session_ceiling(self.config, environment),
            description=f"Human read-only access to {environment}",
            managed_policy_arns=[self.config.admin_roles.readonly_policy_arn],
        )
