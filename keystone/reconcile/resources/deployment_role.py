"""Automation deployment role, one per environment account."""

from typing import Tuple

from ...enums import Phase, ResourceKind, TrustTopology
from ...policies.trust import deployment_trust
from ...types import Role
from ...utils import deployment_role_name
from ..registry import register_reconciler
from ..roles import RoleReconciler


@register_reconciler(
    "deployment_role",
    ResourceKind.DEPLOYMENT_ROLE,
    Phase.FOUNDATION,
    order=20,
    depends_on=(ResourceKind.IDENTITY_PROVIDER,),
)
class DeploymentRoleReconciler(RoleReconciler):

    def hard_dependencies(self) -> Tuple[ResourceKind, ...]:
        # Chained-only trust never references the member account's provider
        if self.config.trust_topology == TrustTopology.CHAINED:
            return ()
        return self.DEPENDS_ON

    def build_role(self) -> Role:
        project = self.config.project_name
        environment = self.context.environment
        settings = self.config.deployment_role
        return Role(
            name=deployment_role_name(project, environment),
            kind=ResourceKind.DEPLOYMENT_ROLE,
            account_id=self.context.account_id,
            environment=environment,
            trust=deployment_trust(self.config, environment, self.context.account_id),
            max_session_duration=settings.max_session_duration,
            path=settings.path,
            description=f"Pipeline deployment role for {project} {environment}",
        )
