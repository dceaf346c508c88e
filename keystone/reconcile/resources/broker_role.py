"""
Legacy central broker role in the management account.

First hop of the chained topology. Its only permission is assuming the
enumerated deployment roles, each of which additionally demands the shared
external id.
"""

from ...enums import Phase, ResourceKind, TrustTopology
from ...policies.trust import broker_trust
from ...types import Role
from ...utils import broker_role_name
from ..registry import register_reconciler
from ..roles import RoleReconciler


@register_reconciler(
    "broker_role",
    ResourceKind.BROKER_ROLE,
    Phase.BROKER,
    order=20,
    depends_on=(ResourceKind.IDENTITY_PROVIDER,),
)
class BrokerRoleReconciler(RoleReconciler):

    def applicable(self) -> bool:
        return self.config.trust_topology in (TrustTopology.CHAINED, TrustTopology.MIGRATION)

    def build_role(self) -> Role:
        project = self.config.project_name
        return Role(
            name=broker_role_name(project),
            kind=ResourceKind.BROKER_ROLE,
            account_id=self.context.account_id,
            environment=self.context.environment,
            trust=broker_trust(self.config),
            max_session_duration=self.config.broker.max_session_duration,
            path="/",
            description=f"Central pipeline broker for {project}",
        )
