"""
Permission fragment attachments.

Every fragment is its own inline policy on the role it belongs to, so
fragments can be added, replaced and reviewed independently.
"""

from typing import Any, List, Optional, Sequence

from ...aws.iam import find_inline_policy, put_inline_policy
from ...aws.lookup import LookupResult
from ...enums import Phase, ResourceKind, TrustTopology
from ...policies.permissions import PolicyFragment, broker_fragment, deployment_fragments
from ...policies.validation import validate_fragments
from ...types import PolicyDocument
from ...utils import broker_role_name, canonical_policy, deployment_role_name, role_arn
from ..base import BaseReconciler, ReconcileContext
from ..registry import register_reconciler


@register_reconciler(
    "policy_attachment",
    ResourceKind.POLICY_ATTACHMENT,
    Phase.FOUNDATION,
    order=60,
    depends_on=(ResourceKind.DEPLOYMENT_ROLE, ResourceKind.STATE_BUCKET, ResourceKind.LOCK_TABLE),
)
class PolicyAttachmentReconciler(BaseReconciler[PolicyDocument]):
    """One inline permission fragment on an environment's deployment role."""

    UPDATABLE = True

    def __init__(self, context: ReconcileContext, fragment: Optional[PolicyFragment] = None, **kwargs: Any) -> None:
        super().__init__(context, **kwargs)
        if fragment is None:
            raise ValueError("PolicyAttachmentReconciler needs a fragment")
        self.fragment = fragment

    @classmethod
    def fragments(cls, context: ReconcileContext) -> List[PolicyFragment]:
        return deployment_fragments(context.config, context.environment, context.account_id, context.backend)

    @classmethod
    def instances(cls, context: ReconcileContext) -> Sequence[BaseReconciler[Any]]:
        return [cls(context, fragment=fragment) for fragment in cls.fragments(context)]

    @property
    def role_name(self) -> str:
        return deployment_role_name(self.config.project_name, self.context.environment)

    @property
    def validation_environment(self) -> Optional[str]:
        return self.context.environment

    def identifier(self) -> str:
        return f"{self.role_name}/{self.fragment.name}"

    def lookup(self) -> LookupResult[PolicyDocument]:
        return find_inline_policy(self.context.client("iam"), self.role_name, self.fragment.name)

    def desired(self) -> PolicyDocument:
        return self.fragment.document

    def matches(self, observed: PolicyDocument) -> bool:
        return canonical_policy(observed) == canonical_policy(self.fragment.document)

    def preflight(self) -> None:
        validate_fragments([self.fragment], self.validation_environment)

    def _put(self) -> None:
        validate_fragments([self.fragment], self.validation_environment)
        put_inline_policy(self.context.client("iam"), self.role_name, self.fragment.name, self.fragment.document)

    def create(self) -> None:
        self._put()

    def update(self, observed: PolicyDocument) -> None:
        self._put()


@register_reconciler(
    "broker_policy_attachment",
    ResourceKind.POLICY_ATTACHMENT,
    Phase.BROKER,
    order=30,
    depends_on=(ResourceKind.BROKER_ROLE,),
)
class BrokerPolicyAttachmentReconciler(PolicyAttachmentReconciler):
    """The broker's only permission: assuming the enumerated deployment roles."""

    @classmethod
    def fragments(cls, context: ReconcileContext) -> List[PolicyFragment]:
        project = context.config.project_name
        arns = [
            role_arn(account.account_id, deployment_role_name(project, environment), context.config.deployment_role.path)
            for environment, account in context.accounts.items()
        ]
        return [PolicyFragment.from_permission_set(broker_fragment(arns))]

    def applicable(self) -> bool:
        return self.config.trust_topology in (TrustTopology.CHAINED, TrustTopology.MIGRATION)

    @property
    def role_name(self) -> str:
        return broker_role_name(self.config.project_name)

    @property
    def validation_environment(self) -> Optional[str]:
        # Spans every environment by construction
        return None
