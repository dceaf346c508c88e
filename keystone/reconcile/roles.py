"""
Shared reconciliation for IAM roles.

Deployment, broker, admin and read-only roles differ only in how their
desired Role is built. Trust policy, session ceiling and managed policy
attachments are updated in place; a different path cannot be and is a
trust mismatch.
"""

from abc import abstractmethod
from typing import Any, Dict, List

from botocore.exceptions import ClientError

from ..aws.helpers import translate_client_error
from ..aws.iam import (
    RoleRecord,
    attach_managed_policy,
    create_role,
    find_role,
    list_attached_policy_arns,
    update_max_session_duration,
    update_trust_policy,
)
from ..aws.lookup import LookupResult
from ..errors import PolicyValidationError, TrustMismatchError
from ..policies.validation import validate_trust_document
from ..types import Role
from ..utils import canonical_policy
from .base import BaseReconciler


class RoleReconciler(BaseReconciler[RoleRecord]):
    """Base class for reconcilers that manage one IAM role."""

    UPDATABLE = True
    # Machine roles must never trust a bare account root
    MACHINE_ROLE = True

    @abstractmethod
    def build_role(self) -> Role:
        """Desired definition of the role."""

    def identifier(self) -> str:
        return self.build_role().name

    def lookup(self) -> LookupResult[RoleRecord]:
        iam = self.context.client("iam")
        role = self.build_role()
        result = find_role(iam, role.name)
        if not result.is_present or result.value is None or not role.managed_policy_arns:
            return result
        try:
            result.value.attached_policy_arns = list_attached_policy_arns(iam, role.name)
        except ClientError as e:
            return LookupResult.failed(translate_client_error(e, "iam:ListAttachedRolePolicies", role.name))
        return result

    def desired(self) -> Dict[str, Any]:
        role = self.build_role()
        return {
            "name": role.name,
            "path": role.path,
            "trust": role.trust_document(),
            "max_session_duration": role.max_session_duration,
            "managed_policy_arns": sorted(role.managed_policy_arns),
        }

    def _missing_policy_arns(self, observed: RoleRecord) -> List[str]:
        return sorted(set(self.build_role().managed_policy_arns) - set(observed.attached_policy_arns))

    def matches(self, observed: RoleRecord) -> bool:
        role = self.build_role()
        return (
            observed.path == role.path
            and canonical_policy(observed.trust_policy) == canonical_policy(role.trust_document())
            and observed.max_session_duration == role.max_session_duration
            and not self._missing_policy_arns(observed)
        )

    def preflight(self) -> None:
        self.validate(self.build_role())

    def validate(self, role: Role) -> None:
        violations = validate_trust_document(role.name, role.trust_document(), machine_role=self.MACHINE_ROLE)
        if violations:
            raise PolicyValidationError(f"{role.name} trust policy", violations)

    def create(self) -> None:
        role = self.build_role()
        self.validate(role)
        iam = self.context.client("iam")
        create_role(iam, role, self.context.tags())
        for policy_arn in role.managed_policy_arns:
            attach_managed_policy(iam, role.name, policy_arn)

    def update(self, observed: RoleRecord) -> None:
        role = self.build_role()
        if observed.path != role.path:
            raise TrustMismatchError(
                f"Role {role.name} exists under a different path and cannot be moved in place",
                expected=role.path,
                actual=observed.path,
            )
        self.validate(role)
        iam = self.context.client("iam")
        if canonical_policy(observed.trust_policy) != canonical_policy(role.trust_document()):
            update_trust_policy(iam, role.name, role.trust_document())
        if observed.max_session_duration != role.max_session_duration:
            update_max_session_duration(iam, role.name, role.max_session_duration)
        for policy_arn in self._missing_policy_arns(observed):
            attach_managed_policy(iam, role.name, policy_arn)
