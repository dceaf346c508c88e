"""
Tests for keystone.policies.validation module.

Tests for permission authoring rules, trust minimality and environment isolation.
"""

import pytest

from keystone.errors import PolicyValidationError
from keystone.policies.permissions import PolicyFragment
from keystone.policies.validation import (
    is_environment_qualified,
    is_read_only_action,
    isolation_violations,
    trusted_account_ids,
    validate_fragments,
    validate_policy_document,
    validate_trust_document,
)


def allow(sid: str, action, resource) -> dict:
    return {"Sid": sid, "Effect": "Allow", "Action": action, "Resource": resource}


def document(*statements: dict) -> dict:
    return {"Version": "2012-10-17", "Statement": list(statements)}


class TestHelpers:
    """Test token and action helpers."""

    @pytest.mark.parametrize("action", ["ec2:DescribeInstances", "s3:ListAllMyBuckets", "iam:GetRole", "s3:HeadObject"])
    def test_read_only_actions(self, action: str) -> None:
        """Test actions recognised as read-only."""
        assert is_read_only_action(action)

    @pytest.mark.parametrize("action", ["s3:PutObject", "*", "s3:*", "*:Describe"])
    def test_mutating_actions(self, action: str) -> None:
        """Test actions that are not read-only."""
        assert not is_read_only_action(action)

    def test_environment_token_is_delimited(self) -> None:
        """Test that the environment must be its own segment."""
        assert is_environment_qualified("arn:aws:s3:::site-dev-assets", "dev")
        assert is_environment_qualified("arn:aws:logs:us-east-1:1:log-group:/site/dev/*", "dev")
        assert not is_environment_qualified("arn:aws:s3:::site-devops-assets", "dev")
        assert not is_environment_qualified("arn:aws:s3:::site-*", "dev")


class TestValidatePolicyDocument:
    """Test validate_policy_document function."""

    def test_valid_document(self) -> None:
        """Test a fully scoped document."""
        doc = document(allow("Assets", ["s3:GetObject"], ["arn:aws:s3:::site-dev-assets/*"]))
        assert validate_policy_document("frag", doc, "dev") == []

    def test_empty_document(self) -> None:
        """Test that a document without statements is invalid."""
        assert validate_policy_document("frag", {"Version": "2012-10-17"}, "dev") == ["frag: document has no statements"]

    def test_wildcard_actions(self) -> None:
        """Test that service-wide and global wildcards are rejected."""
        doc = document(allow("All", ["*", "s3:*"], ["arn:aws:s3:::site-dev-assets"]))
        violations = validate_policy_document("frag", doc, "dev")
        assert len(violations) == 2

    def test_unscoped_resource_outside_exceptions(self) -> None:
        """Test that '*' is only allowed for the read-only exception list."""
        doc = document(allow("Anything", ["s3:GetObject"], "*"))
        assert "outside the read-only exception list" in validate_policy_document("frag", doc, "dev")[0]

    def test_unscoped_resource_with_mutating_action(self) -> None:
        """Test that an exception statement must be read-only."""
        doc = document(allow("ReadOnlyList", ["s3:ListAllMyBuckets", "s3:PutObject"], "*"))
        assert "non read-only" in validate_policy_document("frag", doc, "dev")[0]

    def test_resource_without_environment(self) -> None:
        """Test that resources must carry the environment token."""
        doc = document(allow("Assets", "s3:GetObject", "arn:aws:s3:::site-prod-assets/*"))
        assert "not qualified with environment 'dev'" in validate_policy_document("frag", doc, "dev")[0]

    def test_cross_environment_documents_skip_token_check(self) -> None:
        """Test that documents spanning environments are not token checked."""
        doc = document(allow("Assume", "sts:AssumeRole", ["arn:aws:iam::1:role/A", "arn:aws:iam::2:role/B"]))
        assert validate_policy_document("broker", doc, None) == []

    def test_not_action_in_allow(self) -> None:
        """Test that NotAction is not allowed in Allow statements."""
        doc = document({"Sid": "X", "Effect": "Allow", "NotAction": "iam:*", "Resource": "arn:aws:s3:::site-dev-x"})
        assert any("NotAction" in violation for violation in validate_policy_document("frag", doc, "dev"))

    def test_deny_statements_are_not_restricted(self) -> None:
        """Test that Deny statements may use wildcards."""
        doc = document({"Sid": "Guard", "Effect": "Deny", "Action": "*", "Resource": "*"})
        assert validate_policy_document("frag", doc, "dev") == []

    def test_invalid_effect(self) -> None:
        """Test that the effect must be Allow or Deny."""
        doc = document({"Sid": "X", "Effect": "Maybe", "Action": "s3:GetObject", "Resource": "*"})
        assert "Effect must be Allow or Deny" in validate_policy_document("frag", doc, "dev")[0]


class TestValidateFragments:
    """Test validate_fragments function."""

    def test_raises_with_every_violation(self) -> None:
        """Test that all violations across fragments are reported together."""
        fragments = [
            PolicyFragment("a", document(allow("A", "s3:*", "arn:aws:s3:::site-dev-a"))),
            PolicyFragment("b", document(allow("B", "s3:GetObject", "*"))),
        ]
        with pytest.raises(PolicyValidationError) as exc_info:
            validate_fragments(fragments, "dev")
        assert len(exc_info.value.violations) == 2
        assert exc_info.value.policy_name == "a, b"

    def test_passes_silently(self) -> None:
        """Test that valid fragments raise nothing."""
        validate_fragments([PolicyFragment("a", document(allow("A", "s3:GetObject", "arn:aws:s3:::site-dev-a/*")))], "dev")


class TestValidateTrustDocument:
    """Test validate_trust_document function."""

    def federated(self, condition: dict) -> dict:
        return {
            "Sid": "Fed",
            "Effect": "Allow",
            "Principal": {"Federated": "arn:aws:iam::111111111111:oidc-provider/token.actions.githubusercontent.com"},
            "Action": "sts:AssumeRoleWithWebIdentity",
            "Condition": condition,
        }

    def test_valid_federated(self) -> None:
        """Test a federated statement pinned to audience and repository."""
        statement = self.federated({
            "StringEquals": {"token.actions.githubusercontent.com:aud": "sts.amazonaws.com"},
            "StringLike": {"token.actions.githubusercontent.com:sub": "repo:acme/site:*"},
        })
        assert validate_trust_document("role", document(statement)) == []

    def test_federated_without_subject(self) -> None:
        """Test that a federated statement must restrict the subject."""
        statement = self.federated({"StringEquals": {"token.actions.githubusercontent.com:aud": "sts.amazonaws.com"}})
        assert any("does not restrict the subject" in v for v in validate_trust_document("role", document(statement)))

    def test_federated_without_audience(self) -> None:
        """Test that a federated statement must pin the audience."""
        statement = self.federated({"StringLike": {"token.actions.githubusercontent.com:sub": "repo:acme/site:*"}})
        assert any("does not pin the audience" in v for v in validate_trust_document("role", document(statement)))

    def test_unscoped_subject(self) -> None:
        """Test that a subject matching any repository is rejected."""
        statement = self.federated({
            "StringEquals": {"token.actions.githubusercontent.com:aud": "sts.amazonaws.com"},
            "StringLike": {"token.actions.githubusercontent.com:sub": "repo:*"},
        })
        assert any("not scoped to a repository" in v for v in validate_trust_document("role", document(statement)))

    def test_wildcard_principal(self) -> None:
        """Test that wildcard principals are rejected."""
        statement = {"Sid": "Any", "Effect": "Allow", "Principal": {"AWS": "*"}, "Action": "sts:AssumeRole"}
        assert validate_trust_document("role", document(statement)) == ["role: Any: wildcard principal"]

    def test_machine_role_rejects_account_root(self) -> None:
        """Test that machine roles never trust a bare account root."""
        statement = {
            "Sid": "Root",
            "Effect": "Allow",
            "Principal": {"AWS": "arn:aws:iam::999999999999:root"},
            "Action": "sts:AssumeRole",
            "Condition": {"StringEquals": {"sts:ExternalId": "x1"}},
        }
        assert any("bare account root" in v for v in validate_trust_document("role", document(statement)))
        assert validate_trust_document("role", document(statement), machine_role=False) == []

    def test_role_chain_requires_external_id(self) -> None:
        """Test that a role-chain statement must require the external id."""
        statement = {
            "Sid": "Chain",
            "Effect": "Allow",
            "Principal": {"AWS": "arn:aws:iam::999999999999:role/Broker"},
            "Action": "sts:AssumeRole",
        }
        assert any("external id" in v for v in validate_trust_document("role", document(statement)))


class TestTrustedAccountIds:
    """Test trusted_account_ids function."""

    def test_extracts_accounts_from_aws_principals(self) -> None:
        """Test that account ids are taken from role ARNs, roots and bare ids."""
        doc = document(
            {"Effect": "Allow", "Principal": {"AWS": ["arn:aws:iam::999999999999:role/Broker", "222222222222"]}},
            {"Effect": "Allow", "Principal": {"Federated": "arn:aws:iam::111111111111:oidc-provider/x"}},
        )
        assert trusted_account_ids(doc) == {"999999999999", "222222222222"}


class TestIsolationViolations:
    """Test isolation_violations function."""

    def test_isolated_environments(self) -> None:
        """Test that environment-scoped patterns do not reach other environments."""
        fragments = {
            "dev": [PolicyFragment("w", document(allow("A", "s3:*Object", "arn:aws:s3:::site-dev-*/*")))],
            "prod": [PolicyFragment("w", document(allow("A", "s3:*Object", "arn:aws:s3:::site-prod-*/*")))],
        }
        resources = {
            "dev": ["arn:aws:s3:::site-dev-assets/index.html"],
            "prod": ["arn:aws:s3:::site-prod-assets/index.html"],
        }
        assert isolation_violations(fragments, resources) == []

    def test_overbroad_pattern(self) -> None:
        """Test that a pattern matching another environment's resource is reported."""
        fragments = {"dev": [PolicyFragment("w", document(allow("A", "s3:GetObject", "arn:aws:s3:::site-*/*")))]}
        resources = {"dev": [], "prod": ["arn:aws:s3:::site-prod-assets/index.html"]}
        violations = isolation_violations(fragments, resources)
        assert violations == ["dev/w: 'arn:aws:s3:::site-*/*' matches prod resource 'arn:aws:s3:::site-prod-assets/index.html'"]
