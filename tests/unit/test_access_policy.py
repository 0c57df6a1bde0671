"""
Unit tests for namespace IAM role allow-lists.
"""

import pytest

from secret_syncer.constants import DEFAULT_NAMESPACE_ROLE_ANNOTATION
from secret_syncer.errors import PolicyDeniedError
from secret_syncer.models.secrets import NamespacePolicy
from secret_syncer.services.access_policy import (
    Decision,
    authorize,
    ensure_authorized,
    parse_allowed_roles,
    policy_from_annotations,
)

ANNOTATION = DEFAULT_NAMESPACE_ROLE_ANNOTATION


class TestAuthorize:
    """The decision table."""

    @pytest.mark.parametrize(
        "allowed_roles,role,expected",
        [
            (frozenset({"reader"}), "reader", Decision.ALLOW),
            (frozenset({"reader"}), "writer", Decision.DENY),
            (frozenset({"reader"}), "", Decision.DENY),
            (None, "writer", Decision.ALLOW),
            (None, "", Decision.ALLOW),
        ],
    )
    def test_truth_table(self, allowed_roles, role, expected):
        """Every combination of annotation presence and role."""
        policy = NamespacePolicy(namespace="team-a", allowed_roles=allowed_roles)

        assert authorize(policy, role) is expected

    def test_empty_allow_list_denies_everything(self):
        """An annotation listing no roles is not the same as no annotation."""
        policy = NamespacePolicy(namespace="team-a", allowed_roles=frozenset())

        assert authorize(policy, "reader") is Decision.DENY
        assert policy.restricted


class TestParseAllowedRoles:
    """Annotation value formats."""

    def test_json_array(self):
        value = '["arn:aws:iam::123456789012:role/app", " reader "]'

        assert parse_allowed_roles(value) == {
            "arn:aws:iam::123456789012:role/app",
            "reader",
        }

    def test_comma_separated(self):
        assert parse_allowed_roles("app, reader,,") == {"app", "reader"}

    def test_empty_value(self):
        assert parse_allowed_roles("  ") == frozenset()

    def test_malformed_json_falls_back_to_commas(self):
        """A value that only looks like JSON is split on commas."""
        assert parse_allowed_roles("[app, reader") == {"[app", "reader"}


class TestPolicyFromAnnotations:
    """Building a policy from namespace metadata."""

    def test_absent_annotation_is_unrestricted(self):
        policy = policy_from_annotations("team-a", {"other": "x"}, ANNOTATION)

        assert policy.allowed_roles is None
        assert not policy.restricted

    def test_no_annotations_at_all(self):
        assert policy_from_annotations("team-a", None, ANNOTATION).allowed_roles is None

    def test_present_empty_annotation_restricts(self):
        policy = policy_from_annotations("team-a", {ANNOTATION: ""}, ANNOTATION)

        assert policy.allowed_roles == frozenset()

    def test_custom_annotation_name(self):
        policy = policy_from_annotations(
            "team-a", {"example.com/roles": "app"}, "example.com/roles"
        )

        assert policy.allowed_roles == {"app"}


class TestEnsureAuthorized:
    """Raising variant used by the reconciler."""

    def test_allowed_role_passes(self):
        policy = NamespacePolicy(namespace="team-a", allowed_roles=frozenset({"app"}))

        ensure_authorized(policy, "app", ANNOTATION)

    def test_denied_role_names_role_and_namespace(self):
        policy = NamespacePolicy(namespace="team-a", allowed_roles=frozenset({"app"}))

        with pytest.raises(PolicyDeniedError) as exc_info:
            ensure_authorized(policy, "admin", ANNOTATION)

        assert exc_info.value.reason == "policy-denied"
        assert "admin" in str(exc_info.value)
        assert "team-a" in str(exc_info.value)

    def test_missing_role_in_restricted_namespace(self):
        policy = NamespacePolicy(namespace="team-a", allowed_roles=frozenset({"app"}))

        with pytest.raises(PolicyDeniedError) as exc_info:
            ensure_authorized(policy, "", ANNOTATION)

        assert "must declare an allowed IAMRole" in str(exc_info.value)
