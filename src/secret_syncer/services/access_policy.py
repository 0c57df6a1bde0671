"""
Namespace IAM role allow-list evaluation.

A namespace restricts the IAM roles its SyncedSecrets may use through an
annotation (``iam.amazonaws.com/allowed-roles`` by default). The annotation
value is either a JSON array of strings or a comma-separated list; entries
are whitespace-stripped and empty entries dropped. A namespace without the
annotation is unrestricted, which is distinct from an annotation that lists
no roles (every role is denied).

Decisions are never cached: the annotation is read again on every sync.
"""

import json
import logging
from collections.abc import Mapping
from enum import Enum

from ..constants import ERROR_POLICY_DENIED, ERROR_POLICY_ROLE_REQUIRED
from ..errors import PolicyDeniedError
from ..models.secrets import NamespacePolicy

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


def parse_allowed_roles(value: str) -> frozenset[str]:
    """
    Parse an allow-list annotation value.

    Examples:
        '["arn:aws:iam::123:role/app", "reader"]' -> {arn..., "reader"}
        'app, reader'                             -> {"app", "reader"}
        ''                                        -> set()
    """
    text = value.strip()
    if text.startswith("["):
        try:
            items = json.loads(text)
        except ValueError:
            logger.warning(
                "Allowed-roles annotation looks like JSON but does not parse; "
                "treating it as a comma-separated list"
            )
        else:
            if isinstance(items, list):
                return frozenset(str(item).strip() for item in items if str(item).strip())
    return frozenset(part.strip() for part in text.split(",") if part.strip())


def policy_from_annotations(
    namespace: str, annotations: Mapping[str, str] | None, annotation_name: str
) -> NamespacePolicy:
    """Build the policy of a namespace from its annotations."""
    annotations = annotations or {}
    if annotation_name not in annotations:
        return NamespacePolicy(namespace=namespace, allowed_roles=None)
    return NamespacePolicy(
        namespace=namespace,
        allowed_roles=parse_allowed_roles(annotations[annotation_name] or ""),
    )


def authorize(policy: NamespacePolicy, role: str) -> Decision:
    """
    Decide whether ``role`` may be used in the policy's namespace.

    | annotation | role      | decision |
    |------------|-----------|----------|
    | present    | listed    | allow    |
    | present    | unlisted  | deny     |
    | present    | empty     | deny     |
    | absent     | any       | allow    |
    """
    if policy.allowed_roles is None:
        return Decision.ALLOW
    if role and role in policy.allowed_roles:
        return Decision.ALLOW
    return Decision.DENY


def ensure_authorized(
    policy: NamespacePolicy, role: str, annotation_name: str
) -> None:
    """
    Raises:
        PolicyDeniedError: If ``authorize`` denies the role
    """
    if authorize(policy, role) is Decision.ALLOW:
        return
    if not role:
        raise PolicyDeniedError(
            ERROR_POLICY_ROLE_REQUIRED.format(policy.namespace, annotation_name)
        )
    raise PolicyDeniedError(
        ERROR_POLICY_DENIED.format(role, policy.namespace, annotation_name)
    )
