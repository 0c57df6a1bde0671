"""
Value types shared by the secret cache, access policy and resolver.

Descriptors and cached values are immutable snapshots: the cache replaces
them wholesale and never mutates one in place.
"""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

SecretValue = bytes | Mapping[str, str]


@dataclass(frozen=True)
class SecretDescriptor:
    """Remote secret metadata, without its value."""

    id: str
    version_id: str
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))


@dataclass(frozen=True)
class CachedValue:
    """A fetched secret value and the version it was fetched at.

    ``raw`` keeps the bytes exactly as returned by AWS so whole-value
    references copy them verbatim whatever shape ``value`` took.
    """

    version_id: str
    value: SecretValue
    raw: bytes


@dataclass(frozen=True)
class NamespacePolicy:
    """
    IAM roles a namespace may request.

    ``allowed_roles`` is None when the namespace carries no allow-list
    annotation, which is distinct from an annotation listing no roles.
    """

    namespace: str
    allowed_roles: frozenset[str] | None = None

    @property
    def restricted(self) -> bool:
        return self.allowed_roles is not None


def parse_secret_value(raw: bytes) -> SecretValue:
    """
    Decide the shape of a fetched secret value.

    A JSON object whose values are all strings becomes a read-only string
    map; anything else is kept as opaque bytes.
    """
    try:
        parsed = json.loads(raw)
    except (UnicodeDecodeError, ValueError):
        return raw
    if isinstance(parsed, dict) and all(isinstance(v, str) for v in parsed.values()):
        return MappingProxyType(parsed)
    return raw

