"""
Unit tests for the mapping resolver.
"""

import pytest

from secret_syncer.errors import (
    KeyNotFoundError,
    NotAMapError,
    NotFoundError,
    TypeMismatchError,
    ValidationError,
)
from secret_syncer.models.synced_secret import DataEntry, SyncedSecretSpec
from secret_syncer.services.resolver import MappingResolver


def spec(**body) -> SyncedSecretSpec:
    return SyncedSecretSpec.model_validate(body)


class TestDataEntries:
    """Ordered data entries."""

    @pytest.mark.asyncio
    async def test_literal(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        document = await resolver.resolve(spec(data=[{"name": "a", "value": "b"}]), "")

        assert document == {"a": b"b"}

    @pytest.mark.asyncio
    async def test_key_reference(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        document = await resolver.resolve(
            spec(
                data=[
                    {
                        "name": "password",
                        "secretKeyRef": {"name": "db-credentials", "key": "password"},
                    }
                ]
            ),
            "",
        )

        assert document == {"password": b"s3cr3t"}

    @pytest.mark.asyncio
    async def test_key_reference_into_binary_secret(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        with pytest.raises(TypeMismatchError):
            await resolver.resolve(
                spec(data=[{"name": "k", "secretKeyRef": {"name": "tls-key", "key": "x"}}]),
                "",
            )

    @pytest.mark.asyncio
    async def test_missing_key(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        with pytest.raises(KeyNotFoundError) as exc_info:
            await resolver.resolve(
                spec(
                    data=[
                        {
                            "name": "k",
                            "valueFrom": {
                                "secretKeyRef": {"name": "db-credentials", "key": "nope"}
                            },
                        }
                    ]
                ),
                "",
            )

        assert exc_info.value.key == "nope"

    @pytest.mark.asyncio
    async def test_whole_value_reference_copies_bytes(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        document = await resolver.resolve(
            spec(
                data=[
                    {"name": "key", "valueFrom": {"secretRef": {"name": "tls-key"}}},
                    {"name": "json", "valueFrom": {"secretRef": {"name": "db-credentials"}}},
                ]
            ),
            "",
        )

        assert document["key"] == b"\x00\x01binary"
        assert document["json"] == b'{"username": "app", "password": "s3cr3t"}'

    @pytest.mark.asyncio
    async def test_template(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        document = await resolver.resolve(
            spec(
                data=[
                    {
                        "name": "dsn",
                        "valueFrom": {
                            "template": "postgres://{{ getSecretValueMap('db-credentials')['username'] }}@db"
                        },
                    }
                ]
            ),
            "",
        )

        assert document == {"dsn": b"postgres://app@db"}

    @pytest.mark.asyncio
    async def test_one_failing_entry_aborts_everything(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        with pytest.raises(NotFoundError):
            await resolver.resolve(
                spec(
                    data=[
                        {"name": "ok", "value": "x"},
                        {"name": "bad", "valueFrom": {"secretRef": {"name": "missing"}}},
                    ]
                ),
                "",
            )

    @pytest.mark.asyncio
    async def test_resolution_is_deterministic(self, secret_cache):
        """Same spec, same cache state: byte-identical documents."""
        resolver = MappingResolver(secret_cache)
        body = spec(
            data=[
                {"name": "b", "value": "2"},
                {"name": "a", "secretKeyRef": {"name": "db-credentials", "key": "username"}},
                {
                    "name": "ids",
                    "valueFrom": {
                        "template": "{% for id in Secrets | sort %}{{ id }},{% endfor %}"
                    },
                },
            ]
        )

        first = await resolver.resolve(body, "")
        second = await resolver.resolve(body, "")

        assert first == second
        assert list(first) == ["b", "a", "ids"]
        assert first["ids"] == b"db-credentials,tls-key,"


class TestDataFrom:
    """Whole-secret import."""

    @pytest.mark.asyncio
    async def test_map_secret(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        document = await resolver.resolve(
            spec(dataFrom={"secretRef": {"name": "db-credentials"}}), ""
        )

        assert document == {"username": b"app", "password": b"s3cr3t"}

    @pytest.mark.asyncio
    async def test_non_map_secret(self, secret_cache):
        resolver = MappingResolver(secret_cache)

        with pytest.raises(NotAMapError) as exc_info:
            await resolver.resolve(spec(dataFrom={"secretRef": {"name": "tls-key"}}), "")

        assert exc_info.value.reason == "not-a-map"


class TestUnvalidatedEntries:
    """Entries that bypassed model validation."""

    @pytest.mark.asyncio
    async def test_entry_without_source_is_rejected(self, secret_cache):
        resolver = MappingResolver(secret_cache)
        body = SyncedSecretSpec.model_construct(
            data=[DataEntry.model_construct(name="empty")], data_from=None
        )

        with pytest.raises(ValidationError, match="empty"):
            await resolver.resolve(body, "")
