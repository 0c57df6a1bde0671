"""Shared fixtures for unit tests."""

from unittest.mock import MagicMock

import pytest

from secret_syncer.models.secrets import SecretDescriptor
from secret_syncer.services.secret_cache import SecretCache
from secret_syncer.utils.secrets_manager import SecretsManagerClient

DB_VERSION_1 = "11111111-1111-1111-1111-111111111111"
DB_VERSION_2 = "22222222-2222-2222-2222-222222222222"


class FakeSecretsStore:
    """In-memory stand-in for AWS Secrets Manager, driving a MagicMock client."""

    def __init__(self):
        self.secrets: dict[str, tuple[str, bytes, dict[str, str]]] = {}

    def put(
        self,
        secret_id: str,
        value: bytes,
        version_id: str,
        tags: dict[str, str] | None = None,
    ) -> None:
        self.secrets[secret_id] = (version_id, value, tags or {})

    def list_secrets(self) -> list[SecretDescriptor]:
        return [
            SecretDescriptor(id=secret_id, version_id=version, tags=tags)
            for secret_id, (version, _, tags) in self.secrets.items()
        ]

    def get_secret_value(self, secret_id: str, role: str = "") -> bytes:
        return self.secrets[secret_id][1]


@pytest.fixture
def secrets_store():
    """Fake AWS state with one JSON secret and one binary secret."""
    store = FakeSecretsStore()
    store.put(
        "db-credentials",
        b'{"username": "app", "password": "s3cr3t"}',
        DB_VERSION_1,
        {"team": "payments"},
    )
    store.put("tls-key", b"\x00\x01binary", "33333333-3333-3333-3333-333333333333")
    return store


@pytest.fixture
def secrets_client(secrets_store):
    """MagicMock SecretsManagerClient backed by ``secrets_store``."""
    client = MagicMock(spec=SecretsManagerClient)
    client.list_secrets.side_effect = secrets_store.list_secrets
    client.get_secret_value.side_effect = secrets_store.get_secret_value
    return client


@pytest.fixture
async def secret_cache(secrets_client):
    """Secret cache with its listing already loaded."""
    cache = SecretCache(secrets_client, list_interval_seconds=300)
    await cache.refresh_list()
    return cache
