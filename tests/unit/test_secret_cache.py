"""
Unit tests for the secret cache.

Covers version-checked fetching, request coalescing, per-role isolation,
stale-but-available listings and eviction.
"""

import asyncio
import threading
import time
from unittest.mock import AsyncMock, patch

import pytest

from secret_syncer.errors import FetchError, NotFoundError
from secret_syncer.services.secret_cache import SecretCache

DB_VERSION_2 = "22222222-2222-2222-2222-222222222222"


class TestRefreshList:
    """Tests for the descriptor index."""

    @pytest.mark.asyncio
    async def test_refresh_populates_descriptors(self, secret_cache):
        """A successful refresh exposes every listed secret, sorted by id."""
        ids = [d.id for d in secret_cache.list_descriptors()]

        assert ids == ["db-credentials", "tls-key"]
        assert secret_cache.descriptor_count == 2
        assert secret_cache.last_refresh_success is not None

    @pytest.mark.asyncio
    async def test_descriptors_carry_tags(self, secret_cache):
        """Tags are part of the descriptor snapshot."""
        descriptor = secret_cache.get_descriptor("db-credentials")

        assert descriptor.tags == {"team": "payments"}

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_index(
        self, secret_cache, secrets_client
    ):
        """A listing failure never blanks the cache."""
        secrets_client.list_secrets.side_effect = FetchError("ListSecrets", "throttled")
        last_success = secret_cache.last_refresh_success

        with pytest.raises(FetchError):
            await secret_cache.refresh_list()

        assert secret_cache.descriptor_count == 2
        assert secret_cache.get_descriptor("db-credentials").id == "db-credentials"
        assert secret_cache.last_refresh_success == last_success

    @pytest.mark.asyncio
    async def test_removed_secret_is_evicted(
        self, secret_cache, secrets_store, secrets_client
    ):
        """Values of secrets that disappear from the listing are dropped."""
        await secret_cache.get_value("db-credentials")
        del secrets_store.secrets["db-credentials"]

        await secret_cache.refresh_list()

        with pytest.raises(NotFoundError):
            await secret_cache.get_value("db-credentials")
        assert "db-credentials" not in secret_cache._values

    @pytest.mark.asyncio
    async def test_run_forever_survives_failed_refresh(self, secrets_client):
        """The refresh loop logs listing failures and keeps going."""
        cache = SecretCache(secrets_client, list_interval_seconds=300)
        secrets_client.list_secrets.side_effect = [
            FetchError("ListSecrets", "throttled"),
            [],
        ]
        sleep = AsyncMock(side_effect=[None, None, asyncio.CancelledError()])

        with patch("secret_syncer.services.secret_cache.asyncio.sleep", sleep):
            with pytest.raises(asyncio.CancelledError):
                await cache.run_forever()

        assert secrets_client.list_secrets.call_count == 2
        assert cache.last_refresh_success is not None
        sleep.assert_any_await(300)


class TestGetValue:
    """Tests for value lookups."""

    @pytest.mark.asyncio
    async def test_json_secret_is_a_map(self, secret_cache):
        """JSON objects of strings are returned as a read-only map."""
        value = await secret_cache.get_value("db-credentials")

        assert dict(value) == {"username": "app", "password": "s3cr3t"}

    @pytest.mark.asyncio
    async def test_binary_secret_is_bytes(self, secret_cache):
        """Anything that is not a JSON object of strings stays opaque."""
        value = await secret_cache.get_value("tls-key")

        assert value == b"\x00\x01binary"

    @pytest.mark.asyncio
    async def test_unknown_secret_raises_not_found(self, secret_cache, secrets_client):
        """Ids absent from the listing fail without a remote call."""
        with pytest.raises(NotFoundError) as exc_info:
            await secret_cache.get_value("missing")

        assert exc_info.value.reason == "secret-not-found"
        secrets_client.get_secret_value.assert_not_called()

    @pytest.mark.asyncio
    async def test_unchanged_version_is_fetched_once(self, secret_cache, secrets_client):
        """Repeated lookups at the same version hit the cache."""
        for _ in range(5):
            await secret_cache.get_value("db-credentials")

        assert secrets_client.get_secret_value.call_count == 1

    @pytest.mark.asyncio
    async def test_version_change_triggers_refetch(
        self, secret_cache, secrets_store, secrets_client
    ):
        """A new version id in the listing causes exactly one new fetch."""
        await secret_cache.get_value("db-credentials")
        secrets_store.put(
            "db-credentials", b'{"password": "rotated"}', DB_VERSION_2, {"team": "payments"}
        )

        # Not refetched until the listing reports the new version
        stale = await secret_cache.get_value("db-credentials")
        assert stale["password"] == "s3cr3t"

        await secret_cache.refresh_list()
        fresh = await secret_cache.get_value("db-credentials")
        await secret_cache.get_value("db-credentials")

        assert fresh["password"] == "rotated"
        assert secrets_client.get_secret_value.call_count == 2

    @pytest.mark.asyncio
    async def test_roles_are_cached_separately(self, secret_cache, secrets_client):
        """A value fetched under one role is never served to another."""
        await secret_cache.get_value("db-credentials", "role-a")
        await secret_cache.get_value("db-credentials", "role-b")
        await secret_cache.get_value("db-credentials", "role-a")

        roles = [c.args[1] for c in secrets_client.get_secret_value.call_args_list]
        assert roles == ["role-a", "role-b"]

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_fetch(
        self, secret_cache, secrets_store, secrets_client
    ):
        """Simultaneous lookups of the same secret coalesce into one call."""
        release = threading.Event()

        def slow_fetch(secret_id, role=""):
            release.wait(timeout=5)
            return secrets_store.get_secret_value(secret_id, role)

        secrets_client.get_secret_value.side_effect = slow_fetch

        lookups = [
            asyncio.create_task(secret_cache.get_value("db-credentials"))
            for _ in range(10)
        ]
        await asyncio.sleep(0.05)
        release.set()
        values = await asyncio.gather(*lookups)

        assert secrets_client.get_secret_value.call_count == 1
        assert all(v["password"] == "s3cr3t" for v in values)

    @pytest.mark.asyncio
    async def test_fetch_error_is_not_cached(self, secret_cache, secrets_store, secrets_client):
        """A failed fetch is retried on the next lookup."""
        secrets_client.get_secret_value.side_effect = [
            FetchError("GetSecretValue", "AccessDenied", secret_id="db-credentials"),
            secrets_store.get_secret_value("db-credentials"),
        ]

        with pytest.raises(FetchError):
            await secret_cache.get_value("db-credentials")
        value = await secret_cache.get_value("db-credentials")

        assert value["username"] == "app"
        assert secrets_client.get_secret_value.call_count == 2

    @pytest.mark.asyncio
    async def test_fetch_error_reaches_every_waiter(self, secret_cache, secrets_client):
        """Coalesced waiters see the same failure as the fetching caller."""

        def failing_fetch(secret_id, role=""):
            time.sleep(0.05)
            raise FetchError("GetSecretValue", "AccessDenied", secret_id=secret_id)

        secrets_client.get_secret_value.side_effect = failing_fetch

        results = await asyncio.gather(
            *(secret_cache.get_value("db-credentials") for _ in range(3)),
            return_exceptions=True,
        )

        assert all(isinstance(r, FetchError) for r in results)
        assert secrets_client.get_secret_value.call_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_fetch_fails_waiters_with_fetch_error(
        self, secret_cache, secrets_store, secrets_client
    ):
        """Cancelling the fetching task does not cancel coalesced waiters."""
        release = threading.Event()

        def slow_fetch(secret_id, role=""):
            release.wait(timeout=5)
            return secrets_store.get_secret_value(secret_id, role)

        secrets_client.get_secret_value.side_effect = slow_fetch

        fetcher = asyncio.create_task(secret_cache.get_value("db-credentials"))
        await asyncio.sleep(0.05)
        waiter = asyncio.create_task(secret_cache.get_value("db-credentials"))
        await asyncio.sleep(0.01)
        fetcher.cancel()

        try:
            with pytest.raises(FetchError, match="cancelled"):
                await waiter
            with pytest.raises(asyncio.CancelledError):
                await fetcher
        finally:
            release.set()

    @pytest.mark.asyncio
    async def test_get_entry_keeps_raw_bytes(self, secret_cache):
        """Cache entries keep the exact bytes returned by AWS."""
        entry = await secret_cache.get_entry("db-credentials")

        assert entry.raw == b'{"username": "app", "password": "s3cr3t"}'
        assert entry.value["username"] == "app"
