"""
Two-tier cache of AWS Secrets Manager metadata and values.

The first tier is the descriptor index (secret id -> id, tags, current
version), rebuilt from ListSecrets on a fixed interval. The second tier holds
fetched values keyed by secret id and by the IAM role used to read them. A
value is fetched only when no entry exists for the descriptor's current
version, so the number of GetSecretValue calls is bounded by version changes
rather than by how many resources reference a secret or how often they sync.

Concurrent lookups of the same secret share a single in-flight fetch.

All state is touched from the event loop only; blocking AWS calls run in
worker threads and never mutate the cache themselves.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from types import MappingProxyType

from ..errors import FetchError, NotFoundError
from ..models.secrets import (
    CachedValue,
    SecretDescriptor,
    SecretValue,
    parse_secret_value,
)
from ..observability.metrics import metrics_collector
from ..observability.tracing import traced_span
from ..utils.secrets_manager import SecretsManagerClient

logger = logging.getLogger(__name__)

_InflightKey = tuple[str, str, str]  # (secret id, role, version id)


class SecretCache:
    """Descriptor index plus version-checked value store."""

    def __init__(self, client: SecretsManagerClient, list_interval_seconds: int = 300):
        """
        Initialize the cache.

        Args:
            client: Remote Secrets Manager client
            list_interval_seconds: Interval between list refreshes
        """
        self.client = client
        self.list_interval_seconds = list_interval_seconds
        self._descriptors: Mapping[str, SecretDescriptor] = MappingProxyType({})
        self._values: dict[str, dict[str, CachedValue]] = {}
        self._inflight: dict[_InflightKey, asyncio.Future[CachedValue]] = {}
        self.last_refresh_success: float | None = None

    @property
    def descriptor_count(self) -> int:
        return len(self._descriptors)

    async def refresh_list(self) -> None:
        """
        Replace the descriptor index with a fresh listing.

        The new index is built completely before being swapped in, so
        readers see either the old or the new set, never a mix. Values whose
        secret disappeared from the listing are evicted; values whose version
        changed are left in place and refetched lazily on next access.

        Raises:
            FetchError: If the listing fails; the previous index is kept
        """
        with traced_span("secret_cache.refresh_list", tracer_name=__name__):
            try:
                descriptors = await asyncio.to_thread(self.client.list_secrets)
            except FetchError:
                metrics_collector.record_list_refresh(success=False)
                raise

        index = {descriptor.id: descriptor for descriptor in descriptors}
        self._descriptors = MappingProxyType(index)

        for secret_id in [s for s in self._values if s not in index]:
            del self._values[secret_id]

        self.last_refresh_success = time.time()
        metrics_collector.record_list_refresh(success=True, descriptor_count=len(index))
        logger.debug(f"Secret list refreshed: {len(index)} descriptors")

    async def run_forever(self, initial_delay: float | None = None) -> None:
        """
        Refresh the listing every ``list_interval_seconds`` until cancelled.

        A failed refresh keeps serving the previous descriptors; it is
        logged and retried on the next interval.
        """
        await asyncio.sleep(
            self.list_interval_seconds if initial_delay is None else initial_delay
        )
        while True:
            try:
                await self.refresh_list()
            except FetchError as e:
                logger.warning(
                    f"Secret list refresh failed, keeping {self.descriptor_count} "
                    f"cached descriptors: {e}"
                )
            await asyncio.sleep(self.list_interval_seconds)

    def list_descriptors(self) -> list[SecretDescriptor]:
        """Snapshot of all known descriptors, ordered by secret id."""
        snapshot = self._descriptors
        return [snapshot[secret_id] for secret_id in sorted(snapshot)]

    def get_descriptor(self, secret_id: str) -> SecretDescriptor:
        """
        Raises:
            NotFoundError: If the secret is not in the current listing
        """
        descriptor = self._descriptors.get(secret_id)
        if descriptor is None:
            raise NotFoundError(secret_id)
        return descriptor

    async def get_value(self, secret_id: str, role: str = "") -> SecretValue:
        """
        Current value of a secret, fetched only if its version changed.

        Args:
            secret_id: Secret name as listed by AWS
            role: IAM role used for the fetch; empty for the operator's own

        Returns:
            A string map for JSON-object secrets, raw bytes otherwise

        Raises:
            NotFoundError: If the secret is not in the current listing
            FetchError: If the remote fetch fails
        """
        return (await self.get_entry(secret_id, role)).value

    async def get_entry(self, secret_id: str, role: str = "") -> CachedValue:
        """Like get_value, but returns the full cache entry including raw bytes."""
        descriptor = self.get_descriptor(secret_id)

        cached = self._values.get(secret_id, {}).get(role)
        if cached is not None and cached.version_id == descriptor.version_id:
            metrics_collector.record_cache_lookup("hit")
            return cached

        key = (secret_id, role, descriptor.version_id)
        pending = self._inflight.get(key)
        if pending is not None:
            metrics_collector.record_cache_lookup("coalesced")
            return await asyncio.shield(pending)

        metrics_collector.record_cache_lookup("miss")
        future: asyncio.Future[CachedValue] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            entry = await self._fetch(descriptor, role)
        except asyncio.CancelledError as e:
            # Cancellation belongs to the fetching task only; waiters get a
            # FetchError their sync can record and retry next tick
            self._fail_waiters(
                future,
                FetchError(
                    "GetSecretValue", "fetch was cancelled", secret_id=secret_id, cause=e
                ),
            )
            raise
        except Exception as e:
            self._fail_waiters(future, e)
            raise
        else:
            future.set_result(entry)
            return entry
        finally:
            self._inflight.pop(key, None)

    @staticmethod
    def _fail_waiters(future: "asyncio.Future[CachedValue]", error: BaseException) -> None:
        future.set_exception(error)
        # Waiters re-raise it; mark it retrieved so asyncio does not warn
        future.exception()

    async def _fetch(self, descriptor: SecretDescriptor, role: str) -> CachedValue:
        attributes = {"secret.id": descriptor.id, "aws.iam_role": role}
        with traced_span("secret_cache.fetch", attributes, tracer_name=__name__):
            raw = await asyncio.to_thread(
                self.client.get_secret_value, descriptor.id, role
            )

        entry = CachedValue(
            version_id=descriptor.version_id,
            value=parse_secret_value(raw),
            raw=raw,
        )
        # A refresh may have dropped the secret while the fetch was running
        if descriptor.id in self._descriptors:
            self._values.setdefault(descriptor.id, {})[role] = entry
        logger.debug(
            f"Fetched secret {descriptor.id} at version {descriptor.version_id}",
            extra={"secret_id": descriptor.id, "iam_role": role},
        )
        return entry
