"""
Periodic reconciliation of tracked SyncedSecrets into Kubernetes Secrets.

Each sync tick walks every tracked resource concurrently, bounded by a
semaphore. A resource moves through Pending, Authorizing, Resolving and
Writing to Idle; any error moves it to Failed for the rest of the tick and it
starts over from Pending on the next one. There are no retries within a tick.

The output Secret is written only when the resolved document or its metadata
differs from what this process last wrote for the resource. Deleting a
SyncedSecret stops tracking it but leaves the written Secret in place.
"""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..constants import (
    DEFAULT_NAMESPACE_ROLE_ANNOTATION,
    PHASE_AUTHORIZING,
    PHASE_FAILED,
    PHASE_IDLE,
    PHASE_PENDING,
    PHASE_RESOLVING,
    PHASE_WRITING,
)
from ..errors import KubernetesAPIError, SyncError
from ..models.synced_secret import SyncedSecretResource
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..observability.tracing import traced_span
from ..utils.rate_limiter import RateLimiter
from ..utils.secret_writer import OutputStore
from .access_policy import (
    Decision,
    authorize,
    ensure_authorized,
    policy_from_annotations,
)
from .resolver import MappingResolver, ResolvedDocument

logger = logging.getLogger(__name__)
operator_logger = OperatorLogger(__name__)

AnnotationReader = Callable[[str], Mapping[str, str] | None]
StatusWriter = Callable[[str, str, dict[str, Any]], None]


@dataclass(frozen=True)
class WrittenSecret:
    """What was last written for a resource, compared field by field."""

    data: Mapping[str, bytes]
    labels: Mapping[str, str]
    annotations: Mapping[str, str]


@dataclass
class ResourceState:
    """Reconciler bookkeeping for one tracked SyncedSecret."""

    resource: SyncedSecretResource
    phase: str = PHASE_PENDING
    reason: str | None = None
    message: str | None = None
    last_written: WrittenSecret | None = None
    last_sync_time: str | None = None
    last_write_time: str | None = None
    reported: tuple[str, str | None] | None = field(default=None, repr=False)


def failure_reason(error: Exception) -> str:
    """Short reason reported for a failed sync."""
    if isinstance(error, SyncError):
        return error.reason
    if isinstance(error, KubernetesAPIError):
        return "kubernetes-api-error"
    if isinstance(error, TimeoutError):
        return "rate-limited"
    return "internal-error"


def _now() -> str:
    return datetime.now(UTC).isoformat()


class SyncedSecretReconciler:
    """Owns the tracked resources and drives the sync loop."""

    def __init__(
        self,
        resolver: MappingResolver,
        store: OutputStore,
        namespace_annotations: AnnotationReader,
        status_writer: StatusWriter | None = None,
        rate_limiter: RateLimiter | None = None,
        sync_interval_seconds: int = 120,
        max_concurrent_syncs: int = 10,
        role_annotation: str = DEFAULT_NAMESPACE_ROLE_ANNOTATION,
    ):
        """
        Initialize the reconciler.

        Args:
            resolver: Resolves specs through the secret cache
            store: Destination of resolved documents
            namespace_annotations: Reads a namespace's annotations (blocking)
            status_writer: Patches a resource's status (blocking); optional
            rate_limiter: Limits output writes per namespace; optional
            sync_interval_seconds: Interval between sync ticks
            max_concurrent_syncs: Resources synchronized at the same time
            role_annotation: Namespace annotation holding the allowed roles
        """
        self.resolver = resolver
        self.store = store
        self.namespace_annotations = namespace_annotations
        self.status_writer = status_writer
        self.rate_limiter = rate_limiter
        self.sync_interval_seconds = sync_interval_seconds
        self.role_annotation = role_annotation
        self._semaphore = asyncio.Semaphore(max_concurrent_syncs)
        self._states: dict[str, ResourceState] = {}

    @property
    def tracked(self) -> Mapping[str, ResourceState]:
        return self._states

    def track(self, resource: SyncedSecretResource) -> None:
        """
        Start tracking a resource, or replace the spec of a tracked one.

        The last written document is kept across updates so an update that
        resolves to the same output does not rewrite the Secret.
        """
        state = self._states.get(resource.key)
        if state is None:
            self._states[resource.key] = ResourceState(resource=resource)
            logger.info(f"Tracking SyncedSecret {resource.key}")
        else:
            state.resource = resource
            state.phase = PHASE_PENDING
            logger.info(f"Updated SyncedSecret {resource.key}")
        self._publish_phase_counts()

    def remove(self, key: str) -> None:
        """Stop tracking a resource. Its output Secret is left untouched."""
        state = self._states.pop(key, None)
        if state is not None:
            logger.info(f"Stopped tracking SyncedSecret {key}")
            namespace = state.resource.namespace
            if self.rate_limiter is not None and not any(
                s.resource.namespace == namespace for s in self._states.values()
            ):
                self.rate_limiter.forget_namespace(namespace)
        self._publish_phase_counts()

    async def run_forever(self) -> None:
        """Run a sync tick every ``sync_interval_seconds`` until cancelled."""
        while True:
            await self.sync_once()
            await asyncio.sleep(self.sync_interval_seconds)

    async def sync_once(self) -> None:
        """Synchronize every tracked resource once."""
        start = time.monotonic()
        states = list(self._states.values())
        with traced_span(
            "reconciler.sync_tick", {"resources": len(states)}, tracer_name=__name__
        ):
            await asyncio.gather(*(self._sync_bounded(state) for state in states))
        metrics_collector.observe_tick(time.monotonic() - start)
        self._publish_phase_counts()

    async def _sync_bounded(self, state: ResourceState) -> None:
        async with self._semaphore:
            await self.sync_resource(state)

    async def sync_resource(self, state: ResourceState) -> bool:
        """
        Run one resource through a full sync.

        Failures are recorded on the state and never raised.

        Returns:
            True if the output Secret was written
        """
        resource = state.resource
        state.phase = PHASE_PENDING
        start = time.monotonic()
        operator_logger.log_sync_start(resource.name, resource.namespace)

        written = False
        try:
            with traced_span(
                "reconciler.sync_resource",
                {"k8s.namespace": resource.namespace, "k8s.resource.name": resource.name},
                tracer_name=__name__,
            ):
                async with metrics_collector.track_sync(
                    resource.namespace, resource.name
                ):
                    written = await self._sync(state)
        except Exception as e:
            state.phase = PHASE_FAILED
            state.reason = failure_reason(e)
            state.message = str(e)
            operator_logger.log_sync_error(
                resource.name,
                resource.namespace,
                e,
                time.monotonic() - start,
                exc_info=not isinstance(e, (SyncError, KubernetesAPIError)),
            )
        else:
            state.phase = PHASE_IDLE
            state.reason = None
            state.message = "Secret synchronized"
            operator_logger.log_sync_success(
                resource.name, resource.namespace, written, time.monotonic() - start
            )

        state.last_sync_time = _now()
        await self._report_status(state, written)
        return written

    async def _sync(self, state: ResourceState) -> bool:
        resource = state.resource
        role = resource.iam_role

        state.phase = PHASE_AUTHORIZING
        annotations = await asyncio.to_thread(
            self.namespace_annotations, resource.namespace
        )
        policy = policy_from_annotations(
            resource.namespace, annotations, self.role_annotation
        )
        allowed = authorize(policy, role) is Decision.ALLOW
        metrics_collector.record_policy_decision(
            resource.namespace, allowed
        )
        operator_logger.log_policy_audit(
            resource.namespace,
            resource.name,
            role,
            allowed,
            {"restricted": policy.restricted},
        )
        ensure_authorized(policy, role, self.role_annotation)

        state.phase = PHASE_RESOLVING
        document: ResolvedDocument = await self.resolver.resolve(resource.spec, role)

        metadata = resource.spec.secret_metadata
        desired = WrittenSecret(
            data=document,
            labels=dict(metadata.labels),
            annotations=dict(metadata.annotations),
        )
        if desired == state.last_written:
            metrics_collector.record_secret_write(resource.namespace, written=False)
            return False

        state.phase = PHASE_WRITING
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(resource.namespace)
        if self._states.get(resource.key) is not state:
            # Removed while resolving
            return False
        await asyncio.to_thread(
            self.store.upsert,
            resource.name,
            resource.namespace,
            desired.data,
            desired.labels,
            desired.annotations,
        )
        state.last_written = desired
        state.last_write_time = _now()
        metrics_collector.record_secret_write(resource.namespace, written=True)
        return True

    async def _report_status(self, state: ResourceState, written: bool) -> None:
        if self.status_writer is None:
            return
        if self._states.get(state.resource.key) is not state:
            return

        current = (state.phase, state.message)
        if current == state.reported and not written:
            return

        status = {
            "phase": state.phase,
            "reason": state.reason,
            "message": state.message,
            "lastSyncTime": state.last_sync_time,
            "lastWriteTime": state.last_write_time,
        }
        resource = state.resource
        try:
            await asyncio.to_thread(
                self.status_writer, resource.name, resource.namespace, status
            )
        except KubernetesAPIError as e:
            logger.warning(f"Could not update status of {resource.key}: {e}")
            return
        state.reported = current

    def _publish_phase_counts(self) -> None:
        metrics_collector.update_phase_counts(
            dict(Counter(state.phase for state in self._states.values()))
        )
