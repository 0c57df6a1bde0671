"""
Prometheus metrics for the secret syncer.

This module provides metrics collection for monitoring synchronization
outcomes, AWS API usage, cache effectiveness and access policy decisions,
plus the HTTP server exposing them.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

# aiohttp is provided transitively by kopf; the metrics server reuses it.
from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

if TYPE_CHECKING:
    from .health import HealthChecker

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

# Metrics definitions
SYNC_TOTAL = Counter(
    "secret_syncer_sync_total",
    "Total number of resource synchronization attempts",
    ["namespace", "name", "result"],
    registry=None,  # Will be set during initialization
)

SYNC_DURATION = Histogram(
    "secret_syncer_sync_duration_seconds",
    "Time spent synchronizing a single resource",
    ["namespace"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=None,
)

SYNC_ERRORS = Counter(
    "secret_syncer_sync_errors_total",
    "Total number of failed resource synchronizations by reason",
    ["namespace", "reason"],
    registry=None,
)

SYNC_TICK_DURATION = Histogram(
    "secret_syncer_sync_tick_duration_seconds",
    "Time spent on a full synchronization tick over all tracked resources",
    [],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=None,
)

SECRET_WRITES_TOTAL = Counter(
    "secret_syncer_secret_writes_total",
    "Output Secret writes, and writes suppressed because nothing changed",
    ["namespace", "result"],
    registry=None,
)

REMOTE_API_CALLS_TOTAL = Counter(
    "secret_syncer_aws_api_calls_total",
    "Total number of AWS API calls",
    ["operation", "result"],
    registry=None,
)

CACHE_DESCRIPTORS = Gauge(
    "secret_syncer_cache_descriptors",
    "Number of secret descriptors currently held by the cache",
    [],
    registry=None,
)

CACHE_LOOKUPS_TOTAL = Counter(
    "secret_syncer_cache_lookups_total",
    "Secret value lookups by outcome (hit, miss, coalesced)",
    ["result"],
    registry=None,
)

LIST_REFRESH_FAILURES_TOTAL = Counter(
    "secret_syncer_list_refresh_failures_total",
    "Total number of failed secret list refreshes",
    [],
    registry=None,
)

LIST_REFRESH_LAST_SUCCESS_TIMESTAMP = Gauge(
    "secret_syncer_list_refresh_last_success_timestamp",
    "Unix timestamp of the last successful secret list refresh",
    [],
    registry=None,
)

POLICY_DECISIONS_TOTAL = Counter(
    "secret_syncer_policy_decisions_total",
    "Access policy decisions by namespace",
    ["namespace", "decision"],
    registry=None,
)

TRACKED_RESOURCES = Gauge(
    "secret_syncer_tracked_resources",
    "Number of tracked SyncedSecret resources per phase",
    ["phase"],
    registry=None,
)

# Rate limiting metrics
RATE_LIMIT_WAIT_SECONDS = Histogram(
    "secret_syncer_rate_limit_wait_seconds",
    "Time spent waiting for rate limit tokens",
    ["namespace", "limit_type"],
    buckets=[0.001, 0.01, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=None,
)

RATE_LIMIT_TIMEOUTS_TOTAL = Counter(
    "secret_syncer_rate_limit_timeouts_total",
    "Total rate limit timeout errors",
    ["namespace", "limit_type"],
    registry=None,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()

        for metric in [
            SYNC_TOTAL,
            SYNC_DURATION,
            SYNC_ERRORS,
            SYNC_TICK_DURATION,
            SECRET_WRITES_TOTAL,
            REMOTE_API_CALLS_TOTAL,
            CACHE_DESCRIPTORS,
            CACHE_LOOKUPS_TOTAL,
            LIST_REFRESH_FAILURES_TOTAL,
            LIST_REFRESH_LAST_SUCCESS_TIMESTAMP,
            POLICY_DECISIONS_TOTAL,
            TRACKED_RESOURCES,
            RATE_LIMIT_WAIT_SECONDS,
            RATE_LIMIT_TIMEOUTS_TOTAL,
        ]:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the secret syncer."""

    def __init__(self):
        """Initialize metrics collector."""
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_sync(self, namespace: str, name: str):
        """
        Context manager to track a single resource synchronization.

        Args:
            namespace: Namespace of the resource
            name: Name of the resource
        """
        start_time = time.time()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception as e:
            result = "error"
            SYNC_ERRORS.labels(
                namespace=namespace, reason=getattr(e, "reason", type(e).__name__)
            ).inc()
            raise
        finally:
            SYNC_TOTAL.labels(namespace=namespace, name=name, result=result).inc()
            SYNC_DURATION.labels(namespace=namespace).observe(time.time() - start_time)

    def observe_tick(self, duration: float) -> None:
        """Record the duration of a full synchronization tick."""
        SYNC_TICK_DURATION.observe(duration)

    def record_secret_write(self, namespace: str, written: bool) -> None:
        """
        Record an output Secret write decision.

        Args:
            namespace: Namespace of the output Secret
            written: True if the Secret was written, False if suppressed
        """
        SECRET_WRITES_TOTAL.labels(
            namespace=namespace, result="written" if written else "unchanged"
        ).inc()

    def record_remote_call(self, operation: str, success: bool) -> None:
        """Record an AWS API call."""
        REMOTE_API_CALLS_TOTAL.labels(
            operation=operation, result="success" if success else "failure"
        ).inc()

    def record_cache_lookup(self, result: str) -> None:
        """Record a cache lookup outcome (hit, miss or coalesced)."""
        CACHE_LOOKUPS_TOTAL.labels(result=result).inc()

    def record_list_refresh(self, success: bool, descriptor_count: int = 0) -> None:
        """
        Record the outcome of a secret list refresh.

        Args:
            success: Whether the refresh succeeded
            descriptor_count: Number of descriptors after a successful refresh
        """
        if success:
            CACHE_DESCRIPTORS.set(descriptor_count)
            LIST_REFRESH_LAST_SUCCESS_TIMESTAMP.set(time.time())
        else:
            LIST_REFRESH_FAILURES_TOTAL.inc()

    def record_policy_decision(self, namespace: str, allowed: bool) -> None:
        """Record an access policy decision."""
        POLICY_DECISIONS_TOTAL.labels(
            namespace=namespace, decision="allow" if allowed else "deny"
        ).inc()

    def update_phase_counts(self, counts: dict[str, int]) -> None:
        """
        Publish the number of tracked resources per phase.

        Args:
            counts: Mapping of phase name to resource count
        """
        TRACKED_RESOURCES.clear()
        for phase, count in counts.items():
            TRACKED_RESOURCES.labels(phase=phase).set(count)

    @property
    def rate_limit_wait(self):
        """Histogram for rate limit wait times."""
        return RATE_LIMIT_WAIT_SECONDS

    @property
    def rate_limit_timeouts(self):
        """Counter for rate limit timeouts."""
        return RATE_LIMIT_TIMEOUTS_TOTAL


class MetricsServer:
    """HTTP server for exposing Prometheus metrics and health endpoints."""

    def __init__(
        self,
        port: int = 8081,
        host: str = "0.0.0.0",
        health_checker: "HealthChecker | None" = None,
    ):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
            health_checker: Health checker backing /health and /ready
        """
        self.port = port
        self.host = host
        self.health_checker = health_checker
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes for the metrics server."""
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/health", self._health_handler)
        self.app.router.add_get("/ready", self._ready_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)  # K8s compatibility

    def _get_health_checker(self) -> "HealthChecker":
        if self.health_checker is None:
            from .health import HealthChecker

            self.health_checker = HealthChecker()
        return self.health_checker

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            registry = get_metrics_registry()
            metrics_data = generate_latest(registry)
            return Response(
                body=metrics_data, headers={"Content-Type": CONTENT_TYPE_LATEST}
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _health_handler(self, request: Request) -> Response:
        """Handle /health endpoint for operator health checks."""
        try:
            health_checker = self._get_health_checker()
            health_results = await health_checker.check_all()
            health_dict = health_checker.to_dict(health_results)

            status_code = (
                200 if health_dict["status"] in ["healthy", "degraded"] else 503
            )

            return json_response(health_dict, status=status_code)
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return json_response(
                {
                    "status": "unhealthy",
                    "error": f"{type(e).__name__}. Check logs for details.",
                    "timestamp": time.time(),
                },
                status=500,
            )

    async def _ready_handler(self, request: Request) -> Response:
        """Handle /ready endpoint for readiness probes."""
        try:
            health_checker = self._get_health_checker()
            results: dict[str, Any] = {
                "kubernetes_api": await health_checker.check_kubernetes_api(),
                "secret_cache": await health_checker.check_secret_cache(),
            }
            ready = all(r.status != "unhealthy" for r in results.values())
            ready_status = {
                "status": "ready" if ready else "not_ready",
                "timestamp": time.time(),
                "checks": {name: r.status for name, r in results.items()},
            }
            return json_response(ready_status, status=200 if ready else 503)

        except Exception as e:
            logger.error(f"Readiness check failed: {e}")
            return json_response(
                {
                    "status": "not_ready",
                    "error": f"{type(e).__name__}. Check logs for details.",
                    "timestamp": time.time(),
                },
                status=503,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        """Handle /healthz endpoint for Kubernetes compatibility."""
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics server started on {self.host}:{self.port}")
            logger.info(f"Metrics available at http://{self.host}:{self.port}/metrics")

        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()


# Global metrics collector instance
metrics_collector = MetricsCollector()
