"""
Health check utilities for the secret syncer.

This module checks Kubernetes API connectivity, the presence of the
SyncedSecret CRD and the freshness of the secret cache.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import CRD_GROUP, CRD_PLURAL

if TYPE_CHECKING:
    from ..services.secret_cache import SecretCache

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """Result of a health check operation."""

    name: str
    status: str  # "healthy", "unhealthy", "degraded", "unknown"
    message: str
    details: dict[str, Any] | None = None
    duration: float = 0.0
    timestamp: float = 0.0


class HealthChecker:
    """Performs health checks for the operator."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        secret_cache: "SecretCache | None" = None,
        list_interval_seconds: int = 300,
    ):
        """
        Initialize health checker.

        Args:
            k8s_client: Kubernetes API client
            secret_cache: Secret cache whose freshness is reported
            list_interval_seconds: Expected interval between list refreshes
        """
        self.k8s_client = k8s_client
        self.secret_cache = secret_cache
        self.list_interval_seconds = list_interval_seconds

    def _client(self) -> client.ApiClient:
        if not self.k8s_client:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    async def check_all(self) -> dict[str, HealthCheckResult]:
        """
        Run all health checks.

        Returns:
            Dictionary of health check results
        """
        checks = {
            "kubernetes_api": self.check_kubernetes_api(),
            "crds_installed": self.check_crds_installed(),
            "secret_cache": self.check_secret_cache(),
        }

        results = {}
        for name, check_coro in checks.items():
            try:
                results[name] = await check_coro
            except Exception as e:
                results[name] = HealthCheckResult(
                    name=name,
                    status="unhealthy",
                    message=f"Health check failed: {str(e)}",
                    timestamp=time.time(),
                )

        return results

    async def check_kubernetes_api(self) -> HealthCheckResult:
        """Check Kubernetes API connectivity."""
        start_time = time.time()

        try:
            core_api = client.CoreV1Api(self._client())
            await asyncio.to_thread(core_api.list_namespace, limit=1, timeout_seconds=5)
            duration = time.time() - start_time

            return HealthCheckResult(
                name="kubernetes_api",
                status="healthy",
                message="Kubernetes API is accessible",
                details={"response_time_ms": round(duration * 1000, 2)},
                duration=duration,
                timestamp=time.time(),
            )

        except ApiException as e:
            duration = time.time() - start_time
            return HealthCheckResult(
                name="kubernetes_api",
                status="unhealthy",
                message=f"Kubernetes API error: {e.reason}",
                details={"status_code": e.status},
                duration=duration,
                timestamp=time.time(),
            )

        except Exception as e:
            duration = time.time() - start_time
            return HealthCheckResult(
                name="kubernetes_api",
                status="unhealthy",
                message=f"Failed to connect to Kubernetes API: {str(e)}",
                duration=duration,
                timestamp=time.time(),
            )

    async def check_crds_installed(self) -> HealthCheckResult:
        """Check that the SyncedSecret CRD is installed."""
        start_time = time.time()
        crd_name = f"{CRD_PLURAL}.{CRD_GROUP}"

        try:
            api_extensions = client.ApiextensionsV1Api(self._client())
            await asyncio.to_thread(
                api_extensions.read_custom_resource_definition, name=crd_name
            )
            return HealthCheckResult(
                name="crds_installed",
                status="healthy",
                message=f"CRD {crd_name} is installed",
                duration=time.time() - start_time,
                timestamp=time.time(),
            )
        except ApiException as e:
            message = (
                f"Missing required CRD: {crd_name}"
                if e.status == 404
                else f"Failed to check CRD {crd_name}: {e.reason}"
            )
            return HealthCheckResult(
                name="crds_installed",
                status="unhealthy",
                message=message,
                duration=time.time() - start_time,
                timestamp=time.time(),
            )

    async def check_secret_cache(self) -> HealthCheckResult:
        """
        Check that the secret listing is fresh.

        The cache keeps serving stale descriptors when list refreshes fail,
        so staleness degrades health rather than failing it.
        """
        if self.secret_cache is None:
            return HealthCheckResult(
                name="secret_cache",
                status="unknown",
                message="Secret cache is not initialized",
                timestamp=time.time(),
            )

        last_success = self.secret_cache.last_refresh_success
        if last_success is None:
            return HealthCheckResult(
                name="secret_cache",
                status="degraded",
                message="Secret list has not been refreshed successfully yet",
                timestamp=time.time(),
            )

        age = time.time() - last_success
        details = {
            "age_seconds": round(age, 1),
            "descriptors": self.secret_cache.descriptor_count,
        }
        if age > 2 * self.list_interval_seconds:
            return HealthCheckResult(
                name="secret_cache",
                status="degraded",
                message=f"Secret list is stale ({int(age)}s since last refresh)",
                details=details,
                timestamp=time.time(),
            )
        return HealthCheckResult(
            name="secret_cache",
            status="healthy",
            message="Secret list is fresh",
            details=details,
            timestamp=time.time(),
        )

    def get_overall_health(self, results: dict[str, HealthCheckResult]) -> str:
        """
        Determine overall health status from individual check results.

        Args:
            results: Dictionary of health check results

        Returns:
            Overall health status
        """
        if not results:
            return "unknown"

        statuses = [result.status for result in results.values()]

        if "unhealthy" in statuses:
            return "unhealthy"
        elif "degraded" in statuses or "unknown" in statuses:
            return "degraded"
        else:
            return "healthy"

    def to_dict(self, results: dict[str, HealthCheckResult]) -> dict[str, Any]:
        """
        Convert health check results to dictionary format.

        Args:
            results: Health check results

        Returns:
            Dictionary representation
        """
        overall_status = self.get_overall_health(results)

        return {
            "status": overall_status,
            "timestamp": time.time(),
            "checks": {
                name: {
                    "status": result.status,
                    "message": result.message,
                    "details": result.details,
                    "duration": result.duration,
                    "timestamp": result.timestamp,
                }
                for name, result in results.items()
            },
        }
