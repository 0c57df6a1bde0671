#!/usr/bin/env python3
"""
Secret syncer - Main entry point for the Kopf-based secret syncer.

Synchronizes AWS Secrets Manager secrets into Kubernetes Secrets as
declared by SyncedSecret resources:
- A list-refresh loop keeps the local index of AWS secrets current
- A sync loop resolves every tracked SyncedSecret and writes its Secret
  when the result changed
- Namespaces restrict usable IAM roles through an annotation

Usage:
    python -m secret_syncer.operator
    # Or with kopf directly:
    kopf run -m secret_syncer.operator --all-namespaces

Environment Variables:
    SECRET_SYNCER_LIST_INTERVAL_SEC: Seconds between AWS list refreshes
    SECRET_SYNCER_SYNC_INTERVAL_SEC: Seconds between sync ticks
    SECRET_SYNCER_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import asyncio
import logging
import sys

import kopf

# Importing the handler module registers its decorators with kopf
from secret_syncer.handlers import synced_secret  # noqa: F401
from secret_syncer.errors import FetchError
from secret_syncer.observability.health import HealthChecker
from secret_syncer.observability.logging import setup_structured_logging
from secret_syncer.observability.metrics import MetricsServer
from secret_syncer.observability.tracing import setup_tracing, shutdown_tracing
from secret_syncer.services.resolver import MappingResolver
from secret_syncer.services.secret_cache import SecretCache
from secret_syncer.services.sync_reconciler import SyncedSecretReconciler
from secret_syncer.settings import settings as operator_settings
from secret_syncer.utils.kubernetes import (
    get_kubernetes_client,
    patch_synced_secret_status,
    read_namespace_annotations,
)
from secret_syncer.utils.rate_limiter import RateLimiter
from secret_syncer.utils.secret_writer import KubernetesSecretStore
from secret_syncer.utils.secrets_manager import SecretsManagerClient

OPERATOR_NAME = "kube-secret-syncer"


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
        log_health_probes=operator_settings.log_health_probes,
    )


def build_reconciler(k8s_client, cache: SecretCache) -> SyncedSecretReconciler:
    """Wire the reconciler to the cache and the Kubernetes API."""
    return SyncedSecretReconciler(
        resolver=MappingResolver(cache),
        store=KubernetesSecretStore(k8s_client),
        namespace_annotations=lambda namespace: read_namespace_annotations(
            namespace, k8s_client
        ),
        status_writer=lambda name, namespace, status: patch_synced_secret_status(
            name, namespace, status, k8s_client
        ),
        rate_limiter=RateLimiter(
            global_rate=operator_settings.sync_global_rate_limit_tps,
            global_burst=operator_settings.sync_global_burst,
            namespace_rate=operator_settings.sync_namespace_rate_limit_tps,
            namespace_burst=operator_settings.sync_namespace_burst,
        ),
        sync_interval_seconds=operator_settings.sync_interval_seconds,
        max_concurrent_syncs=operator_settings.max_concurrent_syncs,
        role_annotation=operator_settings.namespace_role_annotation,
    )


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup.

    Builds the secret cache and the reconciler, performs the first secret
    listing, and starts the list-refresh and sync loops. Both loops run
    until the cleanup handler cancels them.
    """
    logging.info("Starting secret syncer...")
    settings.watching.reconnect_backoff = 1.0
    settings.persistence.finalizer = "secrets.contentful.com/kube-secret-syncer"

    watched_namespaces = operator_settings.watched_namespaces
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")

    setup_tracing(
        enabled=operator_settings.tracing_enabled,
        endpoint=operator_settings.tracing_endpoint,
        service_name=OPERATOR_NAME,
        sample_rate=operator_settings.tracing_sample_rate,
    )

    k8s_client = get_kubernetes_client()

    cache = SecretCache(
        SecretsManagerClient(
            region=operator_settings.aws_region,
            session_name=operator_settings.assume_role_session_name,
        ),
        list_interval_seconds=operator_settings.list_interval_seconds,
    )
    try:
        await cache.refresh_list()
    except FetchError as e:
        # Not fatal: resources fail with secret-not-found until a refresh succeeds
        logging.error(f"Initial secret listing failed: {e}")

    memo.cache = cache
    memo.reconciler = build_reconciler(k8s_client, cache)
    memo.health_checker = HealthChecker(
        k8s_client=k8s_client,
        secret_cache=cache,
        list_interval_seconds=operator_settings.list_interval_seconds,
    )

    memo.list_task = asyncio.create_task(cache.run_forever(), name="secret-list-refresh")
    memo.sync_task = asyncio.create_task(
        memo.reconciler.run_forever(), name="synced-secret-sync"
    )
    logging.info(
        f"Loops started: list refresh every {operator_settings.list_interval_seconds}s, "
        f"sync every {operator_settings.sync_interval_seconds}s"
    )

    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port,
            host=operator_settings.metrics_host,
            health_checker=memo.health_checker,
        )
        await metrics_server.start()
        memo.metrics_server = metrics_server
        logging.info(
            f"Metrics and health endpoints available on "
            f"{operator_settings.metrics_host}:{operator_settings.metrics_port}"
        )
    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")
        logging.warning("Continuing without metrics server")
        memo.metrics_server = None


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """
    Operator cleanup.

    Cancels both loops together, stops the metrics server and flushes
    pending spans.
    """
    logging.info("Shutting down secret syncer...")

    tasks = [
        task
        for task in (memo.get("list_task"), memo.get("sync_task"))
        if task is not None
    ]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    metrics_server = memo.get("metrics_server")
    if metrics_server is not None:
        await metrics_server.stop()
        logging.info("Metrics server stopped")

    shutdown_tracing()


@kopf.on.probe(id="healthz")
async def health_check(memo: kopf.Memo, **_) -> dict[str, str]:
    """
    Liveness probe.

    Returns:
        Dictionary indicating operator health status
    """
    health_checker = memo.get("health_checker") or HealthChecker()
    results = await health_checker.check_all()
    return {
        "status": health_checker.get_overall_health(results),
        "operator": OPERATOR_NAME,
    }


@kopf.on.probe(id="ready")
async def readiness_check(memo: kopf.Memo, **_) -> dict[str, str]:
    """
    Readiness probe: the Kubernetes API is reachable. A stale secret cache
    only degrades health since it keeps serving the last listing.
    """
    health_checker = memo.get("health_checker") or HealthChecker()
    api = await health_checker.check_kubernetes_api()
    cache = await health_checker.check_secret_cache()

    ready = all(r.status != "unhealthy" for r in (api, cache))
    return {"status": "ready" if ready else "not_ready", "operator": OPERATOR_NAME}


def main() -> None:
    """
    Main entry point for the operator.

    Configures logging and runs kopf in namespaced or cluster-wide mode.
    """
    configure_logging()

    watched_namespaces = operator_settings.watched_namespaces

    try:
        if watched_namespaces:
            kopf.run(
                namespaces=watched_namespaces,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
        else:
            kopf.run(
                clusterwide=True,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
