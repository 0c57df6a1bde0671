"""
Structured logging utilities for the secret syncer.

This module provides correlation ID tracking, structured log formatting,
and audit logging of access policy decisions. Secret values are never
passed to these helpers.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variable for tracking correlation IDs across async operations
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Paths that should be filtered from access logs (health probes)
HEALTH_PROBE_PATHS = frozenset({"/healthz", "/health", "/ready", "/metrics"})

STRUCTURED_FIELDS = (
    "resource_type",
    "resource_name",
    "namespace",
    "operation",
    "duration",
    "error_type",
    "reason",
    "phase",
    "secret_id",
    "iam_role",
    "audit",
)


class HealthProbeFilter(logging.Filter):
    """
    Logging filter that suppresses health probe and metrics endpoint logs.

    These endpoints are hit frequently by Kubernetes probes and monitoring
    systems, generating excessive noise in logs.
    """

    def __init__(self, suppress_health_logs: bool = True):
        super().__init__()
        self.suppress_health_logs = suppress_health_logs

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.suppress_health_logs:
            return True

        message = record.getMessage()
        return all(path not in message for path in HEALTH_PROBE_PATHS)


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        current_correlation_id = correlation_id.get()
        if not current_correlation_id:
            current_correlation_id = generate_correlation_id()
            correlation_id.set(current_correlation_id)

        record.correlation_id = current_correlation_id
        return True


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON formatter for logs with correlation ID support.

    Formats log records as structured JSON for better parsing and analysis
    in production monitoring systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields arrive as attributes on the record
        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID.

    Returns:
        Unique correlation ID string
    """
    return str(uuid.uuid4())[:8]  # Short 8-character ID for readability


def set_correlation_id(corr_id: str) -> str:
    """Set the correlation ID for the current context."""
    correlation_id.set(corr_id)
    return corr_id


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Set up structured logging for the operator.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json_formatting: Whether to use JSON formatting
        correlation_id_enabled: Whether to enable correlation ID tracking
        log_health_probes: Whether to log health probe requests (default: False)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if enable_json_formatting:
        formatter: logging.Formatter = StructuredFormatter()
    elif correlation_id_enabled:
        formatter = logging.Formatter(
            "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)

    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    if not log_health_probes:
        handler.addFilter(HealthProbeFilter(suppress_health_logs=True))

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Set specific logger levels for third-party libraries
    logging.getLogger("kopf").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    # Suppress aiohttp access logs which spam with probe requests
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.server").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.web").setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger for synchronization events with structured logging support.

    Provides convenient methods for logging common operator events
    with proper correlation ID tracking and structured data.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_sync_start(
        self,
        resource_name: str,
        namespace: str,
        correlation_id: str | None = None,
    ) -> str:
        """
        Log the start of a resource synchronization.

        Returns:
            The correlation ID used for this operation
        """
        if correlation_id is None:
            correlation_id = generate_correlation_id()

        set_correlation_id(correlation_id)

        self.logger.debug(
            f"Starting sync for SyncedSecret {namespace}/{resource_name}",
            extra={
                "resource_type": "syncedsecret",
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "sync_start",
            },
        )

        return correlation_id

    def log_sync_success(
        self, resource_name: str, namespace: str, written: bool, duration: float
    ) -> None:
        """Log a successful synchronization and whether the Secret was written."""
        outcome = "Secret updated" if written else "no changes"
        self.logger.log(
            logging.INFO if written else logging.DEBUG,
            f"Sync completed for SyncedSecret {namespace}/{resource_name}: {outcome}",
            extra={
                "resource_type": "syncedsecret",
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "sync_success",
                "duration": duration,
            },
        )

    def log_sync_error(
        self,
        resource_name: str,
        namespace: str,
        error: Exception,
        duration: float,
        exc_info: bool = False,
    ) -> None:
        """Log a failed synchronization."""
        self.logger.error(
            f"Sync failed for SyncedSecret {namespace}/{resource_name}: {str(error)}",
            extra={
                "resource_type": "syncedsecret",
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "sync_error",
                "error_type": type(error).__name__,
                "reason": getattr(error, "reason", None),
                "duration": duration,
            },
            exc_info=exc_info,
        )

    def log_policy_audit(
        self,
        namespace: str,
        resource_name: str,
        iam_role: str,
        allowed: bool,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log an access policy decision.

        Allowed decisions are logged at DEBUG since they repeat every tick;
        denials are logged at WARNING.
        """
        level = logging.DEBUG if allowed else logging.WARNING
        message = (
            f"IAM role '{iam_role or '<none>'}' "
            f"{'allowed' if allowed else 'denied'} for {namespace}/{resource_name}"
        )

        audit_data = {
            "audit_event": "iam_role_policy",
            "namespace": namespace,
            "resource_name": resource_name,
            "iam_role": iam_role,
            "success": allowed,
            "timestamp": datetime.now(UTC).isoformat(),
        }

        if details:
            audit_data.update(details)

        self.logger.log(level, message, extra={"audit": audit_data})
