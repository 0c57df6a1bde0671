"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Settings are read once at startup; there
is no hot-reload.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from secret_syncer.constants import DEFAULT_NAMESPACE_ROLE_ANNOTATION


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Operator identification
    operator_namespace: str = Field(
        default="kube-secret-syncer",
        description="Namespace where the operator is deployed",
        validation_alias="OPERATOR_NAMESPACE",
    )
    operator_name: str = Field(
        default="kube-secret-syncer",
        description="Name of the operator deployment",
        validation_alias="OPERATOR_NAME",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log requests hitting the health and metrics endpoints",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="SECRET_SYNCER_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Synchronization timers
    list_interval_seconds: int = Field(
        default=300,
        gt=0,
        validation_alias="SECRET_SYNCER_LIST_INTERVAL_SEC",
        description="Interval in seconds between refreshes of the remote secret listing",
    )
    sync_interval_seconds: int = Field(
        default=120,
        gt=0,
        validation_alias="SECRET_SYNCER_SYNC_INTERVAL_SEC",
        description="Interval in seconds between synchronizations of tracked resources",
    )
    max_concurrent_syncs: int = Field(
        default=10,
        gt=0,
        validation_alias="SECRET_SYNCER_MAX_CONCURRENT_SYNCS",
        description="Maximum number of resources synchronized concurrently per tick",
    )

    # Access policy
    namespace_role_annotation: str = Field(
        default=DEFAULT_NAMESPACE_ROLE_ANNOTATION,
        validation_alias="SECRET_SYNCER_NAMESPACE_ROLE_ANNOTATION",
        description="Namespace annotation holding the list of allowed IAM roles",
    )

    # AWS
    aws_region: str = Field(
        default="us-east-1",
        validation_alias="AWS_REGION",
        description="AWS region of the Secrets Manager endpoint",
    )
    assume_role_session_name: str = Field(
        default="kube-secret-syncer",
        validation_alias="SECRET_SYNCER_ASSUME_ROLE_SESSION_NAME",
        description="Session name used when assuming IAM roles",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )
    tracing_enabled: bool = Field(
        default=False,
        validation_alias="OTEL_TRACING_ENABLED",
        description="Enable OpenTelemetry tracing",
    )
    tracing_endpoint: str = Field(
        default="http://localhost:4317",
        validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="OTLP collector endpoint (gRPC)",
    )
    tracing_sample_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        validation_alias="OTEL_TRACES_SAMPLER_ARG",
        description="Trace sampling ratio for root spans",
    )

    # Rate limiting of resource synchronizations
    sync_global_rate_limit_tps: float = Field(
        default=10.0,
        gt=0,
        validation_alias="SECRET_SYNCER_GLOBAL_RATE_LIMIT_TPS",
        description="Global resource synchronizations per second",
    )
    sync_global_burst: int = Field(
        default=20,
        gt=0,
        validation_alias="SECRET_SYNCER_GLOBAL_BURST",
        description="Global burst capacity for resource synchronizations",
    )
    sync_namespace_rate_limit_tps: float = Field(
        default=2.0,
        gt=0,
        validation_alias="SECRET_SYNCER_NAMESPACE_RATE_LIMIT_TPS",
        description="Per-namespace resource synchronizations per second",
    )
    sync_namespace_burst: int = Field(
        default=5,
        gt=0,
        validation_alias="SECRET_SYNCER_NAMESPACE_BURST",
        description="Per-namespace burst capacity for resource synchronizations",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None


# Global settings instance - initialized once at module import
settings = Settings()
