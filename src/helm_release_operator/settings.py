"""Operator and bridge relay configuration, read from the environment.

The same ``Settings`` class configures the kopf operator and the bridge
function; the bridge receives the subset it needs as function environment
variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from helm_release_operator.constants import (
    BRIDGE_HANDLER,
    BRIDGE_MEMORY_SIZE,
    BRIDGE_RUNTIME,
    BRIDGE_TIMEOUT,
    DEFAULT_BRIDGE_CREATE_POLL_INTERVAL,
    DEFAULT_BRIDGE_PENDING_POLL_INTERVAL,
    DEFAULT_BRIDGE_STABILIZE_ATTEMPTS,
    DEFAULT_CALLBACK_DELAY,
    DEFAULT_REPO_LOCK_TIMEOUT,
    DEFAULT_TIMEOUT_MINUTES,
)


class Settings(BaseSettings):
    """Environment-backed settings. Every field names its variable in
    ``validation_alias``.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logger level name",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Emit one JSON document per log line",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Tag log lines with the reconciliation step correlation ID",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="HELM_OPERATOR_NAMESPACES",
        description="Namespaces holding HelmRelease resources, comma-separated; empty watches all",
    )

    # AWS
    aws_region: str = Field(
        default="",
        validation_alias="AWS_REGION",
        description="Region used for AWS calls (empty = boto3 default resolution)",
    )

    # Reconciliation behavior
    callback_delay_seconds: int = Field(
        default=DEFAULT_CALLBACK_DELAY,
        validation_alias="CALLBACK_DELAY_SECONDS",
        description="Delay hint returned with every in-progress outcome",
    )
    default_timeout_minutes: int = Field(
        default=DEFAULT_TIMEOUT_MINUTES,
        validation_alias="DEFAULT_TIMEOUT_MINUTES",
        description="Reconciliation budget when the release does not set one",
    )

    # Helm
    helm_binary: str = Field(
        default="helm",
        validation_alias="HELM_BINARY",
        description="Path to the helm executable",
    )
    helm_cache_home: str = Field(
        default="/tmp/cache",
        validation_alias="HELM_CACHE_HOME",
        description="Helm cache directory (repository indexes)",
    )
    helm_config_home: str = Field(
        default="/tmp/config",
        validation_alias="HELM_CONFIG_HOME",
        description="Helm config directory (repositories.yaml)",
    )
    helm_data_home: str = Field(
        default="/tmp/data",
        validation_alias="HELM_DATA_HOME",
        description="Helm data directory",
    )
    helm_dependency_update: bool = Field(
        default=False,
        validation_alias="HELM_DEPENDENCY_UPDATE",
        description="Fetch missing chart dependencies instead of failing",
    )
    repo_lock_timeout_seconds: float = Field(
        default=DEFAULT_REPO_LOCK_TIMEOUT,
        validation_alias="REPO_LOCK_TIMEOUT_SECONDS",
        description="How long to wait for the repository index lock",
    )
    kubeconfig_path: str = Field(
        default="/tmp/kubeConfig",
        validation_alias="KUBECONFIG_SCRATCH_PATH",
        description="Where the target cluster kubeconfig is written",
    )
    chart_workdir: str = Field(
        default="/tmp/charts",
        validation_alias="CHART_WORKDIR",
        description="Scratch directory for downloaded and unpacked charts",
    )

    # Bridge function
    bridge_package_path: str = Field(
        default="k8svpc.zip",
        validation_alias="BRIDGE_PACKAGE_PATH",
        description="Deployment package (zip) for the bridge function",
    )
    bridge_handler: str = Field(
        default=BRIDGE_HANDLER,
        validation_alias="BRIDGE_HANDLER",
        description="Entrypoint of the bridge function",
    )
    bridge_runtime: str = Field(
        default=BRIDGE_RUNTIME,
        validation_alias="BRIDGE_RUNTIME",
        description="Function runtime identifier",
    )
    bridge_memory_size: int = Field(
        default=BRIDGE_MEMORY_SIZE,
        validation_alias="BRIDGE_MEMORY_SIZE",
        description="Bridge function memory in MB",
    )
    bridge_timeout: int = Field(
        default=BRIDGE_TIMEOUT,
        validation_alias="BRIDGE_TIMEOUT",
        description="Bridge function timeout in seconds",
    )
    bridge_stabilize_attempts: int = Field(
        default=DEFAULT_BRIDGE_STABILIZE_ATTEMPTS,
        validation_alias="BRIDGE_STABILIZE_ATTEMPTS",
        description=(
            "State polls per step before reporting in-progress. Together with "
            "the poll intervals this bounds the latency of a single step."
        ),
        ge=1,
    )
    bridge_create_poll_interval: float = Field(
        default=DEFAULT_BRIDGE_CREATE_POLL_INTERVAL,
        validation_alias="BRIDGE_CREATE_POLL_INTERVAL",
        description="Seconds between state polls after creating the bridge",
        ge=0,
    )
    bridge_pending_poll_interval: float = Field(
        default=DEFAULT_BRIDGE_PENDING_POLL_INTERVAL,
        validation_alias="BRIDGE_PENDING_POLL_INTERVAL",
        description="Seconds between state polls while the bridge is pending",
        ge=0,
    )

    # Metrics
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port of the /metrics and /healthz endpoints",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Namespaces to watch, or None for cluster-wide mode."""
        names = [part.strip() for part in self.namespaces.split(",")]
        return [name for name in names if name] or None


# Process-wide settings
settings = Settings()
