"""
Structured logging utilities for the Helm release operator.

This module provides correlation ID tracking and a JSON formatter so that
every line logged during one reconciliation step can be tied together, and
an OperatorLogger wrapper for the step lifecycle events the driver emits.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variable for tracking correlation IDs across threads and tasks
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Fields copied from ``extra=`` into the JSON document when present
STRUCTURED_FIELDS = (
    "component",
    "action",
    "stage",
    "release_name",
    "namespace",
    "bridge_name",
    "resource_name",
    "operation",
    "status",
    "duration",
    "error_type",
    "retryable",
)


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TEXT_FORMAT_WITH_IDS = (
    "%(asctime)s %(levelname)s [%(correlation_id)s %(component)s] "
    "[%(name)s] %(message)s"
)

QUIET_LOGGERS = (
    "kopf",
    "kubernetes",
    "botocore",
    "boto3",
    "urllib3",
    "httpx",
    "aiohttp.access",
)


class CorrelationIDFilter(logging.Filter):
    """Stamp records with the step's correlation ID and a component default."""

    def filter(self, record: logging.LogRecord) -> bool:
        step_id = correlation_id.get()
        if not step_id:
            step_id = set_correlation_id(generate_correlation_id())
        record.correlation_id = step_id
        if not hasattr(record, "component"):
            record.component = "-"
        return True


class StructuredFormatter(logging.Formatter):
    """
    Render a record as one JSON document per line.

    Only the structured fields a caller actually passed through ``extra=``
    are emitted, so lines from third-party loggers stay small.
    """

    def format(self, record: logging.LogRecord) -> str:
        document = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", ""),
            "message": record.getMessage(),
        }
        document.update(
            {
                field: getattr(record, field)
                for field in STRUCTURED_FIELDS
                if hasattr(record, field)
            }
        )
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


def generate_correlation_id() -> str:
    """Short 8-character ID for readability."""
    return uuid.uuid4().hex[:8]


def set_correlation_id(corr_id: str) -> str:
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    return correlation_id.get()


def _formatter(json_logs: bool, with_ids: bool) -> logging.Formatter:
    if json_logs:
        return StructuredFormatter()
    return logging.Formatter(TEXT_FORMAT_WITH_IDS if with_ids else TEXT_FORMAT)


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
) -> None:
    """
    Route all logging through a single stderr handler.

    Used by both the operator process and the bridge function, which
    receives its level and format through the same settings.

    Args:
        log_level: Level name for the root logger; unknown names fall back
            to INFO
        enable_json_formatting: Emit JSON documents instead of text lines
        correlation_id_enabled: Stamp records with the step correlation ID
    """
    handler = logging.StreamHandler()
    handler.setFormatter(_formatter(enable_json_formatting, correlation_id_enabled))
    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(
        logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO)
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger for reconciliation steps with structured fields.

    Every method tags records with the component that emitted them so the
    originating layer of an error stays visible after it has been translated
    into a step outcome.
    """

    def __init__(self, name: str, component: str):
        self.logger = logging.getLogger(name)
        self.component = component

    def log_step_start(
        self,
        action: str,
        stage: str,
        release_name: str | None,
        namespace: str | None,
        correlation_id: str | None = None,
    ) -> str:
        """
        Log the start of a driver step.

        Returns:
            The correlation ID used for this step
        """
        if correlation_id is None:
            correlation_id = generate_correlation_id()

        set_correlation_id(correlation_id)

        self.logger.info(
            f"Starting {action} at stage {stage}",
            extra={
                "component": self.component,
                "action": action,
                "stage": stage,
                "release_name": release_name,
                "namespace": namespace,
                "operation": "step_start",
            },
        )
        return correlation_id

    def log_step_result(
        self,
        action: str,
        stage: str,
        status: str,
        release_name: str | None,
        duration: float,
    ) -> None:
        self.logger.info(
            f"{action} step finished with {status} (next stage {stage})",
            extra={
                "component": self.component,
                "action": action,
                "stage": stage,
                "status": status,
                "release_name": release_name,
                "operation": "step_result",
                "duration": duration,
            },
        )

    def log_step_error(
        self,
        action: str,
        stage: str,
        error: Exception,
        component: str | None = None,
    ) -> None:
        """
        Log an error raised while processing a step.

        Args:
            action: Requested action
            stage: Stage the step started from
            error: The error that occurred
            component: Originating component, when it differs from this logger's
        """
        self.logger.error(
            f"{action} failed at stage {stage}: {error}",
            extra={
                "component": component or self.component,
                "action": action,
                "stage": stage,
                "operation": "step_error",
                "error_type": type(error).__name__,
                "retryable": getattr(error, "retryable", False),
            },
            exc_info=None if hasattr(error, "category") else True,
        )

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, extra={"component": self.component, **kwargs})

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, extra={"component": self.component, **kwargs})

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, extra={"component": self.component, **kwargs})

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        self.logger.error(
            message, exc_info=exc_info, extra={"component": self.component, **kwargs}
        )
