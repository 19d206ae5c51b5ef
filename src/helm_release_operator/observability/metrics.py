"""
Prometheus metrics for the Helm release operator.

This module provides metrics for reconciliation steps, bridge function
activity and the phase of managed releases, plus the HTTP server the operator
exposes them on.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

# aiohttp is provided transitively by kopf; the metrics server reuses it
from aiohttp.web import Application, AppRunner, Request, Response, TCPSite
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

METRICS_REGISTRY = CollectorRegistry()

STEP_TOTAL = Counter(
    "helm_release_operator_step_total",
    "Total number of reconciliation steps by outcome",
    ["action", "stage", "status"],
    registry=METRICS_REGISTRY,
)

STEP_DURATION = Histogram(
    "helm_release_operator_step_duration_seconds",
    "Time spent in a single reconciliation step",
    ["action"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
    registry=METRICS_REGISTRY,
)

STEP_ERRORS = Counter(
    "helm_release_operator_step_errors_total",
    "Total number of errors translated into failed steps",
    ["action", "error_type", "retryable"],
    registry=METRICS_REGISTRY,
)

BRIDGE_INVOCATIONS = Counter(
    "helm_release_operator_bridge_invocations_total",
    "Total number of bridge function invocations",
    ["action", "result"],
    registry=METRICS_REGISTRY,
)

BRIDGE_LIFECYCLE = Counter(
    "helm_release_operator_bridge_lifecycle_total",
    "Bridge function lifecycle operations",
    ["operation"],
    registry=METRICS_REGISTRY,
)

RELEASE_PHASE = Gauge(
    "helm_release_operator_release_phase",
    "Phase of managed releases (1 for the current phase)",
    ["namespace", "name", "phase"],
    registry=METRICS_REGISTRY,
)

PHASES = ("Pending", "Reconciling", "Ready", "Failed", "Deleting")


class MetricsCollector:
    """Records metrics for the operator's reconciliation activity."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or METRICS_REGISTRY

    @contextmanager
    def track_step(self, action: str) -> Iterator[None]:
        """Observe the duration of one driver step."""
        start_time = time.monotonic()
        try:
            yield
        finally:
            STEP_DURATION.labels(action=action).observe(time.monotonic() - start_time)

    def record_step(self, action: str, stage: str, status: str) -> None:
        STEP_TOTAL.labels(action=action, stage=stage, status=status).inc()

    def record_error(self, action: str, error: Exception) -> None:
        retryable = "true" if getattr(error, "retryable", False) else "false"
        STEP_ERRORS.labels(
            action=action, error_type=type(error).__name__, retryable=retryable
        ).inc()

    def record_bridge_invocation(self, action: str, success: bool) -> None:
        BRIDGE_INVOCATIONS.labels(
            action=action, result="success" if success else "error"
        ).inc()

    def record_bridge_operation(self, operation: str) -> None:
        BRIDGE_LIFECYCLE.labels(operation=operation).inc()

    def update_release_phase(self, namespace: str, name: str, phase: str) -> None:
        for candidate in PHASES:
            RELEASE_PHASE.labels(namespace=namespace, name=name, phase=candidate).set(
                1 if candidate == phase else 0
            )

    def forget_release(self, namespace: str, name: str) -> None:
        for candidate in PHASES:
            try:
                RELEASE_PHASE.remove(namespace, name, candidate)
            except KeyError:
                continue


# Shared collector for the whole process
metrics = MetricsCollector()


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        return Response(
            body=generate_latest(METRICS_REGISTRY),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        self.runner = AppRunner(self.app)
        await self.runner.setup()
        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(f"Metrics server started on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            self.site = None
            logger.info("Metrics server stopped")
