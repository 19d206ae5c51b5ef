#!/usr/bin/env python3
"""
Helm Release Operator - Main entry point for the Kopf-based operator.

The operator installs, upgrades and uninstalls Helm releases on Amazon EKS
clusters (or any cluster reachable through a kubeconfig kept in Secrets
Manager). Clusters with a private API endpoint are reached through a bridge
function placed inside the cluster's VPC.

Usage:
    helm-release-operator
    # Or with kopf directly:
    kopf run -m helm_release_operator.operator --all-namespaces

Environment Variables:
    HELM_OPERATOR_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    METRICS_PORT: Port of the Prometheus metrics endpoint
"""

import logging
import random
import sys

import kopf

# Importing the handler module registers its decorators with kopf
from helm_release_operator.handlers import release  # noqa: F401
from helm_release_operator.observability.logging import setup_structured_logging
from helm_release_operator.observability.metrics import MetricsServer
from helm_release_operator.settings import settings as operator_settings

LIVENESS_ENDPOINT = "http://0.0.0.0:8080/healthz"
PEERING_NAME = "helm-release-operator"
MAX_STEP_WORKERS = 20

# Started on startup, stopped on cleanup
_metrics_server: MetricsServer | None = None


def configure_logging() -> None:
    setup_structured_logging(
        log_level=operator_settings.log_level,
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


@kopf.on.startup()
async def startup_handler(settings: kopf.OperatorSettings, **_) -> None:
    """
    Configure kopf before any HelmRelease is processed.

    Driver steps run in worker threads, so the executor pool bounds how many
    releases are stepped at once. A metrics port that cannot be bound is not
    fatal.
    """
    global _metrics_server

    settings.watching.reconnect_backoff = 1.0
    settings.peering.name = PEERING_NAME
    settings.peering.priority = random.randint(0, 32767)
    settings.execution.max_workers = MAX_STEP_WORKERS
    logging.info(
        f"Helm Release Operator starting (peering priority "
        f"{settings.peering.priority}, {MAX_STEP_WORKERS} step workers)"
    )

    scope = operator_settings.watched_namespaces
    if scope:
        logging.info(f"Watching HelmReleases in {', '.join(scope)}")
    else:
        logging.info("Watching HelmReleases cluster-wide")

    server = MetricsServer(port=operator_settings.metrics_port)
    try:
        await server.start()
    except OSError as e:
        logging.error(
            f"Metrics endpoint on port {operator_settings.metrics_port} "
            f"unavailable, running without it: {e}"
        )
        return
    _metrics_server = server


@kopf.on.cleanup()
async def cleanup_handler(**_) -> None:
    global _metrics_server

    logging.info("Helm Release Operator shutting down")
    if _metrics_server is not None:
        await _metrics_server.stop()
        _metrics_server = None


@kopf.on.probe(id="ready")
async def readiness_check(**_) -> dict[str, str]:
    return {"status": "ready", "operator": PEERING_NAME}


def main() -> None:
    """Run the operator, namespaced when HELM_OPERATOR_NAMESPACES is set."""
    configure_logging()
    scope = operator_settings.watched_namespaces
    run_kwargs = {"namespaces": scope} if scope else {"clusterwide": True}

    try:
        kopf.run(liveness_endpoint=LIVENESS_ENDPOINT, **run_kwargs)
    except KeyboardInterrupt:
        logging.info("Interrupted, exiting")
        sys.exit(0)


if __name__ == "__main__":
    main()
