"""
Service layer for the Helm release operator.

This module provides the reconciliation driver and the services it drives
(release manager, readiness inspector, bridge manager), separated from the
kopf handler layer and the bridge relay entrypoint.
"""

from .bridge_manager import BridgeManager
from .driver import ReconciliationDriver
from .executors import BridgedExecutor, DirectExecutor, Executor
from .readiness import ReadinessInspector
from .release_manager import ReleaseManager

__all__ = [
    "BridgeManager",
    "BridgedExecutor",
    "DirectExecutor",
    "Executor",
    "ReadinessInspector",
    "ReconciliationDriver",
    "ReleaseManager",
]
