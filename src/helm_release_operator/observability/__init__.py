"""
Observability package - structured logging and Prometheus metrics.
"""

from .logging import OperatorLogger, setup_structured_logging
from .metrics import MetricsCollector, MetricsServer, metrics

__all__ = [
    "MetricsCollector",
    "MetricsServer",
    "OperatorLogger",
    "metrics",
    "setup_structured_logging",
]
