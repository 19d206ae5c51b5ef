"""
Error handling module for the Helm release operator.

This module provides an error hierarchy that integrates with kopf and
provides clear categorization for different types of failures.
"""

from .operator_errors import (
    BridgeInvocationError,
    ConfigurationError,
    OperatorError,
    ReconciliationTimeoutError,
    ReleaseNotFoundError,
    RemoteOperationError,
    ValidationError,
    is_release_not_found,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "ConfigurationError",
    "RemoteOperationError",
    "ReleaseNotFoundError",
    "BridgeInvocationError",
    "ReconciliationTimeoutError",
    "is_release_not_found",
]
