"""
Errors raised inside the operator and the bridge relay.

Every error carries a category and a retry decision. The reconciliation
driver turns them into step outcomes; ``as_kopf_error`` covers callers that
talk to kopf directly.
"""

import re
from typing import Any

import kopf

from helm_release_operator.constants import ERROR_TIMED_OUT

RELEASE_NOT_FOUND_PATTERN = re.compile(r"release: not found", re.IGNORECASE)


class OperatorError(Exception):
    """
    Root of the operator's error tree.

    Args:
        message: What went wrong, in terms of the managed release
        category: validation, configuration, remote, timeout or internal
        retryable: Whether the caller may resume from the last recorded stage
        delay: Retry hint in seconds
        user_action: Remediation appended to the message
        cause: The collaborator exception being wrapped
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self) -> kopf.TemporaryError | kopf.PermanentError:
        if not self.retryable:
            return kopf.PermanentError(str(self))
        return kopf.TemporaryError(str(self), delay=self.delay)

    def __str__(self) -> str:
        message = super().__str__()
        if not self.user_action:
            return message
        return f"{message}\nAction required: {self.user_action}"


class ValidationError(OperatorError):
    """Error in the desired release specification."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message,
            category="validation",
            retryable=False,
            user_action=user_action,
        )


class ConfigurationError(OperatorError):
    """Error in target or bridge configuration that retrying cannot fix."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action,
        )


class RemoteOperationError(OperatorError):
    """Wrapped collaborator failure (AWS, Kubernetes API, helm)."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 30,
        cause: Exception | None = None,
    ):
        self.service = service
        super().__init__(
            message=f"{service} error: {message}",
            category="remote",
            retryable=retryable,
            delay=delay,
            cause=cause,
        )

    @classmethod
    def from_client_error(cls, service: str, error: Any) -> "RemoteOperationError":
        """Build from a botocore ClientError, keeping the AWS error code visible."""
        details = getattr(error, "response", {}).get("Error", {})
        code = details.get("Code", "Unknown")
        message = details.get("Message", str(error))
        return cls(service, f"AWS Error: {code} - {message}", cause=error)


class ReleaseNotFoundError(RemoteOperationError):
    """The named release does not exist on the target cluster."""

    def __init__(self, name: str, cause: Exception | None = None):
        self.release_name = name
        super().__init__(
            service="helm",
            message=f"release: not found ({name})",
            retryable=False,
            cause=cause,
        )


class BridgeInvocationError(RemoteOperationError):
    """The bridge function ran but reported an execution error."""

    def __init__(self, function_name: str, error_type: str, error_message: str):
        self.function_name = function_name
        self.error_type = error_type
        self.error_message = error_message
        super().__init__(
            service="bridge",
            message=f"[{error_type}] {error_message}",
        )


class ReconciliationTimeoutError(OperatorError):
    """The reconciliation budget is exhausted."""

    def __init__(self, diagnostics: list[str]):
        self.diagnostics = list(diagnostics)
        super().__init__(
            message=ERROR_TIMED_OUT.format("\n ".join(self.diagnostics)),
            category="timeout",
            retryable=False,
        )


def is_release_not_found(error: BaseException) -> bool:
    """Whether an error message reports that the release is absent."""
    if isinstance(error, ReleaseNotFoundError):
        return True
    return bool(RELEASE_NOT_FOUND_PATTERN.search(str(error)))
