"""
HelmRelease handlers - Drive managed releases through the reconciliation driver.

Each handler invocation runs exactly one driver step. The driver is
stateless, so everything it needs between polls is kept in the resource
status:

- ``resumeToken``: continuation state of the running operation
- ``operation``: the action the token belongs to
- ``diagnostics``: human-readable trail of the running operation
- ``id``, ``releaseName``, ``vpcConfiguration``: computed fields that must be
  handed back to the driver on every later step

An in-progress step raises ``kopf.TemporaryError`` with the driver's delay
hint, so kopf itself schedules the next poll.
"""

import asyncio
import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import kopf
from pydantic import ValidationError as PydanticValidationError

from helm_release_operator.constants import (
    CRD_GROUP,
    CRD_PLURAL,
    CRD_VERSION,
    PHASE_DELETING,
    PHASE_FAILED,
    PHASE_READY,
    PHASE_RECONCILING,
    RELEASE_FINALIZER,
)
from helm_release_operator.models import (
    Action,
    DesiredSpec,
    OperationStatus,
    ProgressEvent,
    ResumeToken,
)
from helm_release_operator.observability.metrics import metrics
from helm_release_operator.services import ReconciliationDriver
from helm_release_operator.settings import settings

logger = logging.getLogger(__name__)

# Fields the driver fills in and expects back on later steps
COMPUTED_FIELDS = {
    "id": "id",
    "name": "releaseName",
    "vpcConfiguration": "vpcConfiguration",
}

READ_INTERVAL_SECONDS = 300.0


@lru_cache(maxsize=1)
def get_driver() -> ReconciliationDriver:
    """Process-wide driver; it holds clients only, no release state."""
    return ReconciliationDriver(config=settings)


def build_desired_spec(spec: dict[str, Any], status: dict[str, Any]) -> DesiredSpec:
    """
    Merge the resource spec with the computed fields kept in status.

    Raises:
        kopf.PermanentError: If the spec does not validate
    """
    data = dict(spec)
    for alias, status_key in COMPUTED_FIELDS.items():
        if not data.get(alias) and status.get(status_key):
            data[alias] = status[status_key]
    try:
        return DesiredSpec.model_validate(data)
    except PydanticValidationError as e:
        raise kopf.PermanentError(f"Invalid HelmRelease spec: {e}") from e


def load_resume_token(status: dict[str, Any], action: Action) -> ResumeToken | None:
    """
    Return the stored token if it belongs to ``action``.

    A token left behind by a different operation is ignored so that, for
    example, a delete never resumes an interrupted install.
    """
    raw = status.get("resumeToken")
    if not raw or status.get("operation") != action.value:
        return None
    try:
        return ResumeToken.model_validate(dict(raw))
    except PydanticValidationError as e:
        raise kopf.PermanentError(f"Invalid resume token in status: {e}") from e


def load_diagnostics(status: dict[str, Any], action: Action) -> list[str]:
    if status.get("operation") != action.value:
        return []
    return list(status.get("diagnostics") or [])


def apply_event(
    event: ProgressEvent, action: Action, patch: kopf.Patch, name: str, namespace: str
) -> None:
    """Persist the outcome of one step into the resource status."""
    patch.status["operation"] = action.value
    patch.status["diagnostics"] = event.diagnostics
    patch.status["message"] = event.message
    patch.status["lastStepTime"] = datetime.now(UTC).isoformat()

    if event.model is not None:
        computed = event.model.model_dump(by_alias=True, exclude_none=True, mode="json")
        for alias, status_key in COMPUTED_FIELDS.items():
            if alias in computed:
                patch.status[status_key] = computed[alias]

    if event.status == OperationStatus.IN_PROGRESS:
        phase = PHASE_DELETING if action == Action.UNINSTALL_RELEASE else PHASE_RECONCILING
        patch.status["resumeToken"] = event.resume_token.to_dict()
    elif event.status == OperationStatus.SUCCESS:
        phase = PHASE_READY
        patch.status["resumeToken"] = None
        patch.status["operation"] = None
    else:
        phase = PHASE_FAILED
        patch.status["resumeToken"] = (
            event.resume_token.to_dict() if event.resume_token else None
        )

    patch.status["phase"] = phase
    metrics.update_release_phase(namespace, name, phase)


def raise_for_event(event: ProgressEvent, name: str) -> None:
    """Translate a non-terminal or failed outcome into kopf's retry protocol."""
    if event.status == OperationStatus.IN_PROGRESS:
        raise kopf.TemporaryError(
            f"HelmRelease {name}: {event.message}",
            delay=event.callback_delay_seconds,
        )
    if event.status == OperationStatus.FAILED:
        if event.retryable:
            raise kopf.TemporaryError(
                f"HelmRelease {name} failed: {event.message}",
                delay=settings.callback_delay_seconds,
            )
        raise kopf.PermanentError(f"HelmRelease {name} failed: {event.message}")


async def run_step(
    action: Action,
    spec: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    name: str,
    namespace: str,
) -> ProgressEvent:
    desired = build_desired_spec(spec, status)
    token = load_resume_token(status, action)
    diagnostics = load_diagnostics(status, action)

    driver = get_driver()
    event = await asyncio.to_thread(driver.step, desired, token, action, diagnostics)
    apply_event(event, action, patch, name, namespace)
    return event


@kopf.on.create(CRD_PLURAL, group=CRD_GROUP, version=CRD_VERSION)
async def create_helm_release(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    status: dict[str, Any],
    patch: kopf.Patch,
    meta: dict[str, Any],
    **kwargs: Any,
) -> None:
    """
    Install a HelmRelease, one step per invocation.

    Args:
        spec: HelmRelease resource specification
        name: Name of the HelmRelease resource
        namespace: Namespace where the resource exists
        status: Current status of the resource
        patch: Kopf patch object for modifying the resource
        meta: Resource metadata
    """
    logger.info(f"Reconciling creation of HelmRelease {name} in {namespace}")

    current_finalizers = list(meta.get("finalizers", []))
    if RELEASE_FINALIZER not in current_finalizers:
        logger.info(f"Adding finalizer {RELEASE_FINALIZER} to HelmRelease {name}")
        patch.metadata["finalizers"] = [*current_finalizers, RELEASE_FINALIZER]

    event = await run_step(Action.INSTALL_RELEASE, spec, status, patch, name, namespace)
    raise_for_event(event, name)
    logger.info(f"HelmRelease {name} installed")


@kopf.on.update(CRD_PLURAL, group=CRD_GROUP, version=CRD_VERSION, field="spec")
async def update_helm_release(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    status: dict[str, Any],
    patch: kopf.Patch,
    **kwargs: Any,
) -> None:
    """Upgrade a HelmRelease after its spec changed."""
    logger.info(f"Reconciling update of HelmRelease {name} in {namespace}")
    event = await run_step(Action.UPDATE_RELEASE, spec, status, patch, name, namespace)
    raise_for_event(event, name)
    logger.info(f"HelmRelease {name} upgraded")


@kopf.on.delete(CRD_PLURAL, group=CRD_GROUP, version=CRD_VERSION)
async def delete_helm_release(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    status: dict[str, Any],
    patch: kopf.Patch,
    meta: dict[str, Any],
    **kwargs: Any,
) -> None:
    """
    Uninstall a HelmRelease and tear down its bridge, then drop the finalizer.

    A resource that never got a physical identifier was never installed, so
    there is nothing to remove.
    """
    logger.info(f"Starting deletion of HelmRelease {name} in {namespace}")

    current_finalizers = list(meta.get("finalizers", []))
    if RELEASE_FINALIZER not in current_finalizers:
        logger.info(f"Finalizer {RELEASE_FINALIZER} not found, deletion already handled")
        return

    if status.get("id"):
        event = await run_step(
            Action.UNINSTALL_RELEASE, spec, status, patch, name, namespace
        )
        raise_for_event(event, name)
    else:
        logger.info(f"HelmRelease {name} has no physical identifier, skipping uninstall")

    current_finalizers.remove(RELEASE_FINALIZER)
    patch.metadata["finalizers"] = current_finalizers
    metrics.forget_release(namespace, name)
    logger.info(f"Successfully deleted HelmRelease {name}")


@kopf.timer(
    CRD_PLURAL,
    group=CRD_GROUP,
    version=CRD_VERSION,
    interval=READ_INTERVAL_SECONDS,
    initial_delay=READ_INTERVAL_SECONDS,
)
async def refresh_helm_release(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    status: dict[str, Any],
    patch: kopf.Patch,
    **_kwargs: Any,
) -> None:
    """
    Periodically project the live release into status.

    Only Ready releases are read; a failed read is reported in the status
    message without changing the phase.
    """
    if status.get("phase") != PHASE_READY or not status.get("id"):
        return

    desired = build_desired_spec(spec, status)
    driver = get_driver()
    event = await asyncio.to_thread(driver.read, desired)

    patch.status["lastReadTime"] = datetime.now(UTC).isoformat()
    if event.status != OperationStatus.SUCCESS or event.model is None:
        logger.warning(f"Reading HelmRelease {name} failed: {event.message}")
        patch.status["message"] = f"Read failed: {event.message}"
        return

    patch.status["message"] = ""
    patch.status["chart"] = event.model.chart
    patch.status["chartVersion"] = event.model.version
    patch.status["releaseNamespace"] = event.model.namespace
    patch.status["resources"] = event.model.resources or {}
