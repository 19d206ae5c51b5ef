"""
Relay entrypoint for the bridge function.

The operator invokes the function synchronously with a BridgeRequest
envelope. The handler writes the shipped kubeconfig to the scratch path,
runs the requested action and answers with a BridgeResponse. Errors are not
caught here: the function runtime reports them to the caller as a
FunctionError carrying the exception type and message.
"""

from typing import Any

from helm_release_operator.models import (
    Action,
    BridgeRequest,
    BridgeResponse,
    ReleaseData,
    ReleaseInputs,
)
from helm_release_operator.observability.logging import (
    OperatorLogger,
    setup_structured_logging,
)
from helm_release_operator.services.executors import DirectExecutor
from helm_release_operator.services.readiness import ERROR_NO_MANIFEST
from helm_release_operator.services.release_manager import ReleaseManager
from helm_release_operator.settings import Settings
from helm_release_operator.utils.aws import AWSClients
from helm_release_operator.utils.diagnostics import Diagnostics
from helm_release_operator.utils.identity import decode_id
from helm_release_operator.utils.kubernetes import write_kubeconfig

logger = OperatorLogger(__name__, "relay")


class RelayError(Exception):
    """The request envelope cannot be served."""


def _require_inputs(request: BridgeRequest) -> ReleaseInputs:
    if request.inputs is None:
        raise RelayError(f"{request.action.value} requires release inputs")
    return request.inputs


def _require_release(request: BridgeRequest, manifest: bool = False) -> ReleaseData:
    if request.release_data is None:
        raise RelayError(f"{request.action.value} requires release data")
    if manifest and not request.release_data.manifest:
        raise RelayError(ERROR_NO_MANIFEST)
    return request.release_data


def handle(request: BridgeRequest, executor: DirectExecutor) -> BridgeResponse:
    """Run one relay action against the executor."""
    response = BridgeResponse()
    action = request.action

    if action == Action.INSTALL_RELEASE:
        executor.install(_require_inputs(request))
    elif action == Action.UPDATE_RELEASE:
        executor.upgrade(_require_inputs(request))
    elif action == Action.CHECK_RELEASE:
        response.status_data = executor.status(_require_release(request))
    elif action == Action.GET_PENDING:
        response.pending_resources = executor.pending(
            _require_release(request, manifest=True)
        )
    elif action == Action.GET_RESOURCES:
        response.resources = executor.resources(
            _require_release(request, manifest=True)
        )
    elif action == Action.UNINSTALL_RELEASE:
        executor.uninstall(_require_release(request))
    elif action == Action.LIST_RELEASE:
        response.list_data = executor.list_releases(_require_inputs(request))
    else:
        raise RelayError(f"Unhandled action {action.value}")

    return response


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Function runtime entrypoint.

    Args:
        event: BridgeRequest payload
        context: Function runtime context (unused)

    Returns:
        BridgeResponse payload
    """
    config = Settings()
    setup_structured_logging(
        log_level=config.log_level.upper(),
        enable_json_formatting=config.json_logs,
        correlation_id_enabled=config.correlation_ids,
    )

    request = BridgeRequest.model_validate(event)
    release_id = decode_id(request.model.id)
    logger.log_step_start(
        request.action.value, "Relay", release_id.name, release_id.namespace
    )

    if request.kubeconfig is None:
        raise RelayError("kubeconfig not provided in the request")
    kubeconfig_path = write_kubeconfig(config.kubeconfig_path, request.kubeconfig)

    diagnostics = Diagnostics()
    manager = ReleaseManager(
        config, AWSClients(region=release_id.region or None), str(kubeconfig_path)
    )
    response = handle(request, DirectExecutor(manager, diagnostics))
    response.diagnostics = diagnostics.as_list()

    logger.info(f"Relay finished {request.action.value}", action=request.action.value)
    return response.to_payload()
