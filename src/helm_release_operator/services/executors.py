"""
Executors: the operation set the driver runs against a target cluster.

Two implementations share one interface. DirectExecutor talks to the cluster
from this process; BridgedExecutor ships each operation to the bridge
function inside the cluster's VPC. The driver picks one per invocation and
uses it uniformly afterwards.
"""

import logging
from typing import Any, Protocol

from helm_release_operator.errors import RemoteOperationError
from helm_release_operator.models import (
    Action,
    BridgeDescriptor,
    BridgeRequest,
    BridgeResponse,
    DesiredSpec,
    HelmListData,
    HelmStatusData,
    ReleaseData,
    ReleaseInputs,
)
from helm_release_operator.services.bridge_manager import BridgeManager
from helm_release_operator.services.release_manager import ReleaseManager
from helm_release_operator.utils.diagnostics import Diagnostics

logger = logging.getLogger(__name__)


class Executor(Protocol):
    def install(self, inputs: ReleaseInputs) -> None: ...

    def upgrade(self, inputs: ReleaseInputs) -> None: ...

    def uninstall(self, release: ReleaseData) -> None: ...

    def status(self, release: ReleaseData) -> HelmStatusData: ...

    def list_releases(self, inputs: ReleaseInputs) -> list[HelmListData]: ...

    def pending(self, release: ReleaseData) -> bool: ...

    def resources(self, release: ReleaseData) -> dict[str, Any]: ...


class DirectExecutor:
    """Run operations in-process through a ReleaseManager."""

    def __init__(self, manager: ReleaseManager, diagnostics: Diagnostics):
        self.manager = manager
        self.diagnostics = diagnostics

    def install(self, inputs: ReleaseInputs) -> None:
        self.manager.install(inputs)

    def upgrade(self, inputs: ReleaseInputs) -> None:
        self.manager.upgrade(inputs)

    def uninstall(self, release: ReleaseData) -> None:
        if not self.manager.uninstall(release.name, release.namespace):
            self.diagnostics.add(
                f"release: not found ({release.name}), nothing to uninstall"
            )

    def status(self, release: ReleaseData) -> HelmStatusData:
        return self.manager.status(release.name, release.namespace)

    def list_releases(self, inputs: ReleaseInputs) -> list[HelmListData]:
        return self.manager.list_releases(
            inputs.config.namespace,
            inputs.chart_details.chart_name,
            inputs.chart_details.chart_version,
        )

    def pending(self, release: ReleaseData) -> bool:
        return self.manager.inspector().is_pending(
            release.namespace, release.manifest, self.diagnostics
        )

    def resources(self, release: ReleaseData) -> dict[str, Any]:
        return self.manager.inspector().resources(release.namespace, release.manifest)


class BridgedExecutor:
    """
    Run operations through the bridge function.

    Every call sends the target kubeconfig with the request; diagnostics the
    relay returns are merged into the local trail.
    """

    def __init__(
        self,
        bridge: BridgeManager,
        descriptor: BridgeDescriptor,
        kubeconfig: bytes,
        model: DesiredSpec,
        diagnostics: Diagnostics,
    ):
        self.bridge = bridge
        self.descriptor = descriptor
        self.kubeconfig = kubeconfig
        self.model = model
        self.diagnostics = diagnostics

    def _call(
        self,
        action: Action,
        inputs: ReleaseInputs | None = None,
        release: ReleaseData | None = None,
    ) -> BridgeResponse:
        request = BridgeRequest(
            action=action,
            kubeconfig=self.kubeconfig,
            inputs=inputs,
            model=self.model,
            release_data=release,
        )
        logger.debug(f"Relaying {action.value} to {self.descriptor.name}")
        response = self.bridge.invoke(self.descriptor.name, request)
        self.diagnostics.extend(response.diagnostics)
        return response

    def install(self, inputs: ReleaseInputs) -> None:
        self._call(Action.INSTALL_RELEASE, inputs=inputs)

    def upgrade(self, inputs: ReleaseInputs) -> None:
        self._call(Action.UPDATE_RELEASE, inputs=inputs)

    def uninstall(self, release: ReleaseData) -> None:
        self._call(Action.UNINSTALL_RELEASE, release=release)

    def status(self, release: ReleaseData) -> HelmStatusData:
        response = self._call(Action.CHECK_RELEASE, release=release)
        if response.status_data is None:
            raise RemoteOperationError(
                "bridge", f"no status returned for release {release.name}"
            )
        return response.status_data

    def list_releases(self, inputs: ReleaseInputs) -> list[HelmListData]:
        return self._call(Action.LIST_RELEASE, inputs=inputs).list_data or []

    def pending(self, release: ReleaseData) -> bool:
        response = self._call(Action.GET_PENDING, release=release)
        # A missing answer is not proof of readiness
        return True if response.pending_resources is None else response.pending_resources

    def resources(self, release: ReleaseData) -> dict[str, Any]:
        return self._call(Action.GET_RESOURCES, release=release).resources or {}
