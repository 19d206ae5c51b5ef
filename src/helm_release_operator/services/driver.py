"""
Reconciliation driver.

The driver performs one bounded unit of work per invocation and answers with
a ProgressEvent: Complete, InProgress (poll again after a delay, carrying a
resume token) or Failed. It keeps no state between invocations; the resume
token and the diagnostics trail travel through the caller.

Stage tables:

    install / update   Init, LambdaStabilize -> perform action -> ReleaseStabilize
                       ReleaseStabilize      -> (converged) Complete
    uninstall          Init, LambdaStabilize, UninstallRelease, ReleaseStabilize
                                             -> uninstall -> bridge teardown -> Complete

Any other (action, stage) pair fails the step.
"""

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from kubernetes.client.rest import ApiException

from helm_release_operator.constants import (
    ERROR_BRIDGE_NOT_STABLE,
    ERROR_NOT_IMPLEMENTED,
    ERROR_RELEASE_FAILED,
    ERROR_UNHANDLED_STAGE,
)
from helm_release_operator.errors import (
    OperatorError,
    ReconciliationTimeoutError,
    RemoteOperationError,
    is_release_not_found,
)
from helm_release_operator.models import (
    Action,
    BridgeDescriptor,
    DesiredSpec,
    ProgressEvent,
    ReleaseData,
    ReleaseStatus,
    ResumeToken,
    Stage,
)
from helm_release_operator.observability.logging import OperatorLogger
from helm_release_operator.observability.metrics import MetricsCollector, metrics
from helm_release_operator.services.bridge_manager import BridgeManager
from helm_release_operator.services.executors import (
    BridgedExecutor,
    DirectExecutor,
    Executor,
)
from helm_release_operator.services.release_manager import (
    ReleaseManager,
    build_release_inputs,
)
from helm_release_operator.settings import Settings, settings
from helm_release_operator.utils import aws
from helm_release_operator.utils.charts import get_chart_details, get_release_name
from helm_release_operator.utils.diagnostics import Diagnostics
from helm_release_operator.utils.identity import ReleaseID, decode_id, generate_id
from helm_release_operator.utils.kubernetes import resolve_kubeconfig, write_kubeconfig

PENDING_STATUSES = (ReleaseStatus.PENDING_INSTALL, ReleaseStatus.PENDING_UPGRADE)

DirectExecutorFactory = Callable[[bytes, str, Diagnostics], Executor]


@dataclass
class Target:
    """How this invocation reaches the cluster."""

    executor: Executor
    descriptor: BridgeDescriptor | None = None


class ReconciliationDriver:
    """
    Top-level dispatcher for managed releases.

    Args:
        config: Operator settings
        clients: AWS client factory
        bridge: Bridge manager override
        direct_executor_factory: Builds the in-process executor from
            kubeconfig bytes, a release key and the diagnostics trail
        collector: Metrics collector
        now: Clock used for the timeout check
    """

    def __init__(
        self,
        config: Settings = settings,
        clients: aws.AWSClients | None = None,
        bridge: BridgeManager | None = None,
        direct_executor_factory: DirectExecutorFactory | None = None,
        collector: MetricsCollector = metrics,
        now: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.clients = clients or aws.AWSClients(region=config.aws_region or None)
        self.bridge = bridge or BridgeManager(self.clients.lambda_(), config)
        self.direct_executor_factory = (
            direct_executor_factory or self._default_direct_executor
        )
        self.metrics = collector
        self.now = now or (lambda: datetime.now(UTC))
        self.logger = OperatorLogger(__name__, "driver")
        self._stage_table: dict[tuple[Action, Stage], Callable[..., ProgressEvent]] = {
            (Action.INSTALL_RELEASE, Stage.INIT): self._initialize,
            (Action.INSTALL_RELEASE, Stage.BRIDGE_STABILIZE): self._initialize,
            (Action.INSTALL_RELEASE, Stage.RELEASE_STABILIZE): self._check_release,
            (Action.UPDATE_RELEASE, Stage.INIT): self._initialize,
            (Action.UPDATE_RELEASE, Stage.BRIDGE_STABILIZE): self._initialize,
            (Action.UPDATE_RELEASE, Stage.RELEASE_STABILIZE): self._check_release,
            (Action.UNINSTALL_RELEASE, Stage.INIT): self._uninstall,
            (Action.UNINSTALL_RELEASE, Stage.BRIDGE_STABILIZE): self._uninstall,
            (Action.UNINSTALL_RELEASE, Stage.UNINSTALL_RELEASE): self._uninstall,
            (Action.UNINSTALL_RELEASE, Stage.RELEASE_STABILIZE): self._uninstall,
        }

    # Public surface

    def create(
        self,
        spec: DesiredSpec,
        token: ResumeToken | None = None,
        diagnostics: list[str] | None = None,
    ) -> ProgressEvent:
        return self.step(spec, token, Action.INSTALL_RELEASE, diagnostics)

    def update(
        self,
        spec: DesiredSpec,
        token: ResumeToken | None = None,
        diagnostics: list[str] | None = None,
    ) -> ProgressEvent:
        return self.step(spec, token, Action.UPDATE_RELEASE, diagnostics)

    def delete(
        self,
        spec: DesiredSpec,
        token: ResumeToken | None = None,
        diagnostics: list[str] | None = None,
    ) -> ProgressEvent:
        return self.step(spec, token, Action.UNINSTALL_RELEASE, diagnostics)

    def list_releases(
        self,
        spec: DesiredSpec,
        token: ResumeToken | None = None,
        diagnostics: list[str] | None = None,
    ) -> ProgressEvent:
        return ProgressEvent.failed(
            spec, ERROR_NOT_IMPLEMENTED.format("List"), diagnostics=diagnostics
        )

    def read(
        self, spec: DesiredSpec, diagnostics: list[str] | None = None
    ) -> ProgressEvent:
        """
        Report the current state of a release.

        The VPC placement derived for a private cluster is used for this call
        only and is not written back into the returned model.
        """
        trail = Diagnostics(diagnostics)
        model = spec.model_copy(deep=True)
        self.logger.log_step_start("Read", Stage.NO_STAGE.value, model.name, model.namespace)
        try:
            release_id = decode_id(model.id)
            target = self._target(model.model_copy(deep=True), release_id, trail)
            if target.descriptor is not None and not self.bridge.stabilize(
                target.descriptor
            ):
                return ProgressEvent.failed(
                    model, ERROR_BRIDGE_NOT_STABLE, diagnostics=trail.as_list()
                )
            release = ReleaseData(name=release_id.name, namespace=release_id.namespace)
            status = target.executor.status(release)
            model.name = release_id.name
            model.namespace = release_id.namespace
            model.chart = status.chart_name
            model.version = status.chart_version
            release = ReleaseData(
                name=release_id.name,
                namespace=status.namespace or release_id.namespace,
                chart=status.chart,
                manifest=status.manifest,
            )
            model.resources = target.executor.resources(release)
        except Exception as e:  # noqa: BLE001 - translation boundary
            return self._failure(model, None, "Read", Stage.NO_STAGE, e, trail)
        return ProgressEvent.complete(model, trail.as_list())

    def step(
        self,
        spec: DesiredSpec,
        token: ResumeToken | None,
        action: Action,
        diagnostics: list[str] | None = None,
    ) -> ProgressEvent:
        """
        Run one reconciliation step.

        Never raises: every failure is translated into a Failed event.
        """
        trail = Diagnostics(diagnostics)
        model = spec.model_copy(deep=True)
        if token is None and (action != Action.INSTALL_RELEASE or model.id):
            # Issued here so a failing first poll still hands back its start time
            token = ResumeToken.start(model.name)
        stage = token.stage if token is not None else Stage.INIT
        start_time = time.monotonic()
        self.logger.log_step_start(action.value, stage.value, model.name, model.namespace)

        with self.metrics.track_step(action.value):
            try:
                event = self._step(model, token, action, trail)
            except Exception as e:  # noqa: BLE001 - translation boundary
                event = self._failure(model, token, action.value, stage, e, trail)

        self.metrics.record_step(action.value, event.next_stage.value, event.status.value)
        self.logger.log_step_result(
            action.value,
            event.next_stage.value,
            event.status.value,
            model.name,
            time.monotonic() - start_time,
        )
        return event

    # Step internals

    def _step(
        self,
        model: DesiredSpec,
        token: ResumeToken | None,
        action: Action,
        trail: Diagnostics,
    ) -> ProgressEvent:
        if token is None:
            # First install step hands the identifier back before touching anything
            name = self._release_name(model, None)
            model.name = name
            model.id = generate_id(
                model, name, self.clients.region or "", model.release_namespace
            )
            return self._in_progress(model, ResumeToken.start(name), trail)

        self._check_timeout(model, token, trail)

        handler = self._stage_table.get((action, token.stage))
        if handler is None:
            return ProgressEvent.failed(
                model,
                ERROR_UNHANDLED_STAGE.format(token.stage.value),
                diagnostics=trail.as_list(),
            )
        return handler(model, token, action, trail)

    def _check_timeout(
        self, model: DesiredSpec, token: ResumeToken, trail: Diagnostics
    ) -> None:
        if token.stage == Stage.COMPLETE:
            return
        budget = (model.time_out or self.config.default_timeout_minutes) * 60
        elapsed = token.elapsed_seconds(self.now())
        if elapsed >= budget:
            if not trail:
                trail.add(f"Timed out at stage {token.stage.value}")
            raise ReconciliationTimeoutError(trail.as_list())

    def _release_name(self, model: DesiredSpec, token: ResumeToken | None) -> str:
        name = model.name or (token.name if token is not None else None)
        if name:
            return name
        details = get_chart_details(model, "")
        return get_release_name(None, details.chart_name)

    def _in_progress(
        self, model: DesiredSpec, token: ResumeToken, trail: Diagnostics
    ) -> ProgressEvent:
        return ProgressEvent.in_progress(
            model, token, self.config.callback_delay_seconds, trail.as_list()
        )

    def _advance(
        self,
        model: DesiredSpec,
        token: ResumeToken,
        stage: Stage,
        trail: Diagnostics,
    ) -> ProgressEvent:
        if stage == Stage.COMPLETE:
            return ProgressEvent.complete(model, trail.as_list())
        return self._in_progress(model, token.advance(stage, model.name), trail)

    def _failure(
        self,
        model: DesiredSpec,
        token: ResumeToken | None,
        action: str,
        stage: Stage,
        error: Exception,
        trail: Diagnostics,
    ) -> ProgressEvent:
        if isinstance(error, ApiException):
            error = RemoteOperationError(
                "kubernetes",
                f"{error.status} {error.reason}",
                retryable=error.status is not None and error.status >= 500,
                cause=error,
            )
        elif not isinstance(error, OperatorError):
            error = OperatorError(
                f"Unexpected error during reconciliation: {error}",
                category="internal",
                cause=error,
            )

        component = getattr(error, "service", None) or error.category
        self.logger.log_step_error(action, stage.value, error, component=component)
        self.metrics.record_error(action, error)

        if isinstance(error, ReconciliationTimeoutError):
            # Timeout always terminates the operation
            return ProgressEvent.failed(model, str(error), diagnostics=error.diagnostics)

        trail.add(str(error))
        return ProgressEvent.failed(
            model,
            str(error),
            retryable=error.retryable,
            resume_token=token if error.retryable else None,
            diagnostics=trail.as_list(),
        )

    # Target access

    def _kubeconfig_key(self, model: DesiredSpec) -> str:
        return hashlib.sha256((model.id or "").encode("utf-8")).hexdigest()[:16]

    def _default_direct_executor(
        self, kubeconfig: bytes, key: str, trail: Diagnostics
    ) -> Executor:
        base = Path(self.config.kubeconfig_path)
        path = write_kubeconfig(base.with_name(f"{base.name}-{key}"), kubeconfig)
        manager = ReleaseManager(self.config, self.clients, str(path))
        return DirectExecutor(manager, trail)

    def _bridge_role(self, model: DesiredSpec) -> str:
        if model.role_arn:
            return model.role_arn
        return aws.get_current_role_arn(self.clients.sts())

    def _target(
        self, model: DesiredSpec, release_id: ReleaseID, trail: Diagnostics
    ) -> Target:
        """
        Pick the executor for this invocation.

        A private cluster gets its VPC placement recorded on ``model`` and is
        reached through the bridge; anything else is reached directly.
        """
        vpc = aws.detect_vpc_configuration(self.clients.eks(), self.clients.ec2(), model)
        kubeconfig = resolve_kubeconfig(release_id, self.clients)
        if vpc is None:
            executor = self.direct_executor_factory(
                kubeconfig, self._kubeconfig_key(model), trail
            )
            return Target(executor=executor)

        model.vpc_configuration = vpc
        descriptor = self.bridge.describe(model.locator, vpc, self._bridge_role(model))
        executor = BridgedExecutor(self.bridge, descriptor, kubeconfig, model, trail)
        return Target(executor=executor, descriptor=descriptor)

    def _bridge_ready(self, target: Target, trail: Diagnostics) -> bool:
        if target.descriptor is None or self.bridge.stabilize(target.descriptor):
            return True
        trail.add(f"Waiting for vpc connector {target.descriptor.name} to become active")
        return False

    # Stage handlers

    def _initialize(
        self,
        model: DesiredSpec,
        token: ResumeToken,
        action: Action,
        trail: Diagnostics,
    ) -> ProgressEvent:
        release_id = decode_id(model.id)
        model.name = release_id.name
        target = self._target(model, release_id, trail)
        if not self._bridge_ready(target, trail):
            return self._advance(model, token, Stage.BRIDGE_STABILIZE, trail)

        inputs = build_release_inputs(
            model, release_id.name, release_id.namespace, self.clients, self.config
        )
        if action == Action.INSTALL_RELEASE:
            target.executor.install(inputs)
        else:
            target.executor.upgrade(inputs)
        return self._advance(model, token, Stage.RELEASE_STABILIZE, trail)

    def _check_release(
        self,
        model: DesiredSpec,
        token: ResumeToken,
        action: Action,
        trail: Diagnostics,
        success_stage: Stage = Stage.COMPLETE,
    ) -> ProgressEvent:
        release_id = decode_id(model.id)
        model.name = release_id.name
        target = self._target(model, release_id, trail)
        if not self._bridge_ready(target, trail):
            return self._advance(model, token, Stage.RELEASE_STABILIZE, trail)

        status = target.executor.status(
            ReleaseData(name=release_id.name, namespace=release_id.namespace)
        )
        if status.status == ReleaseStatus.DEPLOYED:
            release = ReleaseData(
                name=release_id.name,
                namespace=status.namespace or release_id.namespace,
                chart=status.chart,
                manifest=status.manifest,
            )
            if target.executor.pending(release):
                trail.add(f"Release {release.name} has pending resources")
                return self._advance(model, token, Stage.RELEASE_STABILIZE, trail)
            self.logger.info(f"Release {release.name} has no pending resources")
            return self._advance(model, token, success_stage, trail)

        if status.status in PENDING_STATUSES:
            trail.add(f"Release {release_id.name} is {status.status.value}")
            return self._advance(model, token, Stage.RELEASE_STABILIZE, trail)

        trail.add(f"Release {release_id.name} is {status.status.value}")
        return ProgressEvent.failed(
            model, ERROR_RELEASE_FAILED, diagnostics=trail.as_list()
        )

    def _uninstall(
        self,
        model: DesiredSpec,
        token: ResumeToken,
        action: Action,
        trail: Diagnostics,
    ) -> ProgressEvent:
        release_id = decode_id(model.id)
        model.name = release_id.name
        target = self._target(model, release_id, trail)
        if not self._bridge_ready(target, trail):
            return self._advance(model, token, Stage.BRIDGE_STABILIZE, trail)

        try:
            target.executor.uninstall(
                ReleaseData(name=release_id.name, namespace=release_id.namespace)
            )
        except OperatorError as e:
            if not is_release_not_found(e):
                raise
            self.logger.warning(
                f"Release {release_id.name} not found, proceeding with vpc connector cleanup",
                error_type=type(e).__name__,
            )
            trail.add(str(e))

        if target.descriptor is not None:
            self.bridge.delete(target.descriptor.name)
        return self._advance(model, token, Stage.COMPLETE, trail)
