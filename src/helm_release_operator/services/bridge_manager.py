"""
Bridge manager: lifecycle of the relay function for private clusters.

A cluster whose API endpoint is not reachable from the operator is served by
a function placed inside its VPC. The function runs this package's relay
handler and executes release operations on the operator's behalf.

Functions are named deterministically from the cluster locator and network
placement, so every release against the same private cluster shares one
function and repeated reconciliation never creates duplicates.
"""

import base64
import hashlib
import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from helm_release_operator.constants import BRIDGE_FUNCTION_PREFIX
from helm_release_operator.errors import (
    BridgeInvocationError,
    ConfigurationError,
    RemoteOperationError,
)
from helm_release_operator.models import (
    BridgeDescriptor,
    BridgeRequest,
    BridgeResponse,
    BridgeState,
    VPCConfiguration,
)
from helm_release_operator.observability.metrics import MetricsCollector, metrics
from helm_release_operator.settings import Settings
from helm_release_operator.utils.aws import aws_error, error_code

logger = logging.getLogger(__name__)


def function_name_suffix(locator: str, vpc: VPCConfiguration) -> str:
    """Hash of the locator and the sorted security group and subnet IDs."""
    material = "-".join(
        [
            locator,
            "-".join(sorted(vpc.security_group_ids)),
            "-".join(sorted(vpc.subnet_ids)),
        ]
    )
    return hashlib.md5(material.encode("utf-8")).hexdigest()  # noqa: S324


def function_name(locator: str, vpc: VPCConfiguration) -> str:
    return BRIDGE_FUNCTION_PREFIX + function_name_suffix(locator, vpc)


class BridgeManager:
    """
    Provision, refresh, invoke and tear down bridge functions.

    Args:
        lambda_client: boto3 Lambda client
        config: Operator settings (package path, runtime, stabilization bound)
        sleep: Sleep function used between state polls
        collector: Metrics collector
    """

    def __init__(
        self,
        lambda_client: Any,
        config: Settings,
        sleep: Callable[[float], None] = time.sleep,
        collector: MetricsCollector = metrics,
    ):
        self.lambda_client = lambda_client
        self.config = config
        self.sleep = sleep
        self.metrics = collector
        self._package: bytes | None = None

    @property
    def package(self) -> bytes:
        """Deployment package of the relay function."""
        if self._package is None:
            path = Path(self.config.bridge_package_path)
            try:
                self._package = path.read_bytes()
            except OSError as e:
                raise ConfigurationError(
                    f"bridge package {path} cannot be read: {e}",
                    user_action="Set BRIDGE_PACKAGE_PATH to the relay zip file",
                ) from e
        return self._package

    @property
    def package_sha256(self) -> str:
        """Fingerprint in the format the Lambda API reports as CodeSha256."""
        return base64.b64encode(hashlib.sha256(self.package).digest()).decode("ascii")

    def describe(
        self, locator: str, vpc: VPCConfiguration, role_arn: str | None
    ) -> BridgeDescriptor:
        suffix = function_name_suffix(locator, vpc)
        return BridgeDescriptor(
            name=BRIDGE_FUNCTION_PREFIX + suffix,
            name_suffix=suffix,
            role_arn=role_arn,
            vpc_config=vpc,
        )

    # State

    def get_function(self, name: str) -> dict[str, Any] | None:
        try:
            return self.lambda_client.get_function(FunctionName=name)
        except ClientError as e:
            if error_code(e) == "ResourceNotFoundException":
                return None
            raise aws_error(e) from e
        except BotoCoreError as e:
            raise aws_error(e) from e

    def get_state(self, name: str) -> BridgeState:
        function = self.get_function(name)
        if function is None:
            return BridgeState.NOT_FOUND
        state = function["Configuration"].get("State", BridgeState.PENDING.value)
        try:
            return BridgeState(state)
        except ValueError as e:
            raise ConfigurationError(f"{name} reported unknown state {state}") from e

    def _wait_active(self, name: str, interval: float) -> bool:
        for attempt in range(self.config.bridge_stabilize_attempts):
            if self.get_state(name) == BridgeState.ACTIVE:
                return True
            logger.debug(
                f"Bridge {name} not active yet (attempt {attempt + 1})",
                extra={"component": "bridge", "bridge_name": name},
            )
            self.sleep(interval)
        return False

    def stabilize(self, descriptor: BridgeDescriptor) -> bool:
        """
        Drive the bridge towards Active within one bounded step.

        Returns:
            True once the bridge is Active and up to date, False if it has not
            settled within the configured number of polls

        Raises:
            ConfigurationError: If the function is in a state it cannot leave
            RemoteOperationError: On Lambda API failures
        """
        name = descriptor.name
        state = self.get_state(name)
        logger.info(
            f"Bridge {name} is {state.value}",
            extra={"component": "bridge", "bridge_name": name},
        )

        if state == BridgeState.NOT_FOUND:
            self.create(descriptor)
            return self._wait_active(name, self.config.bridge_create_poll_interval)
        if state == BridgeState.ACTIVE:
            return self.update(descriptor)
        if state == BridgeState.PENDING:
            return self._wait_active(name, self.config.bridge_pending_poll_interval)
        raise ConfigurationError(f"{name} not in desired state: {state.value}")

    # Lifecycle

    def _vpc_config(self, descriptor: BridgeDescriptor) -> dict[str, list[str]]:
        return {
            "SubnetIds": descriptor.vpc_config.subnet_ids,
            "SecurityGroupIds": descriptor.vpc_config.security_group_ids,
        }

    def _environment(self) -> dict[str, dict[str, str]]:
        """Settings the relay runtime inherits from the operator."""
        variables = {
            "LOG_LEVEL": self.config.log_level,
            "JSON_LOGS": str(self.config.json_logs).lower(),
            "HELM_DEPENDENCY_UPDATE": str(self.config.helm_dependency_update).lower(),
        }
        return {"Variables": variables}

    def create(self, descriptor: BridgeDescriptor) -> None:
        """Create the function; an existing function is not an error."""
        logger.info(
            f"Creating bridge {descriptor.name}",
            extra={"component": "bridge", "bridge_name": descriptor.name},
        )
        try:
            self.lambda_client.create_function(
                FunctionName=descriptor.name,
                Runtime=self.config.bridge_runtime,
                Role=descriptor.role_arn,
                Handler=self.config.bridge_handler,
                Code={"ZipFile": self.package},
                Description="Relay for Helm release operations in a private VPC",
                Timeout=self.config.bridge_timeout,
                MemorySize=self.config.bridge_memory_size,
                VpcConfig=self._vpc_config(descriptor),
                Environment=self._environment(),
            )
        except ClientError as e:
            if error_code(e) == "ResourceConflictException":
                logger.info(f"Bridge {descriptor.name} already exists")
                return
            raise aws_error(e) from e
        except BotoCoreError as e:
            raise aws_error(e) from e
        self.metrics.record_bridge_operation("create")

    def update(self, descriptor: BridgeDescriptor) -> bool:
        """
        Refresh code (when the fingerprint drifted) and configuration.

        Returns:
            False if Lambda is still applying an earlier update
        """
        name = descriptor.name
        try:
            function = self.get_function(name) or {}
            deployed_sha = function.get("Configuration", {}).get("CodeSha256")
            if deployed_sha != self.package_sha256:
                logger.info(
                    f"Updating bridge {name} code",
                    extra={"component": "bridge", "bridge_name": name},
                )
                self.lambda_client.update_function_code(
                    FunctionName=name, ZipFile=self.package
                )
                self.metrics.record_bridge_operation("update_code")
            self.lambda_client.update_function_configuration(
                FunctionName=name,
                Role=descriptor.role_arn,
                Handler=self.config.bridge_handler,
                Runtime=self.config.bridge_runtime,
                Timeout=self.config.bridge_timeout,
                MemorySize=self.config.bridge_memory_size,
                VpcConfig=self._vpc_config(descriptor),
                Environment=self._environment(),
            )
        except ClientError as e:
            if error_code(e) == "ResourceConflictException":
                logger.info(f"Bridge {name} update in progress")
                return False
            raise aws_error(e) from e
        except BotoCoreError as e:
            raise aws_error(e) from e
        self.metrics.record_bridge_operation("update_configuration")
        return True

    def delete(self, name: str) -> None:
        """Delete the function; a missing function counts as deleted."""
        logger.info(
            f"Deleting bridge {name}",
            extra={"component": "bridge", "bridge_name": name},
        )
        try:
            self.lambda_client.delete_function(FunctionName=name)
        except ClientError as e:
            if error_code(e) == "ResourceNotFoundException":
                logger.info(f"Bridge {name} already deleted")
                return
            raise aws_error(e) from e
        except BotoCoreError as e:
            raise aws_error(e) from e
        self.metrics.record_bridge_operation("delete")

    # Invocation

    def invoke(self, name: str, request: BridgeRequest) -> BridgeResponse:
        """
        Run one action through the bridge.

        Raises:
            BridgeInvocationError: If the relay reported an execution error
            RemoteOperationError: If the invocation itself failed
        """
        action = request.action.value
        logger.info(
            f"Invoking bridge {name} for {action}",
            extra={"component": "bridge", "bridge_name": name, "action": action},
        )
        try:
            result = self.lambda_client.invoke(
                FunctionName=name,
                InvocationType="RequestResponse",
                Payload=json.dumps(request.to_payload()).encode("utf-8"),
            )
            payload = result["Payload"].read()
        except (BotoCoreError, ClientError) as e:
            self.metrics.record_bridge_invocation(action, success=False)
            raise aws_error(e) from e

        if result.get("FunctionError"):
            self.metrics.record_bridge_invocation(action, success=False)
            raise unwrap_function_error(name, payload)

        self.metrics.record_bridge_invocation(action, success=True)
        try:
            return BridgeResponse.model_validate(json.loads(payload or b"{}"))
        except ValueError as e:
            raise RemoteOperationError(
                "bridge", f"unreadable response from {name}: {e}", cause=e
            ) from e


def unwrap_function_error(name: str, payload: bytes) -> BridgeInvocationError:
    """Turn a Lambda FunctionError payload into a local error."""
    try:
        details = json.loads(payload)
        error = BridgeInvocationError(
            name, details["errorType"], details["errorMessage"]
        )
    except (ValueError, KeyError, TypeError):
        error = BridgeInvocationError(
            name, "FunctionError", payload.decode("utf-8", errors="replace")
        )
    logger.error(
        f"Bridge {name} reported {error}",
        extra={"component": "bridge", "bridge_name": name, "error_type": error.error_type},
    )
    return error
