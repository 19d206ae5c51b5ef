"""
Unit tests for the BridgeManager.
"""

import base64
import hashlib
import io
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from helm_release_operator.errors import (
    BridgeInvocationError,
    ConfigurationError,
    RemoteOperationError,
)
from helm_release_operator.models import (
    Action,
    BridgeRequest,
    BridgeState,
    DesiredSpec,
    ReleaseStatus,
    VPCConfiguration,
)
from helm_release_operator.services.bridge_manager import (
    BridgeManager,
    function_name,
    function_name_suffix,
)

PACKAGE = b"PK\x03\x04relay"
VPC = VPCConfiguration(subnet_ids=["subnet-b", "subnet-a"], security_group_ids=["sg-2", "sg-1"])


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "Op")


def _function(state="Active", sha=None):
    return {"Configuration": {"State": state, "CodeSha256": sha}}


@pytest.fixture
def lambda_client():
    return MagicMock()


@pytest.fixture
def bridge(operator_settings, lambda_client, tmp_path):
    (tmp_path / "bridge.zip").write_bytes(PACKAGE)
    return BridgeManager(
        lambda_client, operator_settings, sleep=MagicMock(), collector=MagicMock()
    )


@pytest.fixture
def descriptor(bridge):
    return bridge.describe("prod-eks", VPC, "arn:aws:iam::1:role/Op")


class TestNaming:
    """Tests for deterministic function naming."""

    def test_suffix_ignores_ordering(self):
        shuffled = VPCConfiguration(
            subnet_ids=["subnet-a", "subnet-b"], security_group_ids=["sg-1", "sg-2"]
        )
        assert function_name_suffix("prod-eks", VPC) == function_name_suffix(
            "prod-eks", shuffled
        )

    def test_suffix_is_md5_of_sorted_placement(self):
        expected = hashlib.md5(b"prod-eks-sg-1-sg-2-subnet-a-subnet-b").hexdigest()
        assert function_name_suffix("prod-eks", VPC) == expected
        assert function_name("prod-eks", VPC) == f"helm-provider-vpc-connector-{expected}"

    def test_different_clusters_differ(self):
        assert function_name("a", VPC) != function_name("b", VPC)

    def test_descriptor(self, descriptor):
        assert descriptor.name == function_name("prod-eks", VPC)
        assert descriptor.vpc_config == VPC

    def test_package_fingerprint(self, bridge):
        assert bridge.package_sha256 == base64.b64encode(
            hashlib.sha256(PACKAGE).digest()
        ).decode()

    def test_describe_does_not_read_package(self, operator_settings, lambda_client):
        operator_settings.bridge_package_path = "/nonexistent/bridge.zip"
        bridge = BridgeManager(lambda_client, operator_settings)
        descriptor = bridge.describe("prod-eks", VPC, None)
        assert descriptor.name == function_name("prod-eks", VPC)

    def test_missing_package_fails_creation(self, operator_settings, lambda_client):
        operator_settings.bridge_package_path = "/nonexistent/bridge.zip"
        bridge = BridgeManager(lambda_client, operator_settings)
        descriptor = bridge.describe("prod-eks", VPC, None)
        with pytest.raises(ConfigurationError, match="BRIDGE_PACKAGE_PATH"):
            bridge.create(descriptor)


class TestStabilize:
    """Tests for BridgeManager.stabilize."""

    def test_missing_function_is_created_and_polled(self, bridge, lambda_client, descriptor):
        lambda_client.get_function.side_effect = [
            _client_error("ResourceNotFoundException"),
            _function("Pending"),
            _function("Active"),
        ]

        assert bridge.stabilize(descriptor) is True

        kwargs = lambda_client.create_function.call_args.kwargs
        assert kwargs["FunctionName"] == descriptor.name
        assert kwargs["Role"] == "arn:aws:iam::1:role/Op"
        assert kwargs["Code"] == {"ZipFile": PACKAGE}
        assert kwargs["VpcConfig"]["SubnetIds"] == ["subnet-b", "subnet-a"]
        assert bridge.sleep.call_count == 1

    def test_creation_not_settled_within_bound(self, bridge, lambda_client, descriptor):
        lambda_client.get_function.side_effect = [
            _client_error("ResourceNotFoundException"),
            _function("Pending"),
            _function("Pending"),
            _function("Pending"),
        ]
        assert bridge.stabilize(descriptor) is False
        assert bridge.sleep.call_count == 3

    def test_create_conflict_is_success(self, bridge, lambda_client, descriptor):
        lambda_client.get_function.side_effect = [
            _client_error("ResourceNotFoundException"),
            _function("Active"),
        ]
        lambda_client.create_function.side_effect = _client_error(
            "ResourceConflictException"
        )
        assert bridge.stabilize(descriptor) is True

    def test_active_function_code_refreshed_when_fingerprint_differs(
        self, bridge, lambda_client, descriptor
    ):
        lambda_client.get_function.return_value = _function("Active", sha="old")

        assert bridge.stabilize(descriptor) is True

        lambda_client.update_function_code.assert_called_once_with(
            FunctionName=descriptor.name, ZipFile=PACKAGE
        )
        lambda_client.update_function_configuration.assert_called_once()

    def test_active_function_with_current_code(self, bridge, lambda_client, descriptor):
        lambda_client.get_function.return_value = _function(
            "Active", sha=bridge.package_sha256
        )
        assert bridge.stabilize(descriptor) is True
        lambda_client.update_function_code.assert_not_called()

    def test_update_in_progress_is_not_stable(self, bridge, lambda_client, descriptor):
        lambda_client.get_function.return_value = _function(
            "Active", sha=bridge.package_sha256
        )
        lambda_client.update_function_configuration.side_effect = _client_error(
            "ResourceConflictException"
        )
        assert bridge.stabilize(descriptor) is False

    def test_pending_function_polled(self, bridge, lambda_client, descriptor):
        lambda_client.get_function.side_effect = [
            _function("Pending"),
            _function("Active"),
        ]
        assert bridge.stabilize(descriptor) is True
        lambda_client.create_function.assert_not_called()

    def test_failed_function_is_an_error(self, bridge, lambda_client, descriptor):
        lambda_client.get_function.return_value = _function("Failed")
        with pytest.raises(ConfigurationError) as exc_info:
            bridge.stabilize(descriptor)
        assert "not in desired state: Failed" in str(exc_info.value)

    def test_get_state(self, bridge, lambda_client):
        lambda_client.get_function.side_effect = _client_error("ResourceNotFoundException")
        assert bridge.get_state("x") == BridgeState.NOT_FOUND

    def test_api_errors_propagate(self, bridge, lambda_client):
        lambda_client.get_function.side_effect = _client_error("ThrottlingException")
        with pytest.raises(RemoteOperationError):
            bridge.get_state("x")


class TestDelete:
    """Tests for BridgeManager.delete."""

    def test_delete(self, bridge, lambda_client):
        bridge.delete("fn")
        lambda_client.delete_function.assert_called_once_with(FunctionName="fn")
        bridge.metrics.record_bridge_operation.assert_called_once_with("delete")

    def test_already_deleted(self, bridge, lambda_client):
        lambda_client.delete_function.side_effect = _client_error(
            "ResourceNotFoundException"
        )
        bridge.delete("fn")
        bridge.metrics.record_bridge_operation.assert_not_called()

    def test_delete_without_package(self, operator_settings, lambda_client):
        """Teardown never needs the relay deployment package."""
        operator_settings.bridge_package_path = "/nonexistent/bridge.zip"
        bridge = BridgeManager(lambda_client, operator_settings, collector=MagicMock())
        descriptor = bridge.describe("prod-eks", VPC, None)

        bridge.delete(descriptor.name)

        lambda_client.delete_function.assert_called_once_with(
            FunctionName=descriptor.name
        )

    def test_delete_failure(self, bridge, lambda_client):
        lambda_client.delete_function.side_effect = _client_error("AccessDeniedException")
        with pytest.raises(RemoteOperationError):
            bridge.delete("fn")


class TestInvoke:
    """Tests for BridgeManager.invoke."""

    def _request(self):
        return BridgeRequest(
            action=Action.CHECK_RELEASE,
            kubeconfig=b"kc",
            model=DesiredSpec(cluster_id="prod-eks"),
        )

    def test_successful_invocation(self, bridge, lambda_client):
        lambda_client.invoke.return_value = {
            "Payload": io.BytesIO(
                json.dumps(
                    {"statusData": {"status": "deployed"}, "diagnostics": ["ok"]}
                ).encode()
            )
        }

        response = bridge.invoke("fn", self._request())

        assert response.status_data.status == ReleaseStatus.DEPLOYED
        assert response.diagnostics == ["ok"]
        kwargs = lambda_client.invoke.call_args.kwargs
        assert kwargs["InvocationType"] == "RequestResponse"
        assert json.loads(kwargs["Payload"])["action"] == "CheckRelease"
        bridge.metrics.record_bridge_invocation.assert_called_once_with(
            "CheckRelease", success=True
        )

    def test_function_error_unwrapped(self, bridge, lambda_client):
        lambda_client.invoke.return_value = {
            "FunctionError": "Unhandled",
            "Payload": io.BytesIO(
                json.dumps(
                    {"errorType": "RemoteOperationError", "errorMessage": "helm error: x"}
                ).encode()
            ),
        }
        with pytest.raises(BridgeInvocationError) as exc_info:
            bridge.invoke("fn", self._request())
        assert "[RemoteOperationError] helm error: x" in str(exc_info.value)

    def test_function_error_with_opaque_payload(self, bridge, lambda_client):
        lambda_client.invoke.return_value = {
            "FunctionError": "Unhandled",
            "Payload": io.BytesIO(b"Task timed out"),
        }
        with pytest.raises(BridgeInvocationError) as exc_info:
            bridge.invoke("fn", self._request())
        assert exc_info.value.error_type == "FunctionError"
        assert "Task timed out" in str(exc_info.value)
