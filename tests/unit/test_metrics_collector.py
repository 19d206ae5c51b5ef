"""
Unit tests for MetricsCollector methods in observability/metrics.py.

Tests the individual methods of MetricsCollector to verify they call the
correct Prometheus metric objects with the correct label values.
"""

from unittest.mock import MagicMock, patch

import pytest

from helm_release_operator.errors import RemoteOperationError, ValidationError
from helm_release_operator.observability.metrics import MetricsCollector


@pytest.fixture
def collector():
    return MetricsCollector(registry=MagicMock())


class TestStepMetrics:
    """Driver step metrics."""

    @patch("helm_release_operator.observability.metrics.STEP_TOTAL")
    def test_record_step(self, mock_total, collector):
        collector.record_step("InstallRelease", "ReleaseStabilize", "IN_PROGRESS")
        mock_total.labels.assert_called_with(
            action="InstallRelease", stage="ReleaseStabilize", status="IN_PROGRESS"
        )
        mock_total.labels().inc.assert_called_once()

    @patch("helm_release_operator.observability.metrics.STEP_DURATION")
    def test_track_step_observes_duration(self, mock_duration, collector):
        with collector.track_step("UpdateRelease"):
            pass
        mock_duration.labels.assert_called_with(action="UpdateRelease")
        mock_duration.labels().observe.assert_called_once()

    @patch("helm_release_operator.observability.metrics.STEP_DURATION")
    def test_track_step_observes_on_error(self, mock_duration, collector):
        """Duration is recorded even when the step raises."""
        with pytest.raises(RuntimeError):
            with collector.track_step("UninstallRelease"):
                raise RuntimeError("boom")
        mock_duration.labels().observe.assert_called_once()

    @patch("helm_release_operator.observability.metrics.STEP_ERRORS")
    def test_record_retryable_error(self, mock_errors, collector):
        collector.record_error("InstallRelease", RemoteOperationError("helm", "down"))
        mock_errors.labels.assert_called_with(
            action="InstallRelease",
            error_type="RemoteOperationError",
            retryable="true",
        )

    @patch("helm_release_operator.observability.metrics.STEP_ERRORS")
    def test_record_terminal_error(self, mock_errors, collector):
        collector.record_error("InstallRelease", ValidationError("bad"))
        mock_errors.labels.assert_called_with(
            action="InstallRelease", error_type="ValidationError", retryable="false"
        )


class TestBridgeMetrics:
    """Bridge function metrics."""

    @patch("helm_release_operator.observability.metrics.BRIDGE_INVOCATIONS")
    def test_invocation_success(self, mock_invocations, collector):
        collector.record_bridge_invocation("CheckRelease", success=True)
        mock_invocations.labels.assert_called_with(
            action="CheckRelease", result="success"
        )

    @patch("helm_release_operator.observability.metrics.BRIDGE_INVOCATIONS")
    def test_invocation_error(self, mock_invocations, collector):
        collector.record_bridge_invocation("CheckRelease", success=False)
        mock_invocations.labels.assert_called_with(action="CheckRelease", result="error")

    @patch("helm_release_operator.observability.metrics.BRIDGE_LIFECYCLE")
    def test_lifecycle(self, mock_lifecycle, collector):
        collector.record_bridge_operation("create")
        mock_lifecycle.labels.assert_called_with(operation="create")
        mock_lifecycle.labels().inc.assert_called_once()


class TestReleasePhase:
    """Release phase gauge."""

    @patch("helm_release_operator.observability.metrics.RELEASE_PHASE")
    def test_only_current_phase_set(self, mock_phase, collector):
        collector.update_release_phase("apps", "web", "Ready")

        phases = {call.kwargs["phase"] for call in mock_phase.labels.call_args_list}
        assert phases == {"Pending", "Reconciling", "Ready", "Failed", "Deleting"}
        values = [call.args[0] for call in mock_phase.labels().set.call_args_list]
        assert values.count(1) == 1
        assert values.count(0) == 4

    @patch("helm_release_operator.observability.metrics.RELEASE_PHASE")
    def test_forget_release_tolerates_missing_series(self, mock_phase, collector):
        mock_phase.remove.side_effect = KeyError("missing")
        collector.forget_release("apps", "web")
        assert mock_phase.remove.call_count == 5
