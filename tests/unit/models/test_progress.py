"""
Unit tests for the resumable reconciliation protocol models.
"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from helm_release_operator.models import (
    DesiredSpec,
    OperationStatus,
    ProgressEvent,
    ResumeToken,
    Stage,
)


class TestResumeToken:
    """Tests for ResumeToken."""

    def test_start_begins_at_init(self):
        token = ResumeToken.start("web")
        assert token.stage == Stage.INIT
        assert token.name == "web"
        assert token.start_time.tzinfo is not None

    def test_advance_keeps_start_time(self):
        """Advancing changes the stage only; the budget keeps counting."""
        token = ResumeToken.start("web")
        advanced = token.advance(Stage.RELEASE_STABILIZE)
        assert advanced.stage == Stage.RELEASE_STABILIZE
        assert advanced.start_time == token.start_time
        assert advanced.name == "web"
        assert token.stage == Stage.INIT

    def test_wire_format_round_trip(self):
        token = ResumeToken.start("web").advance(Stage.BRIDGE_STABILIZE)
        data = token.to_dict()
        assert data["stage"] == "LambdaStabilize"
        assert "startTime" in data
        assert ResumeToken.model_validate(data) == token

    def test_unknown_stage_rejected(self):
        """Decoding an unknown stage fails instead of restarting from Init."""
        with pytest.raises(ValidationError):
            ResumeToken.model_validate(
                {"stage": "Bogus", "startTime": "2024-01-01T00:00:00Z"}
            )

    def test_elapsed_seconds(self):
        start = datetime(2024, 1, 1, tzinfo=UTC)
        token = ResumeToken(stage=Stage.INIT, start_time=start)
        assert token.elapsed_seconds(start + timedelta(minutes=5)) == 300

    def test_elapsed_seconds_naive_start(self):
        """A naive start time is read as UTC."""
        token = ResumeToken(stage=Stage.INIT, start_time=datetime(2024, 1, 1))
        now = datetime(2024, 1, 1, 0, 1, tzinfo=UTC)
        assert token.elapsed_seconds(now) == 60


class TestProgressEvent:
    """Tests for ProgressEvent constructors."""

    def test_in_progress_message_names_stage(self):
        token = ResumeToken.start().advance(Stage.RELEASE_STABILIZE)
        event = ProgressEvent.in_progress(DesiredSpec(), token, 30, ["a"])
        assert event.status == OperationStatus.IN_PROGRESS
        assert event.message == "ReleaseStabilize in progress"
        assert event.callback_delay_seconds == 30
        assert event.next_stage == Stage.RELEASE_STABILIZE
        assert event.diagnostics == ["a"]

    def test_complete_next_stage(self):
        event = ProgressEvent.complete(DesiredSpec())
        assert event.status == OperationStatus.SUCCESS
        assert event.next_stage == Stage.COMPLETE

    def test_failed_defaults(self):
        event = ProgressEvent.failed(None, "Release failed")
        assert event.status == OperationStatus.FAILED
        assert event.retryable is False
        assert event.resume_token is None
        assert event.next_stage == Stage.NO_STAGE
