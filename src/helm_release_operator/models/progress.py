"""
Models for the resumable reconciliation protocol.

The driver never keeps state between invocations. Everything it needs to pick
up where it left off travels in a ResumeToken that the caller stores verbatim
and hands back on the next poll. Every step answers with a ProgressEvent.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from .release import DesiredSpec


class Stage(str, Enum):
    """Reconciliation stages carried in the resume token."""

    INIT = "Init"
    BRIDGE_STABILIZE = "LambdaStabilize"
    RELEASE_STABILIZE = "ReleaseStabilize"
    UNINSTALL_RELEASE = "UninstallRelease"
    COMPLETE = "Complete"
    NO_STAGE = "NoStage"


class Action(str, Enum):
    """Operations the driver and the bridge function understand."""

    INSTALL_RELEASE = "InstallRelease"
    UPDATE_RELEASE = "UpdateRelease"
    CHECK_RELEASE = "CheckRelease"
    GET_PENDING = "GetPending"
    GET_RESOURCES = "GetResources"
    UNINSTALL_RELEASE = "UninstallRelease"
    LIST_RELEASE = "ListRelease"


class ResumeToken(BaseModel):
    """
    Opaque continuation state handed to the caller between polls.

    Decoding rejects unknown stage values instead of silently restarting.
    """

    model_config = {"populate_by_name": True, "frozen": True}

    stage: Stage = Field(..., alias="stage")
    start_time: datetime = Field(..., alias="startTime")
    name: str | None = Field(None, alias="name", description="Release name")

    @classmethod
    def start(cls, name: str | None = None) -> "ResumeToken":
        return cls(stage=Stage.INIT, start_time=datetime.now(UTC), name=name)

    def advance(self, stage: Stage, name: str | None = None) -> "ResumeToken":
        return self.model_copy(update={"stage": stage, "name": name or self.name})

    def elapsed_seconds(self, now: datetime | None = None) -> float:
        start = self.start_time
        if start.tzinfo is None:
            start = start.replace(tzinfo=UTC)
        return ((now or datetime.now(UTC)) - start).total_seconds()

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class OperationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    IN_PROGRESS = "IN_PROGRESS"
    FAILED = "FAILED"


class ProgressEvent(BaseModel):
    """Outcome of a single driver step."""

    model_config = {"populate_by_name": True}

    status: OperationStatus
    message: str = ""
    model: DesiredSpec | None = None
    resume_token: ResumeToken | None = None
    callback_delay_seconds: int = 0
    retryable: bool = False
    diagnostics: list[str] = Field(default_factory=list)

    @property
    def next_stage(self) -> Stage:
        if self.status == OperationStatus.SUCCESS:
            return Stage.COMPLETE
        if self.status == OperationStatus.IN_PROGRESS and self.resume_token:
            return self.resume_token.stage
        return Stage.NO_STAGE

    @classmethod
    def complete(
        cls, model: DesiredSpec | None, diagnostics: list[str] | None = None
    ) -> "ProgressEvent":
        return cls(
            status=OperationStatus.SUCCESS,
            model=model,
            diagnostics=list(diagnostics or []),
        )

    @classmethod
    def in_progress(
        cls,
        model: DesiredSpec | None,
        token: ResumeToken,
        delay: int,
        diagnostics: list[str] | None = None,
    ) -> "ProgressEvent":
        return cls(
            status=OperationStatus.IN_PROGRESS,
            message=f"{token.stage.value} in progress",
            model=model,
            resume_token=token,
            callback_delay_seconds=delay,
            diagnostics=list(diagnostics or []),
        )

    @classmethod
    def failed(
        cls,
        model: DesiredSpec | None,
        message: str,
        retryable: bool = False,
        resume_token: ResumeToken | None = None,
        diagnostics: list[str] | None = None,
    ) -> "ProgressEvent":
        return cls(
            status=OperationStatus.FAILED,
            message=message,
            model=model,
            retryable=retryable,
            resume_token=resume_token,
            diagnostics=list(diagnostics or []),
        )
