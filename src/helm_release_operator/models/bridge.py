"""
Models for the bridge function: lifecycle state and the invocation envelope.

The envelope is the only contract between the operator and the relay running
inside the target VPC, so both sides import these models.
"""

import base64
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_serializer, field_validator

from .progress import Action
from .release import (
    DesiredSpec,
    HelmListData,
    HelmStatusData,
    ReleaseData,
    ReleaseInputs,
    VPCConfiguration,
)


class BridgeState(str, Enum):
    """Lifecycle states reported for the bridge function."""

    PENDING = "Pending"
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    FAILED = "Failed"
    NOT_FOUND = "NotFound"


class BridgeDescriptor(BaseModel):
    """Identity and placement of one bridge function."""

    name: str
    name_suffix: str
    role_arn: str | None = None
    vpc_config: VPCConfiguration


class BridgeRequest(BaseModel):
    """Invocation envelope sent to the bridge function."""

    model_config = {"populate_by_name": True}

    action: Action = Field(..., alias="action")
    kubeconfig: bytes | None = Field(
        None, alias="kubeconfig", description="Target kubeconfig, base64 on the wire"
    )
    inputs: ReleaseInputs | None = Field(None, alias="inputs")
    model: DesiredSpec = Field(..., alias="model")
    release_data: ReleaseData | None = Field(None, alias="releaseData")

    @field_serializer("kubeconfig")
    def serialize_kubeconfig(self, value: bytes | None) -> str | None:
        if value is None:
            return None
        return base64.b64encode(value).decode("ascii")

    @field_validator("kubeconfig", mode="before")
    @classmethod
    def parse_kubeconfig(cls, v):
        if isinstance(v, str):
            return base64.b64decode(v)
        return v

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BridgeResponse(BaseModel):
    """What the bridge function returns for a successful action."""

    model_config = {"populate_by_name": True}

    status_data: HelmStatusData | None = Field(None, alias="statusData")
    list_data: list[HelmListData] | None = Field(None, alias="listData")
    resources: dict[str, Any] | None = Field(None, alias="resources")
    pending_resources: bool | None = Field(None, alias="pendingResources")
    diagnostics: list[str] = Field(default_factory=list, alias="diagnostics")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
