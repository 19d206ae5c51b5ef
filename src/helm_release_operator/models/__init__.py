"""
Pydantic models for the Helm release operator.

This module contains type-safe data models for the desired release
specification, the resumable reconciliation protocol, and the bridge
function envelope.
"""

from .bridge import BridgeDescriptor, BridgeRequest, BridgeResponse, BridgeState
from .progress import Action, OperationStatus, ProgressEvent, ResumeToken, Stage
from .release import (
    ChartDetails,
    ChartType,
    DesiredSpec,
    HelmListData,
    HelmStatusData,
    ReleaseConfig,
    ReleaseData,
    ReleaseInputs,
    ReleaseStatus,
    VPCConfiguration,
)

__all__ = [
    "Action",
    "BridgeDescriptor",
    "BridgeRequest",
    "BridgeResponse",
    "BridgeState",
    "ChartDetails",
    "ChartType",
    "DesiredSpec",
    "HelmListData",
    "HelmStatusData",
    "OperationStatus",
    "ProgressEvent",
    "ReleaseConfig",
    "ReleaseData",
    "ReleaseInputs",
    "ReleaseStatus",
    "ResumeToken",
    "Stage",
    "VPCConfiguration",
]
