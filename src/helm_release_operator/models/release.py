"""
Pydantic models for Helm release resources.

This module defines the desired release specification supplied by the caller
and the normalized release data returned by the package engine. Field aliases
follow the camelCase names used in the HelmRelease custom resource.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from helm_release_operator.constants import DEFAULT_NAMESPACE


class VPCConfiguration(BaseModel):
    """Network placement of the bridge function inside the target VPC."""

    model_config = {"populate_by_name": True}

    security_group_ids: list[str] = Field(
        default_factory=list,
        alias="securityGroupIds",
        description="Security groups attached to the bridge function",
    )
    subnet_ids: list[str] = Field(
        default_factory=list,
        alias="subnetIds",
        description="Subnets (with NAT egress) the bridge function runs in",
    )

    def is_empty(self) -> bool:
        return not self.security_group_ids and not self.subnet_ids


class DesiredSpec(BaseModel):
    """
    Desired state of a managed release.

    Exactly one of cluster_id / kube_config locates the target cluster. Fields
    marked as computed are filled in by the driver and handed back to the
    caller, which must persist them.
    """

    model_config = {"populate_by_name": True}

    cluster_id: str | None = Field(
        None, alias="clusterID", description="EKS cluster name"
    )
    kube_config: str | None = Field(
        None,
        alias="kubeConfig",
        description="Secrets Manager reference holding a kubeconfig",
    )
    role_arn: str | None = Field(
        None, alias="roleArn", description="Execution role for the bridge function"
    )
    chart: str | None = Field(
        None,
        alias="chart",
        description="repo/name chart reference or URL of a chart archive",
    )
    repository: str | None = Field(
        None, alias="repository", description="Chart repository URL"
    )
    version: str | None = Field(None, alias="version", description="Chart version")
    values: dict[str, str] | None = Field(
        None, alias="values", description="Dotted key=value overrides"
    )
    value_yaml: str | None = Field(
        None, alias="valueYaml", description="Values as a YAML document"
    )
    value_override_url: str | None = Field(
        None, alias="valueOverrideURL", description="s3:// URL of a values file"
    )
    namespace: str | None = Field(
        None, alias="namespace", description="Release namespace"
    )
    name: str | None = Field(None, alias="name", description="Release name")
    vpc_configuration: VPCConfiguration | None = Field(
        None, alias="vpcConfiguration", description="Bridge network placement"
    )
    time_out: int | None = Field(
        None,
        alias="timeOut",
        description="Reconciliation budget in minutes",
        ge=1,
    )

    # Computed fields
    id: str | None = Field(None, alias="id", description="Physical identifier")
    resources: dict[str, Any] | None = Field(
        None, alias="resources", description="Flattened release objects (read path)"
    )

    @property
    def locator(self) -> str:
        """The value of whichever target locator is set."""
        return self.cluster_id or self.kube_config or ""

    @property
    def release_namespace(self) -> str:
        return self.namespace or DEFAULT_NAMESPACE


class ReleaseStatus(str, Enum):
    """Release states reported by the package engine."""

    UNKNOWN = "unknown"
    DEPLOYED = "deployed"
    UNINSTALLED = "uninstalled"
    SUPERSEDED = "superseded"
    FAILED = "failed"
    UNINSTALLING = "uninstalling"
    PENDING_INSTALL = "pending-install"
    PENDING_UPGRADE = "pending-upgrade"
    PENDING_ROLLBACK = "pending-rollback"

    @classmethod
    def parse(cls, value: str | None) -> "ReleaseStatus":
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN


class ChartType(str, Enum):
    REMOTE = "Remote"
    LOCAL = "Local"


class ChartDetails(BaseModel):
    """Resolved chart source."""

    model_config = {"populate_by_name": True}

    chart: str = Field(..., alias="chart", description="repo/name or local path")
    chart_name: str = Field(..., alias="chartName")
    chart_type: ChartType = Field(..., alias="chartType")
    chart_path: str | None = Field(
        None, alias="chartPath", description="Archive URL for Local charts"
    )
    chart_repo: str | None = Field(None, alias="chartRepo")
    chart_version: str | None = Field(None, alias="chartVersion")
    chart_repo_url: str | None = Field(None, alias="chartRepoURL")


class ReleaseConfig(BaseModel):
    model_config = {"populate_by_name": True}

    name: str = Field(..., alias="name")
    namespace: str = Field(DEFAULT_NAMESPACE, alias="namespace")


class ReleaseInputs(BaseModel):
    """Everything the package engine needs to install or upgrade."""

    model_config = {"populate_by_name": True}

    config: ReleaseConfig = Field(..., alias="config")
    chart_details: ChartDetails = Field(..., alias="chartDetails")
    value_opts: dict[str, Any] = Field(default_factory=dict, alias="valueOpts")


class HelmStatusData(BaseModel):
    """Normalized release descriptor. Refetched on every poll."""

    model_config = {"populate_by_name": True}

    status: ReleaseStatus = Field(ReleaseStatus.UNKNOWN, alias="status")
    namespace: str = Field("", alias="namespace")
    chart_name: str = Field("", alias="chartName")
    chart_version: str = Field("", alias="chartVersion")
    chart: str = Field("", alias="chart")
    manifest: str = Field("", alias="manifest")

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        if isinstance(v, ReleaseStatus):
            return v
        return ReleaseStatus.parse(v)


class HelmListData(BaseModel):
    model_config = {"populate_by_name": True}

    release_name: str = Field("", alias="releaseName")
    chart_name: str = Field("", alias="chartName")
    chart_version: str = Field("", alias="chartVersion")
    chart: str = Field("", alias="chart")
    namespace: str = Field("", alias="namespace")


class ReleaseData(BaseModel):
    """The slice of a release the readiness inspector works from."""

    model_config = {"populate_by_name": True}

    name: str = Field("", alias="name")
    chart: str = Field("", alias="chart")
    namespace: str = Field("", alias="namespace")
    manifest: str = Field("", alias="manifest")
