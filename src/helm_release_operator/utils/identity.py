"""
Physical identifier codec for managed releases.

The identifier is the unpadded base64url encoding of a compact JSON object
holding the release coordinates. It is generated once on the first step of a
create and reused verbatim for the rest of the release's lifetime.
"""

import base64
import binascii
import json

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from helm_release_operator.errors import ValidationError
from helm_release_operator.models import DesiredSpec


class ReleaseID(BaseModel):
    """Decoded physical identifier."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    cluster_id: str | None = Field(None, alias="ClusterID")
    kube_config: str | None = Field(None, alias="KubeConfig")
    region: str = Field("", alias="Region")
    name: str = Field("", alias="Name")
    namespace: str = Field("", alias="Namespace")


def encode_id(release_id: ReleaseID) -> str:
    data = release_id.model_dump(by_alias=True, exclude_none=True)
    # Empty strings are omitted to keep the identifier stable and short
    data = {k: v for k, v in data.items() if v != ""}
    raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_id(physical_id: str | None) -> ReleaseID:
    """
    Decode a physical identifier.

    Raises:
        ValidationError: If the identifier is missing or malformed
    """
    if not physical_id:
        raise ValidationError("physical identifier is missing", field="id")
    padded = physical_id + "=" * (-len(physical_id) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return ReleaseID.model_validate(json.loads(raw))
    except (binascii.Error, UnicodeError, ValueError, PydanticValidationError) as e:
        raise ValidationError(
            f"cannot decode physical identifier: {e}", field="id"
        ) from e


def generate_id(spec: DesiredSpec, name: str, region: str, namespace: str) -> str:
    """
    Generate the physical identifier for a release.

    Exactly one target locator must be set and the name, namespace and region
    must all be non-empty.
    """
    if spec.cluster_id and spec.kube_config:
        raise ValidationError("Both ClusterID or KubeConfig can not be specified")
    if not spec.cluster_id and not spec.kube_config:
        raise ValidationError("Either ClusterID or KubeConfig must be specified")
    if not name or not namespace or not region:
        raise ValidationError("Incorrect values for variable name, namespace, region")

    return encode_id(
        ReleaseID(
            cluster_id=spec.cluster_id,
            kube_config=spec.kube_config,
            region=region,
            name=name,
            namespace=namespace,
        )
    )
