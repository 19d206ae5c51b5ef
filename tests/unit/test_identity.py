"""
Unit tests for the physical identifier codec in utils/identity.py.
"""

import base64
import json

import pytest

from helm_release_operator.errors import ValidationError
from helm_release_operator.models import DesiredSpec
from helm_release_operator.utils.identity import (
    ReleaseID,
    decode_id,
    encode_id,
    generate_id,
)


class TestGenerateId:
    """Tests for generate_id."""

    def test_cluster_locator_round_trips(self):
        """The identifier decodes back to the coordinates it was built from."""
        spec = DesiredSpec(cluster_id="prod-eks")
        physical_id = generate_id(spec, "nginx-1600000000", "eu-west-1", "web")

        decoded = decode_id(physical_id)

        assert decoded.cluster_id == "prod-eks"
        assert decoded.kube_config is None
        assert decoded.region == "eu-west-1"
        assert decoded.name == "nginx-1600000000"
        assert decoded.namespace == "web"

    def test_identifier_is_unpadded_base64url_json(self):
        """The encoding is unpadded base64url of a compact JSON object."""
        spec = DesiredSpec(kube_config="arn:aws:secretsmanager:us-east-1:1:secret:kc")
        physical_id = generate_id(spec, "app", "us-east-1", "default")

        assert "=" not in physical_id
        assert "+" not in physical_id and "/" not in physical_id
        raw = base64.urlsafe_b64decode(physical_id + "=" * (-len(physical_id) % 4))
        data = json.loads(raw)
        assert data == {
            "KubeConfig": "arn:aws:secretsmanager:us-east-1:1:secret:kc",
            "Region": "us-east-1",
            "Name": "app",
            "Namespace": "default",
        }

    def test_both_locators_rejected(self):
        """Setting both locators is a validation error."""
        spec = DesiredSpec(cluster_id="eks", kube_config="secret")
        with pytest.raises(ValidationError) as exc_info:
            generate_id(spec, "app", "us-east-1", "default")
        assert "Both ClusterID or KubeConfig can not be specified" in str(exc_info.value)

    def test_missing_locator_rejected(self):
        """Setting neither locator is a validation error."""
        with pytest.raises(ValidationError) as exc_info:
            generate_id(DesiredSpec(), "app", "us-east-1", "default")
        assert "Either ClusterID or KubeConfig must be specified" in str(exc_info.value)

    @pytest.mark.parametrize(
        "name,region,namespace",
        [("", "us-east-1", "default"), ("app", "", "default"), ("app", "us-east-1", "")],
    )
    def test_empty_coordinates_rejected(self, name, region, namespace):
        """Name, namespace and region must all be non-empty."""
        spec = DesiredSpec(cluster_id="eks")
        with pytest.raises(ValidationError) as exc_info:
            generate_id(spec, name, region, namespace)
        assert "Incorrect values for variable name, namespace, region" in str(
            exc_info.value
        )


class TestDecodeId:
    """Tests for decode_id."""

    def test_missing_identifier(self):
        with pytest.raises(ValidationError):
            decode_id(None)

    def test_garbage_identifier(self):
        """Undecodable input raises a validation error, not a crash."""
        with pytest.raises(ValidationError) as exc_info:
            decode_id("%%%not-base64%%%")
        assert "cannot decode physical identifier" in str(exc_info.value)

    def test_non_json_payload(self):
        physical_id = base64.urlsafe_b64encode(b"not json").decode().rstrip("=")
        with pytest.raises(ValidationError):
            decode_id(physical_id)

    def test_encode_is_stable(self):
        """Encoding the same coordinates twice yields the same identifier."""
        release_id = ReleaseID(
            cluster_id="eks", region="us-west-2", name="app", namespace="ns"
        )
        assert encode_id(release_id) == encode_id(release_id)
