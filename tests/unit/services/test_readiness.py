"""
Unit tests for the ReadinessInspector and manifest helpers.
"""

import pytest

from helm_release_operator.errors import ValidationError
from helm_release_operator.services.readiness import (
    ERROR_NO_MANIFEST,
    ReadinessInspector,
    flatten_object,
    is_object_pending,
    parse_manifest,
)
from helm_release_operator.utils.diagnostics import Diagnostics

MANIFEST = """
---
apiVersion: v1
kind: Service
metadata:
  name: web
spec:
  type: LoadBalancer
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
  namespace: apps
spec:
  replicas: 2
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: settings
"""


class StaticLister:
    """Lister returning pre-baked live objects keyed by (kind, name)."""

    def __init__(self, live):
        self.live = live
        self.calls = []

    def list_objects(self, namespace, objects):
        self.calls.append(namespace)
        out = []
        for obj in objects:
            key = (obj["kind"], obj["metadata"]["name"])
            out.append(self.live.get(key, obj))
        return out


def _service(ingress=None, service_type="LoadBalancer"):
    status = {"loadBalancer": {"ingress": ingress}} if ingress is not None else {}
    return {
        "kind": "Service",
        "metadata": {"name": "web"},
        "spec": {"type": service_type, "clusterIP": "10.0.0.1"},
        "status": status,
    }


def _deployment(ready, replicas=2):
    return {
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "apps"},
        "spec": {"replicas": replicas},
        "status": {"replicas": replicas, "readyReplicas": ready, "availableReplicas": ready},
    }


class TestParseManifest:
    """Tests for parse_manifest."""

    def test_documents_become_objects(self):
        objects = parse_manifest(MANIFEST)
        assert [o["kind"] for o in objects] == ["Service", "Deployment", "ConfigMap"]

    def test_list_kinds_are_expanded(self):
        manifest = """
kind: List
items:
  - kind: Service
    metadata: {name: a}
  - kind: Service
    metadata: {name: b}
"""
        assert [o["metadata"]["name"] for o in parse_manifest(manifest)] == ["a", "b"]

    @pytest.mark.parametrize("manifest", [None, "", "   \n"])
    def test_empty_manifest(self, manifest):
        with pytest.raises(ValidationError) as exc_info:
            parse_manifest(manifest)
        assert ERROR_NO_MANIFEST in str(exc_info.value)

    def test_manifest_without_objects(self):
        with pytest.raises(ValidationError):
            parse_manifest("---\n# nothing\n---\n")


class TestIsObjectPending:
    """Per-kind pending checks."""

    def test_load_balancer_without_ingress_is_pending(self):
        assert is_object_pending(_service()) is True
        assert is_object_pending(_service(ingress=[{"hostname": "lb"}])) is False

    def test_cluster_ip_service_never_pending(self):
        assert is_object_pending(_service(service_type="ClusterIP")) is False

    def test_deployment_replicas(self):
        assert is_object_pending(_deployment(ready=1)) is True
        assert is_object_pending(_deployment(ready=2)) is False

    def test_deployment_default_replicas_is_one(self):
        obj = {"kind": "Deployment", "metadata": {"name": "x"}, "spec": {}, "status": {}}
        assert is_object_pending(obj) is True

    def test_statefulset_replicas(self):
        obj = {
            "kind": "StatefulSet",
            "spec": {"replicas": 3},
            "status": {"readyReplicas": 3},
        }
        assert is_object_pending(obj) is False

    def test_daemonset_unavailable(self):
        obj = {"kind": "DaemonSet", "status": {"numberUnavailable": 1}}
        assert is_object_pending(obj) is True
        assert is_object_pending({"kind": "DaemonSet", "status": {}}) is False

    def test_ingress_needs_address(self):
        assert is_object_pending({"kind": "Ingress", "status": {}}) is True

    def test_unknown_kind_never_pending(self):
        assert is_object_pending({"kind": "ConfigMap"}) is False


class TestFlattenObject:
    """Tests for flatten_object."""

    def test_load_balancer_service(self):
        resources = {}
        flatten_object(resources, _service(ingress=[{"hostname": "lb.example.com"}]))
        service = resources["Service"]["web"]
        assert service["ObjectMeta"]["Namespace"] == "default"
        assert service["Spec"] == {"Type": "LoadBalancer", "ClusterIP": "10.0.0.1"}
        assert service["Status"]["LoadBalancer"]["Ingress"]["Hostname"] == "lb.example.com"

    def test_external_name_service(self):
        resources = {}
        flatten_object(
            resources,
            {
                "kind": "Service",
                "metadata": {"name": "ext"},
                "spec": {"type": "ExternalName", "externalName": "db.example.com"},
            },
        )
        assert resources["Service"]["ext"]["Spec"] == {
            "Type": "ExternalName",
            "ExternalName": "db.example.com",
        }

    def test_deployment_status_values_are_strings(self):
        resources = {}
        flatten_object(resources, _deployment(ready=1))
        assert resources["Deployment"]["web"]["ObjectMeta"]["Namespace"] == "apps"
        assert resources["Deployment"]["web"]["Status"] == {
            "Replicas": "2",
            "ReadyReplicas": "1",
            "AvailableReplicas": "1",
        }

    def test_daemonset_keyed_by_its_kind(self):
        resources = {}
        flatten_object(
            resources,
            {
                "kind": "DaemonSet",
                "metadata": {"name": "agent"},
                "status": {"numberReady": 3, "numberAvailable": 3},
            },
        )
        assert resources["DaemonSet"]["agent"]["Status"] == {
            "NumberReady": "3",
            "NumberAvailable": "3",
            "NumberUnavailable": "0",
        }


class TestReadinessInspector:
    """Tests for ReadinessInspector."""

    def test_pending_objects_reported(self):
        lister = StaticLister({("Service", "web"): _service(), ("Deployment", "web"): _deployment(2)})
        trail = Diagnostics()

        assert ReadinessInspector(lister).is_pending("apps", MANIFEST, trail) is True
        assert trail.as_list() == ["Service web is not ready yet"]
        assert lister.calls == ["apps"]

    def test_converged_release(self):
        lister = StaticLister(
            {
                ("Service", "web"): _service(ingress=[{"hostname": "lb"}]),
                ("Deployment", "web"): _deployment(2),
            }
        )
        assert ReadinessInspector(lister).is_pending("apps", MANIFEST) is False

    def test_missing_live_object_counts_as_pending(self):
        """An object that is not live yet is judged on its rendered form."""
        lister = StaticLister({("Service", "web"): _service(ingress=[{"hostname": "lb"}])})
        assert ReadinessInspector(lister).is_pending("apps", MANIFEST) is True

    def test_empty_manifest_is_an_error(self):
        with pytest.raises(ValidationError):
            ReadinessInspector(StaticLister({})).is_pending("apps", "")

    def test_resources_projection(self):
        lister = StaticLister({("Deployment", "web"): _deployment(2)})
        resources = ReadinessInspector(lister).resources("apps", MANIFEST)
        assert set(resources) == {"Service", "Deployment", "ConfigMap"}
        assert resources["ConfigMap"]["settings"] == {"ObjectMeta": {"Namespace": "default"}}
