"""
Readiness inspection for rendered release manifests.

A release counts as converged when every workload object it rendered has
reached its desired runtime state. The inspector parses the manifest, looks
up the live counterpart of each object and applies a per-kind pending check;
the release is pending if any single object is.
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol

import yaml

from helm_release_operator.constants import DEFAULT_NAMESPACE
from helm_release_operator.errors import ValidationError
from helm_release_operator.utils.diagnostics import Diagnostics

logger = logging.getLogger(__name__)

ERROR_NO_MANIFEST = "Manifest not provided in the request"


class ObjectLister(Protocol):
    def list_objects(
        self, namespace: str, objects: list[dict[str, Any]]
    ) -> list[dict[str, Any]]: ...


def parse_manifest(manifest: str | None) -> list[dict[str, Any]]:
    """
    Split a multi-document manifest into object records.

    Raises:
        ValidationError: If the manifest is empty or holds no objects
    """
    if not manifest or not manifest.strip():
        raise ValidationError(ERROR_NO_MANIFEST, field="manifest")
    try:
        documents = list(yaml.safe_load_all(manifest))
    except yaml.YAMLError as e:
        raise ValidationError(f"invalid manifest: {e}", field="manifest") from e

    objects: list[dict[str, Any]] = []
    for document in documents:
        if not isinstance(document, dict) or not document.get("kind"):
            continue
        if document["kind"].endswith("List") and "items" in document:
            objects.extend(item for item in document["items"] if isinstance(item, dict))
            continue
        objects.append(document)

    if not objects:
        raise ValidationError("manifest contains no objects", field="manifest")
    return objects


def _spec(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("spec") or {}


def _status(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("status") or {}


def _ingress(obj: dict[str, Any]) -> list[dict[str, Any]]:
    return (_status(obj).get("loadBalancer") or {}).get("ingress") or []


def _service_pending(obj: dict[str, Any]) -> bool:
    return _spec(obj).get("type") == "LoadBalancer" and not _ingress(obj)


def _replicas_pending(obj: dict[str, Any]) -> bool:
    desired = _spec(obj).get("replicas")
    if desired is None:
        desired = 1
    return (_status(obj).get("readyReplicas") or 0) < desired


def _daemonset_pending(obj: dict[str, Any]) -> bool:
    return (_status(obj).get("numberUnavailable") or 0) > 0


def _ingress_pending(obj: dict[str, Any]) -> bool:
    return not _ingress(obj)


PENDING_CHECKS: dict[str, Callable[[dict[str, Any]], bool]] = {
    "Service": _service_pending,
    "Deployment": _replicas_pending,
    "StatefulSet": _replicas_pending,
    "DaemonSet": _daemonset_pending,
    "Ingress": _ingress_pending,
}


def is_object_pending(obj: dict[str, Any]) -> bool:
    """Apply the pending check for the object's kind; unknown kinds never pend."""
    check = PENDING_CHECKS.get(obj.get("kind", ""))
    return check(obj) if check else False


# Status fields reported per workload kind
STATUS_FIELDS = {
    "Deployment": ("Replicas", "ReadyReplicas", "AvailableReplicas"),
    "StatefulSet": ("Replicas", "ReadyReplicas", "UpdatedReplicas"),
    "DaemonSet": ("NumberReady", "NumberAvailable", "NumberUnavailable"),
}


def _put(target: dict[str, Any], path: list[str], value: Any) -> None:
    node = target
    for part in path[:-1]:
        node = node.setdefault(part, {})
    node[path[-1]] = str(value)


def flatten_object(resources: dict[str, Any], obj: dict[str, Any]) -> None:
    """Project the reporting fields of one object into ``resources``."""
    kind = obj.get("kind", "")
    metadata = obj.get("metadata") or {}
    name = metadata.get("name", "")
    spec = _spec(obj)
    status = _status(obj)
    base = [kind, name]

    _put(
        resources,
        [*base, "ObjectMeta", "Namespace"],
        metadata.get("namespace") or DEFAULT_NAMESPACE,
    )

    if kind == "Service":
        service_type = spec.get("type", "")
        _put(resources, [*base, "Spec", "Type"], service_type)
        if service_type in ("LoadBalancer", "ClusterIP"):
            _put(resources, [*base, "Spec", "ClusterIP"], spec.get("clusterIP", ""))
        if service_type == "ExternalName":
            _put(resources, [*base, "Spec", "ExternalName"], spec.get("externalName", ""))
        if service_type == "LoadBalancer" and _ingress(obj):
            _put(
                resources,
                [*base, "Status", "LoadBalancer", "Ingress", "Hostname"],
                _ingress(obj)[0].get("hostname", ""),
            )
    elif kind in STATUS_FIELDS:
        for field in STATUS_FIELDS[kind]:
            camel = field[0].lower() + field[1:]
            _put(resources, [*base, "Status", field], status.get(camel, 0))
    elif kind == "Ingress" and _ingress(obj):
        _put(
            resources,
            [*base, "Status", "LoadBalancer", "Ingress", "Hostname"],
            _ingress(obj)[0].get("hostname", ""),
        )


class ReadinessInspector:
    """Decide whether the objects a release rendered have converged."""

    def __init__(self, lister: ObjectLister):
        self.lister = lister

    def _live_objects(self, namespace: str, manifest: str) -> list[dict[str, Any]]:
        return self.lister.list_objects(namespace, parse_manifest(manifest))

    def is_pending(
        self,
        namespace: str,
        manifest: str,
        diagnostics: Diagnostics | None = None,
    ) -> bool:
        """
        Check whether any object of the release is still converging.

        Args:
            namespace: Release namespace, used for objects that omit one
            manifest: Rendered release manifest
            diagnostics: Trail that pending objects are reported to

        Raises:
            ValidationError: If the manifest is empty or holds no objects
        """
        pending = False
        for obj in self._live_objects(namespace, manifest):
            if is_object_pending(obj):
                kind = obj.get("kind")
                name = (obj.get("metadata") or {}).get("name")
                logger.info(
                    f"{kind} {name} is not ready yet",
                    extra={"component": "readiness", "resource_name": name},
                )
                if diagnostics is not None:
                    diagnostics.add(f"{kind} {name} is not ready yet")
                pending = True
        return pending

    def resources(self, namespace: str, manifest: str) -> dict[str, Any]:
        """
        Flatten the release objects into ``Kind -> name -> fields``.

        No readiness judgement is made here.
        """
        resources: dict[str, Any] = {}
        for obj in self._live_objects(namespace, manifest):
            flatten_object(resources, obj)
        return resources
