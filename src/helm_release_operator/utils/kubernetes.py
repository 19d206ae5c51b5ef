"""
Kubernetes utilities for reaching a target cluster.

This module provides helpers for building access to the remote cluster a
release is installed into, provisioning its namespace, and fetching the live
state of the objects a release rendered.

Key functionality:
- Kubeconfig assembly for EKS clusters and Secrets Manager references
- Kubernetes client construction from a scratch kubeconfig
- Idempotent namespace creation
- Live object lookup through the dynamic client
"""

import base64
import logging
from pathlib import Path
from typing import Any

import yaml
from kubernetes import client, config, dynamic
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import NotFoundError, ResourceNotFoundError

from helm_release_operator.errors import RemoteOperationError
from helm_release_operator.utils import aws
from helm_release_operator.utils.identity import ReleaseID

logger = logging.getLogger(__name__)


def build_eks_kubeconfig(
    cluster_name: str, endpoint: str, ca_data: bytes, token: str
) -> dict[str, Any]:
    """Kubeconfig document for a single EKS cluster using a bearer token."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": cluster_name,
                "cluster": {
                    "server": endpoint,
                    "certificate-authority-data": base64.b64encode(ca_data).decode(
                        "ascii"
                    ),
                },
            }
        ],
        "users": [{"name": "aws", "user": {"token": token}}],
        "contexts": [
            {"name": cluster_name, "context": {"cluster": cluster_name, "user": "aws"}}
        ],
        "current-context": cluster_name,
    }


def resolve_kubeconfig(release_id: ReleaseID, clients: aws.AWSClients) -> bytes:
    """
    Produce kubeconfig bytes for the cluster a release identifier points at.

    Args:
        release_id: Decoded physical identifier
        clients: AWS client factory

    Returns:
        Serialized kubeconfig
    """
    if release_id.cluster_id:
        cluster = aws.get_cluster_details(clients.eks(), release_id.cluster_id)
        token = aws.generate_kube_token(
            clients.session, release_id.cluster_id, release_id.region or clients.region
        )
        document = build_eks_kubeconfig(
            release_id.cluster_id, cluster.endpoint, cluster.ca_data, token
        )
        return yaml.safe_dump(document, default_flow_style=False).encode("utf-8")
    if release_id.kube_config:
        return aws.get_secret(clients.secrets_manager(), release_id.kube_config)
    raise RemoteOperationError(
        "kubernetes", "either ClusterID or KubeConfig must be set", retryable=False
    )


def write_kubeconfig(path: str | Path, content: bytes) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    target.chmod(0o600)
    logger.debug(f"Wrote kubeconfig to {target}")
    return target


def get_kubernetes_client(kubeconfig_path: str | Path) -> client.ApiClient:
    """
    Get a Kubernetes API client for the target cluster.

    Raises:
        RemoteOperationError: If the kubeconfig cannot be loaded
    """
    try:
        return config.new_client_from_config(config_file=str(kubeconfig_path))
    except config.ConfigException as e:
        logger.error(
            f"Failed to load target kubeconfig: {e}",
            extra={"component": "kubernetes"},
        )
        raise RemoteOperationError(
            "kubernetes", f"invalid kubeconfig: {e}", retryable=False, cause=e
        ) from e


def create_namespace(k8s_client: client.ApiClient, namespace: str) -> None:
    """Create a namespace; an existing namespace is not an error."""
    core_api = client.CoreV1Api(k8s_client)
    body = client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))
    try:
        core_api.create_namespace(body=body)
        logger.info(f"Created namespace {namespace}")
    except ApiException as e:
        if e.status == 409:
            logger.debug(f"Namespace {namespace} already exists")
            return
        logger.error(
            f"Failed to create namespace {namespace}: {e}",
            extra={"component": "kubernetes"},
        )
        raise RemoteOperationError(
            "kubernetes", f"creating namespace {namespace}: {e.reason}", cause=e
        ) from e


class ManifestObjectLister:
    """
    Fetch the live counterpart of each object in a rendered manifest.

    Objects that cannot be found on the cluster are returned as rendered, so
    they carry no status and look unconverged to the readiness checks.
    """

    def __init__(self, k8s_client: client.ApiClient):
        self._client = dynamic.DynamicClient(k8s_client)

    def get(self, namespace: str, obj: dict[str, Any]) -> dict[str, Any]:
        api_version = obj.get("apiVersion", "")
        kind = obj.get("kind", "")
        metadata = obj.get("metadata") or {}
        name = metadata.get("name", "")
        try:
            resource = self._client.resources.get(api_version=api_version, kind=kind)
            if resource.namespaced:
                live = resource.get(
                    name=name, namespace=metadata.get("namespace") or namespace
                )
            else:
                live = resource.get(name=name)
        except (NotFoundError, ResourceNotFoundError):
            logger.debug(f"{kind}/{name} not found on cluster")
            return obj
        except ApiException as e:
            raise RemoteOperationError(
                "kubernetes", f"getting {kind}/{name}: {e.reason}", cause=e
            ) from e
        return live.to_dict()

    def list_objects(
        self, namespace: str, objects: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        return [self.get(namespace, obj) for obj in objects]
