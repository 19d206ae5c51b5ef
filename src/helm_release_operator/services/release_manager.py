"""
Release manager: install, upgrade, uninstall, status and list against the
package engine of one target cluster.

The manager works from a kubeconfig already written to the scratch path, so
the same code runs in the operator (direct path) and inside the bridge
function (relay path).
"""

import logging
import shutil
from pathlib import Path
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from kubernetes import client

from helm_release_operator.errors import ReleaseNotFoundError
from helm_release_operator.models import (
    ChartDetails,
    ChartType,
    DesiredSpec,
    HelmListData,
    HelmStatusData,
    ReleaseConfig,
    ReleaseInputs,
)
from helm_release_operator.services.readiness import ReadinessInspector
from helm_release_operator.settings import Settings
from helm_release_operator.utils import aws
from helm_release_operator.utils.charts import (
    download_chart_archive,
    extract_chart,
    get_chart_details,
)
from helm_release_operator.utils.helm import HelmClient
from helm_release_operator.utils.kubernetes import (
    ManifestObjectLister,
    create_namespace,
    get_kubernetes_client,
)
from helm_release_operator.utils.values import (
    load_yaml_mapping,
    merge_maps,
    parse_s3_url,
    parse_set_values,
)

logger = logging.getLogger(__name__)


def process_values(spec: DesiredSpec, clients: aws.AWSClients) -> dict[str, Any]:
    """
    Assemble chart values from the release specification.

    ``valueYaml`` is overlaid by ``values`` assignments, and the result by the
    YAML file referenced by ``valueOverrideURL``.
    """
    values = merge_maps(
        load_yaml_mapping(spec.value_yaml, "valueYaml"),
        parse_set_values(spec.values),
    )
    if not spec.value_override_url:
        return values

    bucket, key = parse_s3_url(spec.value_override_url)
    region = aws.get_bucket_region(clients.s3(), bucket)
    try:
        body = clients.s3(region=region).get_object(Bucket=bucket, Key=key)["Body"]
        document = body.read()
    except (BotoCoreError, ClientError) as e:
        raise aws.aws_error(e) from e
    return merge_maps(values, load_yaml_mapping(document, "valueOverrideURL"))


def build_release_inputs(
    spec: DesiredSpec,
    name: str,
    namespace: str,
    clients: aws.AWSClients,
    config: Settings,
) -> ReleaseInputs:
    """Everything an executor needs to install or upgrade ``name``."""
    archive_path = Path(config.chart_workdir) / f"{name}.tgz"
    return ReleaseInputs(
        config=ReleaseConfig(name=name, namespace=namespace),
        chart_details=get_chart_details(spec, str(archive_path)),
        value_opts=process_values(spec, clients),
    )


class ReleaseManager:
    """
    Package engine operations for the cluster behind one kubeconfig.

    Args:
        config: Operator settings
        clients: AWS client factory, used to fetch archive charts from S3
        kubeconfig_path: Scratch kubeconfig of the target cluster
        helm: Helm client override
        k8s_client: Kubernetes API client override
    """

    def __init__(
        self,
        config: Settings,
        clients: aws.AWSClients,
        kubeconfig_path: str | None = None,
        helm: HelmClient | None = None,
        k8s_client: client.ApiClient | None = None,
    ):
        self.config = config
        self.clients = clients
        self.kubeconfig_path = kubeconfig_path or config.kubeconfig_path
        self.helm = helm or HelmClient(config, self.kubeconfig_path)
        self._k8s_client = k8s_client

    @property
    def k8s_client(self) -> client.ApiClient:
        if self._k8s_client is None:
            self._k8s_client = get_kubernetes_client(self.kubeconfig_path)
        return self._k8s_client

    def inspector(self) -> ReadinessInspector:
        return ReadinessInspector(ManifestObjectLister(self.k8s_client))

    def prepare_chart(self, details: ChartDetails, release_name: str) -> Path:
        """Fetch the chart into the scratch directory and verify its dependencies."""
        workdir = Path(self.config.chart_workdir) / release_name
        shutil.rmtree(workdir, ignore_errors=True)

        if details.chart_type == ChartType.REMOTE:
            self.helm.add_repository(details.chart_repo, details.chart_repo_url)
            chart_path = self.helm.pull_chart(
                details.chart, details.chart_version, workdir
            )
        else:
            archive = download_chart_archive(
                details.chart_path, details.chart, self.clients
            )
            chart_path = extract_chart(archive, workdir)

        self.helm.check_dependencies(chart_path, self.config.helm_dependency_update)
        return chart_path

    def install(self, inputs: ReleaseInputs) -> str:
        name = inputs.config.name
        namespace = inputs.config.namespace
        logger.info(f"Installing release {name} in {namespace}")
        chart_path = self.prepare_chart(inputs.chart_details, name)
        create_namespace(self.k8s_client, namespace)
        return self.helm.install(name, chart_path, namespace, inputs.value_opts)

    def upgrade(self, inputs: ReleaseInputs) -> str:
        name = inputs.config.name
        namespace = inputs.config.namespace
        logger.info(f"Upgrading release {name} in {namespace}")
        chart_path = self.prepare_chart(inputs.chart_details, name)
        return self.helm.upgrade(name, chart_path, namespace, inputs.value_opts)

    def uninstall(self, name: str, namespace: str) -> bool:
        """
        Remove a release.

        Returns:
            False if the release was already gone, True otherwise
        """
        try:
            self.helm.uninstall(name, namespace)
        except ReleaseNotFoundError:
            logger.info(f"Release {name} not found in {namespace}, nothing to remove")
            return False
        logger.info(f"Release {name} uninstalled")
        return True

    def status(self, name: str, namespace: str) -> HelmStatusData:
        return self.helm.status(name, namespace)

    def list_releases(
        self, namespace: str, chart_name: str, version: str | None = None
    ) -> list[HelmListData]:
        return self.helm.list_releases(namespace, chart_name, version)
