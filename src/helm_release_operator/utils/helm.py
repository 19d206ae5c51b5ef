"""
Thin wrapper around the helm command line client.

Every call runs ``helm`` as a subprocess against the scratch kubeconfig of
the target cluster. Helm's repository state (repositories.yaml and the cached
indexes) lives under the configured helm home directories and is shared by
every invocation on the host, so all writes to it happen under a file lock.
"""

import json
import logging
import os
import subprocess
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any

import yaml

from helm_release_operator.constants import HELM_STORAGE_DRIVER
from helm_release_operator.errors import (
    ConfigurationError,
    ReleaseNotFoundError,
    RemoteOperationError,
    is_release_not_found,
)
from helm_release_operator.models import HelmListData, HelmStatusData, ReleaseStatus
from helm_release_operator.settings import Settings
from helm_release_operator.utils.locking import file_lock

logger = logging.getLogger(__name__)

MISSING_DEPENDENCY_STATUS = "missing"


class HelmClient:
    """Run helm commands against one target cluster."""

    def __init__(self, config: Settings, kubeconfig_path: str | None = None):
        self.binary = config.helm_binary
        self.kubeconfig_path = kubeconfig_path or config.kubeconfig_path
        self.lock_timeout = config.repo_lock_timeout_seconds
        self.env = {
            **os.environ,
            "HELM_CACHE_HOME": config.helm_cache_home,
            "HELM_CONFIG_HOME": config.helm_config_home,
            "HELM_DATA_HOME": config.helm_data_home,
            "HELM_DRIVER": HELM_STORAGE_DRIVER,
        }
        self.lock_path = Path(config.helm_config_home) / "repositories.lock"

    def _run(
        self, args: list[str], namespace: str | None = None, cluster: bool = True
    ) -> str:
        command = [self.binary, *args]
        if cluster:
            command += ["--kubeconfig", str(self.kubeconfig_path)]
        if namespace:
            command += ["--namespace", namespace]
        logger.debug(f"Running {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                env=self.env,
                check=False,
            )
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"helm executable '{self.binary}' not found",
                user_action="Install helm or set HELM_BINARY",
            ) from e
        if result.returncode != 0:
            message = (result.stderr or result.stdout).strip()
            logger.error(
                f"helm {args[0]} failed: {message}",
                extra={"component": "helm", "error_type": "HelmCommandError"},
            )
            raise RemoteOperationError("helm", message)
        return result.stdout

    # Repositories

    def list_repositories(self) -> list[dict[str, str]]:
        try:
            output = self._run(["repo", "list", "-o", "json"], cluster=False)
        except RemoteOperationError as e:
            if "no repositories" in str(e):
                return []
            raise
        return json.loads(output or "[]")

    def add_repository(self, name: str, url: str) -> None:
        """Register a chart repository and refresh every known index."""
        with file_lock(self.lock_path, timeout=self.lock_timeout):
            known = {repo["name"]: repo["url"] for repo in self.list_repositories()}
            if known.get(name) != url:
                logger.info(f"Adding repo {name} ({url})")
                self._run(["repo", "add", name, url, "--force-update"], cluster=False)
            self._update_repositories([*known, name])

    def _update_repositories(self, names: list[str]) -> None:
        """
        Refresh repository indexes in parallel.

        A failing repository is logged and skipped; the others still refresh.
        """
        unique = sorted(set(names))
        if not unique:
            return
        with ThreadPoolExecutor(max_workers=len(unique)) as pool:
            futures = {
                pool.submit(self._run, ["repo", "update", name], None, False): name
                for name in unique
            }
            for future in as_completed(futures):
                name = futures[future]
                try:
                    future.result()
                    logger.info(f"Successfully got an update from the {name} repo")
                except RemoteOperationError as e:
                    logger.warning(
                        f"Unable to get an update from the {name} repo: {e}",
                        extra={"component": "helm"},
                    )

    # Charts

    def pull_chart(
        self, chart: str, version: str | None, destination: str | Path
    ) -> Path:
        """Fetch and unpack a repository chart, returning its directory."""
        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)
        args = ["pull", chart, "--untar", "--untardir", str(destination)]
        if version:
            args += ["--version", version]
        self._run(args, cluster=False)
        return destination / chart.split("/")[-1]

    def missing_dependencies(self, chart_path: str | Path) -> list[str]:
        output = self._run(["dependency", "list", str(chart_path)], cluster=False)
        missing = []
        for line in output.splitlines()[1:]:
            columns = line.split()
            if columns and columns[-1].lower() == MISSING_DEPENDENCY_STATUS:
                missing.append(columns[0])
        return missing

    def check_dependencies(self, chart_path: str | Path, update: bool) -> None:
        """
        Make sure every dependency declared by a chart is present.

        Raises:
            ConfigurationError: If dependencies are missing and updates are off
        """
        missing = self.missing_dependencies(chart_path)
        if not missing:
            return
        if not update:
            raise ConfigurationError(
                "found in Chart.yaml, but missing in charts/ directory: "
                + ", ".join(missing),
                user_action="Vendor the chart dependencies or enable HELM_DEPENDENCY_UPDATE",
            )
        logger.info(f"Updating chart dependencies: {', '.join(missing)}")
        self._run(["dependency", "update", str(chart_path)], cluster=False)

    # Releases

    def install(
        self,
        name: str,
        chart_path: str | Path,
        namespace: str,
        values: dict[str, Any],
        version: str | None = None,
    ) -> str:
        return self._deploy("install", name, chart_path, namespace, values, version)

    def upgrade(
        self,
        name: str,
        chart_path: str | Path,
        namespace: str,
        values: dict[str, Any],
        version: str | None = None,
    ) -> str:
        return self._deploy("upgrade", name, chart_path, namespace, values, version)

    def _deploy(
        self,
        verb: str,
        name: str,
        chart_path: str | Path,
        namespace: str,
        values: dict[str, Any],
        version: str | None,
    ) -> str:
        with tempfile.NamedTemporaryFile(
            "w", suffix=".yaml", encoding="utf-8"
        ) as values_file:
            yaml.safe_dump(values, values_file, default_flow_style=False)
            values_file.flush()
            args = [verb, name, str(chart_path), "-f", values_file.name]
            if version:
                args += ["--version", version]
            self._run(args, namespace=namespace)
        logger.info(f"Release {name} {verb} submitted in {namespace}")
        return name

    def uninstall(self, name: str, namespace: str) -> None:
        try:
            self._run(["uninstall", name], namespace=namespace)
        except RemoteOperationError as e:
            if is_release_not_found(e):
                raise ReleaseNotFoundError(name, cause=e) from e
            raise

    def status(self, name: str, namespace: str) -> HelmStatusData:
        try:
            output = self._run(["status", name, "-o", "json"], namespace=namespace)
        except RemoteOperationError as e:
            if is_release_not_found(e):
                raise ReleaseNotFoundError(name, cause=e) from e
            raise
        return parse_status(json.loads(output))

    def list_releases(
        self, namespace: str, chart_name: str, version: str | None = None
    ) -> list[HelmListData]:
        output = self._run(["list", "--all", "--all-namespaces", "-o", "json"])
        return filter_releases(json.loads(output or "[]"), namespace, chart_name, version)


def parse_status(release: dict[str, Any]) -> HelmStatusData:
    """Normalize ``helm status -o json`` output."""
    metadata = (release.get("chart") or {}).get("metadata") or {}
    chart_name = metadata.get("name", "")
    chart_version = metadata.get("version", "")
    return HelmStatusData(
        status=ReleaseStatus.parse((release.get("info") or {}).get("status")),
        namespace=release.get("namespace", ""),
        chart_name=chart_name,
        chart_version=chart_version,
        chart=f"{chart_name}-{chart_version}" if chart_name else "",
        manifest=release.get("manifest", ""),
    )


def filter_releases(
    releases: list[dict[str, Any]],
    namespace: str,
    chart_name: str,
    version: str | None = None,
) -> list[HelmListData]:
    """Keep releases of ``chart_name`` (and ``version`` when given) in ``namespace``."""
    prefix = f"{chart_name}-"
    out = []
    for release in releases:
        chart = release.get("chart", "")
        if release.get("namespace") != namespace or not chart.startswith(prefix):
            continue
        chart_version = chart[len(prefix) :]
        # "nginx-ingress-1.0" must not match chart "nginx"
        if not chart_version[:1].isdigit():
            continue
        if version and chart_version != version:
            continue
        out.append(
            HelmListData(
                release_name=release.get("name", ""),
                chart_name=chart_name,
                chart_version=chart_version,
                chart=chart,
                namespace=namespace,
            )
        )
    return out
