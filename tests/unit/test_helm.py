"""
Unit tests for the helm command line wrapper in utils/helm.py.
"""

import json
import subprocess
from unittest.mock import patch

import pytest

from helm_release_operator.errors import (
    ConfigurationError,
    ReleaseNotFoundError,
    RemoteOperationError,
)
from helm_release_operator.models import ReleaseStatus
from helm_release_operator.utils.helm import HelmClient, filter_releases, parse_status


def _completed(stdout="", stderr="", returncode=0):
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


@pytest.fixture
def helm(operator_settings):
    return HelmClient(operator_settings, "/tmp/kc")


class TestRun:
    """Tests for command execution."""

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_cluster_commands_carry_kubeconfig_and_namespace(self, mock_run, helm):
        mock_run.return_value = _completed(stdout="ok")
        assert helm._run(["status", "web"], namespace="apps") == "ok"

        command = mock_run.call_args.args[0]
        assert command == ["helm", "status", "web", "--kubeconfig", "/tmp/kc", "--namespace", "apps"]
        env = mock_run.call_args.kwargs["env"]
        assert env["HELM_DRIVER"] == "secret"
        assert env["HELM_CONFIG_HOME"].endswith("config")

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_failure_carries_stderr(self, mock_run, helm):
        mock_run.return_value = _completed(stderr="Error: boom\n", returncode=1)
        with pytest.raises(RemoteOperationError) as exc_info:
            helm._run(["list"])
        assert "Error: boom" in str(exc_info.value)

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_missing_binary(self, mock_run, helm):
        mock_run.side_effect = FileNotFoundError("helm")
        with pytest.raises(ConfigurationError):
            helm._run(["version"], cluster=False)


class TestRepositories:
    """Tests for repository management."""

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_no_repositories_yet(self, mock_run, helm):
        mock_run.return_value = _completed(
            stderr="Error: no repositories to show", returncode=1
        )
        assert helm.list_repositories() == []

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_add_new_repository_refreshes_all(self, mock_run, helm):
        listing = json.dumps([{"name": "stable", "url": "https://charts.helm.sh/stable"}])

        def fake_run(command, **kwargs):
            if command[1:3] == ["repo", "list"]:
                return _completed(stdout=listing)
            return _completed()

        mock_run.side_effect = fake_run
        helm.add_repository("bitnami", "https://charts.bitnami.com")

        commands = [call.args[0][1:] for call in mock_run.call_args_list]
        assert ["repo", "add", "bitnami", "https://charts.bitnami.com", "--force-update"] in commands
        assert ["repo", "update", "bitnami"] in commands
        assert ["repo", "update", "stable"] in commands

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_known_repository_not_re_added(self, mock_run, helm):
        listing = json.dumps([{"name": "stable", "url": "https://charts.helm.sh/stable"}])
        mock_run.side_effect = lambda command, **kwargs: _completed(
            stdout=listing if command[1:3] == ["repo", "list"] else ""
        )
        helm.add_repository("stable", "https://charts.helm.sh/stable")
        commands = [call.args[0][1:3] for call in mock_run.call_args_list]
        assert ["repo", "add"] not in commands

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_failed_index_refresh_is_tolerated(self, mock_run, helm):
        def fake_run(command, **kwargs):
            if command[1:3] == ["repo", "list"]:
                return _completed(stdout="[]")
            if command[1:3] == ["repo", "update"]:
                return _completed(stderr="unreachable", returncode=1)
            return _completed()

        mock_run.side_effect = fake_run
        helm.add_repository("stable", "https://charts.helm.sh/stable")


class TestDependencies:
    """Tests for chart dependency checks."""

    DEPENDENCY_LIST = (
        "NAME       VERSION  REPOSITORY                          STATUS\n"
        "redis      17.0.0   https://charts.bitnami.com/bitnami  missing\n"
        "common     2.0.0    https://charts.bitnami.com/bitnami  ok\n"
    )

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_missing_dependency_fails_without_update(self, mock_run, helm):
        mock_run.return_value = _completed(stdout=self.DEPENDENCY_LIST)
        with pytest.raises(ConfigurationError) as exc_info:
            helm.check_dependencies("/charts/app", update=False)
        assert "found in Chart.yaml, but missing in charts/ directory: redis" in str(
            exc_info.value
        )

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_missing_dependency_updated(self, mock_run, helm):
        mock_run.return_value = _completed(stdout=self.DEPENDENCY_LIST)
        helm.check_dependencies("/charts/app", update=True)
        assert mock_run.call_args.args[0][1:] == ["dependency", "update", "/charts/app"]


class TestReleases:
    """Tests for release commands."""

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_status_not_found(self, mock_run, helm):
        mock_run.return_value = _completed(stderr="Error: release: not found", returncode=1)
        with pytest.raises(ReleaseNotFoundError):
            helm.status("web", "apps")

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_uninstall_not_found(self, mock_run, helm):
        mock_run.return_value = _completed(
            stderr="Error: uninstall: Release not loaded: web: release: not found",
            returncode=1,
        )
        with pytest.raises(ReleaseNotFoundError):
            helm.uninstall("web", "apps")

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_install_passes_values_file(self, mock_run, helm):
        seen = {}

        def fake_run(command, **kwargs):
            values_path = command[command.index("-f") + 1]
            with open(values_path, encoding="utf-8") as handle:
                seen["values"] = handle.read()
            return _completed()

        mock_run.side_effect = fake_run
        assert helm.install("web", "/charts/nginx", "apps", {"replicas": 2}) == "web"
        assert "replicas: 2" in seen["values"]


class TestParsing:
    """Tests for parse_status and filter_releases."""

    def test_parse_status(self):
        data = parse_status(
            {
                "name": "web",
                "namespace": "apps",
                "info": {"status": "deployed"},
                "chart": {"metadata": {"name": "nginx", "version": "1.2.3"}},
                "manifest": "---\nkind: Service\n",
            }
        )
        assert data.status == ReleaseStatus.DEPLOYED
        assert data.chart == "nginx-1.2.3"
        assert data.chart_name == "nginx"
        assert data.chart_version == "1.2.3"
        assert data.namespace == "apps"

    def test_filter_releases(self):
        releases = [
            {"name": "a", "namespace": "apps", "chart": "nginx-1.0.0"},
            {"name": "b", "namespace": "apps", "chart": "nginx-ingress-2.0.0"},
            {"name": "c", "namespace": "other", "chart": "nginx-1.0.0"},
            {"name": "d", "namespace": "apps", "chart": "nginx-1.1.0"},
        ]
        assert [r.release_name for r in filter_releases(releases, "apps", "nginx")] == ["a", "d"]
        only = filter_releases(releases, "apps", "nginx", "1.1.0")
        assert [r.release_name for r in only] == ["d"]
        assert only[0].chart_version == "1.1.0"

    @patch("helm_release_operator.utils.helm.subprocess.run")
    def test_list_releases_uses_all_namespaces(self, mock_run, helm):
        mock_run.return_value = _completed(stdout="[]")
        assert helm.list_releases("apps", "nginx") == []
        assert "--all-namespaces" in mock_run.call_args.args[0]
