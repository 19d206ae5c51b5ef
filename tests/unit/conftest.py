"""Shared fixtures for unit tests."""

import pytest

from helm_release_operator.settings import Settings


@pytest.fixture
def operator_settings(tmp_path):
    """Settings with every scratch location under tmp_path and no real waits."""
    return Settings(
        HELM_CACHE_HOME=str(tmp_path / "cache"),
        HELM_CONFIG_HOME=str(tmp_path / "config"),
        HELM_DATA_HOME=str(tmp_path / "data"),
        KUBECONFIG_SCRATCH_PATH=str(tmp_path / "kubeConfig"),
        CHART_WORKDIR=str(tmp_path / "charts"),
        BRIDGE_PACKAGE_PATH=str(tmp_path / "bridge.zip"),
        BRIDGE_CREATE_POLL_INTERVAL=0,
        BRIDGE_PENDING_POLL_INTERVAL=0,
        REPO_LOCK_TIMEOUT_SECONDS=1,
        AWS_REGION="us-east-1",
    )
