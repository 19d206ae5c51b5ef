"""
Chart source resolution and release naming.

A chart reference is either a repository reference (``repo/name`` or a bare
``name`` from the stable repository) or the URL of a packaged chart archive
reachable over HTTP(S) or S3.
"""

import logging
import re
import tarfile
import time
from pathlib import Path
from urllib.parse import urlparse

import httpx

from helm_release_operator.constants import DEFAULT_CHART_REPO, STABLE_REPO_URL
from helm_release_operator.errors import RemoteOperationError, ValidationError
from helm_release_operator.models import ChartDetails, ChartType, DesiredSpec
from helm_release_operator.utils import aws
from helm_release_operator.utils.values import parse_s3_url

logger = logging.getLogger(__name__)

_CHART_NAME_PATTERN = re.compile(r"[A-Za-z]+")


def get_chart_details(spec: DesiredSpec, local_path: str) -> ChartDetails:
    """
    Resolve where a chart comes from.

    Args:
        spec: Desired release specification
        local_path: Where an archive chart will be downloaded to

    Raises:
        ValidationError: If no chart is given or the archive name is unusable
    """
    if not spec.chart:
        raise ValidationError("Chart is required", field="chart")

    parsed = urlparse(spec.chart)
    if parsed.netloc:
        segment = parsed.path.rstrip("/").split("/")[-1] or parsed.netloc
        match = _CHART_NAME_PATTERN.search(segment)
        if not match:
            raise ValidationError(
                f"cannot derive a chart name from '{spec.chart}'", field="chart"
            )
        details = ChartDetails(
            chart=local_path,
            chart_name=match.group(0),
            chart_type=ChartType.LOCAL,
            chart_path=spec.chart,
        )
    else:
        repo, _, name = spec.chart.partition("/")
        if not name:
            repo, name = DEFAULT_CHART_REPO, spec.chart
        details = ChartDetails(
            chart=f"{repo}/{name}",
            chart_name=name,
            chart_type=ChartType.REMOTE,
            chart_repo=repo,
        )

    details.chart_version = spec.version
    details.chart_repo_url = spec.repository or STABLE_REPO_URL
    return details


def get_release_name(
    name: str | None, chart_name: str | None, now: float | None = None
) -> str | None:
    """Explicit name wins; otherwise derive ``<chart>-<unix seconds>``."""
    if name:
        return name
    if chart_name:
        return f"{chart_name}-{int(now if now is not None else time.time())}"
    return None


def download_chart_archive(
    url: str, destination: str | Path, clients: aws.AWSClients, timeout: float = 60.0
) -> Path:
    """
    Download a packaged chart from an HTTP(S) or s3:// URL.

    Raises:
        RemoteOperationError: If the archive cannot be fetched
    """
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)

    if urlparse(url).scheme.lower() == "s3":
        bucket, key = parse_s3_url(url, field="chart")
        region = aws.get_bucket_region(clients.s3(), bucket)
        aws.download_s3(clients.s3(region=region), bucket, key, str(target))
        return target

    logger.info(f"Getting {url} ...")
    try:
        with httpx.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            response.raise_for_status()
            with target.open("wb") as handle:
                for chunk in response.iter_bytes():
                    handle.write(chunk)
    except httpx.HTTPError as e:
        logger.error(
            f"Failed to download chart archive {url}: {e}",
            extra={"component": "helm"},
        )
        raise RemoteOperationError("helm", f"downloading {url}: {e}", cause=e) from e
    return target


def extract_chart(archive: str | Path, destination: str | Path) -> Path:
    """Unpack a chart archive and return the chart directory inside it."""
    destination = Path(destination)
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive, "r:*") as tar:
            roots = {Path(member.name).parts[0] for member in tar.getmembers()}
            tar.extractall(destination, filter="data")
    except (tarfile.TarError, OSError) as e:
        raise ValidationError(f"invalid chart archive: {e}", field="chart") from e
    if len(roots) != 1:
        raise ValidationError(
            "chart archive must contain exactly one top-level directory", field="chart"
        )
    return destination / roots.pop()
