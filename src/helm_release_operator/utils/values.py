"""
Chart values processing.

Values are assembled from three sources, later ones winning:
- a YAML document (valueYaml)
- dotted key=value assignments (values)
- a YAML file stored in S3 (valueOverrideURL)
"""

import logging
import re
from typing import Any
from urllib.parse import urlparse

import yaml

from helm_release_operator.errors import ValidationError

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"^-?(0|[1-9][0-9]*)$")


def merge_maps(a: dict[str, Any], b: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge b into a copy of a. Nested mappings merge, anything else is replaced."""
    out = dict(a)
    for key, value in b.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = merge_maps(out[key], value)
            continue
        out[key] = value
    return out


def _typed(value: str) -> Any:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None
    if _INT_PATTERN.match(value):
        return int(value)
    return value


def set_path(target: dict[str, Any], key: str, value: str) -> None:
    """
    Assign a dotted key into a nested mapping (``a.b.c=value``).

    Dots can be escaped with a backslash to keep them in the key name.
    """
    parts = [p.replace("\\.", ".") for p in re.split(r"(?<!\\)\.", key)]
    if not all(parts):
        raise ValidationError(f"invalid values key '{key}'", field="values")
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = _typed(value)


def parse_set_values(values: dict[str, str] | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in (values or {}).items():
        set_path(out, key, str(value))
    return out


def load_yaml_mapping(document: str | bytes | None, source: str) -> dict[str, Any]:
    if not document:
        return {}
    try:
        data = yaml.safe_load(document)
    except yaml.YAMLError as e:
        raise ValidationError(f"invalid YAML in {source}: {e}", field=source) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"{source} must be a YAML mapping", field=source)
    return data


def parse_s3_url(url: str, field: str = "valueOverrideURL") -> tuple[str, str]:
    """Split ``s3://bucket/key`` into bucket and key."""
    parsed = urlparse(url)
    if parsed.scheme.lower() != "s3" or not parsed.netloc:
        raise ValidationError(f"'{url}' is not an s3:// URL", field=field)
    return parsed.netloc, parsed.path.lstrip("/")
