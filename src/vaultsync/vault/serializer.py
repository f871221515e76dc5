"""Rendering of the merged data tree as env pairs, JSON or YAML."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

import yaml

from vaultsync.vault.errors import UnsupportedFormat
from vaultsync.vault.tree import InnerNode

logger = logging.getLogger(__name__)

TYPE_ENV = "env"
TYPE_JSON = "json"
TYPE_YAML = "yaml"

# Secret data keys may only contain alphanumerics, '-', '_' and '.'
_ENV_KEY_PATTERN = re.compile(r"[A-Za-z0-9._-]+")


def to_json(tree: InnerNode) -> bytes:
    return json.dumps(tree.to_dict(), indent=2, sort_keys=True, ensure_ascii=False).encode()


def to_yaml(tree: InnerNode) -> bytes:
    return yaml.safe_dump(
        tree.to_dict(),
        sort_keys=True,
        allow_unicode=True,
        default_flow_style=False,
    ).encode()


def stringify(value: Any) -> str:
    """Render a scalar the way it should appear on the right side of ``KEY=``."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _flatten_into(value: Any, key: str, separator: str, out: dict[str, str]) -> None:
    if isinstance(value, Mapping):
        for name, child in value.items():
            _flatten_into(child, f"{key}{separator}{name}" if key else str(name), separator, out)
    elif isinstance(value, (list, tuple)):
        for index, child in enumerate(value):
            _flatten_into(child, f"{key}{separator}{index}" if key else str(index), separator, out)
    else:
        out[key] = stringify(value)


def flatten(tree: InnerNode, separator: str = "_") -> dict[str, str]:
    """Flatten the tree into ``{joined_path: value}``.

    Structured leaf values are flattened too, list items keyed by index.
    """
    out: dict[str, str] = {}
    _flatten_into(tree.to_dict(), "", separator, out)
    return out


def is_valid_env_key(key: str) -> bool:
    return _ENV_KEY_PATTERN.fullmatch(key) is not None


def env_mapping(tree: InnerNode, separator: str = "_") -> dict[str, str]:
    """Flatten the tree and drop keys that are not valid Secret data keys."""
    envs: dict[str, str] = {}
    for key, value in flatten(tree, separator).items():
        if not is_valid_env_key(key):
            logger.warning("Dropping invalid key %r", key)
            continue
        envs[key] = value
    return envs


def to_env(tree: InnerNode, separator: str = "_") -> bytes:
    """Render ``KEY=value`` lines sorted by key."""
    envs = env_mapping(tree, separator)
    return "".join(f"{key}={envs[key]}\n" for key in sorted(envs)).encode()


def render(tree: InnerNode, target_format: str, separator: str = "_") -> bytes:
    """Serialize the tree in ``target_format`` (case-insensitive).

    Raises:
        UnsupportedFormat: If the format is not env, json or yaml.
    """
    fmt = target_format.lower()
    if fmt == TYPE_ENV:
        return to_env(tree, separator)
    if fmt == TYPE_JSON:
        return to_json(tree)
    if fmt == TYPE_YAML:
        return to_yaml(tree)
    raise UnsupportedFormat(target_format)
