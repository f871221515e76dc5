"""Address helpers for the two KV engine versions.

KV version 2 mounts expose secrets under ``<mount>/data/<path>`` for reads and
``<mount>/metadata/<path>`` for listings, while version 1 mounts use the plain
path for both.
"""

from __future__ import annotations

import posixpath


def _join(*parts: str) -> str:
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    return posixpath.normpath(joined)


def add_prefix_to_kv_path(path: str, mount_path: str, api_prefix: str) -> str:
    """Insert ``api_prefix`` right after the mount segment of ``path``.

    The mount path reported by Vault may carry a namespace that the request
    path omits, so leading mount segments are dropped until the remainder
    matches.

    >>> add_prefix_to_kv_path("secret/team/app", "secret/", "data")
    'secret/data/team/app'
    >>> add_prefix_to_kv_path("secret/", "secret/", "metadata")
    'secret/metadata'
    """
    if path == mount_path or path == mount_path.rstrip("/"):
        return _join(mount_path, api_prefix)

    trimmed = path.removeprefix(mount_path)
    while trimmed == path:
        partial = mount_path.split("/", 1)
        if len(partial) <= 1 or partial[1] == "":
            break
        mount_path = partial[1].removesuffix("/")
        trimmed = trimmed.removeprefix(mount_path)

    return _join(mount_path, api_prefix, trimmed)


def split_mount(path: str, mount_path: str) -> tuple[str, str]:
    """Split ``path`` into ``(mount, relative)`` with no slashes around the mount.

    Vault versions without the mount lookup endpoint report no mount, in
    which case the first path segment is taken as the mount.
    """
    if mount_path and path.startswith(mount_path):
        return mount_path.strip("/"), path[len(mount_path):].lstrip("/")
    if mount_path and path == mount_path.rstrip("/"):
        return path, ""
    head, _, rest = path.partition("/")
    return head, rest
