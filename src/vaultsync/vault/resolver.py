"""Expansion of declared VaultSecret paths into concrete Vault paths.

A literal path resolves to itself. A path ending in ``*`` is crawled: the
wildcard is stripped, the remaining root is listed through the KV API, and
every entry ending in ``/`` is crawled in turn until only leaf secrets remain.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from vaultsync.schemas.vaultsecret import VaultSecretPath
from vaultsync.vault.client import MountInfo, VaultClient
from vaultsync.vault.errors import EngineUnavailable, UnsupportedEngineVersion
from vaultsync.vault.kv import add_prefix_to_kv_path
from vaultsync.vault.workgroup import WorkerGroup

logger = logging.getLogger(__name__)

SUPPORTED_ENGINE_VERSIONS = (1, 2)


@dataclass(frozen=True)
class ResolvedPath:
    """One concrete Vault secret discovered from a declared path.

    ``base_path`` is the declared path with the wildcard removed; the part of
    ``absolute_path`` below it decides where the secret lands in the tree.
    """

    absolute_path: str
    base_path: str
    prefix: str = ""

    @property
    def relative_path(self) -> str:
        return self.absolute_path.removeprefix(self.base_path)


@dataclass
class PathGroup:
    """All resolved paths that originate from one declared path."""

    declared: VaultSecretPath
    base_path: str
    paths: list[ResolvedPath] = field(default_factory=list)
    # Only known up front for crawled paths; literal paths learn it on fetch
    mount: MountInfo | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.declared.is_wildcard


def normalize_path(path: str) -> str:
    """Drop one leading slash so ``/a/b`` and ``a/b`` address the same secret."""
    return path[1:] if path.startswith("/") else path


def check_engine_version(path: str, mount: MountInfo) -> None:
    if mount.version not in SUPPORTED_ENGINE_VERSIONS:
        raise UnsupportedEngineVersion(path, mount.version)


class PathResolver:
    """Resolve declared paths against a Vault server.

    Args:
        client: Authenticated Vault client.
        concurrency: Maximum concurrent sub-directory crawls per level.
    """

    def __init__(self, client: VaultClient, concurrency: int = 10) -> None:
        self._client = client
        self._concurrency = concurrency

    async def resolve(self, declared: Sequence[VaultSecretPath]) -> list[PathGroup]:
        """Resolve every declared path, in declaration order."""
        groups = []
        for spec in declared:
            groups.append(await self.resolve_one(spec))
        return groups

    async def resolve_one(self, spec: VaultSecretPath) -> PathGroup:
        path = normalize_path(spec.path)
        if not spec.is_wildcard:
            return PathGroup(
                declared=spec,
                base_path=path,
                paths=[ResolvedPath(path, path, spec.prefix)],
            )

        root = path[:-1]
        mount, leaves = await self._crawl_root(root)
        logger.debug("Resolved %r to %d paths", spec.path, len(leaves))
        return PathGroup(
            declared=spec,
            base_path=root,
            paths=[ResolvedPath(leaf, root, spec.prefix) for leaf in leaves],
            mount=mount,
        )

    async def crawl(self, root: str) -> list[str]:
        """Return every leaf secret path below ``root``.

        Raises:
            EngineUnavailable: If ``root`` or any sub-directory lists nothing.
            UnsupportedEngineVersion: If the mount is neither KV1 nor KV2.
        """
        _, leaves = await self._crawl_root(root)
        return leaves

    async def _crawl_root(self, root: str) -> tuple[MountInfo, list[str]]:
        mount = await self._client.mount_info(root)
        check_engine_version(root, mount)

        leaves: list[str] = []

        async def crawl_dir(path: str) -> None:
            list_path = path
            if mount.version == 2:
                list_path = add_prefix_to_kv_path(path, mount.path, "metadata")

            keys = await self._client.list_keys(list_path)
            if not keys:
                raise EngineUnavailable(f"no value found in path: {path!r}")

            async with WorkerGroup(self._concurrency) as group:
                for key in keys:
                    full_path = path + key
                    if key.endswith("/"):
                        group.go(crawl_dir, full_path)
                    else:
                        leaves.append(full_path)

        await crawl_dir(root)
        return mount, leaves
