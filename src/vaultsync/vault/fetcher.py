"""Concurrent reads of resolved Vault paths.

Missing and empty paths are skipped so one stale path does not block the sync
of everything else; any other failure aborts the whole fetch.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from vaultsync.vault.client import MountInfo, VaultClient
from vaultsync.vault.errors import EmptyPath, NotFoundPath
from vaultsync.vault.kv import add_prefix_to_kv_path
from vaultsync.vault.resolver import ResolvedPath, check_engine_version
from vaultsync.vault.workgroup import WorkerGroup

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of reading one resolved path.

    ``bundle`` stays ``None`` for skipped paths. ``mount`` is recorded as soon
    as the mount lookup succeeds, even if the read itself is skipped.
    """

    path: ResolvedPath
    bundle: dict[str, Any] | None = None
    mount: MountInfo | None = None

    @property
    def engine_version(self) -> int | None:
        return self.mount.version if self.mount is not None else None


class ConcurrentFetcher:
    """Read many Vault paths with bounded parallelism.

    Args:
        client: Authenticated Vault client.
        concurrency: Maximum number of reads in flight.
    """

    def __init__(self, client: VaultClient, concurrency: int = 20) -> None:
        self._client = client
        self._concurrency = concurrency

    async def fetch(self, paths: Iterable[ResolvedPath]) -> list[FetchResult]:
        """Read every path and return one result per path, in input order."""
        results = [FetchResult(path) for path in paths]
        async with WorkerGroup(self._concurrency) as group:
            for result in results:
                group.go(self._fetch_one, result)
        return results

    async def _fetch_one(self, result: FetchResult) -> None:
        path = result.path.absolute_path
        result.mount = await self._client.mount_info(path)
        try:
            result.bundle = await self.read(path, result.mount)
        except NotFoundPath as exc:
            logger.warning("Skipping %s: %s", path, exc)
        except EmptyPath:
            logger.debug("Skipping empty path %s", path)

    async def read(self, path: str, mount: MountInfo) -> dict[str, Any]:
        """Read the key/value data stored at ``path`` on ``mount``.

        Raises:
            NotFoundPath: If nothing exists at ``path``.
            EmptyPath: If the secret exists but holds no data.
            UnsupportedEngineVersion: If the mount is neither KV1 nor KV2.
        """
        check_engine_version(path, mount)
        api_path = path
        if mount.version == 2:
            api_path = add_prefix_to_kv_path(path, mount.path, "data")

        envelope = await self._client.read(api_path)
        if envelope is None:
            raise EmptyPath(api_path)

        data = envelope.get("data")
        if mount.version == 2:
            data = data.get("data") if isinstance(data, dict) else None
        if not isinstance(data, dict) or not data:
            raise EmptyPath(api_path)
        return data
