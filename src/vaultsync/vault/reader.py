"""Read pipeline: resolve declared paths, fetch them and merge the result.

``SecretReader`` is shared by the reconciler and the one-shot reader CLI.
"""

from __future__ import annotations

import logging
from typing import IO

from vaultsync.config import Settings
from vaultsync.schemas.vaultsecret import VaultSecret, VaultSecretPath
from vaultsync.vault.auth import TokenProvider
from vaultsync.vault.client import MountInfo, VaultClient
from vaultsync.vault.fetcher import ConcurrentFetcher, FetchResult
from vaultsync.vault.resolver import PathGroup, PathResolver
from vaultsync.vault.serializer import TYPE_JSON, render
from vaultsync.vault.tree import InnerNode, build_tree

logger = logging.getLogger(__name__)


class SecretReader:
    """Collect the secrets a VaultSecret declares into one data tree.

    Use ``connect`` to build a reader with an authenticated client, then
    ``read_data`` to run the pipeline.

    Args:
        client: Authenticated Vault client, owned (and closed) by the reader.
        secret: The VaultSecret whose paths should be read.
        settings: Operator settings (concurrency limits).
    """

    def __init__(self, client: VaultClient, secret: VaultSecret, settings: Settings) -> None:
        self.client = client
        self.secret = secret
        self._settings = settings
        self._groups: list[PathGroup] = []
        self._results: list[FetchResult] = []
        self._data: InnerNode | None = None

    @classmethod
    async def connect(
        cls,
        tokener: TokenProvider,
        secret: VaultSecret,
        settings: Settings,
    ) -> SecretReader:
        """Create a reader whose client is authenticated with ``tokener``'s token."""
        client = VaultClient(
            secret.spec.addr,
            timeout=settings.client_timeout,
            max_retries=settings.client_max_retries,
            retry_wait_min=settings.client_retry_wait_min,
            retry_wait_max=settings.client_retry_wait_max,
        )
        try:
            client.set_token(await tokener.token())
        except BaseException:
            await client.close()
            raise
        return cls(client, secret, settings)

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> SecretReader:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def data(self) -> InnerNode:
        if self._data is None:
            raise RuntimeError("read_data() has not been called")
        return self._data

    async def read_data(self) -> InnerNode:
        """Resolve, fetch and merge every declared path.

        Raises:
            EngineUnavailable: If a wildcard root lists nothing.
            UnsupportedEngineVersion: If a path lives on a non-KV mount.
            StoreRequestError: On any failed Vault call other than not-found.
            DuplicateKey: If two paths write the same key at the same place.
        """
        resolver = PathResolver(self.client, self._settings.crawl_concurrency)
        self._groups = await resolver.resolve(self.secret.spec.paths)

        fetcher = ConcurrentFetcher(self.client, self._settings.fetch_concurrency)
        self._results = await fetcher.fetch(
            path for group in self._groups for path in group.paths
        )
        self._data = build_tree(self._results)
        logger.debug(
            "Read %d of %d paths for %s/%s",
            sum(1 for result in self._results if result.bundle),
            len(self._results),
            self.secret.metadata.namespace,
            self.secret.metadata.name,
        )
        return self._data

    def path_mounts(self) -> list[tuple[VaultSecretPath, MountInfo | None]]:
        """Pair each declared path with the mount it was read from.

        The mount is ``None`` when it could not be determined, e.g. when a
        literal path's mount lookup never ran.
        """
        mounts = []
        offset = 0
        for group in self._groups:
            results = self._results[offset:offset + len(group.paths)]
            offset += len(group.paths)
            mount = group.mount
            if mount is None:
                mount = next((r.mount for r in results if r.mount is not None), None)
            mounts.append((group.declared, mount))
        return mounts

    def write(self, stream: IO[bytes], target_format: str) -> None:
        """Write the merged data to ``stream`` in ``target_format``.

        Raises:
            UnsupportedFormat: If the format is not env, json or yaml.
        """
        payload = render(self.data, target_format, self.secret.spec.get_separator())
        if target_format.lower() == TYPE_JSON:
            payload += b"\n"
        stream.write(payload)
