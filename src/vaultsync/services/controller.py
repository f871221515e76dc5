"""Background controller loop that schedules VaultSecret reconciliations.

Runs as an asyncio background task. Every ``interval`` seconds it lists
VaultSecrets, schedules the ones that are new, edited (generation changed) or
due for a requeue, and reconciles them with bounded concurrency. Failed
passes are retried with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from vaultsync.services.reconciler import VaultSecretReconciler
from vaultsync.services.secret_manager import SecretManager
from vaultsync.vault.errors import VaultSyncError

logger = logging.getLogger(__name__)

# Backoff constants
_BACKOFF_BASE_SECONDS = 10
_BACKOFF_MAX_SECONDS = 600
_MIN_SLEEP_SECONDS = 1.0

ResourceKey = tuple[str, str]


def backoff_delay(failures: int) -> float:
    """Delay before retry number ``failures``: 10s, 20s, 40s, ... capped at 600s."""
    return min(_BACKOFF_BASE_SECONDS * (2 ** max(failures - 1, 0)), _BACKOFF_MAX_SECONDS)


@dataclass
class _Entry:
    generation: int
    # Monotonic time of the next pass; None parks the resource until it is edited
    due: float | None
    failures: int = 0


class ControllerLoop:
    """Schedules reconciliations of every VaultSecret the manager can list.

    A resource is never reconciled twice at the same time. A terminal result
    (no requeue) parks the resource until its generation changes. Deleted
    resources are forgotten.

    Args:
        manager: Kubernetes access used to list VaultSecrets.
        reconciler: Reconciler run for each scheduled resource.
        interval: Seconds between listings.
        max_concurrent: Maximum reconciliations in flight.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        manager: SecretManager,
        reconciler: VaultSecretReconciler,
        interval: float = 30,
        max_concurrent: int = 5,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.manager = manager
        self.reconciler = reconciler
        self.interval = interval
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._task: asyncio.Task[None] | None = None
        self._entries: dict[ResourceKey, _Entry] = {}
        self._running: set[ResourceKey] = set()
        self._inflight: set[asyncio.Task[None]] = set()
        self._ready = False

    @property
    def ready(self) -> bool:
        """True once the first listing has completed."""
        return self._ready

    def entry(self, namespace: str, name: str) -> _Entry | None:
        return self._entries.get((namespace, name))

    async def start(self) -> None:
        """Start the controller background task."""
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Controller loop started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        """Cancel the background task and any in-flight reconciliations."""
        tasks = list(self._inflight)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._inflight.clear()
        self._running.clear()
        logger.info("Controller loop stopped")

    async def join(self) -> None:
        """Wait until every scheduled reconciliation has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.sync_once()
            except Exception:
                logger.exception("Controller cycle failed")
            await asyncio.sleep(self._sleep_seconds())

    def _sleep_seconds(self) -> float:
        now = self._clock()
        due = [
            entry.due - now
            for key, entry in self._entries.items()
            if entry.due is not None and key not in self._running
        ]
        return max(min([self.interval, *due]), _MIN_SLEEP_SECONDS)

    async def sync_once(self) -> None:
        """List VaultSecrets and start reconciliations for every due resource."""
        secrets = await self.manager.list_vault_secrets()
        now = self._clock()

        seen: set[ResourceKey] = set()
        for vault_secret in secrets:
            meta = vault_secret.metadata
            key = (meta.namespace, meta.name)
            seen.add(key)
            entry = self._entries.get(key)
            if entry is None or entry.generation != meta.generation:
                self._entries[key] = _Entry(generation=meta.generation, due=now)

        for key in list(self._entries):
            if key not in seen:
                del self._entries[key]
                logger.debug("Forgot deleted VaultSecret %s/%s", *key)

        self._ready = True

        for key, entry in self._entries.items():
            if entry.due is None or entry.due > now or key in self._running:
                continue
            self._running.add(key)
            task = asyncio.create_task(self._process(key, entry))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _process(self, key: ResourceKey, entry: _Entry) -> None:
        namespace, name = key
        try:
            async with self._semaphore:
                result = await self.reconciler.reconcile(namespace, name)
        except VaultSyncError as exc:
            self._schedule_retry(entry)
            logger.error(
                "Reconciling %s/%s failed (attempt %d, retry in %ss): %s",
                namespace,
                name,
                entry.failures,
                backoff_delay(entry.failures),
                exc,
            )
        except Exception:
            self._schedule_retry(entry)
            logger.exception(
                "Reconciling %s/%s failed (attempt %d)", namespace, name, entry.failures
            )
        else:
            entry.failures = 0
            if result.requeue_after is None or result.requeue_after <= 0:
                entry.due = None
            else:
                entry.due = self._clock() + result.requeue_after
        finally:
            self._running.discard(key)

    def _schedule_retry(self, entry: _Entry) -> None:
        entry.failures += 1
        entry.due = self._clock() + backoff_delay(entry.failures)
