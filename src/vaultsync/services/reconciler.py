"""Reconciliation of one VaultSecret into its target Secret.

One pass loads the VaultSecret, validates and defaults it, authenticates to
Vault, reads and merges the declared paths, builds the desired Secret and
converges the cluster onto it with as few writes as possible. Invalid
resources and rejected syncs are terminal until the resource is edited; every
other failure is raised so the controller retries it with backoff.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from kubernetes_asyncio.client import V1Secret

from vaultsync.config import Settings
from vaultsync.k8s.target_secret import (
    MANAGED_ANNOTATIONS,
    MANAGED_BY,
    MANAGED_BY_LABEL,
    build_target_secret,
    ui_base_addr,
)
from vaultsync.schemas.vaultsecret import ServiceAccountRef, VaultSecret
from vaultsync.services import events, metrics
from vaultsync.services.events import EventRecorder
from vaultsync.services.secret_manager import SecretManager
from vaultsync.utils.duration import parse_duration
from vaultsync.vault.auth import StaticToken, TokenCache, TokenCacheKey, TokenProvider
from vaultsync.vault.errors import UnsupportedFormat, ValidationError
from vaultsync.vault.reader import SecretReader
from vaultsync.vault.serializer import TYPE_ENV

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a successful or terminal pass.

    ``requeue_after`` is the delay in seconds before the next pass, or
    ``None`` when the resource should not be requeued.
    """

    requeue_after: float | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VaultSecretReconciler:
    """Drives VaultSecrets to their desired Secrets.

    Args:
        manager: Kubernetes access for VaultSecrets and Secrets.
        recorder: Event recorder for user-facing events.
        token_cache: Process-wide cache of service account logins.
        settings: Operator settings.
        clock: Source of the status timestamp.
    """

    def __init__(
        self,
        manager: SecretManager,
        recorder: EventRecorder,
        token_cache: TokenCache,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.manager = manager
        self.recorder = recorder
        self.token_cache = token_cache
        self.settings = settings
        self._clock = clock

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconciliation pass for ``namespace/name``.

        Raises:
            VaultSyncError: On any retryable failure (Vault, auth, merge or
                Kubernetes API); a warning event is recorded first.
        """
        logger.info("Reconciling VaultSecret %s/%s", namespace, name)
        started = time.perf_counter()

        vault_secret = await self.manager.get_vault_secret(namespace, name)
        if vault_secret is None:
            logger.info("VaultSecret %s/%s has been removed", namespace, name)
            return ReconcileResult()

        try:
            period = self.validate(vault_secret)
        except ValidationError as exc:
            logger.error("VaultSecret %s/%s is invalid: %s", namespace, name, exc)
            await self.recorder.warning(vault_secret, events.REASON_INVALID, exc)
            return ReconcileResult()

        # Only passes that get past validation are measured
        failed = False
        try:
            return await self._sync(namespace, name, vault_secret, period)
        except Exception:
            failed = True
            raise
        finally:
            metrics.observe_reconcile(
                namespace, name, time.perf_counter() - started, failed=failed
            )

    async def _sync(
        self, namespace: str, name: str, vault_secret: VaultSecret, period: float
    ) -> ReconcileResult:
        spec = vault_secret.spec
        try:
            reader = await SecretReader.connect(
                self.token_provider(vault_secret), vault_secret, self.settings
            )
        except Exception as exc:
            await self.recorder.warning(vault_secret, events.REASON_VAULT_FAILED, exc)
            raise

        async with reader:
            try:
                data = await reader.read_data()
            except Exception as exc:
                await self.recorder.warning(vault_secret, events.REASON_VAULT_READ_FAILED, exc)
                raise

            try:
                desired = build_target_secret(
                    vault_secret,
                    data,
                    reader.path_mounts(),
                    ui_base_addr(self.settings.vault_ui_addr, spec.addr),
                )
            except UnsupportedFormat as exc:
                logger.info("Sync of %s/%s rejected: %s", namespace, name, exc)
                await self.recorder.warning(vault_secret, events.REASON_SYNC_REJECTED, exc)
                return ReconcileResult()

        try:
            await self.converge(vault_secret, desired)
            vault_secret.status.last_updated = self._clock().strftime("%Y-%m-%dT%H:%M:%SZ")
            await self.manager.update_status(vault_secret)
        except Exception as exc:
            await self.recorder.warning(vault_secret, events.REASON_TARGET_FAILED, exc)
            raise

        if period == 0:
            logger.info(
                "Finished reconciling VaultSecret %s/%s (no periodic requeue)", namespace, name
            )
            return ReconcileResult()
        logger.info(
            "Finished reconciling VaultSecret %s/%s (requeue in %ss)", namespace, name, period
        )
        return ReconcileResult(requeue_after=period)

    def validate(self, vault_secret: VaultSecret) -> float:
        """Apply defaults to ``vault_secret.spec`` in place.

        Returns:
            The reconcile period in seconds; 0 disables periodic requeues.

        Raises:
            ValidationError: If the period is invalid or negative, or a required default
                (Vault address, service account name or auth path) is unset.
        """
        spec = vault_secret.spec
        settings = self.settings

        if not spec.target_secret_name:
            spec.target_secret_name = vault_secret.metadata.name
        if not spec.target_format:
            spec.target_format = TYPE_ENV
        if not spec.reconcile_period:
            spec.reconcile_period = settings.default_reconcile_period

        try:
            period = parse_duration(spec.reconcile_period)
        except ValueError as exc:
            raise ValidationError(f"VaultSecret.Spec.ReconcilePeriod is invalid: {exc}") from exc
        if period < 0:
            raise ValidationError(
                f"VaultSecret.Spec.ReconcilePeriod must not be negative: {spec.reconcile_period!r}"
            )

        if not spec.addr:
            if not settings.vault_addr:
                raise ValidationError("default vault addr from app config is empty")
            spec.addr = settings.vault_addr

        if spec.auth.token:
            return period

        if spec.auth.service_account_ref is None:
            spec.auth.service_account_ref = ServiceAccountRef()
        ref = spec.auth.service_account_ref

        if not ref.name:
            if not settings.default_sa_name:
                raise ValidationError("default SA name from app config is empty")
            ref.name = settings.default_sa_name

        if not ref.auth_path:
            if not settings.default_sa_auth_path:
                raise ValidationError("default SA auth path from app config is empty")
            ref.auth_path = settings.default_sa_auth_path

        if not ref.role:
            ref.role = settings.role or vault_secret.metadata.namespace

        return period

    def token_provider(self, vault_secret: VaultSecret) -> TokenProvider:
        """Pick the credential source for a validated VaultSecret."""
        spec = vault_secret.spec
        if spec.auth.token:
            return StaticToken(spec.auth.token)

        ref = spec.auth.service_account_ref
        assert ref is not None, "validate() must run first"
        return self.token_cache.get(
            TokenCacheKey(
                addr=spec.addr,
                namespace=vault_secret.metadata.namespace,
                name=ref.name,
                role=ref.role,
                auth_path=ref.auth_path,
            )
        )

    async def converge(self, vault_secret: VaultSecret, desired: V1Secret) -> None:
        """Create, replace or leave alone the target Secret.

        Annotations and labels set by others on an existing Secret are kept;
        operator-managed annotations are always taken from ``desired``.
        """
        meta = desired.metadata
        found = await self.manager.get_secret(meta.namespace, meta.name)
        if found is None:
            await self.manager.create_secret(desired)
            await self.recorder.normal(vault_secret, events.REASON_CREATED, "Secret has been created.")
            return

        found_labels = found.metadata.labels or {}
        managed_by = found_labels.get(MANAGED_BY_LABEL)
        if managed_by and managed_by != MANAGED_BY:
            logger.info(
                "Syncing existing Secret %s/%s that was not managed by vault operator",
                meta.namespace,
                meta.name,
            )

        found_annotations = found.metadata.annotations or {}
        annotations = {
            key: value
            for key, value in found_annotations.items()
            if key not in MANAGED_ANNOTATIONS
        }
        annotations.update(meta.annotations or {})
        labels = {**found_labels, **(meta.labels or {})}

        if (
            (found.data or {}) == (desired.data or {})
            and found_annotations == annotations
            and found_labels == labels
        ):
            logger.debug("Secret %s/%s is up to date", meta.namespace, meta.name)
            return

        meta.annotations = annotations
        meta.labels = labels
        meta.resource_version = found.metadata.resource_version
        await self.manager.replace_secret(desired)
        await self.recorder.normal(vault_secret, events.REASON_UPDATED, "Secret has been updated.")
