"""User-facing Kubernetes Events attached to VaultSecrets."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from kubernetes_asyncio.client import (
    ApiException,
    CoreV1Api,
    CoreV1Event,
    V1EventSource,
    V1ObjectMeta,
    V1ObjectReference,
)

from vaultsync.schemas.vaultsecret import VaultSecret

logger = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"

REASON_CREATED = "created"
REASON_UPDATED = "updated"
REASON_INVALID = "invalid resource"
REASON_VAULT_FAILED = "vault failed"
REASON_VAULT_READ_FAILED = "vault read failed"
REASON_SYNC_REJECTED = "sync rejected"
REASON_TARGET_FAILED = "target failed"


class EventRecorder:
    """Posts core v1 Events for VaultSecrets.

    Failing to post an event is logged and otherwise ignored.

    Args:
        core_api: CoreV1Api used to create events.
        component: Reported event source.
    """

    def __init__(self, core_api: CoreV1Api, component: str = "vault-operator") -> None:
        self._core_api = core_api
        self.component = component

    async def normal(self, vault_secret: VaultSecret, reason: str, message: str) -> None:
        await self.record(vault_secret, EVENT_NORMAL, reason, message)

    async def warning(self, vault_secret: VaultSecret, reason: str, error: Exception | str) -> None:
        await self.record(vault_secret, EVENT_WARNING, reason, str(error))

    async def record(
        self,
        vault_secret: VaultSecret,
        event_type: str,
        reason: str,
        message: str,
    ) -> None:
        meta = vault_secret.metadata
        now = datetime.now(timezone.utc)
        event = CoreV1Event(
            metadata=V1ObjectMeta(generate_name=f"{meta.name}.", namespace=meta.namespace),
            involved_object=V1ObjectReference(
                api_version=vault_secret.api_version,
                kind=vault_secret.kind,
                name=meta.name,
                namespace=meta.namespace,
                uid=meta.uid or None,
                resource_version=meta.resource_version or None,
            ),
            reason=reason,
            message=message,
            type=event_type,
            source=V1EventSource(component=self.component),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )
        try:
            await self._core_api.create_namespaced_event(namespace=meta.namespace, body=event)
        except ApiException as e:
            logger.warning(
                "Failed to record %s event %r for %s/%s: %s %s",
                event_type,
                reason,
                meta.namespace,
                meta.name,
                e.status,
                e.reason,
            )
