"""Async Kubernetes access for VaultSecrets and their target Secrets.

Wraps kubernetes-asyncio CoreV1Api and CustomObjectsApi. Handles in-cluster
and local kubeconfig loading with fallback pattern.
"""

from __future__ import annotations

import logging
from typing import Any

import pydantic
from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import ApiException, CoreV1Api, CustomObjectsApi, V1Secret

from vaultsync.schemas.vaultsecret import API_GROUP, API_VERSION, PLURAL, VaultSecret
from vaultsync.vault.errors import TargetStoreError

logger = logging.getLogger(__name__)


async def load_k8s_config() -> None:
    """Load K8s config: in-cluster if available, local kubeconfig otherwise."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        await config.load_kube_config()
        logger.info("Loaded local kubeconfig")


def _store_error(action: str, exc: ApiException) -> TargetStoreError:
    return TargetStoreError(f"{action} failed: {exc.status} {exc.reason}", status=exc.status)


class SecretManager:
    """Reads VaultSecrets and converges their target Secrets.

    Call initialize() once at application startup to load K8s config and
    create the API clients, or pass ready-made ``core_api``/``custom_api``
    objects. Call close() at shutdown to clean up.

    Args:
        namespace: Namespace to watch; empty means all namespaces.
        core_api: Optional pre-built CoreV1Api.
        custom_api: Optional pre-built CustomObjectsApi.
    """

    def __init__(
        self,
        namespace: str = "",
        *,
        core_api: CoreV1Api | None = None,
        custom_api: CustomObjectsApi | None = None,
    ) -> None:
        self.namespace = namespace
        self._core_api = core_api
        self._custom_api = custom_api
        self._api_client: client.ApiClient | None = None

    @property
    def core_api(self) -> CoreV1Api:
        assert self._core_api is not None, "SecretManager not initialized"
        return self._core_api

    @property
    def custom_api(self) -> CustomObjectsApi:
        assert self._custom_api is not None, "SecretManager not initialized"
        return self._custom_api

    async def initialize(self) -> None:
        """Load K8s config and create the API clients."""
        await load_k8s_config()
        self._api_client = client.ApiClient()
        self._core_api = client.CoreV1Api(self._api_client)
        self._custom_api = client.CustomObjectsApi(self._api_client)
        logger.info("SecretManager initialized (namespace=%r)", self.namespace or "<all>")

    async def close(self) -> None:
        """Close the K8s API client connection."""
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None
            logger.info("SecretManager closed")

    # -- VaultSecret resources --------------------------------------------

    async def get_vault_secret(self, namespace: str, name: str) -> VaultSecret | None:
        """Fetch one VaultSecret, or None if it does not exist.

        Raises:
            TargetStoreError: On any API failure other than 404.
        """
        try:
            obj = await self.custom_api.get_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=PLURAL,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise _store_error(f"get VaultSecret {namespace}/{name}", e) from e
        return VaultSecret.model_validate(obj)

    async def list_vault_secrets(self) -> list[VaultSecret]:
        """List VaultSecrets in the watched namespace (or cluster-wide).

        Objects that do not match the schema are logged and skipped.
        """
        try:
            if self.namespace:
                response = await self.custom_api.list_namespaced_custom_object(
                    group=API_GROUP,
                    version=API_VERSION,
                    namespace=self.namespace,
                    plural=PLURAL,
                )
            else:
                response = await self.custom_api.list_cluster_custom_object(
                    group=API_GROUP,
                    version=API_VERSION,
                    plural=PLURAL,
                )
        except ApiException as e:
            raise _store_error("list VaultSecrets", e) from e

        secrets = []
        for item in response.get("items", []):
            try:
                secrets.append(VaultSecret.model_validate(item))
            except pydantic.ValidationError:
                meta = item.get("metadata") or {}
                logger.warning(
                    "Skipping malformed VaultSecret %s/%s",
                    meta.get("namespace"),
                    meta.get("name"),
                )
        return secrets

    async def update_status(self, vault_secret: VaultSecret) -> None:
        """Write ``vault_secret.status`` through the status subresource."""
        meta = vault_secret.metadata
        body: dict[str, Any] = vault_secret.model_dump(by_alias=True, mode="json")
        try:
            await self.custom_api.replace_namespaced_custom_object_status(
                group=API_GROUP,
                version=API_VERSION,
                namespace=meta.namespace,
                plural=PLURAL,
                name=meta.name,
                body=body,
            )
        except ApiException as e:
            raise _store_error(
                f"update status of VaultSecret {meta.namespace}/{meta.name}", e
            ) from e

    # -- Target Secrets ----------------------------------------------------

    async def get_secret(self, namespace: str, name: str) -> V1Secret | None:
        """Fetch a Secret, or None if it does not exist."""
        try:
            return await self.core_api.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _store_error(f"get Secret {namespace}/{name}", e) from e

    async def create_secret(self, secret: V1Secret) -> None:
        meta = secret.metadata
        try:
            await self.core_api.create_namespaced_secret(namespace=meta.namespace, body=secret)
        except ApiException as e:
            raise _store_error(f"create Secret {meta.namespace}/{meta.name}", e) from e
        logger.info("Created Secret '%s' in namespace '%s'", meta.name, meta.namespace)

    async def replace_secret(self, secret: V1Secret) -> None:
        """Replace a Secret; ``metadata.resource_version`` guards against lost updates."""
        meta = secret.metadata
        try:
            await self.core_api.replace_namespaced_secret(
                name=meta.name,
                namespace=meta.namespace,
                body=secret,
            )
        except ApiException as e:
            raise _store_error(f"replace Secret {meta.namespace}/{meta.name}", e) from e
        logger.info("Updated Secret '%s' in namespace '%s'", meta.name, meta.namespace)
