"""Vault credentials: static tokens and cached service account logins.

Both providers satisfy the ``TokenProvider`` protocol. ``ServiceAccountToken``
exchanges a Kubernetes service account JWT for a Vault token through the
Kubernetes auth method and caches the result until shortly before it expires.
``TokenCache`` keeps one provider per identity for the life of the process so
concurrent reconciliations of resources with the same identity share it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiException, CoreV1Api

from vaultsync.vault.client import VaultClient
from vaultsync.vault.errors import IdentityUnavailable

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_TOKEN_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")


class TokenProvider(Protocol):
    """Anything that can hand out a usable Vault token."""

    async def token(self) -> str: ...


class StaticToken:
    """A fixed Vault token taken verbatim from the resource."""

    def __init__(self, value: str) -> None:
        self._value = value

    async def token(self) -> str:
        return self._value


@dataclass(frozen=True)
class AuthToken:
    """A Vault token and the wall-clock time (epoch seconds) it expires at."""

    value: str
    expires_at: float


class ServiceAccountToken:
    """Vault token obtained by logging in with a service account JWT.

    The JWT comes from the pod's mounted token file when ``automount`` is
    set, otherwise from the TokenRequest API for ``name`` in ``namespace``.
    Concurrent callers that all miss the cache may each log in; the last
    login wins and every returned token is valid. The cache is only touched
    between awaits on one event loop, so it needs no lock.

    Args:
        vault: Unauthenticated Vault client for the target address.
        core_api: Kubernetes CoreV1Api used for TokenRequest.
        name: Service account name.
        namespace: Service account namespace.
        role: Vault role to log in as.
        auth_path: Vault login path (e.g. auth/kubernetes/login).
        refresh_margin: Seconds before expiry at which a token is renewed.
        automount: Read the JWT from ``token_path`` instead of TokenRequest.
        token_path: Location of the mounted service account token.
        clock: Wall-clock source, epoch seconds.
    """

    def __init__(
        self,
        vault: VaultClient,
        core_api: CoreV1Api | None,
        name: str,
        namespace: str,
        role: str,
        auth_path: str,
        *,
        refresh_margin: float = 30.0,
        automount: bool = False,
        token_path: Path = SERVICE_ACCOUNT_TOKEN_PATH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.namespace = namespace
        self.role = role
        self.auth_path = auth_path
        self._vault = vault
        self._core_api = core_api
        self._refresh_margin = refresh_margin
        self._automount = automount
        self._token_path = token_path
        self._clock = clock
        self._cached: AuthToken | None = None

    @property
    def cached(self) -> AuthToken | None:
        return self._cached

    async def close(self) -> None:
        """Close the Vault client used for logins."""
        await self._vault.close()

    async def token(self) -> str:
        """Return the cached token, logging in again when it is about to expire.

        Raises:
            IdentityUnavailable: If the service account JWT cannot be obtained.
            ExchangeFailed: If Vault rejects the login.
            MalformedResponse: If the login response lacks a token or TTL.
        """
        cached = self._cached
        if cached is not None and self._clock() + self._refresh_margin < cached.expires_at:
            return cached.value

        jwt = await self.fetch_jwt()
        started = self._clock()
        value, ttl = await self._vault.login(self.auth_path, self.role, jwt)

        self._cached = AuthToken(value=value, expires_at=started + ttl)
        logger.info(
            "Obtained Vault token for %s/%s (role=%s, ttl=%ss)",
            self.namespace,
            self.name,
            self.role,
            ttl,
        )
        return value

    async def fetch_jwt(self) -> str:
        if self._automount:
            return self._read_mounted_token()

        if self._core_api is None:
            raise IdentityUnavailable("no Kubernetes client configured for TokenRequest")

        body = client.AuthenticationV1TokenRequest(
            metadata=client.V1ObjectMeta(name=self.name, namespace=self.namespace),
            spec=client.V1TokenRequestSpec(audiences=[]),
        )
        try:
            response = await self._core_api.create_namespaced_service_account_token(
                name=self.name,
                namespace=self.namespace,
                body=body,
            )
        except ApiException as exc:
            raise IdentityUnavailable(
                f"TokenRequest for service account {self.namespace}/{self.name} failed: "
                f"{exc.status} {exc.reason}"
            ) from exc

        token = getattr(response.status, "token", None) if response.status else None
        if not token:
            raise IdentityUnavailable(
                f"TokenRequest for service account {self.namespace}/{self.name} returned no token"
            )
        return token

    def _read_mounted_token(self) -> str:
        try:
            return self._token_path.read_text().strip()
        except OSError as exc:
            raise IdentityUnavailable(
                f"could not read JWT token from path {str(self._token_path)!r}: {exc}"
            ) from exc


@dataclass(frozen=True)
class TokenCacheKey:
    """Identity a cached Vault token belongs to."""

    addr: str
    namespace: str
    name: str
    role: str
    auth_path: str


class TokenCache:
    """Process-wide cache of ``ServiceAccountToken`` providers keyed by identity.

    Owned by the reconciler and closed at shutdown, which also closes the
    Vault clients the providers log in with.

    Args:
        core_api: Kubernetes CoreV1Api used for TokenRequest.
        refresh_margin: Seconds before expiry at which tokens are renewed.
        timeout: Per-request timeout for login calls.
        max_retries: Retries for login calls.
        retry_wait_min: First backoff delay for login retries.
        retry_wait_max: Upper bound for a single login retry delay.
    """

    def __init__(
        self,
        core_api: CoreV1Api | None,
        *,
        refresh_margin: float = 30.0,
        timeout: float = 60.0,
        max_retries: int = 2,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 30.0,
    ) -> None:
        self._core_api = core_api
        self._refresh_margin = refresh_margin
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max
        self._providers: dict[TokenCacheKey, ServiceAccountToken] = {}

    def __len__(self) -> int:
        return len(self._providers)

    def get(self, key: TokenCacheKey) -> ServiceAccountToken:
        """Return the provider for ``key``, creating it on first use."""
        provider = self._providers.get(key)
        if provider is not None:
            return provider

        vault = VaultClient(
            key.addr,
            timeout=self._timeout,
            max_retries=self._max_retries,
            retry_wait_min=self._retry_wait_min,
            retry_wait_max=self._retry_wait_max,
        )
        provider = ServiceAccountToken(
            vault,
            self._core_api,
            key.name,
            key.namespace,
            key.role,
            key.auth_path,
            refresh_margin=self._refresh_margin,
        )
        self._providers[key] = provider
        return provider

    async def close(self) -> None:
        """Close every provider's Vault client and forget cached tokens."""
        providers = list(self._providers.values())
        self._providers.clear()
        for provider in providers:
            await provider.close()
