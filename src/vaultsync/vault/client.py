"""Async HTTP client for the subset of the Vault API the operator consumes.

Wraps an ``httpx.AsyncClient`` bound to one Vault address. Transport errors,
5xx and 429 responses are retried up to ``max_retries`` times with exponential
backoff; every other failure is surfaced to the caller immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vaultsync.vault.errors import (
    ExchangeFailed,
    MalformedResponse,
    NotFoundPath,
    StoreRequestError,
    UnsupportedEngineVersion,
)

logger = logging.getLogger(__name__)


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"Vault returned {response.status_code}")
        self.response = response


def _should_retry(response: httpx.Response) -> bool:
    return response.status_code == 429 or response.status_code >= 500


@dataclass(frozen=True)
class MountInfo:
    """Mount path and KV engine version that serve a given path."""

    path: str
    version: int


class VaultClient:
    """Thin async client for Vault's KV, mount lookup and login endpoints.

    Args:
        addr: Vault base address (e.g. http://vault:8200).
        token: Optional client token sent as ``X-Vault-Token``.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after a transport error, 5xx or 429 response.
        retry_wait_min: First backoff delay in seconds.
        retry_wait_max: Upper bound for a single backoff delay in seconds.
    """

    def __init__(
        self,
        addr: str,
        token: str | None = None,
        *,
        timeout: float = 60.0,
        max_retries: int = 2,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 30.0,
    ) -> None:
        self.addr = addr.rstrip("/")
        self.max_retries = max_retries
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max
        self._client = httpx.AsyncClient(base_url=self.addr, timeout=timeout)
        if token:
            self.set_token(token)

    def set_token(self, token: str) -> None:
        """Use ``token`` for every subsequent request."""
        self._client.headers["X-Vault-Token"] = token

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> VaultClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(
                multiplier=self._retry_wait_min,
                min=self._retry_wait_min,
                max=self._retry_wait_max,
            ),
            retry=retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._client.request(method, f"/v1/{path}", **kwargs)
                    if _should_retry(response):
                        raise _RetryableStatus(response)
        except _RetryableStatus as exc:
            # Out of retries, let the caller judge the last response
            return exc.response
        except httpx.HTTPError as exc:
            raise StoreRequestError(f"{method} {path} failed: {exc}") from exc
        return response

    @staticmethod
    def _json(response: httpx.Response, path: str) -> dict[str, Any] | None:
        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponse(f"invalid JSON from Vault at {path!r}") from exc
        if body is not None and not isinstance(body, dict):
            raise MalformedResponse(f"unexpected payload from Vault at {path!r}")
        return body

    @staticmethod
    def _raise_for_status(response: httpx.Response, path: str) -> None:
        if response.is_success:
            return
        raise StoreRequestError(
            f"Vault returned {response.status_code} for {path!r}: {response.text.strip()}",
            status_code=response.status_code,
        )

    async def mount_info(self, path: str) -> MountInfo:
        """Look up the mount serving ``path`` and its KV engine version.

        Vault releases that predate the mount lookup endpoint answer 404, in
        which case the mount is unknown and version 1 is assumed.

        Raises:
            UnsupportedEngineVersion: If the mount reports a non-numeric version.
            StoreRequestError: On any other failed request.
        """
        api_path = f"sys/internal/ui/mounts/{path}"
        response = await self._request("GET", api_path)
        if response.status_code == 404:
            return MountInfo(path="", version=1)
        self._raise_for_status(response, api_path)

        body = self._json(response, api_path)
        if body is None:
            raise MalformedResponse("nil response from pre-flight request")
        data = body.get("data") or {}
        mount_path = data.get("path") or ""
        options = data.get("options") or {}
        raw_version = options.get("version")
        if raw_version in (None, ""):
            return MountInfo(path=mount_path, version=1)
        try:
            version = int(raw_version)
        except (TypeError, ValueError) as exc:
            raise UnsupportedEngineVersion(path, raw_version) from exc
        return MountInfo(path=mount_path, version=version)

    async def read(self, path: str) -> dict[str, Any] | None:
        """Read the raw secret envelope at ``path``.

        Returns ``None`` when Vault answers without a body. A 404 that still
        carries data or warnings (e.g. a deleted KV2 version) is returned as-is.

        Raises:
            NotFoundPath: If nothing exists at ``path``.
            StoreRequestError: On any other failed request.
        """
        response = await self._request("GET", path)
        if response.status_code == 404:
            try:
                body = self._json(response, path)
            except MalformedResponse:
                body = None
            if body and (body.get("data") or body.get("warnings")):
                return body
            raise NotFoundPath(path)
        self._raise_for_status(response, path)
        return self._json(response, path)

    async def list_keys(self, path: str) -> list[str] | None:
        """List the keys directly below ``path``; ``None`` if there are none.

        Directory entries keep their trailing ``/``.
        """
        response = await self._request("GET", path, params={"list": "true"})
        if response.status_code == 404:
            return None
        self._raise_for_status(response, path)

        body = self._json(response, path)
        if body is None:
            return None
        keys = (body.get("data") or {}).get("keys")
        if keys is None:
            return None
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            raise MalformedResponse(f"cannot read keys as a list of strings at path: {path!r}")
        return keys

    async def login(self, auth_path: str, role: str, jwt: str) -> tuple[str, float]:
        """Exchange a JWT for a Vault token via the given auth login path.

        Returns:
            Tuple of (client token, TTL in seconds).

        Raises:
            ExchangeFailed: If Vault rejects the login.
            MalformedResponse: If the token or its TTL is missing.
        """
        path = auth_path.strip("/")
        try:
            response = await self._request("POST", path, json={"role": role, "jwt": jwt})
        except StoreRequestError as exc:
            raise ExchangeFailed(f"failed to login to Vault with JWT: {exc}") from exc
        if not response.is_success:
            raise ExchangeFailed(
                f"failed to login to Vault with JWT: {response.status_code} {response.text.strip()}"
            )

        body = self._json(response, path) or {}
        auth = body.get("auth") or {}
        token = auth.get("client_token")
        if not isinstance(token, str) or not token:
            raise MalformedResponse("could not read auth token from response")
        ttl = auth.get("lease_duration")
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
            raise MalformedResponse("could not read auth token TTL from response")
        logger.debug("Logged in to Vault at %s (ttl=%ss)", self.addr, ttl)
        return token, float(ttl)
