"""Shared fixtures: an in-memory Vault behind respx and a fake Kubernetes API."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterator
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from kubernetes_asyncio.client import ApiException, V1ObjectMeta, V1Secret

from vaultsync.config import Settings
from vaultsync.vault.client import VaultClient

VAULT_ADDR = "http://vault.test:8200"
ROOT_TOKEN = "root-token"
LOGIN_PATH = "auth/kubernetes/login"


def seed_data() -> dict[str, dict[str, Any]]:
    return {
        "secret/seeds/team1/project1/secret": {"a": "1", "b": "10"},
        "secret/seeds/team1/project2/secret": {"c": "3"},
        "secret/seeds/team2/project1/secret": {"db_user": "app", "db_pass": "hunter2"},
        "secret/seeds/team3/a/b/c/deep": {"depth": "3"},
        "secret/seeds/team3/a/top": {"depth": "1"},
        "secret/seeds/team4/project2/complex": {
            "nested": {"x": "1", "y": ["a", "b"]},
            "enabled": True,
        },
        "secret/seeds/empty/secret": {},
        "v1/something/a/secret": {"user": "admin", "pass": "pw"},
        "v1/something/b/secret": {"token": "t0k"},
    }


class FakeVault:
    """Just enough of Vault's HTTP API for the operator: mounts, KV1/KV2, login."""

    def __init__(self) -> None:
        self.mounts: dict[str, int] = {"secret/": 2, "v1/": 1}
        self.secrets = seed_data()
        self.deleted: set[str] = set()
        self.tokens = {ROOT_TOKEN}
        self.roles = {"default", "team1"}
        self.ttl = 3600
        self.logins: list[dict[str, Any]] = []
        self.requests: list[tuple[str, str]] = []
        self.login_response: dict[str, Any] | None = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1/")
        self.requests.append((request.method, path))

        if path.startswith("sys/internal/ui/mounts/"):
            return self._mount_info(path.removeprefix("sys/internal/ui/mounts/"))
        if request.method == "POST" and path == LOGIN_PATH:
            return self._login(request)
        if request.headers.get("X-Vault-Token") not in self.tokens:
            return httpx.Response(403, json={"errors": ["permission denied"]})
        if request.url.params.get("list") == "true":
            return self._list(path)
        return self._read(path)

    def reads(self) -> list[str]:
        return [path for method, path in self.requests if method == "GET"]

    def _find_mount(self, path: str) -> str | None:
        for mount in self.mounts:
            if path.startswith(mount) or path == mount.rstrip("/"):
                return mount
        return None

    def _mount_info(self, path: str) -> httpx.Response:
        mount = self._find_mount(path)
        if mount is None:
            return httpx.Response(404, json={"errors": []})
        version = self.mounts[mount]
        options = {"version": str(version)} if version != 1 else None
        return httpx.Response(
            200,
            json={"data": {"path": mount, "type": "kv", "options": options}},
        )

    def _logical(self, path: str, section: str) -> str | None:
        mount = self._find_mount(path)
        if mount is None:
            return None
        if self.mounts[mount] == 1:
            return path
        rest = path[len(mount):]
        if rest == section:
            return mount
        if not rest.startswith(section + "/"):
            return None
        return mount + rest[len(section) + 1:]

    def _list(self, path: str) -> httpx.Response:
        logical = self._logical(path, "metadata")
        if logical is None:
            return httpx.Response(404, json={"errors": []})
        prefix = logical if logical.endswith("/") else logical + "/"
        keys = set()
        for stored in self.secrets:
            if stored.startswith(prefix):
                head, sep, _ = stored[len(prefix):].partition("/")
                keys.add(head + ("/" if sep else ""))
        if not keys:
            return httpx.Response(404, json={"errors": []})
        return httpx.Response(200, json={"data": {"keys": sorted(keys)}})

    def _read(self, path: str) -> httpx.Response:
        logical = self._logical(path, "data")
        if logical in self.deleted:
            # KV2 answers 404 for a deleted version but still returns its metadata
            return httpx.Response(
                404,
                json={"data": {"data": None, "metadata": {"deletion_time": "2026-01-01T00:00:00Z"}}},
            )
        data = self.secrets.get(logical) if logical else None
        if data is None:
            return httpx.Response(404, json={"errors": []})
        if self.mounts[self._find_mount(path)] == 2:
            return httpx.Response(
                200, json={"data": {"data": data, "metadata": {"version": 1}}}
            )
        return httpx.Response(200, json={"data": data})

    def _login(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body.get("role") not in self.roles or not body.get("jwt"):
            return httpx.Response(400, json={"errors": ["invalid role"]})
        self.logins.append(body)
        if self.login_response is not None:
            return httpx.Response(200, json=self.login_response)
        token = f"login-token-{len(self.logins)}"
        self.tokens.add(token)
        return httpx.Response(
            200,
            json={"auth": {"client_token": token, "lease_duration": self.ttl}},
        )


@pytest.fixture
def fake_vault() -> Iterator[FakeVault]:
    vault = FakeVault()
    with respx.mock(base_url=VAULT_ADDR, assert_all_called=False) as router:
        router.route().mock(side_effect=vault.handle)
        yield vault


@pytest.fixture
async def vault_client(fake_vault: FakeVault) -> AsyncIterator[VaultClient]:
    client = VaultClient(VAULT_ADDR, token=ROOT_TOKEN)
    yield client
    await client.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        vault_addr=VAULT_ADDR,
        vault_ui_addr="",
        default_sa_auth_path=LOGIN_PATH,
        role="",
    )


def _not_found() -> ApiException:
    return ApiException(status=404, reason="Not Found")


class FakeCluster:
    """In-memory VaultSecrets, Secrets and Events behind AsyncMock API objects."""

    def __init__(self) -> None:
        self.vault_secrets: dict[tuple[str, str], dict[str, Any]] = {}
        self.secrets: dict[tuple[str, str], V1Secret] = {}
        self._version = 0

        self.core_api = AsyncMock()
        self.core_api.read_namespaced_secret.side_effect = self._read_secret
        self.core_api.create_namespaced_secret.side_effect = self._create_secret
        self.core_api.replace_namespaced_secret.side_effect = self._replace_secret
        self.core_api.create_namespaced_event.return_value = None
        self.core_api.create_namespaced_service_account_token.side_effect = self._token_request

        self.custom_api = AsyncMock()
        self.custom_api.get_namespaced_custom_object.side_effect = self._get_vault_secret
        self.custom_api.list_cluster_custom_object.side_effect = self._list_vault_secrets
        self.custom_api.replace_namespaced_custom_object_status.side_effect = self._replace_status

    def add_vault_secret(
        self,
        name: str,
        spec: dict[str, Any],
        namespace: str = "default",
        generation: int = 1,
    ) -> None:
        self.vault_secrets[(namespace, name)] = {
            "apiVersion": "k8s.kiwi.com/v1",
            "kind": "VaultSecret",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": f"uid-{name}",
                "generation": generation,
                "resourceVersion": self._next_version(),
            },
            "spec": spec,
        }

    def events(self) -> list[Any]:
        return [call.kwargs["body"] for call in self.core_api.create_namespaced_event.await_args_list]

    def event_reasons(self) -> list[str]:
        return [event.reason for event in self.events()]

    def writes(self) -> int:
        return (
            self.core_api.create_namespaced_secret.await_count
            + self.core_api.replace_namespaced_secret.await_count
        )

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _snapshot(self, secret: V1Secret) -> V1Secret:
        meta = secret.metadata
        return V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=V1ObjectMeta(
                name=meta.name,
                namespace=meta.namespace,
                labels=dict(meta.labels or {}),
                annotations=dict(meta.annotations or {}),
                owner_references=meta.owner_references,
                resource_version=self._next_version(),
            ),
            type=secret.type,
            data=dict(secret.data or {}),
        )

    async def _read_secret(self, name: str, namespace: str) -> V1Secret:
        stored = self.secrets.get((namespace, name))
        if stored is None:
            raise _not_found()
        return self._snapshot(stored)

    async def _create_secret(self, namespace: str, body: V1Secret) -> V1Secret:
        key = (namespace, body.metadata.name)
        if key in self.secrets:
            raise ApiException(status=409, reason="AlreadyExists")
        self.secrets[key] = self._snapshot(body)
        return self.secrets[key]

    async def _replace_secret(self, name: str, namespace: str, body: V1Secret) -> V1Secret:
        if (namespace, name) not in self.secrets:
            raise _not_found()
        self.secrets[(namespace, name)] = self._snapshot(body)
        return self.secrets[(namespace, name)]

    async def _token_request(self, name: str, namespace: str, body: Any) -> Any:
        return SimpleNamespace(status=SimpleNamespace(token=f"jwt-{namespace}-{name}"))

    async def _get_vault_secret(self, group: str, version: str, namespace: str, plural: str, name: str) -> dict[str, Any]:
        stored = self.vault_secrets.get((namespace, name))
        if stored is None:
            raise _not_found()
        return json.loads(json.dumps(stored))

    async def _list_vault_secrets(self, group: str, version: str, plural: str) -> dict[str, Any]:
        return {"items": [json.loads(json.dumps(obj)) for obj in self.vault_secrets.values()]}

    async def _replace_status(
        self, group: str, version: str, namespace: str, plural: str, name: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        stored = self.vault_secrets.get((namespace, name))
        if stored is None:
            raise _not_found()
        stored["status"] = body.get("status")
        return stored


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
