"""K8s V1Secret builder for synced Vault data.

Renders the merged data tree into Secret ``data`` entries, labels the Secret
as owned by its VaultSecret and annotates it with links to the source paths
in the Vault UI.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterable
from urllib.parse import quote

from kubernetes_asyncio.client import V1ObjectMeta, V1OwnerReference, V1Secret

from vaultsync.schemas.vaultsecret import VaultSecret, VaultSecretPath
from vaultsync.vault.client import MountInfo
from vaultsync.vault.errors import UnsupportedFormat
from vaultsync.vault.kv import split_mount
from vaultsync.vault.resolver import normalize_path
from vaultsync.vault.serializer import TYPE_ENV, TYPE_JSON, TYPE_YAML, env_mapping, to_json, to_yaml
from vaultsync.vault.tree import InnerNode

MANAGED_BY = "vault-secret-operator"
MANAGED_BY_LABEL = "managed-by"
OWNER_LABEL = "owner"
UI_URLS_ANNOTATION = "k8s-vault-operator/vault-ui-urls"
# Annotations the operator rewrites on every pass; all others are left alone
MANAGED_ANNOTATIONS = frozenset({UI_URLS_ANNOTATION})

JSON_FILENAME = "secrets.json"
YAML_FILENAME = "secrets.yaml"

_MAX_LABEL_LENGTH = 63


def owner_label(name: str) -> str:
    """Return ``name``, or its truncated sha256 digest if too long for a label."""
    if len(name) <= _MAX_LABEL_LENGTH:
        return name
    return hashlib.sha256(name.encode()).hexdigest()[:_MAX_LABEL_LENGTH]


def ui_base_addr(configured: str, addr: str) -> str:
    """Pick the Vault UI address: the configured one, else ``<addr>/ui``."""
    if configured:
        return configured.rstrip("/")
    if addr:
        return addr.rstrip("/") + "/ui"
    return ""


def secret_contents(data: InnerNode, target_format: str, separator: str) -> dict[str, bytes]:
    """Render ``data`` into Secret entries for ``target_format``.

    JSON and YAML become a single file entry; env becomes one entry per
    flattened key.

    Raises:
        UnsupportedFormat: If the format is not env, json or yaml.
    """
    fmt = target_format.lower()
    if fmt == TYPE_ENV:
        return {key: value.encode() for key, value in env_mapping(data, separator).items()}
    if fmt == TYPE_JSON:
        return {JSON_FILENAME: to_json(data)}
    if fmt == TYPE_YAML:
        return {YAML_FILENAME: to_yaml(data)}
    raise UnsupportedFormat(target_format)


def encode_data(contents: dict[str, bytes]) -> dict[str, str]:
    """Base64-encode Secret values the way the API serves them."""
    return {key: base64.b64encode(value).decode() for key, value in contents.items()}


def build_ui_url(ui_addr: str, declared: VaultSecretPath, mount: MountInfo | None) -> str:
    """Build the Vault UI link for one declared path.

    KV1 paths get a ``show`` link. KV2 paths get a ``list`` link when
    wildcarded, else a ``show`` link whose relative path has ``/`` encoded as
    ``%2F``. Paths whose engine version is unknown use the KV1 rule.
    """
    path = normalize_path(declared.path).removesuffix("*")
    mount_name, relative = split_mount(path, mount.path if mount else "")
    base = f"{ui_addr}/vault/secrets/{mount_name}"

    if mount is not None and mount.version == 2:
        if declared.is_wildcard:
            return f"{base}/kv/list/{relative}"
        return f"{base}/kv/{quote(relative, safe='')}"
    return f"{base}/show/{relative}"


def build_ui_urls(
    ui_addr: str,
    path_mounts: Iterable[tuple[VaultSecretPath, MountInfo | None]],
) -> str:
    """Join one UI link per declared path with commas."""
    return ",".join(build_ui_url(ui_addr, declared, mount) for declared, mount in path_mounts)


def build_target_secret(
    vault_secret: VaultSecret,
    data: InnerNode,
    path_mounts: list[tuple[VaultSecretPath, MountInfo | None]],
    ui_addr: str = "",
) -> V1Secret:
    """Build the Secret a VaultSecret should produce.

    Args:
        vault_secret: Validated VaultSecret (defaults already applied).
        data: Merged data tree read from Vault.
        path_mounts: Each declared path with the mount it was read from.
        ui_addr: Vault UI base address; no link annotation when empty.

    Returns:
        A V1Secret with base64-encoded data, ready for create or replace.

    Raises:
        UnsupportedFormat: If the target format is not env, json or yaml.
    """
    spec = vault_secret.spec
    meta = vault_secret.metadata
    contents = secret_contents(data, spec.target_format, spec.get_separator())

    annotations: dict[str, str] = {}
    if ui_addr and path_mounts:
        annotations[UI_URLS_ANNOTATION] = build_ui_urls(ui_addr, path_mounts)

    owner_references = None
    if meta.uid:
        owner_references = [
            V1OwnerReference(
                api_version=vault_secret.api_version,
                kind=vault_secret.kind,
                name=meta.name,
                uid=meta.uid,
                controller=True,
                block_owner_deletion=True,
            )
        ]

    return V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=V1ObjectMeta(
            name=spec.target_secret_name,
            namespace=meta.namespace,
            labels={
                OWNER_LABEL: owner_label(meta.name),
                MANAGED_BY_LABEL: MANAGED_BY,
            },
            annotations=annotations,
            owner_references=owner_references,
        ),
        type="Opaque",
        data=encode_data(contents),
    )
