"""Pydantic v2 models for the VaultSecret custom resource.

Field aliases follow the CRD's camelCase JSON names so objects returned by the
Kubernetes API (or read from a manifest) validate directly, and
``model_dump(by_alias=True)`` produces a body the API accepts back.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

API_GROUP = "k8s.kiwi.com"
API_VERSION = "v1"
KIND = "VaultSecret"
PLURAL = "vaultsecrets"

DEFAULT_SEPARATOR = "_"


class _CRDModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class VaultSecretPath(_CRDModel):
    """One declared source location; a trailing ``*`` makes it a wildcard."""

    path: str
    prefix: str = ""

    @field_validator("prefix", mode="before")
    @classmethod
    def _none_prefix(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_wildcard(self) -> bool:
        return self.path.endswith("*")


class ServiceAccountRef(_CRDModel):
    """Service account whose token is exchanged for a Vault token."""

    name: str = ""
    auth_path: str = Field(default="", alias="authPath")
    role: str = ""


class VaultSecretAuth(_CRDModel):
    """Either a static Vault token or a service account reference."""

    service_account_ref: ServiceAccountRef | None = Field(
        default=None, alias="serviceAccountRef"
    )
    token: str = ""


class VaultSecretSpec(_CRDModel):
    """Desired state of a VaultSecret."""

    addr: str = ""
    separator: str = ""
    paths: list[VaultSecretPath] = Field(default_factory=list)
    target_secret_name: str = Field(default="", alias="targetSecretName")
    target_format: str = Field(default="", alias="targetFormat")
    reconcile_period: str = Field(default="", alias="reconcilePeriod")
    auth: VaultSecretAuth = Field(default_factory=VaultSecretAuth)

    @field_validator("paths", "auth", mode="before")
    @classmethod
    def _none_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return [] if info.field_name == "paths" else {}
        return value

    def get_separator(self) -> str:
        return self.separator or DEFAULT_SEPARATOR


class VaultSecretStatus(_CRDModel):
    """Observed state of a VaultSecret."""

    last_updated: str = Field(default="", alias="lastUpdated")


class ObjectMeta(_CRDModel):
    """The subset of object metadata the operator reads.

    Unknown metadata fields are kept so the object can be written back.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = ""
    namespace: str = ""
    uid: str = ""
    generation: int = 0
    resource_version: str = Field(default="", alias="resourceVersion")


class VaultSecret(_CRDModel):
    """The VaultSecret custom resource."""

    api_version: str = Field(default=f"{API_GROUP}/{API_VERSION}", alias="apiVersion")
    kind: str = KIND
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: VaultSecretSpec = Field(default_factory=VaultSecretSpec)
    status: VaultSecretStatus = Field(default_factory=VaultSecretStatus)

    @field_validator("spec", "status", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value
