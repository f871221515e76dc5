"""Pydantic schemas for the VaultSecret custom resource."""

from vaultsync.schemas.vaultsecret import (
    ObjectMeta,
    ServiceAccountRef,
    VaultSecret,
    VaultSecretAuth,
    VaultSecretPath,
    VaultSecretSpec,
    VaultSecretStatus,
)

__all__ = [
    "ObjectMeta",
    "ServiceAccountRef",
    "VaultSecret",
    "VaultSecretAuth",
    "VaultSecretPath",
    "VaultSecretSpec",
    "VaultSecretStatus",
]
