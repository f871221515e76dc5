"""Error taxonomy for the Vault sync pipeline.

Soft errors (``PathSkipped`` subclasses) are absorbed by the fetch stage and
only logged. ``ValidationError`` and ``UnsupportedFormat`` are terminal for a
resource until a user edits it. Everything else aborts the current pass and is
retried on the next one.
"""

from __future__ import annotations


class VaultSyncError(Exception):
    """Base class for all vaultsync errors."""


class PathSkipped(VaultSyncError):
    """A single source path produced no data and is skipped."""

    reason = "path skipped"

    def __init__(self, path: str) -> None:
        super().__init__(f"{self.reason}: {path}")
        self.path = path


class NotFoundPath(PathSkipped):
    reason = "path doesn't exist"


class EmptyPath(PathSkipped):
    reason = "path is empty"


class StoreRequestError(VaultSyncError):
    """A Vault HTTP call failed for a reason other than not-found."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EngineUnavailable(VaultSyncError):
    """A wildcard crawl root could not be listed."""


class UnsupportedEngineVersion(VaultSyncError):
    def __init__(self, path: str, version: object) -> None:
        super().__init__(
            f"unsupported secret engine version at {path!r}, expected 1 or 2, got {version!r}"
        )
        self.path = path
        self.version = version


class MalformedResponse(VaultSyncError):
    """Vault answered with a payload that could not be interpreted."""


class AuthError(VaultSyncError):
    """Base class for credential failures."""


class IdentityUnavailable(AuthError):
    """The workload identity assertion could not be obtained."""


class ExchangeFailed(AuthError):
    """Vault rejected the identity exchange (login)."""


class DuplicateKey(VaultSyncError):
    """Two sources wrote the same key at the same place in the data tree."""

    def __init__(self, key: str, node_path: tuple[str, ...] = ()) -> None:
        location = "/".join(node_path) or "<root>"
        super().__init__(f"override detected: key {key!r} is already used at {location}")
        self.key = key
        self.node_path = node_path


class ValidationError(VaultSyncError):
    """The VaultSecret resource is invalid and needs a manual fix."""


class UnsupportedFormat(VaultSyncError):
    def __init__(self, target_format: str) -> None:
        super().__init__(f"{target_format!r} is not supported as output format")
        self.target_format = target_format


class TargetStoreError(VaultSyncError):
    """A Kubernetes API call on the target Secret or the resource failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
