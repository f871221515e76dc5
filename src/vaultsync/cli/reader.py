"""Print the secrets a VaultSecret manifest would sync, without a cluster.

Reads the manifest, authenticates with the token from ``VAULT_TOKEN``, runs
the read pipeline and writes the merged data to stdout::

    VAULT_TOKEN=... vaultsync-reader --path vaultsecret.yaml -o json
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
import sys
from pathlib import Path
from typing import Annotated

import pydantic
import yaml
from cyclopts import App, Parameter

from vaultsync.config import Settings, get_settings
from vaultsync.schemas.vaultsecret import VaultSecret
from vaultsync.vault.auth import StaticToken
from vaultsync.vault.errors import ValidationError, VaultSyncError
from vaultsync.vault.reader import SecretReader

app = App(help="Print the Vault data a VaultSecret manifest resolves to.")


def load_manifest(path: Path) -> VaultSecret:
    """Parse a VaultSecret manifest from a YAML file.

    Raises:
        OSError: If the file cannot be read.
        ValidationError: If the file is not a VaultSecret mapping.
    """
    try:
        document = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ValidationError(f"could not parse YAML: {exc}") from exc
    if not isinstance(document, dict):
        raise ValidationError(f"{path} does not contain a VaultSecret manifest")
    try:
        return VaultSecret.model_validate(document)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"invalid VaultSecret manifest {path}: {exc}") from exc


async def read_manifest(
    vault_secret: VaultSecret,
    token: str,
    output: str,
    settings: Settings,
) -> bytes:
    """Run the read pipeline for ``vault_secret`` and render it as ``output``."""
    if not vault_secret.spec.addr:
        vault_secret.spec.addr = settings.vault_addr

    reader = await SecretReader.connect(StaticToken(token), vault_secret, settings)
    async with reader:
        await reader.read_data()
        buffer = io.BytesIO()
        reader.write(buffer, output)
    return buffer.getvalue()


@app.default
def main(
    *,
    path: Annotated[Path | None, Parameter(name="--path", help="Path to VaultSecret manifest.")] = None,
    output: Annotated[str, Parameter(name=["--output", "-o"], help="Output format: env/json/yaml.")] = "env",
) -> int:
    """Print the secrets a VaultSecret manifest resolves to."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    token = os.environ.get("VAULT_TOKEN", "")
    if not token:
        print("error: VAULT_TOKEN env variable must be set", file=sys.stderr)
        return 1
    if path is None:
        print("error: --path must be set", file=sys.stderr)
        return 1

    try:
        vault_secret = load_manifest(path)
        payload = asyncio.run(read_manifest(vault_secret, token, output, settings))
    except OSError as exc:
        print(f"error: could not read file ({path}): {exc}", file=sys.stderr)
        return 1
    except VaultSyncError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    sys.stdout.write(payload.decode())
    sys.stdout.flush()
    return 0


def run() -> None:
    """Console script entry point."""
    raise SystemExit(app())


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    run()
