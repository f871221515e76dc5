"""Tests for the one-shot reader command and the read pipeline behind it."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
import yaml

from conftest import ROOT_TOKEN, VAULT_ADDR
from vaultsync.cli.reader import load_manifest, main
from vaultsync.schemas.vaultsecret import VaultSecret
from vaultsync.vault.auth import StaticToken
from vaultsync.vault.errors import ValidationError
from vaultsync.vault.reader import SecretReader


def write_manifest(tmp_path: Path, paths: list[dict], **spec) -> Path:
    manifest = {
        "apiVersion": "k8s.kiwi.com/v1",
        "kind": "VaultSecret",
        "metadata": {"name": "app", "namespace": "team1"},
        "spec": {"addr": VAULT_ADDR, "paths": paths, **spec},
    }
    path = tmp_path / "vaultsecret.yaml"
    path.write_text(yaml.safe_dump(manifest))
    return path


async def test_reader_pipeline_and_mounts(fake_vault, settings) -> None:
    vault_secret = VaultSecret.model_validate(
        {
            "metadata": {"name": "app"},
            "spec": {
                "addr": VAULT_ADDR,
                "paths": [
                    {"path": "secret/seeds/team1/*"},
                    {"path": "v1/something/a/secret", "prefix": "legacy/"},
                    {"path": "secret/seeds/missing"},
                ],
            },
        }
    )

    async with await SecretReader.connect(StaticToken(ROOT_TOKEN), vault_secret, settings) as reader:
        data = await reader.read_data()
        buffer = io.BytesIO()
        reader.write(buffer, "env")
        mounts = reader.path_mounts()

    assert data.to_dict() == {
        "project1": {"secret": {"a": "1", "b": "10"}},
        "project2": {"secret": {"c": "3"}},
        "legacy": {"pass": "pw", "user": "admin"},
    }
    assert buffer.getvalue() == (
        b"legacy_pass=pw\nlegacy_user=admin\n"
        b"project1_secret_a=1\nproject1_secret_b=10\nproject2_secret_c=3\n"
    )
    assert [(declared.path, mount.version) for declared, mount in mounts] == [
        ("secret/seeds/team1/*", 2),
        ("v1/something/a/secret", 1),
        ("secret/seeds/missing", 2),
    ]


def test_prints_env(fake_vault, tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("VAULT_TOKEN", ROOT_TOKEN)
    manifest = write_manifest(tmp_path, [{"path": "secret/seeds/team1/project1/secret"}])

    assert main(path=manifest) == 0

    assert capsys.readouterr().out == "a=1\nb=10\n"


def test_prints_json_with_trailing_newline(fake_vault, tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("VAULT_TOKEN", ROOT_TOKEN)
    manifest = write_manifest(tmp_path, [{"path": "secret/seeds/team4/project2/complex"}])

    assert main(path=manifest, output="json") == 0

    out = capsys.readouterr().out
    assert out.endswith("}\n")
    assert json.loads(out) == {"enabled": True, "nested": {"x": "1", "y": ["a", "b"]}}


def test_missing_token_fails(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.delenv("VAULT_TOKEN", raising=False)
    manifest = write_manifest(tmp_path, [])

    assert main(path=manifest) == 1

    assert "VAULT_TOKEN" in capsys.readouterr().err


def test_missing_path_flag_fails(monkeypatch, capsys) -> None:
    monkeypatch.setenv("VAULT_TOKEN", ROOT_TOKEN)

    assert main() == 1

    assert "--path" in capsys.readouterr().err


def test_unsupported_output_fails(fake_vault, tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("VAULT_TOKEN", ROOT_TOKEN)
    manifest = write_manifest(tmp_path, [{"path": "secret/seeds/team1/project1/secret"}])

    assert main(path=manifest, output="xml") == 1

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "not supported" in captured.err


def test_unreadable_manifest_fails(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("VAULT_TOKEN", ROOT_TOKEN)

    assert main(path=tmp_path / "missing.yaml") == 1

    assert "could not read file" in capsys.readouterr().err


def test_load_manifest_rejects_non_mapping(tmp_path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- not\n- a manifest\n")

    with pytest.raises(ValidationError):
        load_manifest(path)
