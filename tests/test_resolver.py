"""Tests for declared-path resolution and wildcard crawling."""

from __future__ import annotations

import pytest

from vaultsync.schemas.vaultsecret import VaultSecretPath
from vaultsync.vault.errors import EngineUnavailable, UnsupportedEngineVersion
from vaultsync.vault.resolver import PathResolver, ResolvedPath, normalize_path


def test_normalize_path_strips_one_leading_slash() -> None:
    assert normalize_path("/secret/a") == "secret/a"
    assert normalize_path("secret/a") == "secret/a"


def test_relative_path() -> None:
    resolved = ResolvedPath("secret/seeds/team1/project1/secret", "secret/seeds/team1/")
    assert resolved.relative_path == "project1/secret"


async def test_literal_path_resolves_to_itself(vault_client, fake_vault) -> None:
    resolver = PathResolver(vault_client)

    group = await resolver.resolve_one(VaultSecretPath(path="secret/seeds/team1/project1/secret"))

    assert [p.absolute_path for p in group.paths] == ["secret/seeds/team1/project1/secret"]
    assert group.paths[0].relative_path == ""
    assert fake_vault.requests == []


async def test_leading_slash_resolves_identically(vault_client) -> None:
    resolver = PathResolver(vault_client)

    with_slash = await resolver.resolve_one(VaultSecretPath(path="/secret/seeds/team1/*"))
    without = await resolver.resolve_one(VaultSecretPath(path="secret/seeds/team1/*"))

    def key(p: ResolvedPath) -> str:
        return p.absolute_path

    assert sorted(with_slash.paths, key=key) == sorted(without.paths, key=key)
    assert with_slash.base_path == "secret/seeds/team1/"


async def test_wildcard_crawls_kv2_listing(vault_client) -> None:
    resolver = PathResolver(vault_client)

    group = await resolver.resolve_one(VaultSecretPath(path="secret/seeds/team1/*", prefix="t1/"))

    assert sorted(p.absolute_path for p in group.paths) == [
        "secret/seeds/team1/project1/secret",
        "secret/seeds/team1/project2/secret",
    ]
    assert all(p.base_path == "secret/seeds/team1/" for p in group.paths)
    assert all(p.prefix == "t1/" for p in group.paths)
    assert group.mount.version == 2


async def test_nested_crawl_visits_every_leaf_once(vault_client, fake_vault) -> None:
    resolver = PathResolver(vault_client, concurrency=2)

    leaves = await resolver.crawl("secret/seeds/")

    expected = sorted(path for path in fake_vault.secrets if path.startswith("secret/seeds/"))
    assert sorted(leaves) == expected
    assert len(leaves) == len(set(leaves))


async def test_wildcard_crawls_kv1_listing(vault_client, fake_vault) -> None:
    resolver = PathResolver(vault_client)

    group = await resolver.resolve_one(VaultSecretPath(path="v1/something/*"))

    assert sorted(p.absolute_path for p in group.paths) == [
        "v1/something/a/secret",
        "v1/something/b/secret",
    ]
    assert group.mount.version == 1
    assert ("GET", "v1/something/") in fake_vault.requests


async def test_empty_crawl_root_is_engine_unavailable(vault_client) -> None:
    resolver = PathResolver(vault_client)

    with pytest.raises(EngineUnavailable):
        await resolver.resolve_one(VaultSecretPath(path="secret/nothing/here/*"))


async def test_unsupported_engine_version(vault_client, fake_vault) -> None:
    fake_vault.mounts = {"kv3/": 3}
    resolver = PathResolver(vault_client)

    with pytest.raises(UnsupportedEngineVersion):
        await resolver.resolve_one(VaultSecretPath(path="kv3/team/*"))


async def test_resolve_keeps_declaration_order(vault_client) -> None:
    resolver = PathResolver(vault_client)
    declared = [
        VaultSecretPath(path="v1/something/a/secret"),
        VaultSecretPath(path="secret/seeds/team1/*"),
    ]

    groups = await resolver.resolve(declared)

    assert [g.declared for g in groups] == declared
    assert not groups[0].is_wildcard
    assert groups[1].is_wildcard
