"""Hierarchical merge of fetched secret bundles.

Every fetched bundle is placed in a tree of ``InnerNode`` objects at the
position given by its prefix plus its path relative to the declared base path.
A node's children are either nested ``InnerNode`` objects or ``Leaf`` values
(the bundle's keys). A name can be claimed only once per node: a second
writer raises ``DuplicateKey`` instead of silently overwriting data.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from vaultsync.vault.errors import DuplicateKey
from vaultsync.vault.fetcher import FetchResult


@dataclass(frozen=True)
class Leaf:
    """A single secret value; may itself be structured (dict or list)."""

    value: Any


@dataclass
class InnerNode:
    """A named level of the tree."""

    children: dict[str, DataNode] = field(default_factory=dict)
    path: tuple[str, ...] = ()

    def child(self, segment: str) -> InnerNode:
        """Return the child node ``segment``, creating it if unseen.

        Raises:
            DuplicateKey: If ``segment`` already holds a secret value.
        """
        existing = self.children.get(segment)
        if existing is None:
            node = InnerNode(path=self.path + (segment,))
            self.children[segment] = node
            return node
        if isinstance(existing, InnerNode):
            return existing
        raise DuplicateKey(segment, self.path)

    def add_bundle(self, bundle: Mapping[str, Any], key_prefix: str = "") -> None:
        """Add every key of ``bundle`` as a leaf, optionally prefixing key names.

        Raises:
            DuplicateKey: If a (prefixed) key is already present on this node.
        """
        for key, value in bundle.items():
            name = key_prefix + key
            if name in self.children:
                raise DuplicateKey(name, self.path)
            self.children[name] = Leaf(value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to plain nested dicts, ready for serialization."""
        out: dict[str, Any] = {}
        for name, node in self.children.items():
            if isinstance(node, InnerNode):
                out[name] = node.to_dict()
            elif isinstance(node, Leaf):
                out[name] = node.value
            else:  # pragma: no cover
                raise TypeError(f"invalid node type: {type(node).__name__}")
        return out

    def __len__(self) -> int:
        return len(self.children)


DataNode = Union[InnerNode, Leaf]


def build_tree(results: Iterable[FetchResult]) -> InnerNode:
    """Merge fetched bundles into one tree.

    For a literal path with a prefix, the last prefix segment is glued onto
    each key name instead of becoming a node, so ``prefix="db_"`` yields
    ``db_user`` rather than a ``db_`` node holding ``user``.

    Raises:
        DuplicateKey: If two bundles write the same key at the same node.
    """
    root = InnerNode()

    for result in results:
        if not result.bundle:
            continue

        relative = result.path.relative_path
        effective = result.path.prefix + relative
        if not effective:
            root.add_bundle(result.bundle)
            continue

        segments = effective.split("/")
        key_prefix = ""
        if relative == "" and result.path.prefix:
            key_prefix = segments.pop()

        node = root
        for segment in segments:
            node = node.child(segment)
        node.add_bundle(result.bundle, key_prefix)

    return root
