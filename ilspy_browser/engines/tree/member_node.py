"""
Member node: one addressable unit of the assembly hierarchy.
"""

from __future__ import annotations

from dataclasses import dataclass

from ilspy_browser.engines.dotnet.protocol import MemberDescriptor, MemberKind


@dataclass(eq=False)
class MemberNode:
    """
    A node in the cache tree.

    Attributes:
        key: Stable identity sent to the engine (assembly path or member signature)
        name: Display name
        kind: Assembly, namespace, type, or member kind
        assembly_key: Root key of the assembly containing this node
        parent_key: Key of the parent node; None for assembly roots
        token: Metadata token when the engine reports one
        children: Memoized child nodes; None until first expanded
        code: Memoized decompiled text; None until first fetched
    """

    key: str
    name: str
    kind: MemberKind
    assembly_key: str
    parent_key: str | None = None
    token: int | None = None
    children: tuple[MemberNode, ...] | None = None
    code: str | None = None

    @classmethod
    def from_descriptor(
        cls,
        descriptor: MemberDescriptor,
        assembly_key: str,
        parent_key: str | None = None,
    ) -> MemberNode:
        return cls(
            key=descriptor.key,
            name=descriptor.name,
            kind=descriptor.kind,
            assembly_key=assembly_key,
            parent_key=parent_key,
            token=descriptor.token,
        )

    @property
    def is_root(self) -> bool:
        return self.parent_key is None

    @property
    def is_expandable(self) -> bool:
        return self.kind.is_container

    @property
    def children_populated(self) -> bool:
        return self.children is not None

    def __repr__(self) -> str:
        return f"MemberNode({self.kind.value} {self.name!r}, key={self.key!r})"
