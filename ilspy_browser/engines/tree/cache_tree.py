"""
Lazy, memoizing tree of assembly -> namespace -> type -> member nodes.

Nodes live in an arena keyed by (assembly path, member key), since two
loaded assemblies (say a Debug and a Release build) may share member keys.
A node is attached while the arena maps its slot to that very object;
refresh() and remove_assembly() detach nodes by replacing or dropping
arena entries.
Children and decompiled text are fetched from the engine on first access
and memoized on the node. A fetch that completes after its node was
detached is returned to its callers but never stored.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable

from ilspy_browser.engines.base import DecompileLanguage, DecompilerEngine
from ilspy_browser.engines.dotnet.protocol import MemberDescriptor
from ilspy_browser.engines.tree.member_node import MemberNode

logger = logging.getLogger(__name__)


class StaleNodeError(LookupError):
    """A node that is no longer part of the tree was used."""


class AmbiguousKeyError(LookupError):
    """A member key matched nodes in more than one assembly."""

    def __init__(self, key: str, assemblies: list[str]):
        self.key = key
        self.assemblies = assemblies
        super().__init__(f"Key {key!r} exists in {len(assemblies)} assemblies")


@dataclass(frozen=True)
class TreeChangeEvent:
    """Structure-changed notification for presentation subscribers."""
    reason: str  # "added", "removed", "refreshed"
    assembly_path: str | None = None


TreeListener = Callable[[TreeChangeEvent], None]
NodeSlot = tuple[str, str]


def _slot(node: MemberNode) -> NodeSlot:
    return (node.assembly_key, node.key)


class CacheTree:
    """Owns the loaded assemblies and memoizes their members."""

    def __init__(
        self,
        engine: DecompilerEngine,
        language: DecompileLanguage = DecompileLanguage.CSHARP,
    ):
        """
        Initialize an empty tree.

        Args:
            engine: Session used for load, enumerate and decompile requests
            language: Language used for decompiled text
        """
        self.engine = engine
        self._language = DecompileLanguage.parse(language)

        self._lock = threading.RLock()
        self._root_descriptors: dict[str, MemberDescriptor] = {}
        self._roots: dict[str, MemberNode] = {}
        self._nodes: dict[NodeSlot, MemberNode] = {}
        self._inflight: dict[tuple, Future] = {}
        self._listeners: list[TreeListener] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: TreeListener) -> Callable[[], None]:
        """
        Register a structure-changed listener.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: TreeChangeEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Tree listener failed on {event.reason} event")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def language(self) -> DecompileLanguage:
        return self._language

    @property
    def roots(self) -> list[MemberNode]:
        with self._lock:
            return list(self._roots.values())

    @property
    def assembly_paths(self) -> list[str]:
        with self._lock:
            return list(self._roots)

    def get_node(self, key: str, assembly_key: str | None = None) -> MemberNode | None:
        """
        Look up an attached node by key.

        Args:
            key: Member key
            assembly_key: Owning assembly path; may be omitted when the key
                is present in only one assembly

        Raises:
            AmbiguousKeyError: If assembly_key is omitted and several
                assemblies hold the key
        """
        with self._lock:
            if assembly_key is not None:
                return self._nodes.get((assembly_key, key))
            matches = self.find_nodes(key)
        if len(matches) > 1:
            raise AmbiguousKeyError(key, [n.assembly_key for n in matches])
        return matches[0] if matches else None

    def find_nodes(self, key: str) -> list[MemberNode]:
        """Return every attached node with this key, in assembly order."""
        with self._lock:
            slots = [(path, key) for path in self._roots]
            return [self._nodes[slot] for slot in slots if slot in self._nodes]

    def get_parent(self, node: MemberNode) -> MemberNode | None:
        if node.parent_key is None:
            return None
        with self._lock:
            return self._nodes.get((node.assembly_key, node.parent_key))

    def is_attached(self, node: MemberNode) -> bool:
        with self._lock:
            return self._nodes.get(_slot(node)) is node

    # ------------------------------------------------------------------
    # Structure changes
    # ------------------------------------------------------------------

    def add_assembly(self, path: str) -> bool:
        """
        Load an assembly and attach it as a new root.

        Args:
            path: Assembly path; also the root's identity in the tree

        Returns:
            True if added, False if the path is already present

        Raises:
            LoadFailure: If the engine rejects the assembly (tree unchanged)
        """
        flight_key = ("add", path)
        with self._lock:
            if path in self._roots:
                logger.debug(f"Assembly already present: {path}")
                return False
            future = self._inflight.get(flight_key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[flight_key] = future

        if not owner:
            # Another caller is adding the same path; it owns the result
            future.result()
            return False

        try:
            descriptor = self.engine.load_assembly(path)
        except Exception as exc:
            with self._lock:
                self._inflight.pop(flight_key, None)
            future.set_exception(exc)
            raise

        with self._lock:
            self._inflight.pop(flight_key, None)
            root = MemberNode.from_descriptor(descriptor, assembly_key=path)
            self._root_descriptors[path] = descriptor
            self._roots[path] = root
            self._nodes[_slot(root)] = root
        future.set_result(True)

        logger.info(f"Added assembly {descriptor.name} ({path})")
        self._emit(TreeChangeEvent("added", path))
        return True

    def remove_assembly(self, path: str) -> bool:
        """
        Detach an assembly root and all of its descendants.

        Returns:
            True if the assembly was present
        """
        with self._lock:
            root = self._roots.pop(path, None)
            if root is None:
                return False
            del self._root_descriptors[path]
            stale = [slot for slot in self._nodes if slot[0] == path]
            for slot in stale:
                del self._nodes[slot]

        self.engine.unload_assembly(path)
        logger.info(f"Removed assembly {path} ({len(stale)} cached nodes dropped)")
        self._emit(TreeChangeEvent("removed", path))
        return True

    def refresh(self) -> None:
        """
        Drop every memoized child list and decompiled text.

        Roots are rebuilt from the loaded assembly paths; everything below
        them is fetched again on next access.
        """
        with self._lock:
            dropped = len(self._nodes)
            self._nodes = {}
            self._roots = {}
            for path, descriptor in self._root_descriptors.items():
                root = MemberNode.from_descriptor(descriptor, assembly_key=path)
                self._roots[path] = root
                self._nodes[_slot(root)] = root

        logger.info(f"Tree refreshed ({dropped} cached nodes dropped)")
        self._emit(TreeChangeEvent("refreshed"))

    def set_language(self, language: DecompileLanguage | str) -> bool:
        """
        Change the decompile language.

        A change refreshes the tree so text in the old language is discarded.

        Returns:
            True if the language changed
        """
        language = DecompileLanguage.parse(language)
        with self._lock:
            if language is self._language:
                return False
            self._language = language
        logger.info(f"Decompile language set to {language.value}")
        self.refresh()
        return True

    # ------------------------------------------------------------------
    # Lazy population
    # ------------------------------------------------------------------

    def get_children(self, node: MemberNode) -> tuple[MemberNode, ...]:
        """
        Return the node's children, asking the engine on first access.

        Raises:
            StaleNodeError: If the node was detached by refresh or removal
            DecompileFailure: If the engine cannot enumerate the node
        """
        def fetch() -> tuple[MemberNode, ...]:
            if not node.is_expandable:
                return ()
            descriptors = self.engine.list_children(node.key, node.assembly_key)
            return tuple(
                MemberNode.from_descriptor(d, assembly_key=node.assembly_key, parent_key=node.key)
                for d in descriptors
            )

        def store(children: tuple[MemberNode, ...]) -> None:
            node.children = children
            for child in children:
                self._nodes[_slot(child)] = child

        return self._populate(node, "children", fetch, store)

    def get_code(self, node: MemberNode) -> str:
        """
        Return the node's decompiled text, asking the engine on first access.

        Raises:
            StaleNodeError: If the node was detached by refresh or removal
            DecompileFailure: If the engine cannot decompile the node
        """
        language = self._language

        def fetch() -> str:
            return self.engine.decompile(node.key, language, node.assembly_key)

        def store(code: str) -> None:
            node.code = code

        return self._populate(node, "code", fetch, store)

    def _populate(self, node: MemberNode, slot: str, fetch, store):
        # One engine call per (node, slot); later callers wait on the first
        flight_key = (slot, id(node))
        with self._lock:
            cached = getattr(node, slot)
            if cached is not None:
                return cached
            if not self.is_attached(node):
                raise StaleNodeError(f"Node {node.key!r} is no longer part of the tree")
            future = self._inflight.get(flight_key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[flight_key] = future

        if not owner:
            return future.result()

        try:
            value = fetch()
        except Exception as exc:
            with self._lock:
                self._inflight.pop(flight_key, None)
            future.set_exception(exc)
            raise

        with self._lock:
            self._inflight.pop(flight_key, None)
            if self.is_attached(node):
                store(value)
            else:
                logger.debug(f"Discarding {slot} of detached node {node.key!r}")
        future.set_result(value)
        return value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Shutdown hook: stop the engine."""
        self.engine.stop()
