"""Lazy member hierarchy cache."""

from ilspy_browser.engines.tree.cache_tree import CacheTree, StaleNodeError, TreeChangeEvent
from ilspy_browser.engines.tree.member_node import MemberNode

__all__ = ["CacheTree", "MemberNode", "StaleNodeError", "TreeChangeEvent"]
