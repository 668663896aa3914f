"""
Decompiler engines and the member cache built on top of them.
"""

from .base import DecompileLanguage, DecompilerEngine, EngineState
from .dotnet.session import DecompilerSession
from .tree.cache_tree import CacheTree

__all__ = ["CacheTree", "DecompileLanguage", "DecompilerEngine", "DecompilerSession", "EngineState"]
