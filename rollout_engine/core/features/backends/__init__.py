"""
Rollout state store implementations.
"""

from .database import DatabaseStateStore
from .memory import MemoryStateStore

__all__ = [
    "DatabaseStateStore",
    "MemoryStateStore",
]
