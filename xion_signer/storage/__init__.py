"""Storage strategies for session persistence"""

from .base import StorageStrategy
from .memory import MemoryStorageStrategy

__all__ = ["StorageStrategy", "MemoryStorageStrategy"]
