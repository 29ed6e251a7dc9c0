"""
Memory-based storage strategy for backend usage

WARNING: Data lives in a per-instance dict. It is lost when the process
restarts and is never shared between instances or processes, so it is
unsuitable for multi-instance or production deployments. Supply a durable
StorageStrategy there.
"""

from typing import Dict, List, Optional

from .base import StorageStrategy


class MemoryStorageStrategy(StorageStrategy):
    """Non-durable, per-instance storage backed by a dict"""

    def __init__(self) -> None:
        self._storage: Dict[str, str] = {}

    async def get_item(self, key: str) -> Optional[str]:
        return self._storage.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._storage[key] = value

    async def remove_item(self, key: str) -> None:
        self._storage.pop(key, None)

    def clear(self) -> None:
        self._storage.clear()

    def keys(self) -> List[str]:
        """All stored keys (useful for debugging)"""
        return list(self._storage.keys())

    def size(self) -> int:
        """Number of stored keys (useful for debugging)"""
        return len(self._storage)
