"""
Storage strategy contract

Every call is atomic for a single key; there are no multi-key transactions.
Implementations may perform I/O, hence the async interface.
"""

from abc import ABC, abstractmethod
from typing import Optional


class StorageStrategy(ABC):
    """Async key/value storage used to save and restore sessions"""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Return the stored value, or None when absent"""
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove key; removing an absent key is not an error"""
        ...
