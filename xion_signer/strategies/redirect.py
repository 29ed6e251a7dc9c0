"""
Redirect strategies

The authorization collaborator supports both browser-redirect and headless
flows. Headless deployments pass NoOpRedirectStrategy so both share one
code path.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

RedirectCallback = Callable[[Dict[str, Optional[str]]], None]

PLACEHOLDER_URL = "http://localhost"


class RedirectStrategy(ABC):
    """Async redirect/notification capability"""

    @abstractmethod
    async def get_current_url(self) -> str:
        ...

    @abstractmethod
    async def redirect(self, url: str) -> None:
        ...

    @abstractmethod
    async def get_url_parameter(self, param: str) -> Optional[str]:
        ...

    @abstractmethod
    async def on_redirect_complete(self, callback: RedirectCallback) -> None:
        ...

    @abstractmethod
    async def remove_redirect_handler(self) -> None:
        ...

    @abstractmethod
    async def clean_url_parameters(self, params_to_remove: List[str]) -> None:
        ...


class NoOpRedirectStrategy(RedirectStrategy):
    """Redirect strategy for backend usage; signer mode never redirects"""

    async def get_current_url(self) -> str:
        return PLACEHOLDER_URL

    async def redirect(self, url: str) -> None:
        return None

    async def get_url_parameter(self, param: str) -> Optional[str]:
        return None

    async def on_redirect_complete(self, callback: RedirectCallback) -> None:
        return None

    async def remove_redirect_handler(self) -> None:
        return None

    async def clean_url_parameters(self, params_to_remove: List[str]) -> None:
        return None
