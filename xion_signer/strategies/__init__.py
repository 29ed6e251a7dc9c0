"""Redirect strategies"""

from .redirect import NoOpRedirectStrategy, RedirectStrategy

__all__ = ["RedirectStrategy", "NoOpRedirectStrategy"]
