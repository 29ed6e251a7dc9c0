"""
Authorization collaborator boundary

The controller discovers or creates the granter smart account, creates or
verifies the grant to the session key, and builds the signing client. It is
supplied from outside through a ControllerFactory; AbstraxionService only
drives it and caches its state.
"""

from __future__ import annotations

import importlib
from typing import Callable, Protocol, runtime_checkable

from .errors import ConfigValidationError
from .storage import StorageStrategy
from .strategies import RedirectStrategy
from .types import AbstraxionConfig, ConnectionState, GetSignerConfig

ControllerState = ConnectionState


@runtime_checkable
class SessionController(Protocol):
    """Signer-mode controller protocol"""

    async def initialize(self) -> None:
        """Restore a prior session from storage, if one exists"""
        ...

    async def connect(self) -> None:
        """Discover or create the account and create or verify the grant"""
        ...

    async def disconnect(self) -> None:
        """End the session and clear what the controller persisted"""
        ...

    def destroy(self) -> None:
        """Release resources without touching storage"""
        ...

    def get_state(self) -> ControllerState:
        ...

    def update_get_signer_config(self, get_signer_config: GetSignerConfig) -> None:
        ...


ControllerFactory = Callable[
    [AbstraxionConfig, StorageStrategy, RedirectStrategy], SessionController
]


def load_controller_factory(path: str) -> ControllerFactory:
    """
    Resolve a controller factory from a "package.module:attribute" path

    Args:
        path: Import path, e.g. "my_chain.controllers:create_signer_controller"

    Returns:
        The factory callable

    Raises:
        ConfigValidationError: If the path is malformed, cannot be imported,
            or does not name a callable
    """
    module_name, sep, attribute = (path or "").partition(":")
    if not module_name or not sep or not attribute:
        raise ConfigValidationError(
            f"Invalid controller factory path: {path!r}. Expected 'package.module:attribute'",
            field="controller_factory",
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigValidationError(
            f"Cannot import controller factory module {module_name!r}: {e}",
            field="controller_factory",
        ) from e

    target = module
    for part in attribute.split("."):
        if not hasattr(target, part):
            raise ConfigValidationError(
                f"Controller factory {path!r} not found",
                field="controller_factory",
            )
        target = getattr(target, part)

    if not callable(target):
        raise ConfigValidationError(
            f"Controller factory {path!r} is not callable",
            field="controller_factory",
        )
    return target  # type: ignore[return-value]
