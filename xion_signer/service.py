"""
Abstraxion Service
Connection state machine over a signer-mode controller

Lifecycle:
    idle -> connecting -> connected | error      (initialize / connect)
    any  -> idle                                 (disconnect / destroy)

Only one initialize and one connect attempt run at a time per service;
concurrent callers await the attempt already in flight.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Optional

from .controller import ControllerFactory, SessionController
from .errors import (
    AuthorizationError,
    ConfigValidationError,
    NotConnectedError,
    SignerError,
    error_message,
)
from .normalize import normalize_config
from .storage import StorageStrategy
from .strategies import RedirectStrategy
from .types import (
    CONNECTING,
    IDLE,
    SESSION_RECORD_VERSION,
    SESSION_STORAGE_KEY,
    ConnectedState,
    ConnectionState,
    ErrorState,
    GetSignerConfig,
    PersistedSession,
    ServiceConfig,
)

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

_SUPERSEDED_CONNECT = "Connect was superseded by disconnect() or destroy()"


class _Superseded(Exception):
    """An in-flight attempt outlived a disconnect() or destroy()"""


class AbstraxionService:
    """
    High-level service for signer-mode sessions

    Example:
        ```python
        wallets = WalletService()
        await wallets.create_wallet("user-123")

        service = AbstraxionService(
            ServiceConfig(
                chain_id="xion-testnet-2",
                aa_api_url="https://aa-api.xion-testnet-2.burnt.com",
                smart_account_contract=SmartAccountContract(code_id=1, checksum="..."),
                get_signer_config=wallets.get_signer_config_provider("user-123"),
                fee_granter="xion1...",
            ),
            MemoryStorageStrategy(),
            NoOpRedirectStrategy(),
            controller_factory,
        )

        await service.connect()
        client = service.get_signing_client()
        ```
    """

    def __init__(
        self,
        config: ServiceConfig,
        storage_strategy: StorageStrategy,
        redirect_strategy: RedirectStrategy,
        controller_factory: ControllerFactory,
        clock: Callable[[], float] = time.time,
    ) -> None:
        # Fail fast, before any I/O
        normalize_config(config)
        if not callable(controller_factory):
            raise ConfigValidationError(
                "controller_factory must be callable", field="controller_factory"
            )

        self._config = config
        self._storage = storage_strategy
        self._redirect = redirect_strategy
        self._controller_factory = controller_factory
        self._clock = clock

        self._controller: Optional[SessionController] = None
        self._state: ConnectionState = IDLE
        self._initializing: Optional[asyncio.Task] = None
        self._connecting: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def config(self) -> ServiceConfig:
        return self._config

    async def __aenter__(self) -> "AbstraxionService":
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.destroy()

    # ============================================================
    # Lifecycle
    # ============================================================

    async def initialize(self) -> None:
        """
        Create the controller and restore a prior session if one exists

        No-op once initialized. Settles in "connected" when the restored
        session is valid and unexpired, otherwise in "idle".

        Raises:
            ConfigValidationError: If the configuration is invalid
            AuthorizationError: If the controller fails to initialize
        """
        if self._initializing is not None:
            await asyncio.shield(self._initializing)
            return

        if self._controller is not None or isinstance(self._state, ConnectedState):
            return

        task = asyncio.ensure_future(self._initialize(self._generation))
        self._initializing = task
        task.add_done_callback(self._clear_initializing)
        await asyncio.shield(task)

    async def connect(self) -> None:
        """
        Discover or create the smart account and create or verify the grant

        Initializes first when needed. Safe to call again after a failure;
        each call from the "error" state re-runs the full flow.

        Raises:
            ConfigValidationError: If the configuration is invalid
            AuthorizationError: If the account or grant could not be established
        """
        if self._connecting is not None:
            await asyncio.shield(self._connecting)
            return

        if isinstance(self._state, ConnectedState):
            return

        task = asyncio.ensure_future(self._connect(self._generation))
        self._connecting = task
        task.add_done_callback(self._clear_connecting)
        await asyncio.shield(task)

    async def disconnect(self) -> None:
        """
        End the session and return to idle

        Always succeeds and is safe to call repeatedly. Any attempt still in
        flight is abandoned and its outcome discarded.
        """
        controller = self._detach()
        self._set_state(IDLE)

        if controller is not None:
            try:
                await controller.disconnect()
            except Exception as e:
                logger.warning("Controller disconnect failed: %s", error_message(e))

        try:
            await self._storage.remove_item(SESSION_STORAGE_KEY)
        except Exception as e:
            logger.warning("Failed to clear persisted session: %s", error_message(e))

        logger.info("Disconnected")

    def destroy(self) -> None:
        """
        Release controller resources and force idle

        Meant for process shutdown. Performs no storage I/O: nothing new is
        persisted and nothing already persisted is cleared.
        """
        controller = self._detach()
        self._set_state(IDLE)
        if controller is not None:
            controller.destroy()

    def update_get_signer_config(self, get_signer_config: GetSignerConfig) -> None:
        """
        Replace the signer config provider

        Applies to the live controller (if any) and to future reinitialization.
        The established grant is left untouched.
        """
        if not callable(get_signer_config):
            raise ConfigValidationError(
                "get_signer_config must be a callable returning a SignerConfig",
                field="get_signer_config",
            )

        if self._controller is not None:
            self._controller.update_get_signer_config(get_signer_config)
        self._config = dataclasses.replace(self._config, get_signer_config=get_signer_config)

    # ============================================================
    # Accessors
    # ============================================================

    def get_state(self) -> ConnectionState:
        """Current state snapshot"""
        return self._state

    def is_connected(self) -> bool:
        return isinstance(self._state, ConnectedState)

    def get_granter_address(self) -> str:
        """Smart account (granter) address"""
        return self._connected_state().granter_address

    def get_grantee_address(self) -> str:
        """Session key (grantee) address"""
        return self._connected_state().grantee_address

    def get_signing_client(self) -> Any:
        """Signing client for sending transactions as the grantee"""
        state = self._state
        if isinstance(state, ConnectedState) and state.signing_client is not None:
            return state.signing_client
        raise NotConnectedError(
            "Not connected or signing client not available. Call connect() first."
        )

    def get_error(self) -> Optional[str]:
        """Error message when in the error state, else None"""
        if isinstance(self._state, ErrorState):
            return self._state.error
        return None

    def _connected_state(self) -> ConnectedState:
        if isinstance(self._state, ConnectedState):
            return self._state
        raise NotConnectedError()

    # ============================================================
    # Flows
    # ============================================================

    async def _initialize(self, generation: int) -> None:
        try:
            # disconnect() or destroy() may land before this task first runs
            self._ensure_current(generation)
            self._set_state(CONNECTING)
            controller = self._create_controller(generation)
            record = await self._load_session()
            self._ensure_current(generation)

            await controller.initialize()
            self._ensure_current(generation)

            state = controller.get_state()
            if isinstance(state, ErrorState):
                raise AuthorizationError(state.error)

            if isinstance(state, ConnectedState):
                problem = self._session_problem(state)
                if problem is None:
                    await self._save_session(state)
                    self._ensure_current(generation)
                    self._set_state(state)
                    logger.info(
                        "Restored session: granter=%s grantee=%s",
                        state.granter_address,
                        state.grantee_address,
                    )
                    return

                logger.warning("Discarding restored session: %s", problem)
                await self._reset_controller(controller, generation)
            elif record is not None:
                logger.info("Persisted session for granter %s not restored", record.granter_address)
                await self._storage.remove_item(SESSION_STORAGE_KEY)
                self._ensure_current(generation)

            self._set_state(IDLE)
            logger.info("Initialized")
        except _Superseded:
            logger.debug("Initialization superseded")
        except Exception as e:
            if generation != self._generation:
                logger.debug("Initialization superseded: %s", error_message(e))
                return
            error = self._fail("Initialization", e)
            if error is e:
                raise
            raise error from e

    async def _connect(self, generation: int) -> None:
        if generation != self._generation:
            raise AuthorizationError(_SUPERSEDED_CONNECT)

        await self.initialize()
        if generation != self._generation:
            raise AuthorizationError(_SUPERSEDED_CONNECT)

        if isinstance(self._state, ConnectedState):
            return

        controller = self._controller
        if controller is None:
            raise AuthorizationError("Failed to initialize controller")

        self._set_state(CONNECTING)
        try:
            await controller.connect()
            self._ensure_current(generation)

            state = controller.get_state()
            problem = self._session_problem(state)
            if problem is not None and isinstance(state, ConnectedState):
                # Stale or invalid grant: re-create once
                logger.warning("Re-creating session: %s", problem)
                await self._storage.remove_item(SESSION_STORAGE_KEY)
                await controller.disconnect()
                self._ensure_current(generation)
                await controller.connect()
                self._ensure_current(generation)
                state = controller.get_state()
                problem = self._session_problem(state)

            if problem is not None or not isinstance(state, ConnectedState):
                raise AuthorizationError(problem or "Controller did not connect")

            await self._save_session(state)
            self._ensure_current(generation)
            self._set_state(state)
            logger.info(
                "Connected: granter=%s grantee=%s",
                state.granter_address,
                state.grantee_address,
            )
        except _Superseded as e:
            raise AuthorizationError(_SUPERSEDED_CONNECT) from e
        except Exception as e:
            if generation != self._generation:
                raise AuthorizationError(_SUPERSEDED_CONNECT, original_error=e) from e
            error = self._fail("Connect", e)
            if error is e:
                raise
            raise error from e

    # ============================================================
    # Helpers
    # ============================================================

    def _create_controller(self, generation: int) -> SessionController:
        """Build a controller and attach it, only while generation is current"""
        self._ensure_current(generation)
        normalized = normalize_config(self._config)
        controller = self._controller_factory(normalized, self._storage, self._redirect)
        self._controller = controller
        return controller

    async def _reset_controller(self, stale: SessionController, generation: int) -> None:
        """Tear down a controller holding a stale session and build a fresh one"""
        await self._storage.remove_item(SESSION_STORAGE_KEY)
        await stale.disconnect()
        self._ensure_current(generation)
        stale.destroy()

        controller = self._create_controller(generation)
        await controller.initialize()
        self._ensure_current(generation)

    def _session_problem(self, state: ConnectionState) -> Optional[str]:
        """Describe why state is not a usable session, or None if it is"""
        if isinstance(state, ErrorState):
            return state.error
        if not isinstance(state, ConnectedState):
            return f"Controller did not connect (status: {state.status})"
        if not state.granter_address or not state.grantee_address:
            return "Controller reported an empty granter or grantee address"
        if state.granter_address == state.grantee_address:
            return "Granter and grantee addresses must differ"
        if state.expires_at is not None and state.expires_at <= self._now_ms():
            return f"Grant for granter {state.granter_address} expired at {state.expires_at}"
        return None

    def _fail(self, operation: str, error: Exception) -> SignerError:
        """Record error into state, drop the controller, return the error to raise"""
        message = error_message(error)
        self._set_state(ErrorState(error=message))
        logger.error("%s failed: %s", operation, message)

        controller, self._controller = self._controller, None
        if controller is not None:
            try:
                controller.destroy()
            except Exception as destroy_error:
                logger.warning("Controller destroy failed: %s", error_message(destroy_error))

        if isinstance(error, SignerError):
            return error
        return AuthorizationError(message, original_error=error)

    def _detach(self) -> Optional[SessionController]:
        """Abandon in-flight attempts and take ownership of the controller"""
        self._generation += 1
        self._initializing = None
        self._connecting = None
        controller, self._controller = self._controller, None
        return controller

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise _Superseded()

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug("State %s -> %s", self._state.status, state.status)
        self._state = state

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _clear_initializing(self, task: asyncio.Task) -> None:
        if self._initializing is task:
            self._initializing = None
        if not task.cancelled():
            task.exception()

    def _clear_connecting(self, task: asyncio.Task) -> None:
        if self._connecting is task:
            self._connecting = None
        if not task.cancelled():
            task.exception()

    # ============================================================
    # Persistence
    # ============================================================

    async def _load_session(self) -> Optional[PersistedSession]:
        raw = await self._storage.get_item(SESSION_STORAGE_KEY)
        if raw is None:
            return None

        try:
            record = PersistedSession.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable persisted session: %s", e)
            await self._storage.remove_item(SESSION_STORAGE_KEY)
            return None

        if record.version != SESSION_RECORD_VERSION:
            logger.warning("Ignoring persisted session with version %s", record.version)
            await self._storage.remove_item(SESSION_STORAGE_KEY)
            return None

        return record

    async def _save_session(self, state: ConnectedState) -> None:
        record = PersistedSession(
            granter_address=state.granter_address,
            grantee_address=state.grantee_address,
            expires_at=state.expires_at,
            saved_at=self._now_ms(),
        )
        await self._storage.set_item(SESSION_STORAGE_KEY, json.dumps(record.to_dict()))
