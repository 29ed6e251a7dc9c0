"""
AbstraxionService tests

Drives the connection state machine through a scripted FakeController
(see fakes.py) and a real WalletService, so signer configs sign for real.
"""

import asyncio
import json

import pytest
from unittest.mock import MagicMock

from fakes import (
    CONTROLLER_STORAGE_KEY,
    GRANT_PAYLOAD,
    GRANTEE,
    GRANTER,
    ControllerPlan,
    GatedStorage,
)
from xion_signer.crypto.signing import recover_signer
from xion_signer.crypto.wallet import WalletService
from xion_signer.errors import (
    AuthorizationError,
    ConfigValidationError,
    NotConnectedError,
)
from xion_signer.service import AbstraxionService
from xion_signer.storage import MemoryStorageStrategy
from xion_signer.strategies import NoOpRedirectStrategy
from xion_signer.types import (
    SESSION_STORAGE_KEY,
    ConnectedState,
    ErrorState,
    IdleState,
    ServiceConfig,
    SmartAccountContract,
)

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)
PAST_MS = NOW_MS - 1
FUTURE_MS = NOW_MS + 3_600_000


# ============================================================
# Helpers
# ============================================================

async def make_wallets(identity="u1"):
    wallets = WalletService()
    await wallets.create_wallet(identity)
    return wallets


def make_config(provider, **overrides):
    values = dict(
        chain_id="xion-testnet-2",
        aa_api_url="https://aa-api.example",
        smart_account_contract=SmartAccountContract(code_id=1, checksum="abc123"),
        get_signer_config=provider,
        fee_granter="xion1feegranter",
    )
    values.update(overrides)
    return ServiceConfig(**values)


async def make_service(plan=None, storage=None, wallets=None, identity="u1", **overrides):
    plan = plan if plan is not None else ControllerPlan()
    storage = storage if storage is not None else MemoryStorageStrategy()
    wallets = wallets if wallets is not None else await make_wallets(identity)
    service = AbstraxionService(
        make_config(wallets.get_signer_config_provider(identity), **overrides),
        storage,
        NoOpRedirectStrategy(),
        plan.factory,
        clock=lambda: NOW,
    )
    return service, plan, storage


async def settle(rounds=20):
    """Let in-flight tasks run until they block"""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def read_marker(storage):
    raw = await storage.get_item(SESSION_STORAGE_KEY)
    return json.loads(raw) if raw is not None else None


# ============================================================
# Tests - Construction
# ============================================================

class TestConstruction:
    @pytest.mark.asyncio
    async def test_missing_fee_granter_fails_before_any_call(self):
        plan = ControllerPlan()
        storage = MagicMock()
        with pytest.raises(ConfigValidationError, match="fee_granter") as exc_info:
            await make_service(plan=plan, storage=storage, fee_granter=None)

        assert exc_info.value.code == "CONFIG_VALIDATION"
        assert plan.factory_calls == 0
        assert storage.mock_calls == []

    @pytest.mark.asyncio
    async def test_missing_checksum(self):
        with pytest.raises(ConfigValidationError, match="checksum"):
            await make_service(smart_account_contract=SmartAccountContract(code_id=1, checksum=""))

    @pytest.mark.asyncio
    async def test_invalid_grant_spec_fails_fast(self):
        plan = ControllerPlan()
        with pytest.raises(ConfigValidationError):
            await make_service(plan=plan, bank=[{"denom": "uxion", "amount": "lots"}])
        assert plan.factory_calls == 0

    @pytest.mark.asyncio
    async def test_controller_factory_must_be_callable(self):
        wallets = await make_wallets()
        with pytest.raises(ConfigValidationError, match="controller_factory"):
            AbstraxionService(
                make_config(wallets.get_signer_config_provider("u1")),
                MemoryStorageStrategy(),
                NoOpRedirectStrategy(),
                None,  # type: ignore[arg-type]
            )

    @pytest.mark.asyncio
    async def test_starts_idle(self):
        service, plan, _ = await make_service()
        assert isinstance(service.get_state(), IdleState)
        assert service.is_connected() is False
        assert service.get_error() is None
        assert plan.factory_calls == 0


# ============================================================
# Tests - Initialize
# ============================================================

class TestInitialize:
    @pytest.mark.asyncio
    async def test_settles_idle_without_prior_session(self):
        service, plan, _ = await make_service()
        await service.initialize()

        assert isinstance(service.get_state(), IdleState)
        assert plan.factory_calls == 1
        assert plan.initialize_calls == 1

    @pytest.mark.asyncio
    async def test_passes_normalized_config(self):
        service, plan, _ = await make_service(contracts=["xion1contract"])
        await service.initialize()

        config = plan.configs[0]
        assert config.fee_granter == "xion1feegranter"
        assert config.contracts[0].address == "xion1contract"
        assert config.authentication.smart_account_contract.address_prefix == "xion"
        assert plan.controllers[0].redirect.__class__ is NoOpRedirectStrategy

    @pytest.mark.asyncio
    async def test_idempotent(self):
        service, plan, _ = await make_service()
        await service.initialize()
        first = service.get_state()
        await service.initialize()

        assert service.get_state() == first
        assert plan.factory_calls == 1
        assert plan.initialize_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_attempt(self):
        service, plan, _ = await make_service()
        await asyncio.gather(*(service.initialize() for _ in range(5)))

        assert plan.factory_calls == 1
        assert plan.initialize_calls == 1

    @pytest.mark.asyncio
    async def test_restores_prior_session(self):
        storage = MemoryStorageStrategy()
        first, plan, _ = await make_service(storage=storage)
        await first.connect()
        first.destroy()

        second, _, _ = await make_service(plan=plan, storage=storage)
        await second.initialize()

        assert second.is_connected()
        assert second.get_granter_address() == GRANTER
        assert second.get_grantee_address() == GRANTEE
        assert plan.connect_calls == 1  # no new round-trip

    @pytest.mark.asyncio
    async def test_restored_session_refreshes_marker(self):
        storage = MemoryStorageStrategy()
        await storage.set_item(
            CONTROLLER_STORAGE_KEY,
            json.dumps({"granter": GRANTER, "grantee": GRANTEE, "expiresAt": FUTURE_MS}),
        )
        service, _, _ = await make_service(storage=storage)
        await service.initialize()

        marker = await read_marker(storage)
        assert marker["granterAddress"] == GRANTER
        assert marker["expiresAt"] == FUTURE_MS
        assert marker["savedAt"] == NOW_MS

    @pytest.mark.asyncio
    async def test_expired_restored_session_is_discarded(self):
        storage = MemoryStorageStrategy()
        await storage.set_item(
            CONTROLLER_STORAGE_KEY,
            json.dumps({"granter": GRANTER, "grantee": GRANTEE, "expiresAt": PAST_MS}),
        )
        await storage.set_item(SESSION_STORAGE_KEY, json.dumps({
            "version": 1, "granterAddress": GRANTER, "granteeAddress": GRANTEE,
            "expiresAt": PAST_MS, "savedAt": PAST_MS,
        }))
        service, plan, _ = await make_service(storage=storage)
        await service.initialize()

        assert isinstance(service.get_state(), IdleState)
        assert plan.disconnect_calls == 1
        assert plan.factory_calls == 2  # rebuilt after discarding
        assert plan.controllers[0].destroyed
        assert await storage.get_item(SESSION_STORAGE_KEY) is None
        assert await storage.get_item(CONTROLLER_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_connect_after_expired_restore_creates_new_grant(self):
        storage = MemoryStorageStrategy()
        await storage.set_item(
            CONTROLLER_STORAGE_KEY,
            json.dumps({"granter": GRANTER, "grantee": GRANTEE, "expiresAt": PAST_MS}),
        )
        service, plan, _ = await make_service(storage=storage)
        await service.connect()

        assert service.is_connected()
        assert plan.connect_calls == 1
        assert plan.controllers[-1].state.expires_at is None

    @pytest.mark.asyncio
    async def test_orphan_marker_removed(self):
        storage = MemoryStorageStrategy()
        await storage.set_item(SESSION_STORAGE_KEY, json.dumps({
            "version": 1, "granterAddress": GRANTER, "granteeAddress": GRANTEE,
            "expiresAt": None, "savedAt": 1,
        }))
        service, _, _ = await make_service(storage=storage)
        await service.initialize()

        assert isinstance(service.get_state(), IdleState)
        assert await storage.get_item(SESSION_STORAGE_KEY) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            json.dumps({"version": 1}),
            json.dumps({"version": 99, "granterAddress": "a", "granteeAddress": "b"}),
        ],
    )
    async def test_unreadable_marker_removed(self, raw):
        storage = MemoryStorageStrategy()
        await storage.set_item(SESSION_STORAGE_KEY, raw)
        service, _, _ = await make_service(storage=storage)
        await service.initialize()

        assert isinstance(service.get_state(), IdleState)
        assert await storage.get_item(SESSION_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_controller_failure_lands_in_error(self):
        plan = ControllerPlan(initialize_error=RuntimeError("restore exploded"))
        service, _, _ = await make_service(plan=plan)

        with pytest.raises(AuthorizationError) as exc_info:
            await service.initialize()

        assert exc_info.value.message == "restore exploded"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert service.get_state() == ErrorState(error="restore exploded")
        assert plan.controllers[0].destroyed

    @pytest.mark.asyncio
    async def test_initialize_retries_after_error(self):
        plan = ControllerPlan(initialize_error=RuntimeError("restore exploded"))
        service, _, _ = await make_service(plan=plan)
        with pytest.raises(AuthorizationError):
            await service.initialize()

        plan.initialize_error = None
        await service.initialize()

        assert isinstance(service.get_state(), IdleState)
        assert plan.factory_calls == 2


# ============================================================
# Tests - Connect
# ============================================================

class TestConnect:
    @pytest.mark.asyncio
    async def test_accessors_fail_before_connect(self):
        service, _, _ = await make_service()
        with pytest.raises(NotConnectedError) as exc_info:
            service.get_granter_address()
        assert exc_info.value.code == "NOT_CONNECTED"
        with pytest.raises(NotConnectedError):
            service.get_grantee_address()
        with pytest.raises(NotConnectedError):
            service.get_signing_client()

    @pytest.mark.asyncio
    async def test_connect_success(self):
        service, plan, _ = await make_service()
        await service.connect()

        assert service.is_connected()
        granter = service.get_granter_address()
        grantee = service.get_grantee_address()
        assert granter and grantee and granter != grantee
        assert service.get_signing_client().granter == GRANTER
        assert service.get_error() is None
        assert isinstance(service.get_state(), ConnectedState)

    @pytest.mark.asyncio
    async def test_connect_initializes_first(self):
        service, plan, _ = await make_service()
        await service.connect()

        assert plan.factory_calls == 1
        assert plan.initialize_calls == 1
        assert plan.connect_calls == 1

    @pytest.mark.asyncio
    async def test_controller_signs_with_identity_wallet(self):
        wallets = await make_wallets("u1")
        service, plan, _ = await make_service(wallets=wallets)
        await service.connect()

        assert recover_signer(GRANT_PAYLOAD, plan.signatures[0]) == wallets.get_wallet("u1").address

    @pytest.mark.asyncio
    async def test_saves_marker(self):
        service, _, storage = await make_service(
            plan=ControllerPlan(connect_outcomes=[{"expires_at": FUTURE_MS}])
        )
        await service.connect()

        assert await read_marker(storage) == {
            "version": 1,
            "granterAddress": GRANTER,
            "granteeAddress": GRANTEE,
            "expiresAt": FUTURE_MS,
            "savedAt": NOW_MS,
        }

    @pytest.mark.asyncio
    async def test_connect_when_connected_is_noop(self):
        service, plan, _ = await make_service()
        await service.connect()
        await service.connect()
        assert plan.connect_calls == 1

    @pytest.mark.asyncio
    async def test_failure_recorded_and_raised(self):
        plan = ControllerPlan(connect_outcomes=[RuntimeError("AA API unavailable")])
        service, _, storage = await make_service(plan=plan)

        with pytest.raises(AuthorizationError) as exc_info:
            await service.connect()

        assert exc_info.value.code == "AUTHORIZATION_FAILURE"
        assert exc_info.value.message == "AA API unavailable"
        assert isinstance(exc_info.value.original_error, RuntimeError)
        assert exc_info.value.__cause__ is exc_info.value.original_error
        assert service.get_state() == ErrorState(error="AA API unavailable")
        assert service.get_error() == "AA API unavailable"
        assert service.is_connected() is False
        assert await storage.get_item(SESSION_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_retry_after_failure_without_disconnect(self):
        plan = ControllerPlan(connect_outcomes=[RuntimeError("AA API unavailable")])
        service, _, _ = await make_service(plan=plan)
        with pytest.raises(AuthorizationError):
            await service.connect()

        await service.connect()

        assert service.is_connected()
        assert service.get_error() is None
        assert plan.connect_calls == 2
        assert plan.factory_calls == 2  # full flow re-run on a fresh controller
        assert plan.controllers[0].destroyed

    @pytest.mark.asyncio
    async def test_expired_grant_recreated_once(self):
        plan = ControllerPlan(connect_outcomes=[{"expires_at": PAST_MS}, {"expires_at": FUTURE_MS}])
        service, _, storage = await make_service(plan=plan)
        await service.connect()

        assert service.is_connected()
        assert service.get_state().expires_at == FUTURE_MS
        assert plan.connect_calls == 2
        assert plan.disconnect_calls == 1
        assert (await read_marker(storage))["expiresAt"] == FUTURE_MS

    @pytest.mark.asyncio
    async def test_grant_still_expired_after_recreation(self):
        plan = ControllerPlan(connect_outcomes=[{"expires_at": PAST_MS}, {"expires_at": PAST_MS}])
        service, _, _ = await make_service(plan=plan)

        with pytest.raises(AuthorizationError, match="expired"):
            await service.connect()

        assert plan.connect_calls == 2
        assert "expired" in service.get_error()

    @pytest.mark.asyncio
    async def test_identical_granter_and_grantee_rejected(self):
        same = {"granter": GRANTER, "grantee": GRANTER}
        plan = ControllerPlan(connect_outcomes=[same, same])
        service, _, _ = await make_service(plan=plan)

        with pytest.raises(AuthorizationError, match="must differ"):
            await service.connect()
        assert isinstance(service.get_state(), ErrorState)

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_one_attempt(self):
        gate = asyncio.Event()
        plan = ControllerPlan(connect_gate=gate)
        service, _, _ = await make_service(plan=plan)

        tasks = [asyncio.ensure_future(service.connect()) for _ in range(3)]
        await settle()
        gate.set()
        await asyncio.gather(*tasks)

        assert service.is_connected()
        assert plan.factory_calls == 1
        assert plan.connect_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_failure(self):
        gate = asyncio.Event()
        plan = ControllerPlan(connect_gate=gate, connect_outcomes=[RuntimeError("boom")])
        service, _, _ = await make_service(plan=plan)

        tasks = [asyncio.ensure_future(service.connect()) for _ in range(2)]
        await settle()
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, AuthorizationError) for r in results)
        assert plan.connect_calls == 1

    @pytest.mark.asyncio
    async def test_state_is_connecting_while_in_flight(self):
        gate = asyncio.Event()
        plan = ControllerPlan(connect_gate=gate)
        service, _, _ = await make_service(plan=plan)

        task = asyncio.ensure_future(service.connect())
        await settle()
        assert service.get_state().status == "connecting"

        # initialize() during an in-flight connect is a no-op
        await service.initialize()
        assert plan.factory_calls == 1

        gate.set()
        await task
        assert service.is_connected()


# ============================================================
# Tests - Disconnect / destroy
# ============================================================

class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_returns_to_idle(self):
        service, plan, storage = await make_service()
        await service.connect()
        await service.disconnect()

        assert isinstance(service.get_state(), IdleState)
        assert service.is_connected() is False
        assert plan.disconnect_calls == 1
        assert await storage.get_item(SESSION_STORAGE_KEY) is None
        with pytest.raises(NotConnectedError):
            service.get_granter_address()

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect(self):
        service, plan, _ = await make_service()
        await service.connect()
        await service.disconnect()
        await service.connect()

        assert service.is_connected()
        assert plan.factory_calls == 2
        assert plan.connect_calls == 2

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self):
        service, plan, _ = await make_service()
        await service.disconnect()
        await service.connect()
        await service.disconnect()
        await service.disconnect()

        assert isinstance(service.get_state(), IdleState)
        assert plan.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_disconnect_from_error(self):
        plan = ControllerPlan(connect_outcomes=[RuntimeError("boom")])
        service, _, _ = await make_service(plan=plan)
        with pytest.raises(AuthorizationError):
            await service.connect()

        await service.disconnect()
        assert isinstance(service.get_state(), IdleState)
        assert service.get_error() is None

    @pytest.mark.asyncio
    async def test_controller_disconnect_failure_still_succeeds(self):
        plan = ControllerPlan(disconnect_error=RuntimeError("revoke failed"))
        service, _, storage = await make_service(plan=plan)
        await service.connect()
        await service.disconnect()

        assert isinstance(service.get_state(), IdleState)
        assert await storage.get_item(SESSION_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_disconnect_during_connect_wins(self):
        gate = asyncio.Event()
        plan = ControllerPlan(connect_gate=gate)
        service, _, storage = await make_service(plan=plan)

        task = asyncio.ensure_future(service.connect())
        await settle()
        await service.disconnect()
        gate.set()

        with pytest.raises(AuthorizationError, match="superseded"):
            await task

        assert isinstance(service.get_state(), IdleState)
        assert await storage.get_item(SESSION_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_disconnect_before_initialize_starts(self):
        service, plan, _ = await make_service()

        # One yield schedules the initialize task without running it
        task = asyncio.ensure_future(service.initialize())
        await asyncio.sleep(0)
        await service.disconnect()
        await task

        assert isinstance(service.get_state(), IdleState)
        assert plan.factory_calls == 0

        await service.initialize()
        assert isinstance(service.get_state(), IdleState)
        assert plan.factory_calls == 1
        assert plan.initialize_calls == 1

    @pytest.mark.asyncio
    async def test_connect_after_abandoned_initialize(self):
        service, plan, _ = await make_service()

        task = asyncio.ensure_future(service.initialize())
        await asyncio.sleep(0)
        await service.disconnect()
        await task

        await service.connect()
        assert service.is_connected()
        assert plan.factory_calls == 1
        assert plan.initialize_calls == 1
        assert plan.connect_calls == 1

    @pytest.mark.asyncio
    async def test_disconnect_before_connect_starts(self):
        service, plan, _ = await make_service()

        task = asyncio.ensure_future(service.connect())
        await asyncio.sleep(0)
        await service.disconnect()

        with pytest.raises(AuthorizationError, match="superseded"):
            await task

        assert isinstance(service.get_state(), IdleState)
        assert plan.factory_calls == 0
        assert plan.connect_calls == 0

    @pytest.mark.asyncio
    async def test_disconnect_during_restore_wins(self):
        storage = GatedStorage()
        service, plan, _ = await make_service(storage=storage)

        task = asyncio.ensure_future(service.initialize())
        await settle()
        assert storage.reads == 1
        assert plan.factory_calls == 1

        await service.disconnect()
        storage.gate.set()
        await task

        assert isinstance(service.get_state(), IdleState)
        assert plan.initialize_calls == 0
        assert plan.disconnect_calls == 1

        await service.initialize()
        assert isinstance(service.get_state(), IdleState)
        assert plan.factory_calls == 2
        assert plan.initialize_calls == 1


class TestDestroy:
    @pytest.mark.asyncio
    async def test_destroy_forces_idle_without_storage_io(self):
        service, plan, storage = await make_service()
        await service.connect()
        marker = await storage.get_item(SESSION_STORAGE_KEY)

        service.destroy()

        assert isinstance(service.get_state(), IdleState)
        assert plan.destroy_calls == 1
        assert plan.disconnect_calls == 0
        assert await storage.get_item(SESSION_STORAGE_KEY) == marker

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self):
        service, plan, _ = await make_service()
        service.destroy()
        await service.initialize()
        service.destroy()
        service.destroy()

        assert plan.destroy_calls == 1
        assert isinstance(service.get_state(), IdleState)

    @pytest.mark.asyncio
    async def test_destroy_before_initialize_starts(self):
        service, plan, _ = await make_service()

        task = asyncio.ensure_future(service.initialize())
        await asyncio.sleep(0)
        service.destroy()
        await task

        assert isinstance(service.get_state(), IdleState)
        assert plan.factory_calls == 0

        await service.initialize()
        assert isinstance(service.get_state(), IdleState)
        assert plan.factory_calls == 1
        assert plan.initialize_calls == 1

    @pytest.mark.asyncio
    async def test_destroy_during_restore_wins(self):
        storage = GatedStorage()
        service, plan, _ = await make_service(storage=storage)

        task = asyncio.ensure_future(service.initialize())
        await settle()
        service.destroy()
        storage.gate.set()
        await task

        assert isinstance(service.get_state(), IdleState)
        assert plan.destroy_calls == 1
        assert plan.disconnect_calls == 0
        assert plan.initialize_calls == 0

        await service.initialize()
        assert plan.factory_calls == 2
        assert plan.initialize_calls == 1
        assert isinstance(service.get_state(), IdleState)

    @pytest.mark.asyncio
    async def test_context_manager(self):
        wallets = await make_wallets()
        plan = ControllerPlan()
        async with AbstraxionService(
            make_config(wallets.get_signer_config_provider("u1")),
            MemoryStorageStrategy(),
            NoOpRedirectStrategy(),
            plan.factory,
        ) as service:
            assert plan.initialize_calls == 1
            await service.connect()

        assert isinstance(service.get_state(), IdleState)
        assert plan.destroy_calls == 1


# ============================================================
# Tests - Signer config rotation
# ============================================================

class TestUpdateSignerConfig:
    @pytest.mark.asyncio
    async def test_updates_live_controller_and_config(self):
        wallets = WalletService()
        await wallets.create_wallet("u1")
        await wallets.create_wallet("u2")
        service, plan, _ = await make_service(wallets=wallets)
        await service.connect()

        rotated = wallets.get_signer_config_provider("u2")
        service.update_get_signer_config(rotated)

        assert plan.controllers[0].get_signer_config is rotated
        assert service.config.get_signer_config is rotated
        assert service.is_connected()
        assert service.get_granter_address() == GRANTER

    @pytest.mark.asyncio
    async def test_used_for_reinitialization(self):
        wallets = WalletService()
        await wallets.create_wallet("u1")
        await wallets.create_wallet("u2")
        service, plan, _ = await make_service(wallets=wallets)

        rotated = wallets.get_signer_config_provider("u2")
        service.update_get_signer_config(rotated)
        await service.connect()

        assert plan.configs[0].authentication.get_signer_config is rotated
        assert recover_signer(GRANT_PAYLOAD, plan.signatures[0]) == wallets.get_wallet("u2").address

    @pytest.mark.asyncio
    async def test_rejects_non_callable(self):
        service, _, _ = await make_service()
        with pytest.raises(ConfigValidationError):
            service.update_get_signer_config("nope")  # type: ignore[arg-type]
