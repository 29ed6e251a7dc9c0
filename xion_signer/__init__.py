"""
XION backend signer
Headless signer-mode sessions: a granter smart account delegates to a session key

Example:
    ```python
    import asyncio
    from xion_signer import (
        AbstraxionService,
        MemoryStorageStrategy,
        NoOpRedirectStrategy,
        ServiceConfig,
        SmartAccountContract,
        WalletService,
    )

    async def main():
        wallets = WalletService()
        await wallets.create_wallet("user-123")

        async with AbstraxionService(
            ServiceConfig(
                chain_id="xion-testnet-2",
                aa_api_url="https://aa-api.xion-testnet-2.burnt.com",
                smart_account_contract=SmartAccountContract(code_id=1, checksum="..."),
                get_signer_config=wallets.get_signer_config_provider("user-123"),
                fee_granter="xion1...",
            ),
            MemoryStorageStrategy(),
            NoOpRedirectStrategy(),
            create_signer_controller,
        ) as service:
            await service.connect()
            print(f"Granter: {service.get_granter_address()}")

    asyncio.run(main())
    ```
"""

__version__ = "0.1.0"

# Main service
from .service import AbstraxionService

# Collaborator boundary
from .controller import (
    ControllerFactory,
    ControllerState,
    SessionController,
    load_controller_factory,
)

# Configuration
from .config import AppConfig, load_config, validate_config
from .normalize import normalize_config, validate_service_config

# Types
from .types import (
    Identity,
    AbstraxionConfig,
    SignerAuthentication,
    ServiceConfig,
    SmartAccountContract,
    IndexerConfig,
    TreasuryIndexerConfig,
    Coin,
    ContractGrant,
    SignerConfig,
    GetSignerConfig,
    ConnectionState,
    IdleState,
    ConnectingState,
    ConnectedState,
    ErrorState,
    PersistedSession,
    SESSION_STORAGE_KEY,
)

# Errors
from .errors import (
    SignerError,
    ConfigValidationError,
    WalletNotFoundError,
    InvalidFormatError,
    NotConnectedError,
    AuthorizationError,
)

# Key store
from .crypto.wallet import WalletService, WalletRecord

# Storage and redirect strategies
from .storage import StorageStrategy, MemoryStorageStrategy
from .strategies import RedirectStrategy, NoOpRedirectStrategy

__all__ = [
    "__version__",
    # Main service
    "AbstraxionService",
    # Collaborator boundary
    "ControllerFactory",
    "ControllerState",
    "SessionController",
    "load_controller_factory",
    # Configuration
    "AppConfig",
    "load_config",
    "validate_config",
    "normalize_config",
    "validate_service_config",
    # Types
    "Identity",
    "AbstraxionConfig",
    "SignerAuthentication",
    "ServiceConfig",
    "SmartAccountContract",
    "IndexerConfig",
    "TreasuryIndexerConfig",
    "Coin",
    "ContractGrant",
    "SignerConfig",
    "GetSignerConfig",
    "ConnectionState",
    "IdleState",
    "ConnectingState",
    "ConnectedState",
    "ErrorState",
    "PersistedSession",
    "SESSION_STORAGE_KEY",
    # Errors
    "SignerError",
    "ConfigValidationError",
    "WalletNotFoundError",
    "InvalidFormatError",
    "NotConnectedError",
    "AuthorizationError",
    # Key store
    "WalletService",
    "WalletRecord",
    # Strategies
    "StorageStrategy",
    "MemoryStorageStrategy",
    "RedirectStrategy",
    "NoOpRedirectStrategy",
]
