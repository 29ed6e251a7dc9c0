"""
Backend signer demo

Creates a session wallet for one user, connects through the configured
controller and prints the resulting granter/grantee addresses.

    CHECKSUM=... FEE_GRANTER_ADDRESS=xion1... \\
    CONTROLLER_FACTORY=my_chain.controllers:create_signer_controller \\
    python -m xion_signer --user-id demo-user-123
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from .config import AppConfig, load_config, validate_config
from .controller import ControllerFactory, load_controller_factory
from .crypto.wallet import WalletService
from .errors import ConfigValidationError, SignerError, error_message
from .logging_config import setup_logging
from .service import AbstraxionService
from .storage import MemoryStorageStrategy
from .strategies import NoOpRedirectStrategy

logger = logging.getLogger("xion_signer.cli")

DEFAULT_USER_ID = "demo-user-123"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xion-signer",
        description="Connect a headless signer-mode session for one user",
    )
    parser.add_argument(
        "--user-id",
        default=DEFAULT_USER_ID,
        help=f"Identity to create the session wallet for (default: {DEFAULT_USER_ID})",
    )
    parser.add_argument(
        "--controller",
        default=None,
        help="Controller factory as package.module:attribute (overrides CONTROLLER_FACTORY)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (overrides LOG_LEVEL)",
    )
    return parser


async def run(config: AppConfig, user_id: str, controller_factory: ControllerFactory) -> int:
    """
    Run the demo flow

    Returns 1 when the service configuration is rejected. Connect failures
    are logged and reported through get_error() without changing the exit
    code. Cleanup always runs.
    """
    wallets = WalletService()
    wallet_address = await wallets.create_wallet(user_id)
    print(f"Created wallet: {wallet_address}")

    try:
        service = AbstraxionService(
            config.to_service_config(wallets.get_signer_config_provider(user_id)),
            MemoryStorageStrategy(),
            NoOpRedirectStrategy(),
            controller_factory,
        )
    except ConfigValidationError as e:
        logger.error("Configuration error: %s", error_message(e))
        wallets.delete_wallet(user_id)
        return 1

    try:
        await service.initialize()
        print(f"Connection status: {'Connected' if service.is_connected() else 'Not connected'}")

        if not service.is_connected():
            print("Connecting (discover/create smart account, create grants)...")
            await service.connect()

        print("Account Information:")
        print(f"  Smart Account (Granter): {service.get_granter_address()}")
        print(f"  Session Key (Grantee):   {service.get_grantee_address()}")
        print(f"  Wallet Address:          {wallet_address}")

        service.get_signing_client()
        print("Signing client ready for transactions")
    except SignerError as e:
        logger.error("Error occurred: %s", error_message(e))
        controller_error = service.get_error()
        if controller_error:
            logger.error("Controller error: %s", controller_error)
    finally:
        service.destroy()
        wallets.delete_wallet(user_id)
        print("Cleanup complete")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config()
        if not args.log_level:
            setup_logging(config.log_level)
        validate_config(config)

        factory_path = args.controller or config.controller_factory
        if not factory_path:
            raise ConfigValidationError(
                "CONTROLLER_FACTORY environment variable (or --controller) is required",
                field="CONTROLLER_FACTORY",
            )
        controller_factory = load_controller_factory(factory_path)
    except ConfigValidationError as e:
        logger.error("Configuration error: %s", error_message(e))
        print(
            "\nPlease set the following environment variables:\n"
            "  - CHECKSUM: Smart account contract checksum\n"
            "  - FEE_GRANTER_ADDRESS: Fee granter address\n"
            "  - CONTROLLER_FACTORY: Signer controller factory (package.module:attribute)\n"
            "  - CODE_ID: Smart account contract code ID (optional, defaults to 1)"
        )
        return 1

    return asyncio.run(run(config, args.user_id, controller_factory))


if __name__ == "__main__":
    raise SystemExit(main())
