"""
Wallet Service
In-memory session keypairs, one isolated wallet per identity

Key material never leaves the store: callers get an address and a SignerConfig
whose sign_message closure carries the key.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..errors import WalletNotFoundError
from ..types import (
    AUTHENTICATOR_TYPE_ETH_WALLET,
    GetSignerConfig,
    Identity,
    SignerConfig,
)
from .signing import sign_personal_message

logger = logging.getLogger(__name__)


@dataclass
class WalletRecord:
    """Wallet owned by the store"""
    private_key: str  # hex with 0x prefix
    account: LocalAccount = field(repr=False)
    created_at: int = 0  # unix ms

    @property
    def address(self) -> str:
        return self.account.address

    def __repr__(self) -> str:
        return f"WalletRecord(address={self.address!r}, created_at={self.created_at})"


class WalletService:
    """
    Wallet service for per-identity session keypairs

    Example:
        ```python
        wallets = WalletService()
        address = await wallets.create_wallet("user-123")

        signer_config = await wallets.get_signer_config("user-123")
        signature = await signer_config.sign_message("0xdeadbeef")
        ```
    """

    def __init__(self) -> None:
        self._wallets: Dict[Identity, WalletRecord] = {}
        self._lock = threading.Lock()

    async def create_wallet(self, identity: Identity) -> str:
        """
        Create a wallet for an identity, or return the existing one

        Args:
            identity: Unique user identifier

        Returns:
            The wallet's address. Repeated calls return the same address.
        """
        existing = self.get_wallet(identity)
        if existing is not None:
            return existing.address

        account: LocalAccount = Account.create()
        candidate = WalletRecord(
            private_key="0x" + bytes(account.key).hex(),
            account=account,
            created_at=int(time.time() * 1000),
        )

        # First creator wins; a losing racer discards its key
        with self._lock:
            record = self._wallets.setdefault(identity, candidate)

        if record is candidate:
            logger.info("Created wallet %s for identity %s", record.address, identity)
        return record.address

    def get_wallet(self, identity: Identity) -> Optional[WalletRecord]:
        """Get the wallet for an identity, or None"""
        with self._lock:
            return self._wallets.get(identity)

    async def get_signer_config(self, identity: Identity) -> SignerConfig:
        """
        Build a SignerConfig bound to the identity's wallet

        Raises:
            WalletNotFoundError: If no wallet exists for identity
        """
        wallet = self.get_wallet(identity)
        if wallet is None:
            raise WalletNotFoundError(identity)

        private_key = wallet.private_key

        async def sign_message(hex_message: str) -> str:
            return sign_personal_message(hex_message, private_key)

        return SignerConfig(
            authenticator_type=AUTHENTICATOR_TYPE_ETH_WALLET,
            authenticator_id=wallet.address.lower(),
            sign_message=sign_message,
        )

    def get_signer_config_provider(self, identity: Identity) -> GetSignerConfig:
        """Return a zero-argument async provider bound to identity"""

        async def provider() -> SignerConfig:
            return await self.get_signer_config(identity)

        return provider

    def delete_wallet(self, identity: Identity) -> None:
        """Delete the wallet for an identity (no-op if absent)"""
        with self._lock:
            self._wallets.pop(identity, None)

    def list_identities(self) -> List[Identity]:
        """Identities that currently own a wallet"""
        with self._lock:
            return list(self._wallets.keys())

    def clear_all(self) -> None:
        """Clear all wallets (use with caution!)"""
        with self._lock:
            self._wallets.clear()

    def count(self) -> int:
        """Number of stored wallets"""
        with self._lock:
            return len(self._wallets)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._wallets
