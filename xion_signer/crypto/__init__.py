"""Crypto utilities"""

from .signing import (
    derive_address,
    is_hex_payload,
    recover_signer,
    sign_personal_message,
    validate_hex_payload,
)
from .wallet import WalletRecord, WalletService

__all__ = [
    "derive_address",
    "is_hex_payload",
    "recover_signer",
    "sign_personal_message",
    "validate_hex_payload",
    "WalletRecord",
    "WalletService",
]
