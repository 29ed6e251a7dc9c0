"""
Message signing utilities for session keys

IMPORTANT: Payloads are signed as EIP-191 personal messages over the raw bytes
(personal_sign), which is what the smart account's EthWallet authenticator verifies.
"""

import re

from eth_account import Account
from eth_account.messages import encode_defunct

from ..errors import InvalidFormatError

_HEX_PAYLOAD = re.compile(r"^0x(?:[0-9a-fA-F]{2})*$")


def is_hex_payload(payload: object) -> bool:
    """Check that payload is a 0x-prefixed, even-length hex string"""
    return isinstance(payload, str) and bool(_HEX_PAYLOAD.match(payload))


def validate_hex_payload(payload: object) -> bytes:
    """
    Validate a signing payload and decode it to raw bytes

    Args:
        payload: Hex string with 0x prefix

    Returns:
        Raw payload bytes

    Raises:
        InvalidFormatError: If payload is not 0x-prefixed hex
    """
    if not is_hex_payload(payload):
        preview = str(payload)[:50]
        raise InvalidFormatError(
            f"Invalid message format: expected hex string with 0x prefix, got: {preview}...",
            {"preview": preview},
        )
    return bytes.fromhex(payload[2:])  # type: ignore[index]


def to_hex(data: bytes) -> str:
    """Hex-encode bytes with a 0x prefix"""
    return "0x" + bytes(data).hex()


def sign_personal_message(payload: str, private_key: str) -> str:
    """
    Sign raw payload bytes as an EIP-191 personal message

    Args:
        payload: Message as 0x-prefixed hex
        private_key: secp256k1 private key (hex, with or without 0x)

    Returns:
        65-byte signature (r + s + v) as 0x-prefixed hex

    Signatures are deterministic (RFC 6979): the same key and payload
    always produce the same signature.
    """
    raw = validate_hex_payload(payload)
    signed = Account.sign_message(encode_defunct(primitive=raw), private_key=private_key)
    return to_hex(signed.signature)


def recover_signer(payload: str, signature: str) -> str:
    """Recover the checksummed address that produced signature over payload"""
    raw = validate_hex_payload(payload)
    return Account.recover_message(encode_defunct(primitive=raw), signature=signature)


def derive_address(private_key: str) -> str:
    """
    Derive the checksummed EVM address from a private key

    Args:
        private_key: Private key (hex string with or without 0x prefix)

    Returns:
        Checksummed address
    """
    return Account.from_key(private_key).address
