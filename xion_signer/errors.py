"""
Custom exception classes for the session signer
Every error carries a stable code so callers can branch without parsing messages
"""

from typing import Any, Dict, Optional


class SignerError(Exception):
    """Base signer error class"""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ConfigValidationError(SignerError):
    """Missing or malformed configuration, raised before any network call"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__("CONFIG_VALIDATION", message, error_details)
        self.field = field


class WalletNotFoundError(SignerError):
    """No wallet exists for the requested identity"""

    def __init__(self, identity: str):
        super().__init__(
            "NOT_FOUND",
            f"Wallet not found for user: {identity}. Call create_wallet() first.",
            {"identity": identity},
        )
        self.identity = identity


class InvalidFormatError(SignerError):
    """Malformed signing payload"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_FORMAT", message, details)


class NotConnectedError(SignerError):
    """Accessor used before a successful connect()"""

    def __init__(self, message: str = "Not connected. Call connect() first."):
        super().__init__("NOT_CONNECTED", message)


class AuthorizationError(SignerError):
    """The authorization collaborator could not discover/create the account or grant"""

    def __init__(
        self,
        message: str,
        original_error: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("AUTHORIZATION_FAILURE", message, details)
        self.original_error = original_error


def error_message(error: BaseException) -> str:
    """Return the bare message of an error, without the code prefix"""
    if isinstance(error, SignerError):
        return error.message
    return str(error) or error.__class__.__name__
