"""
Type definitions for the session signer
Configuration bundles, grant specs, signer config and connection states
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Tuple, Union

from typing_extensions import TypeAlias


# Type aliases
Identity = str
AuthenticatorType = Literal["EthWallet"]
IndexerType = Literal["numia", "subquery"]
ConnectionStatus = Literal["idle", "connecting", "connected", "error"]

AUTHENTICATOR_TYPE_ETH_WALLET: AuthenticatorType = "EthWallet"
DEFAULT_ADDRESS_PREFIX = "xion"
DEFAULT_GAS_PRICE = "0.001uxion"

SESSION_STORAGE_KEY = "xion-signer:session"
SESSION_RECORD_VERSION = 1


@dataclass(frozen=True)
class SignerConfig:
    """Authenticator identity plus a signing closure bound to one keypair"""
    authenticator_type: AuthenticatorType
    authenticator_id: str  # lower-cased wallet address
    sign_message: Callable[[str], Awaitable[str]]  # 0x-hex payload -> 0x-hex signature


GetSignerConfig: TypeAlias = Callable[[], Awaitable[SignerConfig]]


# ============================================================
# Grant specifications
# ============================================================


@dataclass(frozen=True)
class Coin:
    """Amount of a single denom, amount in base units"""
    denom: str
    amount: str


@dataclass(frozen=True)
class ContractGrant:
    """Contract execution allowance, optionally with spend limits"""
    address: str
    amounts: Tuple[Coin, ...] = ()


ContractSpec: TypeAlias = Union[str, ContractGrant, Dict[str, Any]]


@dataclass(frozen=True)
class SmartAccountContract:
    """Smart account contract identity"""
    code_id: int
    checksum: str
    address_prefix: Optional[str] = None


@dataclass(frozen=True)
class IndexerConfig:
    """Account indexer settings (Numia uses auth_token, SubQuery uses code_id)"""
    type: IndexerType
    url: str
    auth_token: Optional[str] = None
    code_id: Optional[int] = None


@dataclass(frozen=True)
class TreasuryIndexerConfig:
    """Treasury indexer settings"""
    url: str


@dataclass(frozen=True)
class ServiceConfig:
    """Configuration for AbstraxionService, one per service instance"""
    # Chain configuration
    chain_id: str
    aa_api_url: str
    smart_account_contract: SmartAccountContract
    get_signer_config: GetSignerConfig
    rpc_url: Optional[str] = None
    rest_url: Optional[str] = None
    gas_price: Optional[str] = None

    # Optional configuration
    indexer: Optional[IndexerConfig] = None
    treasury_indexer: Optional[TreasuryIndexerConfig] = None
    fee_granter: Optional[str] = None
    treasury: Optional[str] = None
    contracts: Optional[List[ContractSpec]] = None
    bank: Optional[List[Coin]] = None
    stake: bool = False


@dataclass(frozen=True)
class SignerAuthentication:
    """Signer-mode authentication block of the normalized config"""
    aa_api_url: str
    get_signer_config: GetSignerConfig
    smart_account_contract: SmartAccountContract
    indexer: Optional[IndexerConfig] = None
    treasury_indexer: Optional[TreasuryIndexerConfig] = None
    type: Literal["signer"] = "signer"


@dataclass(frozen=True)
class AbstraxionConfig:
    """Normalized configuration bundle handed to the authorization collaborator"""
    chain_id: str
    gas_price: str
    authentication: SignerAuthentication
    rpc_url: Optional[str] = None
    rest_url: Optional[str] = None
    fee_granter: Optional[str] = None
    treasury: Optional[str] = None
    contracts: Tuple[ContractGrant, ...] = ()
    bank: Tuple[Coin, ...] = ()
    stake: bool = False


# ============================================================
# Connection states
# ============================================================


@dataclass(frozen=True)
class IdleState:
    """No live session"""
    status: Literal["idle"] = "idle"


@dataclass(frozen=True)
class ConnectingState:
    """Initialization or connection in progress"""
    status: Literal["connecting"] = "connecting"


@dataclass(frozen=True)
class ConnectedState:
    """Usable session with a ready signing handle"""
    granter_address: str
    grantee_address: str
    signing_client: Any = field(default=None, compare=False)
    expires_at: Optional[int] = None  # grant expiry, unix ms
    status: Literal["connected"] = "connected"


@dataclass(frozen=True)
class ErrorState:
    """Last operation failed; the service stays retryable"""
    error: str
    status: Literal["error"] = "error"


ConnectionState: TypeAlias = Union[IdleState, ConnectingState, ConnectedState, ErrorState]

IDLE = IdleState()
CONNECTING = ConnectingState()


@dataclass
class PersistedSession:
    """Session marker written through the storage strategy"""
    granter_address: str
    grantee_address: str
    saved_at: int  # unix ms
    expires_at: Optional[int] = None
    version: int = SESSION_RECORD_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "granterAddress": self.granter_address,
            "granteeAddress": self.grantee_address,
            "expiresAt": self.expires_at,
            "savedAt": self.saved_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersistedSession":
        return cls(
            version=int(data["version"]),
            granter_address=str(data["granterAddress"]),
            grantee_address=str(data["granteeAddress"]),
            expires_at=data.get("expiresAt"),
            saved_at=int(data.get("savedAt", 0)),
        )
