"""
Process configuration for the backend signer

Values come from direct initialization or environment variables (CHAIN_ID,
RPC_URL, FEE_GRANTER_ADDRESS, CHECKSUM, ...). Defaults target XION testnet.

Configuration is passed explicitly; there is no global instance, so several
tenants can run side by side without sharing state.
"""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .errors import ConfigValidationError
from .types import (
    DEFAULT_ADDRESS_PREFIX,
    DEFAULT_GAS_PRICE,
    Coin,
    ContractSpec,
    GetSignerConfig,
    IndexerConfig,
    ServiceConfig,
    SmartAccountContract,
    TreasuryIndexerConfig,
)

DEFAULT_CHAIN_ID = "xion-testnet-2"
DEFAULT_RPC_URL = "https://rpc.xion-testnet-2.burnt.com:443"
DEFAULT_REST_URL = "https://api.xion-testnet-2.burnt.com"
DEFAULT_AA_API_URL = "https://aa-api.xion-testnet-2.burnt.com"
DEFAULT_CODE_ID = 1


def _parse_int(name: str, value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ConfigValidationError(
            f"{name} must be an integer, got: {value!r}", field=name
        ) from None


@dataclass
class AppConfig:
    """
    Configuration for the backend signer process

    Can be set via:
    1. Direct initialization
    2. Environment variables (see from_env)
    """
    chain_id: str = DEFAULT_CHAIN_ID
    rpc_url: str = DEFAULT_RPC_URL
    rest_url: str = DEFAULT_REST_URL
    gas_price: str = DEFAULT_GAS_PRICE
    aa_api_url: str = DEFAULT_AA_API_URL
    fee_granter: Optional[str] = None
    treasury: Optional[str] = None
    code_id: int = DEFAULT_CODE_ID
    checksum: str = ""  # Must be provided
    address_prefix: str = DEFAULT_ADDRESS_PREFIX
    indexer: Optional[IndexerConfig] = None
    treasury_indexer: Optional[TreasuryIndexerConfig] = None
    controller_factory: Optional[str] = None  # "package.module:attribute"
    log_level: str = "INFO"
    # Optional grant settings, set in code
    contracts: List[ContractSpec] = field(default_factory=list)
    bank: List[Coin] = field(default_factory=list)
    stake: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """
        Load configuration from environment variables

        Args:
            environ: Mapping to read instead of os.environ

        Raises:
            ConfigValidationError: If a numeric variable does not parse
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            value = env.get(name)
            return value if value else default

        indexer = None
        indexer_url = get("INDEXER_URL")
        if indexer_url:
            indexer = IndexerConfig(
                type=get("INDEXER_TYPE", "numia"),  # type: ignore[arg-type]
                url=indexer_url,
                auth_token=get("INDEXER_AUTH_TOKEN"),
                code_id=_parse_int("INDEXER_CODE_ID", get("INDEXER_CODE_ID")),
            )

        treasury_indexer_url = get("TREASURY_INDEXER_URL")
        code_id = _parse_int("CODE_ID", get("CODE_ID"))

        return cls(
            chain_id=get("CHAIN_ID", DEFAULT_CHAIN_ID),  # type: ignore[arg-type]
            rpc_url=get("RPC_URL", DEFAULT_RPC_URL),  # type: ignore[arg-type]
            rest_url=get("REST_URL", DEFAULT_REST_URL),  # type: ignore[arg-type]
            gas_price=get("GAS_PRICE", DEFAULT_GAS_PRICE),  # type: ignore[arg-type]
            aa_api_url=get("AA_API_URL", DEFAULT_AA_API_URL),  # type: ignore[arg-type]
            fee_granter=get("FEE_GRANTER_ADDRESS"),
            treasury=get("TREASURY_ADDRESS"),
            code_id=DEFAULT_CODE_ID if code_id is None else code_id,
            checksum=get("CHECKSUM", ""),  # type: ignore[arg-type]
            address_prefix=get("ADDRESS_PREFIX", DEFAULT_ADDRESS_PREFIX),  # type: ignore[arg-type]
            indexer=indexer,
            treasury_indexer=TreasuryIndexerConfig(url=treasury_indexer_url) if treasury_indexer_url else None,
            controller_factory=get("CONTROLLER_FACTORY"),
            log_level=get("LOG_LEVEL", "INFO"),  # type: ignore[arg-type]
        )

    def to_service_config(self, get_signer_config: GetSignerConfig) -> ServiceConfig:
        """Build the ServiceConfig for one identity's signer config provider"""
        return ServiceConfig(
            chain_id=self.chain_id,
            rpc_url=self.rpc_url,
            rest_url=self.rest_url,
            gas_price=self.gas_price,
            aa_api_url=self.aa_api_url,
            smart_account_contract=SmartAccountContract(
                code_id=self.code_id,
                checksum=self.checksum,
                address_prefix=self.address_prefix,
            ),
            get_signer_config=get_signer_config,
            indexer=self.indexer,
            treasury_indexer=self.treasury_indexer,
            fee_granter=self.fee_granter,
            treasury=self.treasury,
            contracts=list(self.contracts) or None,
            bank=list(self.bank) or None,
            stake=self.stake,
        )


def load_config() -> AppConfig:
    """Load AppConfig from the process environment"""
    return AppConfig.from_env()


def validate_config(config: AppConfig) -> None:
    """
    Validate that required configuration is present

    Raises:
        ConfigValidationError: If CHECKSUM or FEE_GRANTER_ADDRESS is missing
    """
    if not config.checksum:
        raise ConfigValidationError(
            "CHECKSUM environment variable is required for smart account contract",
            field="CHECKSUM",
        )

    if not config.fee_granter:
        raise ConfigValidationError(
            "FEE_GRANTER_ADDRESS environment variable is required for signer mode",
            field="FEE_GRANTER_ADDRESS",
        )
