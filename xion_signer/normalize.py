"""
Config validation and normalization

Turns a ServiceConfig into the AbstraxionConfig bundle the controller
expects. All checks here run before any network call.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Iterable, List, Optional, Tuple

from .errors import ConfigValidationError
from .types import (
    DEFAULT_ADDRESS_PREFIX,
    DEFAULT_GAS_PRICE,
    AbstraxionConfig,
    Coin,
    ContractGrant,
    ContractSpec,
    ServiceConfig,
    SignerAuthentication,
    SmartAccountContract,
)

logger = logging.getLogger(__name__)

_GAS_PRICE = re.compile(r"^\d+(\.\d+)?[a-zA-Z][a-zA-Z0-9/:._-]*$")
_AMOUNT = re.compile(r"^\d+$")
INDEXER_TYPES = ("numia", "subquery")


def validate_service_config(config: ServiceConfig) -> None:
    """
    Validate required service configuration

    Raises:
        ConfigValidationError: On the first missing or malformed field
    """
    if not config.chain_id:
        raise ConfigValidationError("chain_id is required", field="chain_id")

    if not config.aa_api_url:
        raise ConfigValidationError("aa_api_url is required", field="aa_api_url")

    if not config.fee_granter:
        raise ConfigValidationError(
            "fee_granter is required for signer mode", field="fee_granter"
        )

    contract = config.smart_account_contract
    if contract is None or not contract.checksum:
        raise ConfigValidationError(
            "checksum is required for smart account contract",
            field="smart_account_contract.checksum",
        )

    if isinstance(contract.code_id, bool) or not isinstance(contract.code_id, int) or contract.code_id <= 0:
        raise ConfigValidationError(
            f"code_id must be a positive integer, got: {contract.code_id!r}",
            field="smart_account_contract.code_id",
        )

    if not callable(config.get_signer_config):
        raise ConfigValidationError(
            "get_signer_config must be a callable returning a SignerConfig",
            field="get_signer_config",
        )

    if config.gas_price is not None and not _GAS_PRICE.match(config.gas_price):
        raise ConfigValidationError(
            f"Invalid gas price: {config.gas_price!r}. Expected e.g. '0.001uxion'",
            field="gas_price",
        )

    if config.indexer is not None and config.indexer.type not in INDEXER_TYPES:
        raise ConfigValidationError(
            f"Invalid indexer type: {config.indexer.type!r}. Expected one of {INDEXER_TYPES}",
            field="indexer.type",
        )


def normalize_coin(value: Any) -> Coin:
    """Normalize a Coin or {denom, amount} mapping"""
    if isinstance(value, Coin):
        coin = value
    elif isinstance(value, Mapping):
        coin = Coin(denom=str(value.get("denom", "")), amount=str(value.get("amount", "")))
    else:
        raise ConfigValidationError(f"Invalid coin: {value!r}", field="bank")

    if not coin.denom:
        raise ConfigValidationError(f"Coin denom is required: {value!r}", field="bank")
    if not _AMOUNT.match(coin.amount):
        raise ConfigValidationError(
            f"Coin amount must be a non-negative integer string: {value!r}", field="bank"
        )
    return coin


def normalize_coins(values: Optional[Iterable[Any]]) -> Tuple[Coin, ...]:
    return tuple(normalize_coin(v) for v in values or ())


def normalize_contract(value: ContractSpec) -> ContractGrant:
    """Normalize a contract address string or {address, amounts} mapping"""
    if isinstance(value, str):
        grant = ContractGrant(address=value)
    elif isinstance(value, ContractGrant):
        grant = ContractGrant(address=value.address, amounts=normalize_coins(value.amounts))
    elif isinstance(value, Mapping):
        grant = ContractGrant(
            address=str(value.get("address", "")),
            amounts=normalize_coins(value.get("amounts")),
        )
    else:
        raise ConfigValidationError(f"Invalid contract grant: {value!r}", field="contracts")

    if not grant.address:
        raise ConfigValidationError(
            f"Contract grant address is required: {value!r}", field="contracts"
        )
    return grant


def normalize_config(config: ServiceConfig) -> AbstraxionConfig:
    """
    Validate and normalize a ServiceConfig

    Args:
        config: Service configuration

    Returns:
        Normalized bundle for the controller factory

    Raises:
        ConfigValidationError: If the configuration is invalid
    """
    validate_service_config(config)

    contracts: Tuple[ContractGrant, ...] = tuple(
        normalize_contract(c) for c in config.contracts or ()
    )
    bank = normalize_coins(config.bank)
    stake = bool(config.stake)

    if config.treasury and (contracts or bank or stake):
        # Treasury contract defines the grants
        ignored: List[str] = [
            name for name, present in (("contracts", contracts), ("bank", bank), ("stake", stake))
            if present
        ]
        logger.warning(
            "Treasury %s configured; ignoring explicit grant settings: %s",
            config.treasury,
            ", ".join(ignored),
        )
        contracts, bank, stake = (), (), False

    contract = config.smart_account_contract
    return AbstraxionConfig(
        chain_id=config.chain_id,
        rpc_url=config.rpc_url,
        rest_url=config.rest_url,
        gas_price=config.gas_price or DEFAULT_GAS_PRICE,
        fee_granter=config.fee_granter,
        treasury=config.treasury,
        contracts=contracts,
        bank=bank,
        stake=stake,
        authentication=SignerAuthentication(
            aa_api_url=config.aa_api_url,
            get_signer_config=config.get_signer_config,
            smart_account_contract=SmartAccountContract(
                code_id=contract.code_id,
                checksum=contract.checksum,
                address_prefix=contract.address_prefix or DEFAULT_ADDRESS_PREFIX,
            ),
            indexer=config.indexer,
            treasury_indexer=config.treasury_indexer,
        ),
    )
