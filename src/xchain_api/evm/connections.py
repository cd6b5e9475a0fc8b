"""Connection helpers for the EVM client handle."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import cast

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.types import ChecksumAddress

from ..constants import (
    MULTICALL3_ADDRESS,
    MULTICALL_CHAIN_IDS,
    ContractRole,
)
from ..exceptions import TerminalOperationError
from ..registry import ChainRegistry
from ..types import ChainDescriptor
from .config import DEFAULT_DERIVATION_PATH, EVMClientConfig

logger = logging.getLogger(__name__)

Web3Factory = Callable[[str, float], AsyncWeb3]


def default_web3_factory(rpc_url: str, request_timeout: float) -> AsyncWeb3:
    provider = AsyncHTTPProvider(
        rpc_url,
        request_kwargs={"timeout": aiohttp.ClientTimeout(total=request_timeout)},
    )
    return AsyncWeb3(provider)


@dataclass(frozen=True)
class ChainBinding:
    """Connection, chain and derived addresses for one active EVM chain.

    A binding is never mutated; switching chain swaps the whole object so
    readers always see a consistent triple.
    """

    descriptor: ChainDescriptor
    rpc_url: str
    web3: AsyncWeb3
    contracts: Mapping[ContractRole, ChecksumAddress] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def chain_key(self) -> str:
        return self.descriptor.key

    @property
    def chain_id(self) -> int:
        return cast(int, self.descriptor.chain_id)

    @property
    def aggregator_address(self) -> ChecksumAddress | None:
        return self.contracts.get(ContractRole.MULTICALL)


def derive_contracts(chain_id: int) -> Mapping[ContractRole, ChecksumAddress]:
    """Return the well-known contract addresses deployed on ``chain_id``."""

    contracts: dict[ContractRole, ChecksumAddress] = {}
    if chain_id in MULTICALL_CHAIN_IDS:
        contracts[ContractRole.MULTICALL] = Web3.to_checksum_address(MULTICALL3_ADDRESS)
    return MappingProxyType(contracts)


def build_binding(
    registry: ChainRegistry,
    chain: str,
    *,
    rpc_url: str | None,
    request_timeout: float,
    web3_factory: Web3Factory,
) -> ChainBinding:
    descriptor = registry.resolve(chain)
    if not descriptor.is_evm:
        raise TerminalOperationError(
            f"Chain {descriptor.key} is not an EVM chain", field="chain", value=chain
        )

    endpoint = registry.endpoint_for(descriptor.key, rpc_url)
    web3 = web3_factory(endpoint, request_timeout)
    return ChainBinding(
        descriptor=descriptor,
        rpc_url=endpoint,
        web3=web3,
        contracts=derive_contracts(cast(int, descriptor.chain_id)),
    )


def load_signer(config: EVMClientConfig) -> LocalAccount:
    """Derive the local signing account from a private key or mnemonic."""

    try:
        if config.mnemonic:
            Account.enable_unaudited_hdwallet_features()
            return cast(
                LocalAccount,
                Account.from_mnemonic(
                    config.mnemonic,
                    account_path=config.derivation_path or DEFAULT_DERIVATION_PATH,
                ),
            )
        return cast(LocalAccount, Account.from_key(config.private_key))  # type: ignore[arg-type]
    except Exception as exc:
        raise TerminalOperationError(
            "Failed to derive signer account from provided signing material",
            field="private_key" if config.private_key else "mnemonic",
            details={"error": str(exc)},
        ) from exc
