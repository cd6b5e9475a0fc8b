"""Unified multi-chain client."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .alt.client import AltHandle
from .alt.connections import ClientFactory
from .batch import BatchEngine
from .config import ClientConfig
from .dispatcher import Dispatcher
from .evm.client import EVMHandle
from .evm.connections import Web3Factory
from .evm.multicall import MulticallBatcher
from .registry import ChainRegistry
from .retry import RetryWrapper
from .types import (
    Amount,
    BalanceEntry,
    BatchResult,
    MulticallCall,
    MulticallResult,
    OperationKind,
    OperationRequest,
    OperationResult,
)

logger = logging.getLogger(__name__)


class MultiChainClient:
    """One entry point for EVM and Solana operations.

    Handles are built from ``ClientConfig``; a family without signing
    material is simply absent, and requests for it raise
    ``BackendNotConfigured``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        registry: ChainRegistry | None = None,
        web3_factory: Web3Factory | None = None,
        alt_client_factory: ClientFactory | None = None,
    ) -> None:
        self._base_registry = registry or ChainRegistry()
        self._web3_factory = web3_factory
        self._alt_client_factory = alt_client_factory
        self.config = config or ClientConfig()
        self._build(self.config)

    @classmethod
    def from_env(cls, **kwargs: Any) -> MultiChainClient:
        return cls(ClientConfig.from_env(), **kwargs)

    def _build(self, config: ClientConfig) -> None:
        registry = self._base_registry.with_overrides(config.rpc_urls)
        evm = (
            EVMHandle(config.evm, registry, web3_factory=self._web3_factory)
            if config.evm is not None
            else None
        )
        alt = (
            AltHandle(config.alt, registry, client_factory=self._alt_client_factory)
            if config.alt is not None
            else None
        )

        self.registry = registry
        self.dispatcher = Dispatcher(registry, evm=evm, alt=alt, retry=RetryWrapper(config.retry_policy))
        self.batch = BatchEngine(self.dispatcher, max_concurrency=config.batch_concurrency)
        self.multicaller = MulticallBatcher(self.dispatcher)
        logger.info(
            "MultiChainClient ready (evm=%s, alt=%s)",
            evm.address if evm else None,
            alt.address if alt else None,
        )

    async def update_config(self, **changes: Any) -> None:
        """Merge ``changes`` into the config and rebuild both handles.

        Passing ``evm=None`` or ``alt=None`` drops that family entirely.
        """

        merged = self.config.merged(**changes)
        previous = (self.dispatcher.evm, self.dispatcher.alt)
        self._build(merged)
        self.config = merged
        for handle in previous:
            if handle is not None:
                await handle.aclose()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def evm(self) -> EVMHandle | None:
        return self.dispatcher.evm

    @property
    def alt(self) -> AltHandle | None:
        return self.dispatcher.alt

    @property
    def evm_address(self) -> str | None:
        return self.evm.address if self.evm else None

    @property
    def alt_address(self) -> str | None:
        return self.alt.address if self.alt else None

    def is_evm_configured(self) -> bool:
        return self.evm is not None

    def is_alt_configured(self) -> bool:
        return self.alt is not None

    # ------------------------------------------------------------------
    # Single operations
    # ------------------------------------------------------------------
    async def execute(self, request: OperationRequest) -> OperationResult:
        return await self.dispatcher.execute(request)

    async def transfer_native(
        self,
        chain: str,
        to: str,
        amount: Amount,
        *,
        rpc_url: str | None = None,
        **options: Any,
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.NATIVE_TRANSFER,
                params={"to": to, "amount": amount, **options},
                rpc_url=rpc_url,
            )
        )

    async def transfer_token(
        self,
        chain: str,
        token: str,
        to: str,
        amount: Amount,
        *,
        rpc_url: str | None = None,
        **options: Any,
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.TOKEN_TRANSFER,
                params={"token": token, "to": to, "amount": amount, **options},
                rpc_url=rpc_url,
            )
        )

    async def approve_token(
        self,
        chain: str,
        token: str,
        spender: str,
        amount: Amount,
        *,
        rpc_url: str | None = None,
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.TOKEN_APPROVE,
                params={"token": token, "spender": spender, "amount": amount},
                rpc_url=rpc_url,
                target=spender,
            )
        )

    async def get_balance(
        self, chain: str, address: str | None = None, *, rpc_url: str | None = None
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.NATIVE_BALANCE,
                params={"address": address},
                rpc_url=rpc_url,
            )
        )

    async def get_token_balance(
        self,
        chain: str,
        token: str,
        address: str | None = None,
        *,
        rpc_url: str | None = None,
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.TOKEN_BALANCE,
                params={"token": token, "address": address},
                rpc_url=rpc_url,
            )
        )

    async def read_contract(
        self,
        chain: str,
        contract: str,
        signature: str,
        args: Sequence[Any] = (),
        output_types: Sequence[str] = (),
        *,
        rpc_url: str | None = None,
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.CONTRACT_READ,
                params={
                    "contract": contract,
                    "signature": signature,
                    "args": tuple(args),
                    "output_types": tuple(output_types),
                },
                rpc_url=rpc_url,
            )
        )

    async def write_contract(
        self,
        chain: str,
        contract: str,
        signature: str,
        args: Sequence[Any] = (),
        *,
        value: Amount = 0,
        rpc_url: str | None = None,
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.CONTRACT_WRITE,
                params={"contract": contract, "signature": signature, "args": tuple(args), "value": value},
                rpc_url=rpc_url,
            )
        )

    async def transaction_status(
        self, chain: str, tx_hash: str, *, rpc_url: str | None = None
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.TX_STATUS,
                params={"tx_hash": tx_hash},
                rpc_url=rpc_url,
            )
        )

    async def wait_for_transaction(
        self, chain: str, tx_hash: str, timeout: float, *, rpc_url: str | None = None
    ) -> OperationResult:
        """Like ``transaction_status`` but waits up to ``timeout`` seconds for a final state."""

        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.TX_STATUS,
                params={"tx_hash": tx_hash, "wait": timeout},
                rpc_url=rpc_url,
            )
        )

    async def get_transaction(
        self, chain: str, tx_hash: str, *, rpc_url: str | None = None
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.TX_DETAILS,
                params={"tx_hash": tx_hash},
                rpc_url=rpc_url,
            )
        )

    async def deploy_contract(
        self,
        chain: str,
        bytecode: str | bytes,
        constructor_types: Sequence[str] = (),
        args: Sequence[Any] = (),
        *,
        value: Amount = 0,
        rpc_url: str | None = None,
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.CONTRACT_DEPLOY,
                params={
                    "bytecode": bytecode,
                    "constructor_types": tuple(constructor_types),
                    "args": tuple(args),
                    "value": value,
                },
                rpc_url=rpc_url,
            )
        )

    async def get_past_events(
        self,
        chain: str,
        contract: str,
        event: str,
        *,
        data_types: Sequence[str] = (),
        from_block: int | str = 0,
        to_block: int | str = "latest",
        rpc_url: str | None = None,
    ) -> OperationResult:
        return await self.execute(
            OperationRequest(
                chain=chain,
                kind=OperationKind.EVENT_QUERY,
                params={
                    "contract": contract,
                    "event": event,
                    "data_types": tuple(data_types),
                    "from_block": from_block,
                    "to_block": to_block,
                },
                rpc_url=rpc_url,
            )
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------
    async def run_batch(
        self, requests: Iterable[OperationRequest], *, max_concurrency: int | None = None
    ) -> BatchResult:
        return await self.batch.run_batch(requests, max_concurrency=max_concurrency)

    async def bulk_transfer_native(
        self,
        chain: str,
        transfers: Mapping[str, Amount] | Sequence[tuple[str, Amount]],
        *,
        rpc_url: str | None = None,
        **options: Any,
    ) -> BatchResult:
        return await self.batch.transfer_many(chain, transfers, rpc_url=rpc_url, **options)

    async def balances_of(
        self,
        chain: str,
        addresses: Sequence[str],
        *,
        token: str | None = None,
        rpc_url: str | None = None,
    ) -> BatchResult:
        return await self.batch.balances_of(chain, addresses, token=token, rpc_url=rpc_url)

    async def sweep_balances(
        self,
        address: str | None = None,
        *,
        alt_address: str | None = None,
        chains: Iterable[str] | None = None,
    ) -> list[BalanceEntry]:
        return await self.batch.sweep_balances(address, alt_address=alt_address, chains=chains)

    async def multicall(
        self, chain: str, calls: Sequence[MulticallCall], *, rpc_url: str | None = None
    ) -> list[MulticallResult]:
        return await self.multicaller.multicall(chain, calls, rpc_url=rpc_url)

    async def try_multicall(
        self, chain: str, calls: Sequence[MulticallCall], *, rpc_url: str | None = None
    ) -> list[MulticallResult]:
        return await self.multicaller.try_multicall(chain, calls, rpc_url=rpc_url)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def health_check(self) -> dict[str, Any]:
        """Report connectivity per configured family; never raises."""

        report: dict[str, Any] = {}
        if self.evm is not None:
            report["evm"] = await self.evm.health_check()
        if self.alt is not None:
            report["alt"] = await self.alt.health_check()
        report["healthy"] = bool(report) and all(entry["healthy"] for entry in report.values())
        return report

    async def aclose(self) -> None:
        for handle in (self.evm, self.alt):
            if handle is not None:
                await handle.aclose()

    async def __aenter__(self) -> MultiChainClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
