"""Apply one operation to many targets with per-item failure isolation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .classify import classify_error
from .config import DEFAULT_BATCH_CONCURRENCY
from .dispatcher import Dispatcher
from .exceptions import BackendNotConfigured
from .types import (
    Amount,
    BalanceEntry,
    BatchResult,
    OperationKind,
    OperationRequest,
    OperationResult,
    ProtocolFamily,
)

logger = logging.getLogger(__name__)


class BatchEngine:
    """Fan requests out through the dispatcher and collect ordered results.

    Results always come back one per request, in input order. EVM work that
    changes state or spans several chains runs one item at a time, since
    the EVM handle can only be bound to one chain; everything else runs
    with bounded concurrency.
    """

    def __init__(self, dispatcher: Dispatcher, *, max_concurrency: int = DEFAULT_BATCH_CONCURRENCY) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._dispatcher = dispatcher
        self.max_concurrency = max_concurrency

    async def run_batch(
        self,
        requests: Iterable[OperationRequest],
        *,
        max_concurrency: int | None = None,
    ) -> BatchResult:
        items = list(requests)
        # Preconditions abort the whole batch before any item is sent.
        for request in items:
            self._dispatcher.check(request)
        if not items:
            return []

        width = 1 if _must_serialise(self._dispatcher, items) else (max_concurrency or self.max_concurrency)
        logger.debug("Running batch of %d requests with concurrency %d", len(items), width)

        if width == 1:
            return [await self._dispatcher.execute(request) for request in items]

        results: list[OperationResult | None] = [None] * len(items)
        semaphore = asyncio.Semaphore(width)

        async def worker(index: int, request: OperationRequest) -> None:
            async with semaphore:
                results[index] = await self._dispatcher.execute(request)

        await asyncio.gather(*(worker(index, request) for index, request in enumerate(items)))
        return [result for result in results if result is not None]

    async def transfer_many(
        self,
        chain: str,
        transfers: Mapping[str, Amount] | Sequence[tuple[str, Amount]],
        *,
        token: str | None = None,
        rpc_url: str | None = None,
        **options: Any,
    ) -> BatchResult:
        """Send to every recipient; a failed recipient never stops the rest."""

        pairs = list(transfers.items()) if isinstance(transfers, Mapping) else list(transfers)
        kind = OperationKind.TOKEN_TRANSFER if token else OperationKind.NATIVE_TRANSFER
        requests = []
        for to, amount in pairs:
            params: dict[str, Any] = {"to": to, "amount": amount, **options}
            if token:
                params["token"] = token
            requests.append(OperationRequest(chain=chain, kind=kind, params=params, rpc_url=rpc_url))
        return await self.run_batch(requests)

    async def balances_of(
        self,
        chain: str,
        addresses: Sequence[str],
        *,
        token: str | None = None,
        rpc_url: str | None = None,
    ) -> BatchResult:
        kind = OperationKind.TOKEN_BALANCE if token else OperationKind.NATIVE_BALANCE
        requests = []
        for address in addresses:
            params: dict[str, Any] = {"address": address}
            if token:
                params["token"] = token
            requests.append(OperationRequest(chain=chain, kind=kind, params=params, rpc_url=rpc_url))
        return await self.run_batch(requests)

    async def sweep_balances(
        self,
        address: str | None = None,
        *,
        alt_address: str | None = None,
        chains: Iterable[str] | None = None,
    ) -> list[BalanceEntry]:
        """Query native balances across every EVM chain, then the bound alternate chain.

        A chain whose query fails is logged and left out of the result, so a
        missing chain means "unknown", not "zero".
        """

        dispatcher = self._dispatcher
        if dispatcher.evm is None and dispatcher.alt is None:
            raise BackendNotConfigured("any")

        registry = dispatcher.registry
        if chains is None:
            selected = list(registry)
        else:
            selected = [registry.resolve(chain) for chain in chains]

        entries: list[BalanceEntry] = []
        seen: set[str] = set()

        if dispatcher.evm is not None:
            for descriptor in selected:
                if descriptor.family is not ProtocolFamily.EVM or descriptor.key in seen:
                    continue
                seen.add(descriptor.key)
                try:
                    async with dispatcher.evm_scope(descriptor.key, exclusive=True) as handle:
                        entry = await handle.get_native_balance(address)
                except Exception as exc:
                    error = classify_error(exc)
                    logger.warning("Dropping %s from balance sweep: %s", descriptor.key, error.message)
                    continue
                entries.append(entry)

        alt = dispatcher.alt
        if alt is not None and any(d.key == alt.chain_key for d in selected):
            try:
                entry = await alt.get_native_balance(alt_address)
            except Exception as exc:
                error = classify_error(exc)
                logger.warning("Dropping %s from balance sweep: %s", alt.chain_key, error.message)
            else:
                entries.append(entry)

        logger.info("Balance sweep returned %d of %d chains", len(entries), len(selected))
        return entries


def _must_serialise(dispatcher: Dispatcher, requests: Sequence[OperationRequest]) -> bool:
    evm_chains: set[str] = set()
    for request in requests:
        descriptor = dispatcher.registry.resolve(request.chain)
        if descriptor.family is not ProtocolFamily.EVM:
            continue
        if request.kind.is_state_changing:
            return True
        evm_chains.add(descriptor.key)
    return len(evm_chains) > 1
