"""Batch read-only EVM calls through the chain's Multicall3 aggregator."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from eth_abi import decode as abi_decode

from ..classify import classify_error, error_kind
from ..constants import AGGREGATE_OUTPUT_TYPES, TRY_AGGREGATE_OUTPUT_TYPES, Aggregator
from ..exceptions import DecodeError, MulticallUnsupported, XChainError
from ..types import ErrorKind, MulticallCall, MulticallResult
from ..utils import decode_result, encode_call
from .client import to_checksum
from .connections import ChainBinding

if TYPE_CHECKING:  # pragma: no cover - import-time only
    from ..dispatcher import Dispatcher

logger = logging.getLogger(__name__)


class MulticallBatcher:
    """Encode N read calls into one aggregator call and decode N results.

    ``multicall`` is all-or-nothing: if the aggregate reverts the whole call
    raises. ``try_multicall`` uses ``tryAggregate`` so one reverting slot
    only fails that slot.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher

    async def multicall(
        self,
        chain: str,
        calls: Sequence[MulticallCall],
        *,
        rpc_url: str | None = None,
    ) -> list[MulticallResult]:
        binding = await self._bind(chain, rpc_url)
        if not calls:
            return []

        encoded = [(to_checksum(call.target, "target"), encode_call(call.signature, call.args)) for call in calls]
        return_data = await self._aggregate(binding, Aggregator.AGGREGATE, [encoded], AGGREGATE_OUTPUT_TYPES)
        block_number, payloads = return_data
        logger.debug("Aggregated %d calls on %s at block %s", len(calls), binding.chain_key, block_number)

        return [
            self._decode_slot(index, call, True, payload)
            for index, (call, payload) in enumerate(zip(calls, payloads))
        ]

    async def try_multicall(
        self,
        chain: str,
        calls: Sequence[MulticallCall],
        *,
        rpc_url: str | None = None,
    ) -> list[MulticallResult]:
        binding = await self._bind(chain, rpc_url)
        if not calls:
            return []

        results: list[MulticallResult | None] = [None] * len(calls)
        encoded: list[tuple[str, bytes]] = []
        slots: list[int] = []
        for index, call in enumerate(calls):
            try:
                encoded.append((to_checksum(call.target, "target"), encode_call(call.signature, call.args)))
            except XChainError as exc:
                results[index] = _failure(index, call, str(exc), error_kind(exc))
                continue
            slots.append(index)

        if encoded:
            (entries,) = await self._aggregate(
                binding, Aggregator.TRY_AGGREGATE, [False, encoded], TRY_AGGREGATE_OUTPUT_TYPES
            )
            for index, (success, payload) in zip(slots, entries):
                results[index] = self._decode_slot(index, calls[index], success, payload)

        failed = sum(1 for result in results if result is not None and not result.success)
        if failed:
            logger.info("%d of %d multicall slots failed on %s", failed, len(calls), binding.chain_key)
        return [result for result in results if result is not None]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _bind(self, chain: str, rpc_url: str | None) -> ChainBinding:
        descriptor = self._dispatcher.registry.resolve(chain)
        if not descriptor.is_evm:
            raise MulticallUnsupported(descriptor.key, details={"reason": "not an EVM chain"})

        async with self._dispatcher.evm_scope(descriptor.key, rpc_url) as handle:
            binding = handle.binding

        if binding.aggregator_address is None:
            raise MulticallUnsupported(binding.chain_key)
        return binding

    async def _aggregate(
        self,
        binding: ChainBinding,
        entrypoint: Aggregator,
        args: list[Any],
        output_types: Sequence[str],
    ) -> tuple[Any, ...]:
        data = encode_call(entrypoint, args)
        try:
            result = await binding.web3.eth.call({"to": binding.aggregator_address, "data": data})
            return tuple(abi_decode(list(output_types), bytes(result)))
        except Exception as exc:
            error = classify_error(exc, endpoint=binding.rpc_url)
            logger.warning("Aggregate call failed on %s: %s", binding.chain_key, error)
            if error is exc:
                raise
            raise error from exc

    def _decode_slot(self, index: int, call: MulticallCall, success: bool, payload: bytes) -> MulticallResult:
        if not success:
            return _failure(index, call, "call reverted", ErrorKind.TERMINAL)
        try:
            value = decode_result(call.output_types, payload)
        except Exception as exc:
            error = DecodeError(
                f"Unable to decode {call.signature} result: {exc}",
                index=index,
                target=call.target,
            )
            return _failure(index, call, error.message, ErrorKind.DECODE)
        return MulticallResult(
            index=index,
            target=call.target,
            signature=call.signature,
            success=True,
            value=value,
        )


def _failure(index: int, call: MulticallCall, message: str, kind: ErrorKind) -> MulticallResult:
    return MulticallResult(
        index=index,
        target=call.target,
        signature=call.signature,
        success=False,
        error=message,
        error_type=kind,
    )
