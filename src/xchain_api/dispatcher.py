"""Route single operations to the right client handle."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, cast

from .alt.client import AltHandle
from .classify import classify_error, error_kind
from .evm.client import EVMHandle
from .evm.transactions import BroadcastState
from .exceptions import (
    PRECONDITION_ERRORS,
    BackendNotConfigured,
    TerminalOperationError,
)
from .registry import ChainRegistry
from .retry import RetryOutcome, RetryWrapper
from .types import (
    BalanceEntry,
    ChainDescriptor,
    ErrorKind,
    OperationKind,
    OperationRequest,
    OperationResult,
    ProtocolFamily,
    TxReceipt,
    TxStatus,
)

logger = logging.getLogger(__name__)

_EVM_ONLY = frozenset(
    {
        OperationKind.TOKEN_APPROVE,
        OperationKind.CONTRACT_READ,
        OperationKind.CONTRACT_WRITE,
        OperationKind.CONTRACT_DEPLOY,
        OperationKind.EVENT_QUERY,
    }
)


class Dispatcher:
    """Resolve a request's chain, pick its handle, and normalise the outcome.

    The dispatcher holds no chain state of its own. The one lock it owns
    serialises EVM operations that either switch the handle's chain or
    change on-chain state; reads already on the bound chain run freely.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        *,
        evm: EVMHandle | None = None,
        alt: AltHandle | None = None,
        retry: RetryWrapper | None = None,
    ) -> None:
        self.registry = registry
        self.evm = evm
        self.alt = alt
        self.retry = retry or RetryWrapper()
        self._evm_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------
    def check(self, request: OperationRequest) -> ChainDescriptor:
        """Raise if ``request`` can never be routed; return its chain descriptor."""

        descriptor = self.registry.resolve(request.chain)
        if descriptor.family is ProtocolFamily.EVM:
            self._require_evm(descriptor.key)
        else:
            self._require_alt(descriptor.key)
        return descriptor

    def _require_evm(self, chain: str) -> EVMHandle:
        if self.evm is None:
            raise BackendNotConfigured(ProtocolFamily.EVM.value, chain)
        return self.evm

    def _require_alt(self, chain: str) -> AltHandle:
        if self.alt is None:
            raise BackendNotConfigured(ProtocolFamily.ALT.value, chain)
        if self.alt.chain_key != chain:
            raise BackendNotConfigured(
                ProtocolFamily.ALT.value,
                chain,
                details={"bound_chain": self.alt.chain_key},
            )
        return self.alt

    # ------------------------------------------------------------------
    # EVM chain scope
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def evm_scope(
        self,
        chain: str,
        rpc_url: str | None = None,
        *,
        exclusive: bool = False,
    ) -> AsyncIterator[EVMHandle]:
        """Yield the EVM handle bound to ``chain``.

        The handle lock is held for the whole block when a switch is needed
        or ``exclusive`` is set. Otherwise the block runs unlocked, which is
        safe because handle operations read their binding once, up front.
        """

        key = self.registry.resolve(chain).key
        handle = self._require_evm(key)

        if not exclusive and not _needs_switch(handle, key, rpc_url):
            yield handle
            return

        async with self._evm_lock:
            if _needs_switch(handle, key, rpc_url):
                handle.switch_chain(key, rpc_url)
            yield handle

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute(self, request: OperationRequest) -> OperationResult:
        """Run one request and return its tagged result.

        Precondition errors raise; everything else is captured on the result.
        """

        descriptor = self.check(request)
        try:
            if descriptor.family is ProtocolFamily.EVM:
                async with self.evm_scope(
                    descriptor.key,
                    request.rpc_url,
                    exclusive=request.kind.is_state_changing,
                ) as evm_handle:
                    outcome = await self._run(request, self._operation(evm_handle, request))
            else:
                alt_handle = self._require_alt(descriptor.key)
                if request.rpc_url and request.rpc_url != alt_handle.rpc_url:
                    raise TerminalOperationError(
                        f"{descriptor.key} handle is bound to {alt_handle.rpc_url}",
                        field="rpc_url",
                        value=request.rpc_url,
                    )
                outcome = await self._run(request, self._operation(alt_handle, request))
        except PRECONDITION_ERRORS:
            raise
        except Exception as exc:
            error = classify_error(exc)
            attempts = int(error.details.get("attempts", 1))
            logger.info(
                "%s on %s failed for %s: %s",
                request.kind.value,
                descriptor.key,
                request.target_id,
                error.message,
            )
            return OperationResult.failure(
                request, error.message, error_kind(error), chain=descriptor.key, attempts=attempts
            )

        return self._normalise(descriptor, request, outcome.value, outcome.attempts)

    async def _run(self, request: OperationRequest, operation: Callable[[], Awaitable[Any]]) -> RetryOutcome:
        if request.kind.is_state_changing:
            return await self.retry.run(operation, action=f"{request.kind.value} on {request.chain}")
        return RetryOutcome(value=await operation(), attempts=1)

    def _operation(self, handle: EVMHandle | AltHandle, request: OperationRequest) -> Callable[[], Awaitable[Any]]:
        kind = request.kind
        params = dict(request.params)
        params.pop("broadcast", None)

        if kind in _EVM_ONLY and handle.family is not ProtocolFamily.EVM:
            raise TerminalOperationError(
                f"{kind.value} is not supported on {handle.family.value} chains",
                field="kind",
                value=kind.value,
            )

        # Shared by every retry attempt so a re-broadcast reuses the first nonce.
        extra: dict[str, Any] = {}
        if kind.is_state_changing and handle.family is ProtocolFamily.EVM:
            extra["broadcast"] = BroadcastState()

        if kind is OperationKind.NATIVE_BALANCE:
            address = params.get("address")
            return lambda: handle.get_native_balance(address)

        if kind is OperationKind.TOKEN_BALANCE:
            token = _param(params, "token")
            address = params.get("address")
            return lambda: handle.get_token_balance(token, address)

        if kind is OperationKind.TX_STATUS:
            tx_hash = _param(params, "tx_hash")
            wait = params.get("wait")
            if wait is not None:
                return lambda: handle.wait_for_transaction(tx_hash, float(wait))
            return lambda: handle.get_transaction_status(tx_hash)

        if kind is OperationKind.TX_DETAILS:
            tx_hash = _param(params, "tx_hash")
            return lambda: handle.get_transaction(tx_hash)

        if kind is OperationKind.NATIVE_TRANSFER:
            to = _param(params, "to")
            amount = _param(params, "amount")
            return lambda: handle.transfer_native(to, amount, **params, **extra)

        if kind is OperationKind.TOKEN_TRANSFER:
            token = _param(params, "token")
            to = _param(params, "to")
            amount = _param(params, "amount")
            return lambda: handle.transfer_token(token, to, amount, **params, **extra)

        evm = cast(EVMHandle, handle)
        timeout = params.get("confirm_timeout")

        if kind is OperationKind.TOKEN_APPROVE:
            token = _param(params, "token")
            spender = _param(params, "spender")
            amount = _param(params, "amount")
            return lambda: evm.approve_token(token, spender, amount, confirm_timeout=timeout, **extra)

        if kind is OperationKind.CONTRACT_DEPLOY:
            bytecode = _param(params, "bytecode")
            types = tuple(params.get("constructor_types", ()))
            ctor_args = tuple(params.get("args", ()))
            value = params.get("value", 0)
            return lambda: evm.deploy_contract(
                bytecode, types, ctor_args, value=value, confirm_timeout=timeout, **extra
            )

        contract = _param(params, "contract")

        if kind is OperationKind.EVENT_QUERY:
            event = _param(params, "event")
            data_types = tuple(params.get("data_types", ()))
            from_block = params.get("from_block", 0)
            to_block = params.get("to_block", "latest")
            return lambda: evm.get_past_events(
                contract, event, data_types=data_types, from_block=from_block, to_block=to_block
            )

        signature = _param(params, "signature")
        args = tuple(params.get("args", ()))

        if kind is OperationKind.CONTRACT_READ:
            output_types = tuple(params.get("output_types", ()))
            return lambda: evm.read_contract(contract, signature, args, output_types)

        value = params.get("value", 0)
        return lambda: evm.write_contract(
            contract, signature, args, value=value, confirm_timeout=timeout, **extra
        )

    def _normalise(
        self,
        descriptor: ChainDescriptor,
        request: OperationRequest,
        value: Any,
        attempts: int,
    ) -> OperationResult:
        key = descriptor.key
        result = OperationResult(
            success=True,
            chain=key,
            kind=request.kind,
            target=request.target_id,
            value=value,
            attempts=attempts,
        )

        if isinstance(value, TxReceipt):
            result.value = value.transaction_hash
            result.transaction_hash = value.transaction_hash
            result.explorer_url = self.registry.explorer_tx_url(key, value.transaction_hash)
            result.status = value.status
            result.from_address = value.from_address
            result.block_number = value.block_number
            result.fee = value.fee
            result.contract_address = value.contract_address
            result.error = value.error
            result.raw_response = value.raw_response
            if value.status is TxStatus.FAILED:
                result.success = False
                result.error_type = ErrorKind.TERMINAL
            logger.info("%s on %s %s: %s", request.kind.value, key, value.status.value, value.transaction_hash)
        elif isinstance(value, BalanceEntry):
            result.explorer_url = self.registry.explorer_address_url(key, value.address)
        elif request.kind in (OperationKind.TX_STATUS, OperationKind.TX_DETAILS):
            tx_hash = str(request.params.get("tx_hash"))
            result.transaction_hash = tx_hash
            result.explorer_url = self.registry.explorer_tx_url(key, tx_hash)
            if isinstance(value, TxStatus):
                result.status = value
            elif isinstance(value, dict) and value.get("status"):
                result.status = TxStatus(value["status"])

        return result


def _needs_switch(handle: EVMHandle, chain: str, rpc_url: str | None) -> bool:
    if handle.current_chain != chain:
        return True
    return bool(rpc_url) and rpc_url != handle.rpc_url


def _param(params: dict[str, Any], name: str) -> Any:
    """Pop a required parameter, raising a terminal error if it is missing."""

    if name not in params or params[name] is None:
        raise TerminalOperationError(f"Missing required parameter: {name}", field=name)
    return params.pop(name)
