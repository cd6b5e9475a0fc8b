"""Type definitions and data models for the multi-chain unified API."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class ProtocolFamily(str, Enum):
    """Protocol family a chain belongs to."""

    EVM = "EVM"
    ALT = "ALT"


class OperationKind(str, Enum):
    """Unit of work the dispatcher knows how to route."""

    NATIVE_TRANSFER = "native_transfer"
    TOKEN_TRANSFER = "token_transfer"
    TOKEN_APPROVE = "token_approve"
    NATIVE_BALANCE = "native_balance"
    TOKEN_BALANCE = "token_balance"
    CONTRACT_READ = "contract_read"
    CONTRACT_WRITE = "contract_write"
    CONTRACT_DEPLOY = "contract_deploy"
    TX_STATUS = "tx_status"
    TX_DETAILS = "tx_details"
    EVENT_QUERY = "event_query"

    @property
    def is_state_changing(self) -> bool:
        return self in _STATE_CHANGING


_STATE_CHANGING = frozenset(
    {
        OperationKind.NATIVE_TRANSFER,
        OperationKind.TOKEN_TRANSFER,
        OperationKind.TOKEN_APPROVE,
        OperationKind.CONTRACT_WRITE,
        OperationKind.CONTRACT_DEPLOY,
    }
)


class TxStatus(str, Enum):
    """Lifecycle status of a broadcast transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Classified error taxonomy exposed on failed results."""

    UNKNOWN_CHAIN = "UnknownChain"
    BACKEND_NOT_CONFIGURED = "BackendNotConfigured"
    MULTICALL_UNSUPPORTED = "MulticallUnsupported"
    TRANSIENT = "TransientNetworkError"
    TERMINAL = "TerminalOperationError"
    DECODE = "DecodeError"


class Commitment(str, Enum):
    """Solana finality tiers."""

    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class NativeCurrency:
    name: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class ChainDescriptor:
    """Static description of a chain known to the registry."""

    key: str
    name: str
    family: ProtocolFamily
    rpc_url: str
    explorer_url: str
    native_currency: NativeCurrency
    chain_id: int | None = None
    network: str | None = None

    @property
    def is_evm(self) -> bool:
        return self.family is ProtocolFamily.EVM


@dataclass(frozen=True)
class OperationRequest:
    """A single unit of work targeting one chain.

    ``target`` identifies the item in batch results (recipient, queried
    address, contract); it defaults to the ``to``/``address`` parameter.
    """

    chain: str
    kind: OperationKind
    params: Mapping[str, Any] = field(default_factory=dict)
    rpc_url: str | None = None
    target: str | None = None

    @property
    def target_id(self) -> str | None:
        if self.target is not None:
            return self.target
        for key in ("to", "address", "contract", "tx_hash"):
            value = self.params.get(key)
            if value is not None:
                return str(value)
        return None


@dataclass(frozen=True)
class TxReceipt:
    """Normalised outcome of a broadcast returned by client handles."""

    transaction_hash: str
    status: TxStatus
    from_address: str | None = None
    to_address: str | None = None
    amount: Decimal | int | None = None
    block_number: int | None = None
    fee: int | None = None
    contract_address: str | None = None
    error: str | None = None
    raw_response: dict[str, Any] | None = None


@dataclass(frozen=True)
class BalanceEntry:
    """Balance of one address on one chain."""

    chain: str
    address: str
    balance: Decimal
    raw: int
    symbol: str
    decimals: int


@dataclass
class OperationResult:
    """Tagged success/failure for one request."""

    success: bool
    chain: str
    kind: OperationKind
    target: str | None = None
    value: Any = None
    transaction_hash: str | None = None
    explorer_url: str | None = None
    status: TxStatus | None = None
    from_address: str | None = None
    block_number: int | None = None
    fee: int | None = None
    contract_address: str | None = None
    attempts: int = 1
    error: str | None = None
    error_type: ErrorKind | None = None
    raw_response: dict[str, Any] | None = None

    @classmethod
    def failure(
        cls,
        request: OperationRequest,
        error: str,
        error_type: ErrorKind,
        *,
        chain: str | None = None,
        attempts: int = 1,
    ) -> OperationResult:
        """Build a failed result; ``chain`` is the resolved registry key when known."""

        return cls(
            success=False,
            chain=chain or request.chain,
            kind=request.kind,
            target=request.target_id,
            status=TxStatus.FAILED if request.kind.is_state_changing else None,
            attempts=attempts,
            error=error,
            error_type=error_type,
        )


BatchResult = list[OperationResult]


@dataclass(frozen=True)
class MulticallCall:
    """One read-only call to pack into an aggregator invocation.

    ``signature`` is the canonical function signature, e.g.
    ``"balanceOf(address)"``; ``output_types`` are the ABI return types.
    """

    target: str
    signature: str
    args: Sequence[Any] = ()
    output_types: Sequence[str] = ()


@dataclass
class MulticallResult:
    """Decoded result of one multicall slot."""

    index: int
    target: str
    signature: str
    success: bool
    value: Any = None
    error: str | None = None
    error_type: ErrorKind | None = None


Address = str
Amount = Decimal | int | float | str
