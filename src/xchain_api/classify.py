"""Map protocol-library exceptions onto the classified error taxonomy."""

from __future__ import annotations

import asyncio

import aiohttp
import httpx
from eth_abi.exceptions import DecodingError
from solana.exceptions import SolanaRpcException
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from web3.exceptions import ContractLogicError, TimeExhausted

from .exceptions import (
    BackendNotConfigured,
    DecodeError,
    MulticallUnsupported,
    TerminalOperationError,
    TransientNetworkError,
    UnknownChain,
    XChainError,
)
from .types import ErrorKind

TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection reset",
    "connection refused",
    "connection aborted",
    "temporarily unavailable",
    "too many requests",
    "rate limit",
    "nonce too low",
    "replacement transaction underpriced",
    "already known",
    "blockhash not found",
    "block height exceeded",
    "node is behind",
    "service unavailable",
    "bad gateway",
)

TERMINAL_MARKERS = (
    "insufficient funds",
    "insufficient lamports",
    "insufficient balance",
    "invalid address",
    "invalid recipient",
    "invalid public key",
    "execution reverted",
    "invalid signature",
    "signature verification",
    "unauthorized",
    "gas required exceeds allowance",
)


def classify_error(exc: BaseException, *, endpoint: str | None = None) -> XChainError:
    """Return the taxonomy error for ``exc``; unknown failures are terminal."""

    if isinstance(exc, XChainError):
        return exc

    message = str(exc) or type(exc).__name__
    details = {"error": message, "type": type(exc).__name__}

    if isinstance(exc, DecodingError):
        return DecodeError(f"Unable to decode response: {message}", details=details)

    if isinstance(exc, ContractLogicError):
        return TerminalOperationError(f"Execution reverted: {message}", details=details)

    if isinstance(
        exc,
        TimeExhausted
        | asyncio.TimeoutError
        | TimeoutError
        | httpx.TimeoutException
        | aiohttp.ServerTimeoutError,
    ):
        return TransientNetworkError(f"Request timed out: {message}", endpoint, details=details)

    if isinstance(exc, TransactionExpiredBlockheightExceededError | UnconfirmedTxError):
        return TransientNetworkError(
            f"Transaction expired before confirmation: {message}", endpoint, details=details
        )

    status_code = _status_code(exc)
    if status_code is not None:
        if status_code == 429 or status_code >= 500:
            return TransientNetworkError(
                f"RPC endpoint returned HTTP {status_code}",
                endpoint,
                status_code=status_code,
                details=details,
            )
        return TerminalOperationError(
            f"RPC endpoint rejected request with HTTP {status_code}", details=details
        )

    if isinstance(
        exc,
        httpx.TransportError | aiohttp.ClientConnectionError | ConnectionError,
    ):
        return TransientNetworkError(f"Connection failed: {message}", endpoint, details=details)

    if isinstance(exc, SolanaRpcException):
        cause = exc.__cause__ or exc.__context__
        if cause is not None and cause is not exc:
            return classify_error(cause, endpoint=endpoint)
        return TransientNetworkError(f"Solana RPC request failed: {message}", endpoint, details=details)

    lowered = message.lower()
    if any(marker in lowered for marker in TERMINAL_MARKERS):
        return TerminalOperationError(message, details=details)
    if any(marker in lowered for marker in TRANSIENT_MARKERS):
        return TransientNetworkError(message, endpoint, details=details)

    if isinstance(exc, RPCException):
        return TerminalOperationError(f"RPC error: {message}", details=details)

    return TerminalOperationError(message, details=details)


def error_kind(error: XChainError) -> ErrorKind:
    """Return the :class:`ErrorKind` tag for a classified error."""

    if isinstance(error, UnknownChain):
        return ErrorKind.UNKNOWN_CHAIN
    if isinstance(error, BackendNotConfigured):
        return ErrorKind.BACKEND_NOT_CONFIGURED
    if isinstance(error, MulticallUnsupported):
        return ErrorKind.MULTICALL_UNSUPPORTED
    if isinstance(error, TransientNetworkError):
        return ErrorKind.TRANSIENT
    if isinstance(error, DecodeError):
        return ErrorKind.DECODE
    return ErrorKind.TERMINAL


def is_transient(error: XChainError) -> bool:
    return isinstance(error, TransientNetworkError)


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status
    return None
