"""Exception hierarchy for the multi-chain unified API."""

from __future__ import annotations

from typing import Any


class XChainError(Exception):
    """Base exception for all multi-chain errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnknownChain(XChainError):
    """Raised when a chain key is absent from the registry."""

    def __init__(self, chain: str, details: dict | None = None):
        super().__init__(f"Unknown chain: {chain}", details)
        self.chain = chain


class BackendNotConfigured(XChainError):
    """Raised when no client handle is configured for a protocol family."""

    def __init__(self, family: str, chain: str | None = None, details: dict | None = None):
        if chain:
            message = f"{family} backend not configured for chain {chain}"
        else:
            message = f"{family} backend not configured"
        super().__init__(message, details)
        self.family = family
        self.chain = chain


class MulticallUnsupported(XChainError):
    """Raised when the active chain has no aggregator contract."""

    def __init__(self, chain: str, details: dict | None = None):
        super().__init__(f"Multicall not supported on chain {chain}", details)
        self.chain = chain


class TransientNetworkError(XChainError):
    """Raised for timeouts, resets and other retryable network failures."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class TerminalOperationError(XChainError):
    """Raised when an operation can never succeed as submitted."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value


class DecodeError(XChainError):
    """Raised when a multicall slot cannot be decoded against its output types."""

    def __init__(
        self,
        message: str,
        index: int | None = None,
        target: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.index = index
        self.target = target


class RetryExhaustedError(TransientNetworkError):
    """Raised when every permitted attempt failed with a transient error."""

    def __init__(self, action: str, attempts: int, last_error: XChainError):
        super().__init__(
            f"{action} failed after {attempts} attempts: {last_error.message}",
            endpoint=getattr(last_error, "endpoint", None),
            status_code=getattr(last_error, "status_code", None),
            details={"attempts": attempts, "last_error": last_error.message},
        )
        self.action = action
        self.attempts = attempts
        self.last_error = last_error


PRECONDITION_ERRORS: tuple[type[XChainError], ...] = (
    UnknownChain,
    BackendNotConfigured,
    MulticallUnsupported,
)
