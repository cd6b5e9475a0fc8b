"""Multi-chain unified API - one interface for EVM chains and Solana.

This library dispatches transfers, balance reads and contract calls to the
right protocol family, batches them with per-item failure isolation, packs
read-only EVM calls into Multicall3, and retries transient failures.
"""

from .alt import AltClientConfig, AltHandle
from .batch import BatchEngine
from .classify import classify_error
from .client import MultiChainClient
from .config import ClientConfig
from .dispatcher import Dispatcher
from .evm import EVMClientConfig, EVMHandle, MulticallBatcher
from .exceptions import (
    BackendNotConfigured,
    DecodeError,
    MulticallUnsupported,
    RetryExhaustedError,
    TerminalOperationError,
    TransientNetworkError,
    UnknownChain,
    XChainError,
)
from .registry import DEFAULT_CHAINS, ChainRegistry
from .retry import RetryPolicy, RetryWrapper
from .types import (
    Address,
    Amount,
    BalanceEntry,
    BatchResult,
    ChainDescriptor,
    Commitment,
    ErrorKind,
    MulticallCall,
    MulticallResult,
    NativeCurrency,
    OperationKind,
    OperationRequest,
    OperationResult,
    ProtocolFamily,
    TxReceipt,
    TxStatus,
)

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "MultiChainClient",
    "Dispatcher",
    "BatchEngine",
    "MulticallBatcher",
    "EVMHandle",
    "AltHandle",
    "ChainRegistry",
    "DEFAULT_CHAINS",
    "RetryPolicy",
    "RetryWrapper",
    # Configuration
    "ClientConfig",
    "EVMClientConfig",
    "AltClientConfig",
    # Types and enums
    "ProtocolFamily",
    "OperationKind",
    "TxStatus",
    "ErrorKind",
    "Commitment",
    "NativeCurrency",
    "ChainDescriptor",
    "OperationRequest",
    "OperationResult",
    "BatchResult",
    "TxReceipt",
    "BalanceEntry",
    "MulticallCall",
    "MulticallResult",
    "Address",
    "Amount",
    # Exceptions
    "XChainError",
    "UnknownChain",
    "BackendNotConfigured",
    "MulticallUnsupported",
    "TransientNetworkError",
    "TerminalOperationError",
    "DecodeError",
    "RetryExhaustedError",
    "classify_error",
]
