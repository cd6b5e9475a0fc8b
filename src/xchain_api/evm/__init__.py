"""EVM client handle and helpers."""

from .client import EVMHandle, to_checksum
from .config import EVMClientConfig
from .connections import ChainBinding, build_binding
from .multicall import MulticallBatcher
from .transactions import BroadcastState, TransactionSender

__all__ = [
    "BroadcastState",
    "ChainBinding",
    "EVMClientConfig",
    "EVMHandle",
    "MulticallBatcher",
    "TransactionSender",
    "build_binding",
    "to_checksum",
]
