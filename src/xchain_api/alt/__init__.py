"""Solana client handle and helpers."""

from .client import AltHandle
from .config import AltClientConfig
from .connections import BlockhashContext, load_keypair, parse_pubkey

__all__ = [
    "AltClientConfig",
    "AltHandle",
    "BlockhashContext",
    "load_keypair",
    "parse_pubkey",
]
