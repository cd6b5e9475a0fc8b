"""Configuration containers for the Solana client handle."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from ..types import Commitment

DEFAULT_ALT_CHAIN = "SOLANA"
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_CONFIRM_TIMEOUT = 60.0
DEFAULT_CONFIRM_POLL_INTERVAL = 0.5


@dataclass(frozen=True)
class AltClientConfig:
    """Signing keypair and network binding for the Solana handle.

    ``secret_key`` accepts a base58 string, a JSON byte-array string, or raw
    bytes; 64 bytes are a full secret key and 32 bytes a seed.
    ``skip_preflight`` defaults to off on mainnet and on elsewhere.
    """

    secret_key: str | bytes | Sequence[int]
    chain: str = DEFAULT_ALT_CHAIN
    rpc_url: str | None = None
    commitment: Commitment = Commitment.CONFIRMED
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT
    confirm_poll_interval: float = DEFAULT_CONFIRM_POLL_INTERVAL
    skip_preflight: bool | None = None
