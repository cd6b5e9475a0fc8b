"""Connection and keypair helpers for the Solana client handle."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import base58
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment as RpcCommitment
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..exceptions import TerminalOperationError
from ..types import Commitment

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, Commitment, float], AsyncClient]


def default_client_factory(rpc_url: str, commitment: Commitment, timeout: float) -> AsyncClient:
    return AsyncClient(rpc_url, commitment=RpcCommitment(commitment.value), timeout=timeout)


def rpc_commitment(commitment: Commitment) -> RpcCommitment:
    return RpcCommitment(commitment.value)


@dataclass(frozen=True)
class BlockhashContext:
    """Recent blockhash a transaction was built against and its expiry height."""

    blockhash: Hash
    last_valid_block_height: int


def load_keypair(secret: str | bytes | Sequence[int]) -> Keypair:
    """Parse a base58, JSON byte-array or raw-bytes secret into a keypair."""

    if isinstance(secret, str):
        text = secret.strip()
        if text.startswith("[") and text.endswith("]"):
            try:
                values = json.loads(text)
            except json.JSONDecodeError as exc:
                raise TerminalOperationError(
                    "Invalid private key format", field="secret_key", details={"error": str(exc)}
                ) from exc
            raw = _bytes_from_ints(values)
        else:
            try:
                raw = base58.b58decode(text)
            except ValueError as exc:
                raise TerminalOperationError(
                    "Invalid private key format", field="secret_key", details={"error": str(exc)}
                ) from exc
    elif isinstance(secret, bytes | bytearray):
        raw = bytes(secret)
    else:
        raw = _bytes_from_ints(list(secret))

    if len(raw) == 64:
        return Keypair.from_bytes(raw)
    if len(raw) == 32:
        return Keypair.from_seed(raw)
    raise TerminalOperationError(
        f"Bad secret key size: {len(raw)} bytes. Expected 32 or 64.",
        field="secret_key",
        value=len(raw),
    )


def parse_pubkey(address: str, field: str = "address") -> Pubkey:
    """Parse a base58 public key, raising a terminal error if it is malformed."""

    try:
        return Pubkey.from_string(address)
    except (ValueError, TypeError) as exc:
        raise TerminalOperationError(
            f"Invalid {field} address: {address!r}", field=field, value=address
        ) from exc


def _bytes_from_ints(values: object) -> bytes:
    if not isinstance(values, list) or any(
        not isinstance(item, int) or item < 0 or item > 255 for item in values
    ):
        raise TerminalOperationError("Invalid JSON array secret key", field="secret_key")
    return bytes(values)
