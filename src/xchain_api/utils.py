"""Utility functions for the multi-chain unified API."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from hexbytes import HexBytes
from web3 import Web3

from .exceptions import TerminalOperationError
from .types import Amount


def to_base_units(amount: Amount, decimals: int) -> int:
    """Convert a human-readable amount to integer base units (wei, lamports)."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise TerminalOperationError(
            f"Invalid amount: {amount!r}", field="amount", value=amount
        ) from exc

    if not value.is_finite():
        raise TerminalOperationError("Amount must be finite", field="amount", value=amount)
    if value < 0:
        raise TerminalOperationError("Amount cannot be negative", field="amount", value=amount)

    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(raw: int, decimals: int) -> Decimal:
    """Convert integer base units back to a Decimal amount."""
    return Decimal(int(raw)) / (Decimal(10) ** decimals)


def split_signature(signature: str) -> tuple[str, list[str]]:
    """Split ``name(type,...)`` into the function name and top-level argument types."""
    signature = str(getattr(signature, "value", signature)).replace(" ", "")
    open_idx = signature.find("(")
    if open_idx <= 0 or not signature.endswith(")"):
        raise TerminalOperationError(
            f"Malformed function signature: {signature}", field="signature", value=signature
        )

    name = signature[:open_idx]
    body = signature[open_idx + 1 : -1]
    types: list[str] = []
    depth = 0
    current = ""
    for char in body:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        current += char
    if current:
        types.append(current)
    return name, types


def function_selector(signature: str) -> bytes:
    """Return the 4-byte selector for a canonical function signature."""
    name, types = split_signature(signature)
    return bytes(Web3.keccak(text=f"{name}({','.join(types)})")[:4])


def encode_call(signature: str, args: Sequence[Any] = ()) -> bytes:
    """Encode calldata for ``signature`` applied to ``args``."""
    _, types = split_signature(signature)
    if len(types) != len(args):
        raise TerminalOperationError(
            f"{signature} expects {len(types)} arguments, got {len(args)}",
            field="args",
            value=list(args),
        )
    try:
        encoded = abi_encode(types, list(args)) if types else b""
    except Exception as exc:
        raise TerminalOperationError(
            f"Unable to encode arguments for {signature}",
            field="args",
            value=list(args),
            details={"error": str(exc)},
        ) from exc
    return function_selector(signature) + encoded


def decode_result(output_types: Sequence[str], data: bytes) -> Any:
    """Decode return data, unwrapping single-value results."""
    if not output_types:
        return None
    decoded = abi_decode(list(output_types), bytes(data))
    if len(decoded) == 1:
        return decoded[0]
    return tuple(decoded)


def serialise_receipt(receipt: Any) -> Any:
    """Serialise web3/solders receipt objects into JSON-friendly structures."""
    if receipt is None:
        return None
    if isinstance(receipt, Mapping):
        return {key: serialise_receipt(value) for key, value in receipt.items()}
    if isinstance(receipt, Sequence) and not isinstance(
        receipt, str | bytes | bytearray | HexBytes
    ):
        return [serialise_receipt(item) for item in receipt]
    if isinstance(receipt, bytes | bytearray | HexBytes):
        return HexBytes(receipt).to_0x_hex()
    return receipt


def short_address(address: str, chars: int = 4) -> str:
    return f"{address[:chars]}...{address[-chars:]}"
