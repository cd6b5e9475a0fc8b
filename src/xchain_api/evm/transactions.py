"""Transaction signing and broadcast helpers for the EVM client handle."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from eth_account.signers.local import LocalAccount
from web3.exceptions import TimeExhausted
from web3.types import ChecksumAddress, TxParams

from ..constants import GAS_LIMIT_MULTIPLIER_DEN, GAS_LIMIT_MULTIPLIER_NUM
from ..types import TxReceipt, TxStatus
from ..utils import serialise_receipt
from .connections import ChainBinding

logger = logging.getLogger(__name__)

# Node replies meaning a transaction with this nonce is already in the pool or mined.
_DUPLICATE_BROADCAST_MARKERS = (
    "nonce too low",
    "already known",
    "known transaction",
    "alreadyknown",
    "replacement transaction underpriced",
    "transaction already imported",
)


@dataclass
class BroadcastState:
    """Nonce and signed hashes shared by every attempt of one logical send.

    The nonce is read once, so a re-broadcast after an ambiguous failure
    reuses it and can at most replace the earlier transaction.
    """

    nonce: int | None = None
    tx_hashes: list[str] = field(default_factory=list)


def is_duplicate_broadcast(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _DUPLICATE_BROADCAST_MARKERS)


class TransactionSender:
    """Build, sign locally, broadcast and await EVM transactions."""

    def __init__(
        self,
        *,
        wait_for_receipt: bool,
        receipt_timeout: float,
    ) -> None:
        self._wait_for_receipt = wait_for_receipt
        self._receipt_timeout = receipt_timeout

    @property
    def receipt_timeout(self) -> float:
        return self._receipt_timeout

    async def build(
        self,
        binding: ChainBinding,
        account: LocalAccount,
        to: ChecksumAddress | None,
        *,
        nonce: int,
        value: int = 0,
        data: bytes = b"",
    ) -> TxParams:
        """Populate gas and fee fields against the bound chain.

        ``to=None`` builds a contract creation.
        """

        web3 = binding.web3
        tx: dict[str, Any] = {
            "chainId": binding.chain_id,
            "from": account.address,
            "value": value,
            "nonce": nonce,
        }
        if to is not None:
            tx["to"] = to
        if data:
            tx["data"] = data

        estimate = await web3.eth.estimate_gas(tx)  # type: ignore[arg-type]
        tx["gas"] = estimate * GAS_LIMIT_MULTIPLIER_NUM // GAS_LIMIT_MULTIPLIER_DEN

        latest = await web3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas") if isinstance(latest, Mapping) else None
        if base_fee is not None:
            priority_fee = await web3.eth.max_priority_fee
            tx["maxPriorityFeePerGas"] = priority_fee
            tx["maxFeePerGas"] = base_fee * 2 + priority_fee
        else:
            tx["gasPrice"] = await web3.eth.gas_price

        return tx  # type: ignore[return-value]

    async def send(
        self,
        binding: ChainBinding,
        account: LocalAccount,
        to: ChecksumAddress | None,
        *,
        value: int = 0,
        data: bytes = b"",
        action: str,
        context: Mapping[str, Any] | None = None,
        confirm_timeout: float | None = None,
        broadcast: BroadcastState | None = None,
    ) -> TxReceipt:
        state = broadcast if broadcast is not None else BroadcastState()
        if state.nonce is None:
            state.nonce = await binding.web3.eth.get_transaction_count(account.address, "pending")

        tx = await self.build(binding, account, to, nonce=state.nonce, value=value, data=data)
        signed = account.sign_transaction(tx)  # type: ignore[arg-type]
        tx_hex = signed.hash.to_0x_hex()
        earlier = list(state.tx_hashes)
        if tx_hex not in state.tx_hashes:
            state.tx_hashes.append(tx_hex)

        raw: dict[str, Any] = {"action": action, "context": dict(context or {}), "nonce": state.nonce}
        base = {
            "from_address": account.address,
            "to_address": to,
            "amount": value,
        }

        logger.info("Dispatching %s on %s nonce=%s", action, binding.chain_key, state.nonce)
        try:
            await binding.web3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            if not earlier or not is_duplicate_broadcast(exc):
                raise
            # An earlier attempt holding this nonce reached the node; track it instead.
            logger.warning(
                "Re-broadcast of %s collided with an earlier attempt (%s); tracking %s",
                action,
                exc,
                earlier[0],
            )
            raw["rebroadcast_error"] = str(exc)
            raw["candidate_hashes"] = list(state.tx_hashes)
            return await self.settle(
                binding, earlier[0], action=action, raw=raw, base=base, confirm_timeout=confirm_timeout
            )

        logger.info("Transaction sent for action=%s hash=%s", action, tx_hex)
        return await self.settle(
            binding, tx_hex, action=action, raw=raw, base=base, confirm_timeout=confirm_timeout
        )

    async def settle(
        self,
        binding: ChainBinding,
        tx_hex: str,
        *,
        action: str,
        raw: dict[str, Any],
        base: Mapping[str, Any],
        confirm_timeout: float | None = None,
    ) -> TxReceipt:
        """Wait for the receipt of an already broadcast transaction.

        Never raises: once a transaction may be in the pool, a resend could
        spend twice, so every wait failure is reported as pending.
        """

        if not self._wait_for_receipt:
            return TxReceipt(transaction_hash=tx_hex, status=TxStatus.PENDING, raw_response=raw, **base)

        timeout = confirm_timeout if confirm_timeout is not None else self._receipt_timeout
        try:
            receipt = await asyncio.wait_for(
                binding.web3.eth.wait_for_transaction_receipt(tx_hex, timeout=timeout),  # type: ignore[arg-type]
                timeout,
            )
        except (asyncio.TimeoutError, TimeExhausted):
            logger.warning("Confirmation wait timed out for %s hash=%s", action, tx_hex)
            return TxReceipt(
                transaction_hash=tx_hex,
                status=TxStatus.PENDING,
                error=f"confirmation not observed within {timeout:.1f}s",
                raw_response=raw,
                **base,
            )
        except Exception as exc:
            logger.warning("Confirmation wait failed for %s hash=%s: %s", action, tx_hex, exc)
            return TxReceipt(
                transaction_hash=tx_hex,
                status=TxStatus.PENDING,
                error=f"confirmation wait failed: {exc}",
                raw_response=raw,
                **base,
            )

        status = TxStatus.CONFIRMED if receipt.get("status", 0) == 1 else TxStatus.FAILED
        gas_used = receipt.get("gasUsed")
        gas_price = receipt.get("effectiveGasPrice")
        fee = gas_used * gas_price if gas_used is not None and gas_price is not None else None
        block_number = receipt.get("blockNumber")
        contract_address = receipt.get("contractAddress")
        logger.info(
            "Transaction %s for action=%s hash=%s block=%s",
            status.value,
            action,
            tx_hex,
            block_number,
        )
        raw["receipt"] = serialise_receipt(receipt)
        return TxReceipt(
            transaction_hash=tx_hex,
            status=status,
            block_number=block_number,
            fee=fee,
            contract_address=str(contract_address) if contract_address else None,
            error=None if status is TxStatus.CONFIRMED else "Transaction reverted",
            raw_response=raw,
            **base,
        )
