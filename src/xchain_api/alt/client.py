"""Solana client handle bound to a single network for its lifetime."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from typing import Any

import base58
from solana.rpc.async_api import AsyncClient
from solana.rpc.core import TransactionExpiredBlockheightExceededError
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from ..base import ChainFixed
from ..constants import KNOWN_SPL_MINTS, MEMO_PROGRAM_ID
from ..exceptions import TerminalOperationError, TransientNetworkError
from ..registry import ChainRegistry
from ..types import Amount, BalanceEntry, Commitment, ProtocolFamily, TxReceipt, TxStatus
from ..utils import from_base_units, short_address, to_base_units
from .config import AltClientConfig
from .connections import (
    BlockhashContext,
    ClientFactory,
    default_client_factory,
    load_keypair,
    parse_pubkey,
    rpc_commitment,
)

logger = logging.getLogger(__name__)

_CONFIRMATION_ORDER = [
    TransactionConfirmationStatus.Processed,
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
]
_COMMITMENT_RANK = {
    Commitment.PROCESSED: 0,
    Commitment.CONFIRMED: 1,
    Commitment.FINALIZED: 2,
}


class AltHandle(ChainFixed):
    """Build, sign and confirm Solana transactions on one network.

    There is no chain switch: target another network by constructing a new
    handle. Every broadcast fetches a fresh blockhash and is confirmed
    against that same blockhash's expiry height.
    """

    family = ProtocolFamily.ALT

    def __init__(
        self,
        config: AltClientConfig,
        registry: ChainRegistry,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        descriptor = registry.resolve(config.chain)
        if descriptor.is_evm:
            raise TerminalOperationError(
                f"Chain {descriptor.key} is not an alternate-family chain",
                field="chain",
                value=config.chain,
            )

        self._config = config
        self._registry = registry
        self._descriptor = descriptor
        self._rpc_url = registry.endpoint_for(descriptor.key, config.rpc_url)
        self._keypair: Keypair = load_keypair(config.secret_key)
        factory = client_factory or default_client_factory
        self._client: AsyncClient = factory(self._rpc_url, config.commitment, config.request_timeout)
        logger.info("Solana handle %s bound to %s (%s)", self.address, descriptor.key, self._rpc_url)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def address(self) -> str:
        return str(self._keypair.pubkey())

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def chain_key(self) -> str:
        return self._descriptor.key

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    @property
    def commitment(self) -> Commitment:
        return self._config.commitment

    @property
    def client(self) -> AsyncClient:
        return self._client

    def network_info(self) -> dict[str, Any]:
        info = self._registry.network_info(self.chain_key)
        info["rpc_url"] = self._rpc_url
        info["commitment"] = self.commitment.value
        return info

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_native_balance(self, address: str | None = None) -> BalanceEntry:
        owner = parse_pubkey(address, "owner") if address else self.pubkey
        resp = await self._client.get_balance(owner, commitment=rpc_commitment(self.commitment))
        currency = self._descriptor.native_currency
        return BalanceEntry(
            chain=self.chain_key,
            address=str(owner),
            balance=from_base_units(resp.value, currency.decimals),
            raw=int(resp.value),
            symbol=currency.symbol,
            decimals=currency.decimals,
        )

    async def get_token_balance(self, token: str, address: str | None = None) -> BalanceEntry:
        mint = parse_pubkey(token, "mint")
        owner = parse_pubkey(address, "owner") if address else self.pubkey
        token_account = get_associated_token_address(owner, mint)
        symbol = KNOWN_SPL_MINTS.get(str(mint), short_address(str(mint)))

        account = await self._client.get_account_info(token_account, commitment=rpc_commitment(self.commitment))
        if account.value is None:
            # No associated token account means the owner has never held the mint.
            decimals = await self._mint_decimals(mint)
            return BalanceEntry(
                chain=self.chain_key,
                address=str(owner),
                balance=from_base_units(0, decimals),
                raw=0,
                symbol=symbol,
                decimals=decimals,
            )

        resp = await self._client.get_token_account_balance(
            token_account, commitment=rpc_commitment(self.commitment)
        )
        raw = int(resp.value.amount)
        return BalanceEntry(
            chain=self.chain_key,
            address=str(owner),
            balance=from_base_units(raw, resp.value.decimals),
            raw=raw,
            symbol=symbol,
            decimals=resp.value.decimals,
        )

    async def get_transaction_status(self, tx_hash: str) -> TxStatus:
        signature = _parse_signature(tx_hash)
        resp = await self._client.get_signature_statuses([signature])
        status = resp.value[0]
        if status is None:
            return TxStatus.PENDING
        if status.err is not None:
            return TxStatus.FAILED
        if status.confirmation_status is None:
            return TxStatus.PENDING
        reached = _CONFIRMATION_ORDER.index(status.confirmation_status)
        if reached >= _COMMITMENT_RANK[self.commitment]:
            return TxStatus.CONFIRMED
        return TxStatus.PENDING

    async def wait_for_transaction(self, tx_hash: str, timeout: float | None = None) -> TxStatus:
        """Poll until the signature reaches the handle's commitment or fails."""

        limit = timeout if timeout is not None else self._config.confirm_timeout
        deadline = time.monotonic() + limit
        while True:
            status = await self.get_transaction_status(tx_hash)
            if status is not TxStatus.PENDING or time.monotonic() >= deadline:
                return status
            await asyncio.sleep(self._config.confirm_poll_interval)

    async def get_transaction(self, tx_hash: str) -> dict[str, Any]:
        """Confirmed transaction with its status meta for ``tx_hash``."""

        signature = _parse_signature(tx_hash)
        # getTransaction does not accept the processed tier.
        commitment = Commitment.CONFIRMED if self.commitment is Commitment.PROCESSED else self.commitment
        resp = await self._client.get_transaction(
            signature,
            encoding="json",
            commitment=rpc_commitment(commitment),
            max_supported_transaction_version=0,
        )
        tx = resp.value
        if tx is None:
            raise TerminalOperationError(f"Transaction not found: {tx_hash}", field="tx_hash", value=tx_hash)

        meta = tx.transaction.meta
        err = meta.err if meta is not None else None
        return {
            "chain": self.chain_key,
            "hash": str(signature),
            "status": (TxStatus.FAILED if err is not None else TxStatus.CONFIRMED).value,
            "slot": tx.slot,
            "block_time": tx.block_time,
            "fee": meta.fee if meta is not None else None,
            "error": str(err) if err is not None else None,
            "transaction": json.loads(tx.to_json()),
        }
        if status.err is not None:
            return TxStatus.FAILED
        if status.confirmation_status is None:
            return TxStatus.PENDING
        reached = _CONFIRMATION_ORDER.index(status.confirmation_status)
        if reached >= _COMMITMENT_RANK[self.commitment]:
            return TxStatus.CONFIRMED
        return TxStatus.PENDING

    async def fetch_blockhash_context(self) -> BlockhashContext:
        resp = await self._client.get_latest_blockhash(commitment=rpc_commitment(self.commitment))
        return BlockhashContext(
            blockhash=resp.value.blockhash,
            last_valid_block_height=resp.value.last_valid_block_height,
        )

    async def health_check(self) -> dict[str, Any]:
        started = time.perf_counter()
        try:
            resp = await self._client.get_slot()
        except Exception as exc:
            logger.warning("Health check failed for %s: %s", self.chain_key, exc)
            return {
                "healthy": False,
                "chain": self.chain_key,
                "latency_ms": (time.perf_counter() - started) * 1000,
                "slot": None,
                "error": str(exc),
            }
        return {
            "healthy": True,
            "chain": self.chain_key,
            "latency_ms": (time.perf_counter() - started) * 1000,
            "slot": resp.value,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def transfer_native(
        self,
        to: str,
        amount: Amount,
        *,
        memo: str | None = None,
        compute_unit_price: int | None = None,
        compute_unit_limit: int | None = None,
        confirm_timeout: float | None = None,
        **_: Any,
    ) -> TxReceipt:
        recipient = parse_pubkey(to, "recipient")
        lamports = to_base_units(amount, self._descriptor.native_currency.decimals)

        instructions = _compute_budget(compute_unit_price, compute_unit_limit)
        instructions.append(
            transfer(TransferParams(from_pubkey=self.pubkey, to_pubkey=recipient, lamports=lamports))
        )
        if memo:
            instructions.append(
                Instruction(
                    program_id=Pubkey.from_string(MEMO_PROGRAM_ID),
                    data=memo.encode("utf-8"),
                    accounts=[AccountMeta(pubkey=self.pubkey, is_signer=True, is_writable=True)],
                )
            )

        return await self._submit(
            instructions,
            action="transfer_native",
            to=str(recipient),
            amount=lamports,
            confirm_timeout=confirm_timeout,
        )

    async def transfer_token(
        self,
        token: str,
        to: str,
        amount: Amount,
        *,
        decimals: int | None = None,
        compute_unit_price: int | None = None,
        compute_unit_limit: int | None = None,
        confirm_timeout: float | None = None,
        **_: Any,
    ) -> TxReceipt:
        mint = parse_pubkey(token, "mint")
        recipient = parse_pubkey(to, "recipient")
        source = get_associated_token_address(self.pubkey, mint)
        destination = get_associated_token_address(recipient, mint)

        if decimals is None:
            decimals = await self._mint_decimals(mint)
        units = to_base_units(amount, decimals)

        instructions = _compute_budget(compute_unit_price, compute_unit_limit)
        existing = await self._client.get_account_info(destination, commitment=rpc_commitment(self.commitment))
        if existing.value is None:
            logger.info("Creating associated token account %s for %s", destination, recipient)
            instructions.append(create_associated_token_account(self.pubkey, recipient, mint))

        instructions.append(
            transfer_checked(
                TransferCheckedParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=source,
                    mint=mint,
                    dest=destination,
                    owner=self.pubkey,
                    amount=units,
                    decimals=decimals,
                )
            )
        )

        return await self._submit(
            instructions,
            action="transfer_token",
            to=str(recipient),
            amount=units,
            confirm_timeout=confirm_timeout,
        )

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------
    def sign_message(self, message: str) -> str:
        return str(self._keypair.sign_message(message.encode("utf-8")))

    @staticmethod
    def create_random() -> dict[str, str]:
        keypair = Keypair()
        return {
            "address": str(keypair.pubkey()),
            "private_key": base58.b58encode(bytes(keypair)).decode("ascii"),
        }

    @staticmethod
    def validate_address(address: str) -> bool:
        try:
            Pubkey.from_string(address)
        except (ValueError, TypeError):
            return False
        return True

    async def aclose(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _mint_decimals(self, mint: Pubkey) -> int:
        resp = await self._client.get_token_supply(mint)
        return int(resp.value.decimals)

    async def _submit(
        self,
        instructions: Sequence[Instruction],
        *,
        action: str,
        to: str,
        amount: int,
        confirm_timeout: float | None,
    ) -> TxReceipt:
        context = await self.fetch_blockhash_context()
        message = Message.new_with_blockhash(list(instructions), self.pubkey, context.blockhash)
        transaction = Transaction([self._keypair], message, context.blockhash)

        opts = TxOpts(
            skip_preflight=self._skip_preflight(),
            preflight_commitment=rpc_commitment(self.commitment),
        )
        logger.info("Dispatching %s on %s to %s", action, self.chain_key, to)
        resp = await self._client.send_raw_transaction(bytes(transaction), opts=opts)
        signature = resp.value
        logger.info("Transaction sent for action=%s signature=%s", action, signature)

        base = {
            "transaction_hash": str(signature),
            "from_address": self.address,
            "to_address": to,
            "amount": amount,
        }
        raw: dict[str, Any] = {
            "action": action,
            "blockhash": str(context.blockhash),
            "last_valid_block_height": context.last_valid_block_height,
        }

        timeout = confirm_timeout if confirm_timeout is not None else self._config.confirm_timeout
        try:
            confirmation = await asyncio.wait_for(
                self._client.confirm_transaction(
                    signature,
                    rpc_commitment(self.commitment),
                    sleep_seconds=self._config.confirm_poll_interval,
                    last_valid_block_height=context.last_valid_block_height,
                ),
                timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Confirmation wait timed out for %s signature=%s", action, signature)
            return TxReceipt(
                status=TxStatus.PENDING,
                error=f"confirmation not observed within {timeout:.1f}s",
                raw_response=raw,
                **base,
            )
        except TransactionExpiredBlockheightExceededError as exc:
            # The blockhash expired, so this signature can never land; a rebuild is safe.
            raise TransientNetworkError(
                f"{action} expired before confirmation",
                endpoint=self._rpc_url,
                details={"signature": str(signature), "error": str(exc)},
            ) from exc
        except Exception as exc:
            logger.warning("Confirmation wait failed for %s signature=%s: %s", action, signature, exc)
            return TxReceipt(
                status=TxStatus.PENDING,
                error=f"confirmation wait failed: {exc}",
                raw_response=raw,
                **base,
            )

        status_entry = confirmation.value[0] if confirmation.value else None
        err = getattr(status_entry, "err", None)
        slot = getattr(status_entry, "slot", None) or confirmation.context.slot
        status = TxStatus.FAILED if err is not None else TxStatus.CONFIRMED
        logger.info("Transaction %s for action=%s signature=%s slot=%s", status.value, action, signature, slot)
        return TxReceipt(
            status=status,
            block_number=slot,
            error=str(err) if err is not None else None,
            raw_response=raw,
            **base,
        )

    def _skip_preflight(self) -> bool:
        if self._config.skip_preflight is not None:
            return self._config.skip_preflight
        return self._descriptor.network != "mainnet"


def _compute_budget(price: int | None, limit: int | None) -> list[Instruction]:
    instructions: list[Instruction] = []
    if price:
        instructions.append(set_compute_unit_price(price))
    if limit:
        instructions.append(set_compute_unit_limit(limit))
    return instructions


def _parse_signature(tx_hash: str) -> Signature:
    try:
        return Signature.from_string(tx_hash)
    except ValueError as exc:
        raise TerminalOperationError(
            f"Invalid transaction signature: {tx_hash!r}", field="tx_hash", value=tx_hash
        ) from exc
