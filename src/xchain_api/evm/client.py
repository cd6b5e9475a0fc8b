"""EVM client handle: one signer, one active chain at a time."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound
from web3.types import ChecksumAddress

from ..base import ChainSwitchable
from ..constants import Erc20
from ..exceptions import TerminalOperationError
from ..registry import ChainRegistry
from ..types import Amount, BalanceEntry, ProtocolFamily, TxReceipt, TxStatus
from ..utils import decode_result, encode_call, from_base_units, serialise_receipt, to_base_units
from .config import EVMClientConfig
from .connections import (
    ChainBinding,
    Web3Factory,
    build_binding,
    default_web3_factory,
    load_signer,
)
from .transactions import BroadcastState, TransactionSender

logger = logging.getLogger(__name__)


def to_checksum(address: str, field: str = "address") -> ChecksumAddress:
    """Validate and checksum an EVM address, raising a terminal error if invalid."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise TerminalOperationError(f"Invalid {field} address: {address!r}", field=field, value=address)
    return Web3.to_checksum_address(address)


class EVMHandle(ChainSwitchable):
    """Sign and submit EVM transactions against whichever chain is bound.

    Operations never take a chain argument; callers switch first. Each
    operation reads ``self._binding`` exactly once, so a switch that lands
    while it is awaiting the network cannot make it observe a mixed state.
    """

    family = ProtocolFamily.EVM

    def __init__(
        self,
        config: EVMClientConfig,
        registry: ChainRegistry,
        *,
        web3_factory: Web3Factory | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._web3_factory = web3_factory or default_web3_factory
        self._sender = TransactionSender(
            wait_for_receipt=config.wait_for_receipt,
            receipt_timeout=config.receipt_timeout,
        )
        self._account: LocalAccount | None = None
        self._binding: ChainBinding | None = None
        # One binding per (chain, endpoint); switching back reuses the open provider.
        self._bindings: dict[tuple[str, str], ChainBinding] = {}
        self.configure(config)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------
    def configure(self, config: EVMClientConfig) -> None:
        """Bind signing material and connect to the config's default chain."""

        account = load_signer(config)
        binding = self._make_binding(config.default_chain, config.rpc_url)
        self._config = config
        self._account = account
        self._binding = binding
        logger.info("EVM handle %s bound to %s", account.address, binding.chain_key)

    def switch_chain(self, chain: str, rpc_url: str | None = None) -> ChainBinding:
        """Bind ``chain``, reusing its connection if one is already open."""

        binding = self._make_binding(chain, rpc_url)
        previous = self._binding.chain_key if self._binding else None
        self._binding = binding
        logger.info("Switched EVM handle from %s to %s (%s)", previous, binding.chain_key, binding.rpc_url)
        return binding

    def _make_binding(self, chain: str, rpc_url: str | None) -> ChainBinding:
        key = self._registry.resolve(chain).key
        endpoint = self._registry.endpoint_for(key, rpc_url)
        cached = self._bindings.get((key, endpoint))
        if cached is not None:
            return cached
        binding = build_binding(
            self._registry,
            key,
            rpc_url=endpoint,
            request_timeout=self._config.request_timeout,
            web3_factory=self._web3_factory,
        )
        self._bindings[(key, endpoint)] = binding
        return binding

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def binding(self) -> ChainBinding:
        if self._binding is None:
            raise TerminalOperationError("EVM handle has no active chain")
        return self._binding

    @property
    def account(self) -> LocalAccount:
        if self._account is None:
            raise TerminalOperationError("EVM handle has no signing account")
        return self._account

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def current_chain(self) -> str:
        return self.binding.chain_key

    @property
    def rpc_url(self) -> str:
        return self.binding.rpc_url

    @property
    def aggregator_address(self) -> ChecksumAddress | None:
        return self.binding.aggregator_address

    def network_info(self) -> dict[str, Any]:
        binding = self.binding
        info = self._registry.network_info(binding.chain_key)
        info["rpc_url"] = binding.rpc_url
        info["contracts"] = {role.value: address for role, address in binding.contracts.items()}
        return info

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_native_balance(self, address: str | None = None) -> BalanceEntry:
        binding = self.binding
        owner = to_checksum(address, "owner") if address else self.account.address
        raw = await binding.web3.eth.get_balance(owner)
        currency = binding.descriptor.native_currency
        return BalanceEntry(
            chain=binding.chain_key,
            address=owner,
            balance=from_base_units(raw, currency.decimals),
            raw=int(raw),
            symbol=currency.symbol,
            decimals=currency.decimals,
        )

    async def get_token_balance(self, token: str, address: str | None = None) -> BalanceEntry:
        binding = self.binding
        token_address = to_checksum(token, "token")
        owner = to_checksum(address, "owner") if address else self.account.address
        raw = await self._call(binding, token_address, Erc20.BALANCE_OF, [owner], ["uint256"])
        decimals = await self._call(binding, token_address, Erc20.DECIMALS, [], ["uint8"])
        symbol = await self._call(binding, token_address, Erc20.SYMBOL, [], ["string"])
        return BalanceEntry(
            chain=binding.chain_key,
            address=owner,
            balance=from_base_units(raw, decimals),
            raw=int(raw),
            symbol=symbol,
            decimals=int(decimals),
        )

    async def get_token_metadata(self, token: str) -> dict[str, Any]:
        binding = self.binding
        token_address = to_checksum(token, "token")
        decimals = await self._call(binding, token_address, Erc20.DECIMALS, [], ["uint8"])
        total_supply = await self._call(binding, token_address, Erc20.TOTAL_SUPPLY, [], ["uint256"])
        return {
            "address": token_address,
            "symbol": await self._call(binding, token_address, Erc20.SYMBOL, [], ["string"]),
            "name": await self._call(binding, token_address, Erc20.NAME, [], ["string"]),
            "decimals": int(decimals),
            "total_supply": from_base_units(total_supply, decimals),
        }

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        binding = self.binding
        return int(
            await self._call(
                binding,
                to_checksum(token, "token"),
                Erc20.ALLOWANCE,
                [to_checksum(owner, "owner"), to_checksum(spender, "spender")],
                ["uint256"],
            )
        )

    async def read_contract(
        self,
        address: str,
        signature: str,
        args: Sequence[Any] = (),
        output_types: Sequence[str] = (),
    ) -> Any:
        binding = self.binding
        return await self._call(binding, to_checksum(address, "contract"), signature, args, output_types)

    async def get_transaction_status(self, tx_hash: str) -> TxStatus:
        binding = self.binding
        try:
            receipt = await binding.web3.eth.get_transaction_receipt(tx_hash)  # type: ignore[arg-type]
        except TransactionNotFound:
            return TxStatus.PENDING
        if receipt is None:
            return TxStatus.PENDING
        return TxStatus.CONFIRMED if receipt.get("status", 0) == 1 else TxStatus.FAILED

    async def wait_for_transaction(self, tx_hash: str, timeout: float | None = None) -> TxStatus:
        """Block until ``tx_hash`` is mined or ``timeout`` passes; pending on timeout."""

        binding = self.binding
        limit = timeout if timeout is not None else self._sender.receipt_timeout
        try:
            receipt = await asyncio.wait_for(
                binding.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=limit),  # type: ignore[arg-type]
                limit,
            )
        except (asyncio.TimeoutError, TimeExhausted):
            return TxStatus.PENDING
        return TxStatus.CONFIRMED if receipt.get("status", 0) == 1 else TxStatus.FAILED

    async def get_transaction(self, tx_hash: str) -> dict[str, Any]:
        """Full transaction and receipt (``None`` while unmined) for ``tx_hash``."""

        binding = self.binding
        try:
            tx = await binding.web3.eth.get_transaction(tx_hash)  # type: ignore[arg-type]
        except TransactionNotFound as exc:
            raise TerminalOperationError(
                f"Transaction not found: {tx_hash}", field="tx_hash", value=tx_hash
            ) from exc
        try:
            receipt = await binding.web3.eth.get_transaction_receipt(tx_hash)  # type: ignore[arg-type]
        except TransactionNotFound:
            receipt = None

        if receipt is None:
            status = TxStatus.PENDING
        else:
            status = TxStatus.CONFIRMED if receipt.get("status", 0) == 1 else TxStatus.FAILED
        return {
            "chain": binding.chain_key,
            "hash": tx_hash,
            "status": status.value,
            "transaction": serialise_receipt(tx),
            "receipt": serialise_receipt(receipt),
        }

    async def get_logs(
        self,
        address: str | None = None,
        *,
        topics: Sequence[Any] | None = None,
        from_block: int | str = 0,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]:
        binding = self.binding
        filter_params: dict[str, Any] = {"fromBlock": from_block, "toBlock": to_block}
        if address is not None:
            filter_params["address"] = to_checksum(address, "contract")
        if topics:
            filter_params["topics"] = list(topics)
        logs = await binding.web3.eth.get_logs(filter_params)  # type: ignore[arg-type]
        return [serialise_receipt(log) for log in logs]

    async def get_past_events(
        self,
        contract: str,
        event_signature: str,
        *,
        data_types: Sequence[str] = (),
        from_block: int | str = 0,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]:
        """Logs emitted by ``contract`` for ``event_signature``, e.g. ``"Transfer(address,address,uint256)"``.

        ``data_types`` are the non-indexed parameter types; when given, each
        entry carries the decoded values under ``args``.
        """

        topic = Web3.keccak(text=event_signature).to_0x_hex()
        logs = await self.get_logs(contract, topics=[topic], from_block=from_block, to_block=to_block)
        events = []
        for log in logs:
            event = {"event": event_signature, **log}
            if data_types:
                event["args"] = decode_result(data_types, HexBytes(log.get("data") or b""))
            events.append(event)
        return events

    async def estimate_transfer_cost(self, to: str, amount: Amount) -> dict[str, int]:
        binding = self.binding
        decimals = binding.descriptor.native_currency.decimals
        value = to_base_units(amount, decimals)
        gas_limit = await binding.web3.eth.estimate_gas(
            {"from": self.account.address, "to": to_checksum(to, "recipient"), "value": value}
        )
        gas_price = await binding.web3.eth.gas_price
        gas_cost = gas_limit * gas_price
        return {"gas_limit": gas_limit, "gas_cost": gas_cost, "total_cost": gas_cost + value}

    async def health_check(self) -> dict[str, Any]:
        binding = self.binding
        started = time.perf_counter()
        try:
            block_number = await binding.web3.eth.block_number
        except Exception as exc:
            logger.warning("Health check failed for %s: %s", binding.chain_key, exc)
            return {
                "healthy": False,
                "chain": binding.chain_key,
                "latency_ms": (time.perf_counter() - started) * 1000,
                "block_number": None,
                "error": str(exc),
            }
        return {
            "healthy": True,
            "chain": binding.chain_key,
            "latency_ms": (time.perf_counter() - started) * 1000,
            "block_number": block_number,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def transfer_native(
        self,
        to: str,
        amount: Amount,
        *,
        confirm_timeout: float | None = None,
        broadcast: BroadcastState | None = None,
        **_: Any,
    ) -> TxReceipt:
        binding = self.binding
        recipient = to_checksum(to, "recipient")
        value = to_base_units(amount, binding.descriptor.native_currency.decimals)
        return await self._sender.send(
            binding,
            self.account,
            recipient,
            value=value,
            action="transfer_native",
            context={"to": recipient, "amount": str(amount)},
            confirm_timeout=confirm_timeout,
            broadcast=broadcast,
        )

    async def transfer_token(
        self,
        token: str,
        to: str,
        amount: Amount,
        *,
        confirm_timeout: float | None = None,
        broadcast: BroadcastState | None = None,
        **_: Any,
    ) -> TxReceipt:
        binding = self.binding
        token_address = to_checksum(token, "token")
        recipient = to_checksum(to, "recipient")
        decimals = await self._call(binding, token_address, Erc20.DECIMALS, [], ["uint8"])
        units = to_base_units(amount, int(decimals))
        return await self._sender.send(
            binding,
            self.account,
            token_address,
            data=encode_call(Erc20.TRANSFER, [recipient, units]),
            action="transfer_token",
            context={"token": token_address, "to": recipient, "amount": str(amount)},
            confirm_timeout=confirm_timeout,
            broadcast=broadcast,
        )

    async def approve_token(
        self,
        token: str,
        spender: str,
        amount: Amount,
        *,
        confirm_timeout: float | None = None,
        broadcast: BroadcastState | None = None,
    ) -> TxReceipt:
        binding = self.binding
        token_address = to_checksum(token, "token")
        spender_address = to_checksum(spender, "spender")
        decimals = await self._call(binding, token_address, Erc20.DECIMALS, [], ["uint8"])
        units = to_base_units(amount, int(decimals))
        return await self._sender.send(
            binding,
            self.account,
            token_address,
            data=encode_call(Erc20.APPROVE, [spender_address, units]),
            action="approve_token",
            context={"token": token_address, "spender": spender_address, "amount": str(amount)},
            confirm_timeout=confirm_timeout,
            broadcast=broadcast,
        )

    async def write_contract(
        self,
        address: str,
        signature: str,
        args: Sequence[Any] = (),
        *,
        value: Amount = 0,
        confirm_timeout: float | None = None,
        broadcast: BroadcastState | None = None,
    ) -> TxReceipt:
        binding = self.binding
        contract = to_checksum(address, "contract")
        return await self._sender.send(
            binding,
            self.account,
            contract,
            value=to_base_units(value, binding.descriptor.native_currency.decimals),
            data=encode_call(signature, args),
            action=signature,
            context={"contract": contract, "args": [str(arg) for arg in args]},
            confirm_timeout=confirm_timeout,
            broadcast=broadcast,
        )

    async def deploy_contract(
        self,
        bytecode: str | bytes,
        constructor_types: Sequence[str] = (),
        args: Sequence[Any] = (),
        *,
        value: Amount = 0,
        confirm_timeout: float | None = None,
        broadcast: BroadcastState | None = None,
    ) -> TxReceipt:
        """Deploy ``bytecode`` with ABI-encoded constructor ``args``.

        The created address is on ``TxReceipt.contract_address`` once the
        receipt is observed.
        """

        binding = self.binding
        try:
            code = bytes(HexBytes(bytecode))
        except ValueError as exc:
            raise TerminalOperationError("Invalid contract bytecode", field="bytecode") from exc
        if not code:
            raise TerminalOperationError("Contract bytecode is empty", field="bytecode")
        if constructor_types:
            code += abi_encode(list(constructor_types), list(args))
        return await self._sender.send(
            binding,
            self.account,
            None,
            value=to_base_units(value, binding.descriptor.native_currency.decimals),
            data=code,
            action="deploy_contract",
            context={"constructor_args": [str(arg) for arg in args]},
            confirm_timeout=confirm_timeout,
            broadcast=broadcast,
        )

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------
    def sign_message(self, message: str) -> str:
        signed = self.account.sign_message(encode_defunct(text=message))
        return signed.signature.to_0x_hex()

    @staticmethod
    def verify_message(message: str, signature: str) -> str:
        """Return the address that produced ``signature`` over ``message``."""
        return Account.recover_message(encode_defunct(text=message), signature=signature)

    @staticmethod
    def create_random() -> dict[str, str]:
        Account.enable_unaudited_hdwallet_features()
        account, mnemonic = Account.create_with_mnemonic()
        return {
            "address": account.address,
            "private_key": account.key.to_0x_hex(),
            "mnemonic": mnemonic,
        }

    async def aclose(self) -> None:
        """Disconnect every provider this handle has opened."""

        bindings = list(self._bindings.values())
        self._bindings.clear()
        for binding in bindings:
            provider = getattr(binding.web3, "provider", None)
            disconnect = getattr(provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _call(
        self,
        binding: ChainBinding,
        to: ChecksumAddress,
        signature: str,
        args: Sequence[Any],
        output_types: Sequence[str],
    ) -> Any:
        data = encode_call(signature, args)
        result = await binding.web3.eth.call({"to": to, "data": data})
        return decode_result(output_types, result)
