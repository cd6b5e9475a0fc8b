from __future__ import annotations

import asyncio
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import pytest
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from hexbytes import HexBytes
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature
from web3 import Web3
from web3.exceptions import TransactionNotFound

from xchain_api.alt.client import AltHandle
from xchain_api.alt.config import AltClientConfig
from xchain_api.constants import MULTICALL3_ADDRESS
from xchain_api.dispatcher import Dispatcher
from xchain_api.evm.client import EVMHandle
from xchain_api.evm.config import EVMClientConfig
from xchain_api.registry import ChainRegistry
from xchain_api.retry import RetryPolicy, RetryWrapper
from xchain_api.types import ChainDescriptor, NativeCurrency, ProtocolFamily

# Well-known development key (anvil/hardhat account #0).
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

ADDR_A = "0x1111111111111111111111111111111111111111"
ADDR_B = "0x2222222222222222222222222222222222222222"
TOKEN = "0x3333333333333333333333333333333333333333"

URL_A = "https://a.example"
URL_B = "https://b.example"
URL_ALT = "https://alt.example"

ETH = NativeCurrency("Ether", "ETH", 18)
SOL = NativeCurrency("Solana", "SOL", 9)


def build_registry(*extra: ChainDescriptor) -> ChainRegistry:
    return ChainRegistry(
        [
            ChainDescriptor("A", "Chain A", ProtocolFamily.EVM, URL_A, "https://a.scan", ETH, chain_id=1),
            ChainDescriptor("B", "Chain B", ProtocolFamily.EVM, URL_B, "https://b.scan", ETH, chain_id=2),
            ChainDescriptor(
                "ALT",
                "Alt devnet",
                ProtocolFamily.ALT,
                URL_ALT,
                "https://explorer.solana.com",
                SOL,
                network="devnet",
            ),
            *extra,
        ]
    )


async def _value(value: Any) -> Any:
    return value


class DummyEth:
    """Async stand-in for ``AsyncWeb3.eth`` on one chain."""

    def __init__(self, chain_id: int) -> None:
        self.chain_id = chain_id
        self.balances: dict[str, int] = {}
        self.balance_error: Exception | None = None
        self.balance_gate: asyncio.Event | None = None
        self.base_fee: int | None = None
        self.nonce = 0
        self.nonce_calls = 0
        self.estimated: list[dict[str, Any]] = []
        self.sent: list[bytes] = []
        self.send_errors: list[Exception] = []
        self.receipt_status = 1
        self.receipt_delay: float | None = None
        self.receipts: dict[str, dict[str, Any]] = {}
        self.calls: list[dict[str, Any]] = []
        self.call_handler: Callable[[dict[str, Any]], bytes] | None = None
        self.block_error: Exception | None = None
        self.contract_address: str | None = None
        self.transactions: dict[str, dict[str, Any]] = {}
        self.logs: list[dict[str, Any]] = []
        self.log_filters: list[dict[str, Any]] = []

    async def get_balance(self, address: str) -> int:
        if self.balance_gate is not None:
            await self.balance_gate.wait()
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(address, 0)

    async def get_transaction_count(self, address: str, block_identifier: str) -> int:
        self.nonce_calls += 1
        return self.nonce

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        self.estimated.append(dict(tx))
        return 21_000

    async def get_block(self, identifier: str) -> dict[str, Any]:
        block: dict[str, Any] = {"number": 100}
        if self.base_fee is not None:
            block["baseFeePerGas"] = self.base_fee
        return block

    @property
    def gas_price(self) -> Any:
        return _value(10**9)

    @property
    def max_priority_fee(self) -> Any:
        return _value(2 * 10**9)

    @property
    def block_number(self) -> Any:
        if self.block_error is not None:
            error = self.block_error

            async def _raise() -> int:
                raise error

            return _raise()
        return _value(100)

    async def call(self, tx: dict[str, Any]) -> bytes:
        self.calls.append(tx)
        assert self.call_handler is not None
        return self.call_handler(tx)

    async def send_raw_transaction(self, raw: bytes) -> HexBytes:
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append(bytes(raw))
        self.nonce += 1
        return HexBytes(Web3.keccak(raw))

    async def wait_for_transaction_receipt(self, tx_hash: HexBytes, timeout: float = 120) -> dict[str, Any]:
        if self.receipt_delay is not None:
            await asyncio.sleep(self.receipt_delay)
        return {
            "status": self.receipt_status,
            "blockNumber": 101,
            "gasUsed": 21_000,
            "effectiveGasPrice": 10**9,
            "transactionHash": HexBytes(tx_hash),
            "contractAddress": self.contract_address,
        }

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return self.receipts.get(tx_hash)

    async def get_transaction(self, tx_hash: str) -> dict[str, Any]:
        if tx_hash not in self.transactions:
            raise TransactionNotFound(f"Transaction with hash {tx_hash!r} not found.")
        return self.transactions[tx_hash]

    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]:
        self.log_filters.append(filter_params)
        return list(self.logs)


class DummyProvider:
    def __init__(self) -> None:
        self.disconnects = 0

    async def disconnect(self) -> None:
        self.disconnects += 1


class DummyWeb3:
    def __init__(self, eth: DummyEth, rpc_url: str) -> None:
        self.eth = eth
        self.rpc_url = rpc_url
        self.provider = DummyProvider()


class Web3Farm:
    """Web3 factory that hands out one ``DummyEth`` per endpoint."""

    def __init__(self, eths: dict[str, DummyEth]) -> None:
        self.eths = eths
        self.created: list[str] = []
        self.providers: list[DummyProvider] = []

    def __call__(self, rpc_url: str, request_timeout: float) -> DummyWeb3:
        self.created.append(rpc_url)
        web3 = DummyWeb3(self.eths[rpc_url], rpc_url)
        self.providers.append(web3.provider)
        return web3


def aggregator_handler(respond: Callable[[str, bytes], tuple[bool, bytes]]) -> Callable[[dict[str, Any]], bytes]:
    """Emulate Multicall3 ``aggregate``/``tryAggregate`` on top of ``respond``."""

    aggregate = bytes(Web3.keccak(text="aggregate((address,bytes)[])")[:4])
    try_aggregate = bytes(Web3.keccak(text="tryAggregate(bool,(address,bytes)[])")[:4])

    def handler(tx: dict[str, Any]) -> bytes:
        assert tx["to"] == Web3.to_checksum_address(MULTICALL3_ADDRESS)
        data = bytes(tx["data"])
        selector, body = data[:4], data[4:]
        if selector == aggregate:
            (calls,) = abi_decode(["(address,bytes)[]"], body)
            payloads = []
            for target, calldata in calls:
                ok, payload = respond(target, calldata)
                if not ok:
                    raise ValueError("execution reverted")
                payloads.append(payload)
            return abi_encode(["uint256", "bytes[]"], [100, payloads])
        if selector == try_aggregate:
            _, calls = abi_decode(["bool", "(address,bytes)[]"], body)
            return abi_encode(["(bool,bytes)[]"], [[respond(target, calldata) for target, calldata in calls]])
        raise AssertionError(f"unexpected selector {selector.hex()}")

    return handler


class DummySolanaClient:
    """Async stand-in for ``solana.rpc.async_api.AsyncClient``."""

    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.accounts: set[str] = set()
        self.token_balances: dict[str, int] = {}
        self.decimals = 6
        self.blockhash_calls = 0
        self.sent: list[tuple[bytes, Any]] = []
        self.confirm_calls: list[tuple[Signature, int | None]] = []
        self.confirm_errors: list[Exception] = []
        self.confirm_delay: float | None = None
        self.statuses: dict[str, Any] = {}
        self.slot_error: Exception | None = None
        self.transactions: dict[str, Any] = {}
        self.closed = False

    async def get_balance(self, pubkey: Any, commitment: Any = None) -> Any:
        return SimpleNamespace(value=self.balances.get(str(pubkey), 0))

    async def get_account_info(self, pubkey: Any, commitment: Any = None) -> Any:
        return SimpleNamespace(value=object() if str(pubkey) in self.accounts else None)

    async def get_token_account_balance(self, pubkey: Any, commitment: Any = None) -> Any:
        amount = self.token_balances[str(pubkey)]
        return SimpleNamespace(value=SimpleNamespace(amount=str(amount), decimals=self.decimals))

    async def get_token_supply(self, mint: Any, commitment: Any = None) -> Any:
        return SimpleNamespace(value=SimpleNamespace(decimals=self.decimals))

    async def get_latest_blockhash(self, commitment: Any = None) -> Any:
        self.blockhash_calls += 1
        return SimpleNamespace(
            value=SimpleNamespace(
                blockhash=Hash.new_unique(),
                last_valid_block_height=1000 + self.blockhash_calls,
            )
        )

    async def send_raw_transaction(self, txn: bytes, opts: Any = None) -> Any:
        self.sent.append((bytes(txn), opts))
        return SimpleNamespace(value=Signature.new_unique())

    async def confirm_transaction(
        self,
        tx_sig: Signature,
        commitment: Any = None,
        sleep_seconds: float = 0.5,
        last_valid_block_height: int | None = None,
    ) -> Any:
        self.confirm_calls.append((tx_sig, last_valid_block_height))
        if self.confirm_delay is not None:
            await asyncio.sleep(self.confirm_delay)
        if self.confirm_errors:
            raise self.confirm_errors.pop(0)
        return SimpleNamespace(
            value=[SimpleNamespace(err=None, slot=55)],
            context=SimpleNamespace(slot=55),
        )

    async def get_signature_statuses(self, signatures: list[Signature]) -> Any:
        return SimpleNamespace(value=[self.statuses.get(str(signatures[0]))])

    async def get_transaction(
        self,
        tx_sig: Signature,
        encoding: str = "json",
        commitment: Any = None,
        max_supported_transaction_version: int | None = None,
    ) -> Any:
        return SimpleNamespace(value=self.transactions.get(str(tx_sig)))

    async def get_slot(self) -> Any:
        if self.slot_error is not None:
            raise self.slot_error
        return SimpleNamespace(value=1234)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def registry() -> ChainRegistry:
    return build_registry()


@pytest.fixture
def eths() -> dict[str, DummyEth]:
    return {URL_A: DummyEth(1), URL_B: DummyEth(2)}


@pytest.fixture
def farm(eths: dict[str, DummyEth]) -> Web3Farm:
    return Web3Farm(eths)


@pytest.fixture
def evm_handle(registry: ChainRegistry, farm: Web3Farm) -> EVMHandle:
    config = EVMClientConfig(private_key=TEST_PRIVATE_KEY, default_chain="A", receipt_timeout=5)
    return EVMHandle(config, registry, web3_factory=farm)


@pytest.fixture
def sol_client() -> DummySolanaClient:
    return DummySolanaClient()


@pytest.fixture
def sol_keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def alt_handle(registry: ChainRegistry, sol_client: DummySolanaClient, sol_keypair: Keypair) -> AltHandle:
    config = AltClientConfig(secret_key=bytes(sol_keypair), chain="ALT", confirm_poll_interval=0.01)
    return AltHandle(config, registry, client_factory=lambda url, commitment, timeout: sol_client)


@pytest.fixture
def fast_retry() -> RetryWrapper:
    return RetryWrapper(RetryPolicy(max_attempts=3, backoff=0.0))


@pytest.fixture
def dispatcher(
    registry: ChainRegistry,
    evm_handle: EVMHandle,
    alt_handle: AltHandle,
    fast_retry: RetryWrapper,
) -> Dispatcher:
    return Dispatcher(registry, evm=evm_handle, alt=alt_handle, retry=fast_retry)
