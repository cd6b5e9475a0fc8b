from __future__ import annotations

import asyncio

import pytest
from conftest import ADDR_A, ADDR_B, TEST_PRIVATE_KEY, URL_A, URL_B, DummyEth, DummySolanaClient, Web3Farm
from eth_abi import encode as abi_encode
from hexbytes import HexBytes
from solders.keypair import Keypair
from web3 import Web3

from xchain_api.alt.client import AltHandle
from xchain_api.alt.config import AltClientConfig
from xchain_api.dispatcher import Dispatcher
from xchain_api.evm.client import EVMHandle, to_checksum
from xchain_api.evm.config import EVMClientConfig
from xchain_api.exceptions import BackendNotConfigured, UnknownChain
from xchain_api.registry import ChainRegistry
from xchain_api.retry import RetryWrapper
from xchain_api.types import ErrorKind, OperationKind, OperationRequest, TxStatus


def _transfer(chain: str, to: str, amount: object = "0.001", **params: object) -> OperationRequest:
    return OperationRequest(chain=chain, kind=OperationKind.NATIVE_TRANSFER, params={"to": to, "amount": amount, **params})


def _balance(chain: str, address: str | None = None) -> OperationRequest:
    return OperationRequest(chain=chain, kind=OperationKind.NATIVE_BALANCE, params={"address": address})


async def test_unknown_chain_raises(dispatcher: Dispatcher) -> None:
    with pytest.raises(UnknownChain):
        await dispatcher.execute(_balance("NOPE"))


async def test_missing_backend_raises(registry: ChainRegistry, alt_handle: AltHandle) -> None:
    dispatcher = Dispatcher(registry, alt=alt_handle)

    with pytest.raises(BackendNotConfigured) as exc_info:
        await dispatcher.execute(_balance("A"))
    assert exc_info.value.family == "EVM"


async def test_alt_request_for_other_network_raises(sol_client: DummySolanaClient) -> None:
    registry = ChainRegistry()
    handle = AltHandle(
        AltClientConfig(secret_key=bytes(Keypair()), chain="SOLANA_DEVNET"),
        registry,
        client_factory=lambda url, commitment, timeout: sol_client,
    )
    dispatcher = Dispatcher(registry, alt=handle)

    with pytest.raises(BackendNotConfigured):
        await dispatcher.execute(_balance("SOLANA"))


async def test_dispatch_switches_evm_chain(
    dispatcher: Dispatcher, evm_handle: EVMHandle, eths: dict[str, DummyEth]
) -> None:
    eths[URL_B].balances[to_checksum(ADDR_B)] = 7

    result = await dispatcher.execute(_balance("b", ADDR_B))

    assert result.success
    assert result.chain == "B"
    assert result.value.raw == 7
    assert result.explorer_url == f"https://b.scan/address/{to_checksum(ADDR_B)}"
    assert evm_handle.current_chain == "B"


async def test_transfer_result_is_normalised(dispatcher: Dispatcher) -> None:
    result = await dispatcher.execute(_transfer("A", ADDR_A))

    assert result.success
    assert result.status is TxStatus.CONFIRMED
    assert result.transaction_hash == result.value
    assert result.explorer_url == f"https://a.scan/tx/{result.transaction_hash}"
    assert result.block_number == 101
    assert result.attempts == 1
    assert result.target == ADDR_A


async def test_transient_send_failures_are_retried(dispatcher: Dispatcher, eths: dict[str, DummyEth]) -> None:
    eth = eths[URL_A]
    eth.send_errors = [ConnectionError("connection reset"), asyncio.TimeoutError()]

    result = await dispatcher.execute(_transfer("A", ADDR_A))

    assert result.success
    assert result.attempts == 3
    assert eth.nonce_calls == 1
    assert len(eth.sent) == 1


async def test_terminal_send_failure_is_attempted_once(dispatcher: Dispatcher, eths: dict[str, DummyEth]) -> None:
    eth = eths[URL_A]
    eth.send_errors = [ValueError("insufficient funds for gas * price + value")]

    result = await dispatcher.execute(_transfer("A", ADDR_A))

    assert not result.success
    assert result.error_type is ErrorKind.TERMINAL
    assert result.status is TxStatus.FAILED
    assert result.attempts == 1
    assert eth.nonce_calls == 1


async def test_retry_exhaustion_is_reported_as_transient(dispatcher: Dispatcher, eths: dict[str, DummyEth]) -> None:
    eths[URL_A].send_errors = [ConnectionError("reset")] * 3

    result = await dispatcher.execute(_transfer("A", ADDR_A))

    assert not result.success
    assert result.error_type is ErrorKind.TRANSIENT
    assert result.attempts == 3


async def test_confirmation_timeout_is_pending_and_not_resent(
    dispatcher: Dispatcher, eths: dict[str, DummyEth]
) -> None:
    eth = eths[URL_A]
    eth.receipt_delay = 1.0

    result = await dispatcher.execute(_transfer("A", ADDR_A, confirm_timeout=0.01))

    assert result.success
    assert result.status is TxStatus.PENDING
    assert result.error
    assert len(eth.sent) == 1


async def test_in_flight_read_keeps_its_chain_across_switch(
    dispatcher: Dispatcher, evm_handle: EVMHandle, eths: dict[str, DummyEth]
) -> None:
    eths[URL_A].balances[to_checksum(ADDR_A)] = 111
    eths[URL_B].balances[to_checksum(ADDR_A)] = 222
    gate = asyncio.Event()
    eths[URL_A].balance_gate = gate

    pending = asyncio.create_task(dispatcher.execute(_balance("A", ADDR_A)))
    await asyncio.sleep(0)
    on_b = await dispatcher.execute(_balance("B", ADDR_A))
    assert evm_handle.current_chain == "B"

    gate.set()
    on_a = await pending

    assert on_a.chain == "A" and on_a.value.chain == "A" and on_a.value.raw == 111
    assert on_b.chain == "B" and on_b.value.raw == 222


async def test_concurrent_writes_on_different_chains_are_serialised(
    dispatcher: Dispatcher, eths: dict[str, DummyEth]
) -> None:
    eths[URL_A].receipt_delay = 0.02
    eths[URL_B].receipt_delay = 0.02

    results = await asyncio.gather(
        dispatcher.execute(_transfer("A", ADDR_A)),
        dispatcher.execute(_transfer("B", ADDR_B)),
        dispatcher.execute(_transfer("A", ADDR_B)),
    )

    assert [r.chain for r in results] == ["A", "B", "A"]
    assert all(r.success for r in results)
    assert [tx["chainId"] for tx in eths[URL_A].estimated] == [1, 1]
    assert [tx["chainId"] for tx in eths[URL_B].estimated] == [2]


async def test_rpc_override_rebinds_evm_handle(
    dispatcher: Dispatcher, evm_handle: EVMHandle, eths: dict[str, DummyEth]
) -> None:
    eths["https://a-private.example"] = DummyEth(1)
    request = OperationRequest(
        chain="A",
        kind=OperationKind.NATIVE_BALANCE,
        params={"address": ADDR_A},
        rpc_url="https://a-private.example",
    )

    result = await dispatcher.execute(request)

    assert result.success
    assert evm_handle.rpc_url == "https://a-private.example"


async def test_alt_rpc_override_mismatch_is_item_failure(dispatcher: Dispatcher) -> None:
    request = OperationRequest(
        chain="ALT",
        kind=OperationKind.NATIVE_BALANCE,
        params={},
        rpc_url="https://elsewhere.example",
    )

    result = await dispatcher.execute(request)

    assert not result.success
    assert result.error_type is ErrorKind.TERMINAL


async def test_evm_only_operation_on_alt_chain(dispatcher: Dispatcher) -> None:
    request = OperationRequest(
        chain="ALT",
        kind=OperationKind.CONTRACT_READ,
        params={"contract": "x", "signature": "decimals()"},
    )

    result = await dispatcher.execute(request)

    assert not result.success
    assert result.error_type is ErrorKind.TERMINAL


async def test_missing_parameter_is_item_failure(dispatcher: Dispatcher) -> None:
    request = OperationRequest(chain="A", kind=OperationKind.TOKEN_BALANCE, params={})

    result = await dispatcher.execute(request)

    assert not result.success
    assert "token" in (result.error or "")


async def test_tx_status_request(dispatcher: Dispatcher, eths: dict[str, DummyEth]) -> None:
    eths[URL_A].receipts = {"0xabc": {"status": 1}}

    result = await dispatcher.execute(
        OperationRequest(chain="A", kind=OperationKind.TX_STATUS, params={"tx_hash": "0xabc"})
    )

    assert result.value is TxStatus.CONFIRMED
    assert result.status is TxStatus.CONFIRMED
    assert result.explorer_url == "https://a.scan/tx/0xabc"


class AcceptedButUnansweredEth(DummyEth):
    """Node that keeps the first broadcast while the client only sees a timeout."""

    async def send_raw_transaction(self, raw: bytes) -> HexBytes:
        if bytes(raw) in self.sent:
            raise ValueError({"code": -32000, "message": "already known"})
        if self.estimated[-1]["nonce"] < self.nonce:
            raise ValueError({"code": -32000, "message": "nonce too low"})
        self.sent.append(bytes(raw))
        self.nonce += 1
        if len(self.sent) == 1:
            raise asyncio.TimeoutError()
        return HexBytes(Web3.keccak(raw))


async def test_timed_out_broadcast_is_not_sent_twice(registry: ChainRegistry, fast_retry: RetryWrapper) -> None:
    eth = AcceptedButUnansweredEth(1)
    farm = Web3Farm({URL_A: eth, URL_B: DummyEth(2)})
    handle = EVMHandle(EVMClientConfig(private_key=TEST_PRIVATE_KEY, default_chain="A"), registry, web3_factory=farm)
    dispatcher = Dispatcher(registry, evm=handle, retry=fast_retry)

    result = await dispatcher.execute(_transfer("A", ADDR_A))

    assert len(eth.sent) == 1
    assert eth.nonce_calls == 1
    assert result.success
    assert result.attempts == 2
    assert result.transaction_hash == Web3.keccak(eth.sent[0]).to_0x_hex()
    assert result.status is TxStatus.CONFIRMED
    assert "already known" in result.raw_response["rebroadcast_error"]


async def test_failure_result_carries_resolved_chain_key(dispatcher: Dispatcher) -> None:
    ok = await dispatcher.execute(_balance("a", ADDR_A))
    failed = await dispatcher.execute(_transfer("a", "not-an-address"))

    assert ok.chain == "A"
    assert not failed.success
    assert failed.chain == "A"


async def test_contract_deploy_request(dispatcher: Dispatcher, eths: dict[str, DummyEth]) -> None:
    eth = eths[URL_A]
    eth.contract_address = to_checksum(ADDR_B)

    result = await dispatcher.execute(
        OperationRequest(
            chain="A",
            kind=OperationKind.CONTRACT_DEPLOY,
            params={"bytecode": "0x6080", "constructor_types": ("uint256",), "args": (7,)},
        )
    )

    assert result.success
    assert result.contract_address == to_checksum(ADDR_B)
    assert "to" not in eth.estimated[-1]
    assert eth.estimated[-1]["data"] == bytes.fromhex("6080") + abi_encode(["uint256"], [7])


async def test_contract_deploy_on_alt_chain_is_item_failure(dispatcher: Dispatcher) -> None:
    result = await dispatcher.execute(
        OperationRequest(chain="ALT", kind=OperationKind.CONTRACT_DEPLOY, params={"bytecode": "0x6080"})
    )

    assert not result.success
    assert result.error_type is ErrorKind.TERMINAL


async def test_tx_details_request(dispatcher: Dispatcher, eths: dict[str, DummyEth]) -> None:
    tx_hash = "0x" + "ab" * 32
    eths[URL_A].transactions[tx_hash] = {"hash": HexBytes(tx_hash), "nonce": 3}
    eths[URL_A].receipts[tx_hash] = {"status": 0, "blockNumber": 12}

    result = await dispatcher.execute(
        OperationRequest(chain="A", kind=OperationKind.TX_DETAILS, params={"tx_hash": tx_hash})
    )

    assert result.success
    assert result.status is TxStatus.FAILED
    assert result.value["receipt"]["blockNumber"] == 12
    assert result.explorer_url == f"https://a.scan/tx/{tx_hash}"
