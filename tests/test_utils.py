"""Tests for utility functions."""

from decimal import Decimal

import pytest
from eth_abi import encode as abi_encode
from web3 import Web3

from xchain_api.constants import Erc20
from xchain_api.exceptions import TerminalOperationError
from xchain_api.utils import (
    decode_result,
    encode_call,
    from_base_units,
    function_selector,
    split_signature,
    to_base_units,
)


class TestBaseUnitConversion:
    """Test conversion between human amounts and integer base units."""

    def test_to_base_units_decimal(self):
        """Test converting a Decimal ether amount to wei."""
        assert to_base_units(Decimal("1.5"), 18) == 1_500_000_000_000_000_000

    def test_to_base_units_float(self):
        """Test that floats go through their string form."""
        assert to_base_units(0.1, 9) == 100_000_000

    def test_to_base_units_truncates(self):
        """Test that excess precision is rounded down, never up."""
        assert to_base_units("1.0000009", 6) == 1_000_000

    def test_from_base_units(self):
        """Test converting lamports back to SOL."""
        assert from_base_units(2_500_000_000, 9) == Decimal("2.5")

    def test_negative_amount_raises_error(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(TerminalOperationError):
            to_base_units(-1, 18)

    def test_garbage_amount_raises_error(self):
        """Test that unparsable amounts are rejected."""
        with pytest.raises(TerminalOperationError) as exc_info:
            to_base_units("one", 18)
        assert exc_info.value.field == "amount"

    def test_non_finite_amount_raises_error(self):
        with pytest.raises(TerminalOperationError):
            to_base_units("NaN", 18)


class TestAbiHelpers:
    """Test signature parsing and calldata encoding."""

    def test_split_nested_tuple_signature(self):
        name, types = split_signature("tryAggregate(bool,(address,bytes)[])")
        assert name == "tryAggregate"
        assert types == ["bool", "(address,bytes)[]"]

    def test_split_accepts_signature_enum(self):
        assert split_signature(Erc20.TRANSFER) == ("transfer", ["address", "uint256"])

    def test_malformed_signature(self):
        with pytest.raises(TerminalOperationError):
            split_signature("transfer")

    def test_selector_matches_erc20_transfer(self):
        assert function_selector("transfer(address,uint256)").hex() == "a9059cbb"

    def test_encode_call_appends_arguments(self):
        recipient = "0x1111111111111111111111111111111111111111"
        data = encode_call(Erc20.TRANSFER, [recipient, 5])
        assert data[:4] == bytes.fromhex("a9059cbb")
        assert data[4:] == abi_encode(["address", "uint256"], [recipient, 5])

    def test_encode_call_argument_count_mismatch(self):
        with pytest.raises(TerminalOperationError) as exc_info:
            encode_call("balanceOf(address)", [])
        assert exc_info.value.field == "args"

    def test_encode_call_bad_argument(self):
        with pytest.raises(TerminalOperationError):
            encode_call("balanceOf(address)", ["not-an-address"])

    def test_decode_single_value_is_unwrapped(self):
        assert decode_result(["uint256"], abi_encode(["uint256"], [42])) == 42

    def test_decode_multiple_values(self):
        payload = abi_encode(["uint8", "string"], [6, "USDC"])
        assert decode_result(["uint8", "string"], payload) == (6, "USDC")

    def test_decode_without_outputs(self):
        assert decode_result([], b"") is None


def test_selector_uses_keccak() -> None:
    assert function_selector("decimals()") == bytes(Web3.keccak(text="decimals()")[:4])
