"""Constants and contract mappings for the multi-chain unified API."""

from enum import Enum

# Multicall3 is deployed at the same address on every chain that has it
# https://www.multicall3.com/deployments
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

MULTICALL_CHAIN_IDS = frozenset({1, 10, 56, 100, 137, 250, 324, 1101, 8453, 42161, 43114})


class ContractRole(str, Enum):
    """Per-chain contracts derived whenever the EVM handle switches chain."""

    MULTICALL = "multicall"


class Erc20(str, Enum):
    """ERC-20 function signatures used by the EVM handle."""

    BALANCE_OF = "balanceOf(address)"
    DECIMALS = "decimals()"
    SYMBOL = "symbol()"
    NAME = "name()"
    TOTAL_SUPPLY = "totalSupply()"
    ALLOWANCE = "allowance(address,address)"
    TRANSFER = "transfer(address,uint256)"
    APPROVE = "approve(address,uint256)"


class Aggregator(str, Enum):
    """Multicall aggregator entry points."""

    AGGREGATE = "aggregate((address,bytes)[])"
    TRY_AGGREGATE = "tryAggregate(bool,(address,bytes)[])"


AGGREGATE_OUTPUT_TYPES = ("uint256", "bytes[]")
TRY_AGGREGATE_OUTPUT_TYPES = ("(bool,bytes)[]",)

GAS_LIMIT_MULTIPLIER_NUM = 12
GAS_LIMIT_MULTIPLIER_DEN = 10

MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"

KNOWN_SPL_MINTS = {
    "So11111111111111111111111111111111111111112": "SOL",
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": "USDC",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": "USDT",
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": "BONK",
    "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm": "WIF",
    "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN": "JUP",
}

SOLANA_CLUSTERS = {
    "mainnet": "mainnet-beta",
    "devnet": "devnet",
    "testnet": "testnet",
}
