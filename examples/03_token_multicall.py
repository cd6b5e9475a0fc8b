"""Example: read ERC-20 metadata and balances in one Multicall3 round trip."""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from xchain_api import ClientConfig, MulticallCall, MultiChainClient

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# USDC and WETH on Ethereum mainnet
TOKENS = [
    "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
]


async def main() -> None:
    async with MultiChainClient(ClientConfig.from_env()) as client:
        holder = os.getenv("HOLDER_ADDRESS") or client.evm_address
        if not holder:
            raise ValueError("HOLDER_ADDRESS not found in environment variables")

        calls = []
        for token in TOKENS:
            calls.append(MulticallCall(token, "symbol()", (), ("string",)))
            calls.append(MulticallCall(token, "decimals()", (), ("uint8",)))
            calls.append(MulticallCall(token, "balanceOf(address)", (holder,), ("uint256",)))

        results = await client.try_multicall("ETHEREUM", calls)

    for result in results:
        shown = result.value if result.success else f"{result.error_type.value}: {result.error}"
        print(f"[{result.index}] {result.target} {result.signature} -> {shown}")


if __name__ == "__main__":
    asyncio.run(main())
