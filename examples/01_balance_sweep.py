"""Example: sweep native balances for one address across every configured chain."""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from xchain_api import ClientConfig, MultiChainClient

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

SWEEP_CHAINS = ["ETHEREUM", "ARBITRUM", "BASE", "OPTIMISM", "POLYGON", "SOLANA"]


async def main() -> None:
    """Print every chain that answered; missing chains could not be determined."""

    config = ClientConfig.from_env()
    if config.evm is None and config.alt is None:
        raise ValueError("Set EVM_PRIVATE_KEY, EVM_MNEMONIC or SOLANA_PRIVATE_KEY in the environment")

    async with MultiChainClient(config) as client:
        address = os.getenv("SWEEP_ADDRESS") or client.evm_address
        entries = await client.sweep_balances(address, chains=SWEEP_CHAINS)

        for entry in entries:
            print(f"{entry.chain:<12} {entry.balance:>24} {entry.symbol}")

        missing = sorted(set(SWEEP_CHAINS) - {entry.chain for entry in entries})
        if missing:
            print(f"Could not determine: {', '.join(missing)}")


if __name__ == "__main__":
    asyncio.run(main())
