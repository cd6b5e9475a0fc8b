"""Example: transfer SOL with a memo and check its status."""

from __future__ import annotations

import asyncio
import logging
import os
from decimal import Decimal

from dotenv import load_dotenv

from xchain_api import ClientConfig, MultiChainClient

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

AMOUNT = Decimal("0.001")


async def main() -> None:
    recipient = os.getenv("SOLANA_RECIPIENT")
    if not recipient:
        raise ValueError("SOLANA_RECIPIENT not found in environment variables")

    config = ClientConfig.from_env()
    if config.alt is None:
        raise ValueError("SOLANA_PRIVATE_KEY not found in environment variables")

    async with MultiChainClient(config) as client:
        chain = config.alt.chain
        balance = await client.get_balance(chain)
        print(f"Sender balance: {balance.value.balance} SOL")

        result = await client.transfer_native(chain, recipient, AMOUNT, memo="xchain-api example")
        if not result.success:
            print(f"Transfer failed: {result.error}")
            return
        print(f"Signature: {result.transaction_hash} ({result.status.value})")
        print(f"Explorer: {result.explorer_url}")

        status = await client.transaction_status(chain, result.transaction_hash)
        print(f"Status now: {status.value.value}")


if __name__ == "__main__":
    asyncio.run(main())
