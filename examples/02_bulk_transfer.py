"""Example: send native currency to several recipients on one chain."""

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

CHAIN = os.getenv("TRANSFER_CHAIN", "BASE")
AMOUNT = Decimal("0.0001")


async def main() -> None:
    recipients = [item.strip() for item in os.getenv("RECIPIENTS", "").split(",") if item.strip()]
    if not recipients:
        raise ValueError("RECIPIENTS not found in environment variables")

    async with MultiChainClient(ClientConfig.from_env()) as client:
        results = await client.bulk_transfer_native(CHAIN, [(to, AMOUNT) for to in recipients])

    for result in results:
        if result.success:
            print(f"{result.target}: {result.status.value} {result.explorer_url}")
        else:
            print(f"{result.target}: {result.error_type.value} after {result.attempts} attempt(s): {result.error}")


if __name__ == "__main__":
    asyncio.run(main())
