#!/usr/bin/env python3
"""
Print the most recent stored transfers for the configured token and recipient.
"""
import asyncio
import sys

from config import get_settings
from core.database import Database
from utils.formatting import format_history_entry

HISTORY_LIMIT = 50


async def view_history(limit: int = HISTORY_LIMIT) -> int:
    """Print stored transfers, newest first. Returns the number printed."""
    settings = get_settings()
    db = Database(settings.database_path)

    await db.connect()

    try:
        transfers = await db.get_transfer_history(
            settings.token_address,
            settings.recipient_address,
            limit=limit
        )

        if not transfers:
            print("No transfers found in database.")
            return 0

        print(f"\nFound {len(transfers)} transfer(s):\n")
        print("-" * 100)

        for index, transfer in enumerate(transfers, start=1):
            print(format_history_entry(transfer, index, settings.token_symbol, settings.token_decimals))
            print("-" * 100)

        total_count = await db.get_transfer_count(settings.token_address, settings.recipient_address)
        print(f"\nTotal transfers in database: {total_count}")
        return len(transfers)

    finally:
        await db.close()


if __name__ == "__main__":
    limit = int(sys.argv[1]) if len(sys.argv) > 1 else HISTORY_LIMIT
    asyncio.run(view_history(limit))
