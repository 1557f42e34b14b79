"""
TransferTracker Bot - Main Entry Point
Watches an EVM chain for exact-amount ERC-20 transfers to one recipient and
reports each match with running statistics.
"""
import asyncio
import logging
import sys
from typing import List, Optional

from aiogram import Bot
from pydantic import ValidationError

from config import Settings, ensure_data_directory, get_settings
from core.database import Database
from core.exceptions import GatewayError, ScanError
from core.gateway import LedgerGateway
from core.locator import HistoricalLocator
from core.models import TransferFilter, TransferRecord
from core.poller import IncrementalPoller
from core.scanner import EventScanner
from core.statistics import StatisticsEngine
from bot.notifier import Notifier
from utils.logging_config import log_system, log_transfer, setup_logging

logger = logging.getLogger(__name__)


class TransferTrackerBot:
    """Main application orchestrating backfill, polling and notifications."""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize bot components."""
        self.settings = settings or get_settings()

        self.transfer_filter = TransferFilter(
            token_address=self.settings.token_address,
            recipient_address=self.settings.recipient_address,
            target_amount=self.settings.amount
        )

        self.bot: Optional[Bot] = None
        self.db: Optional[Database] = None
        self.gateway: Optional[LedgerGateway] = None
        self.scanner: Optional[EventScanner] = None
        self.poller: Optional[IncrementalPoller] = None
        self.locator: Optional[HistoricalLocator] = None
        self.stats: Optional[StatisticsEngine] = None
        self.notifier: Optional[Notifier] = None

        self._running = False

    async def setup(self):
        """Setup all components and verify the RPC endpoint."""
        logger.info("Setting up TransferTracker Bot...")

        ensure_data_directory(self.settings)

        self.db = Database(self.settings.database_path)
        await self.db.connect()

        self.gateway = LedgerGateway(self.settings.ethereum_rpc_url, timeout=self.settings.rpc_timeout)
        self.scanner = EventScanner(self.gateway, self.transfer_filter)
        self.poller = IncrementalPoller(
            self.gateway,
            self.scanner,
            initial_lookback_blocks=self.settings.initial_lookback_blocks,
            confirmation_lag=self.settings.confirmation_lag,
            max_window_retries=self.settings.max_window_retries
        )
        self.locator = HistoricalLocator(
            self.gateway,
            seconds_per_block=self.settings.seconds_per_block,
            search_radius=self.settings.locator_search_radius
        )
        self.stats = StatisticsEngine(self.db)

        self.bot = Bot(token=self.settings.bot_token)
        self.notifier = Notifier(
            self.bot,
            self.settings.chat_id,
            token_symbol=self.settings.token_symbol,
            token_decimals=self.settings.token_decimals,
            explorer_url=self.settings.explorer_url
        )

        height = await self.gateway.current_height()
        logger.info(f"Connected to RPC, current block {height}")

        logger.info(f"Token: {self.transfer_filter.token_address}")
        logger.info(f"Recipient: {self.transfer_filter.recipient_address}")
        logger.info(f"Target amount: {self.transfer_filter.target_amount}")
        logger.info("Setup complete!")

    async def needs_backfill(self) -> bool:
        """First run means nothing is stored yet for the watched token and recipient."""
        count = await self.db.get_transfer_count(
            self.transfer_filter.token_address,
            self.transfer_filter.recipient_address
        )
        return count == 0

    async def run_backfill(self) -> int:
        """
        Scan from the configured start date up to the chain head and send a summary.

        Returns:
            Number of transfers found
        """
        since = self.settings.backfill_start
        logger.info(f"First run, scanning history since {since.isoformat()}")

        start_block = await self.locator.locate_block_at_or_after(since)
        end_block = await self.poller.safe_height()

        records: List[TransferRecord] = []
        if start_block <= end_block:
            logger.info(f"Backfilling blocks {start_block} to {end_block}")
            records = await self.scanner.scan_chunked(
                start_block,
                end_block,
                chunk_size=self.settings.max_block_range
            )

        inserted = await self.db.add_transfers(records)
        for record in records:
            log_transfer(record)
        logger.info(f"Backfill found {len(records)} transfer(s), stored {inserted}")

        try:
            if records:
                latest = max(records, key=lambda r: (r.block_height, r.timestamp))
                alert = await self.stats.build_alert(
                    latest,
                    self.transfer_filter.token_address,
                    self.transfer_filter.recipient_address,
                    include_series=True
                )
                await self.notifier.notify_backfill_summary(alert, len(records), since)
            else:
                await self.notifier.notify_no_history(since)
        except Exception as e:
            logger.error(f"Error sending backfill summary: {e}")

        return len(records)

    async def process_records(self, records: List[TransferRecord]) -> int:
        """
        Store each record and notify for the ones not seen before.

        Returns:
            Number of newly stored records
        """
        new_count = 0

        for record in records:
            if not await self.db.add_transfer(record):
                logger.info(f"Transfer {record.tx_id} already stored, skipping")
                continue

            new_count += 1
            log_transfer(record)

            alert = await self.stats.build_alert(
                record,
                self.transfer_filter.token_address,
                self.transfer_filter.recipient_address
            )

            # Delivery problems never undo the insert
            try:
                await self.notifier.notify_transfer(alert)
            except Exception as e:
                logger.error(f"Error sending notification for {record.tx_id}: {e}")

        return new_count

    async def tick(self) -> int:
        """One poll: scan the new blocks and process what was found."""
        try:
            records = await self.poller.poll_once()
        except GatewayError as e:
            logger.warning(f"RPC call failed, retrying next tick: {e}")
            return 0
        except ScanError as e:
            logger.warning(f"{e}, retrying next tick")
            return 0

        if records:
            logger.info(f"Found {len(records)} matching transfer(s)")
        return await self.process_records(records)

    async def start(self):
        """Run the backfill if needed, then poll until stopped."""
        logger.info("Starting TransferTracker Bot...")

        if await self.needs_backfill():
            await self.run_backfill()
        else:
            logger.info("Existing transfers found, skipping backfill")

        self._running = True
        log_system(f"TransferTracker Bot running, polling every {self.settings.poll_interval}s")

        try:
            while self._running:
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Unexpected error in poll loop: {e}", exc_info=True)

                await asyncio.sleep(self.settings.poll_interval)
        finally:
            await self.shutdown()

    def stop(self):
        self._running = False

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down TransferTracker Bot...")
        self._running = False

        if self.db:
            await self.db.close()

        if self.gateway:
            await self.gateway.close()

        if self.bot:
            await self.bot.session.close()

        logger.info("Shutdown complete")


async def main():
    """Main entry point."""
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(log_level=settings.log_level)
    bot = TransferTrackerBot(settings)

    try:
        await bot.setup()
    except GatewayError as e:
        logger.error(f"Failed to connect to RPC endpoint: {e}")
        await bot.shutdown()
        sys.exit(1)

    try:
        await bot.start()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")


if __name__ == "__main__":
    run()
