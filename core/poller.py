"""
Incremental poller: computes the next block window on each tick.

The cursor lives on the poller instance, so each filter gets its own poller
and windows never overlap or leave gaps.
"""
import logging
from typing import List, Optional

from core.exceptions import ScanError
from core.gateway import LedgerGateway
from core.models import ScanCursor, ScanWindow, TransferRecord
from core.scanner import EventScanner

logger = logging.getLogger(__name__)


class IncrementalPoller:
    """Single-owner scan cursor plus the tick logic that advances it."""

    def __init__(
        self,
        gateway: LedgerGateway,
        scanner: EventScanner,
        initial_lookback_blocks: int = 100,
        confirmation_lag: int = 0,
        max_window_retries: int = 5
    ):
        """Initialize poller with an unset cursor."""
        self.gateway = gateway
        self.scanner = scanner
        self.initial_lookback_blocks = initial_lookback_blocks
        self.confirmation_lag = confirmation_lag
        self.max_window_retries = max_window_retries

        self.cursor = ScanCursor()
        self.last_window: Optional[ScanWindow] = None

    async def safe_height(self) -> int:
        """Latest height minus the confirmation lag."""
        latest = await self.gateway.current_height()
        return max(0, latest - self.confirmation_lag)

    def next_window(self, current_height: int) -> Optional[ScanWindow]:
        """Window to scan for a given chain height, or None if the chain has not advanced."""
        last = self.cursor.last_scanned_height
        if last is None:
            return ScanWindow(start=max(0, current_height - self.initial_lookback_blocks), end=current_height)
        if current_height <= last:
            return None
        return ScanWindow(start=last + 1, end=current_height)

    async def poll_once(self) -> List[TransferRecord]:
        """
        Scan the blocks produced since the previous tick.

        Returns:
            Records found in the new window (possibly empty)

        Raises:
            ConnectivityError: height query failed; nothing scanned, cursor unchanged
            ScanError: window scan failed and will be retried on the next tick
        """
        current_height = await self.safe_height()
        window = self.next_window(current_height)

        if window is None:
            logger.debug(f"Chain has not advanced past block {self.cursor.last_scanned_height}")
            return []

        try:
            records = await self.scanner.scan(window.start, window.end)
        except ScanError:
            self.cursor.failed_attempts += 1
            if self.cursor.failed_attempts < self.max_window_retries:
                logger.warning(
                    f"Scan of blocks {window.start}-{window.end} failed "
                    f"({self.cursor.failed_attempts}/{self.max_window_retries}), will retry next tick"
                )
                raise

            logger.error(
                f"Giving up on blocks {window.start}-{window.end} after "
                f"{self.cursor.failed_attempts} failed attempts; backfill this range manually"
            )
            self._advance(window)
            return []

        self._advance(window)
        return records

    def _advance(self, window: ScanWindow):
        """Move the cursor to the end of a window."""
        self.cursor.last_scanned_height = window.end
        self.cursor.failed_attempts = 0
        self.last_window = window
