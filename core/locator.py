"""
Historical locator: maps a wall-clock time to the first block at or after it.

Block production is roughly constant, so the search starts from a linear
estimate and binary-searches a fixed window around it. Local timestamp
jitter is tolerated as a known imprecision.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from core.exceptions import ConnectivityError, GatewayError, LocatorExhausted
from core.gateway import LedgerGateway, parse_quantity

logger = logging.getLogger(__name__)


class HistoricalLocator:
    """Estimate-then-binary-search block locator."""

    def __init__(self, gateway: LedgerGateway, seconds_per_block: int = 12, search_radius: int = 1000):
        """Initialize locator with the chain's average block time."""
        self.gateway = gateway
        self.seconds_per_block = seconds_per_block
        self.search_radius = search_radius

    async def _block_timestamp(self, height: int) -> Optional[int]:
        """Unix timestamp of a block, or None if the probe failed."""
        try:
            block = await self.gateway.block_by_height(height)
        except GatewayError as e:
            logger.debug(f"Probe of block {height} failed: {e}")
            return None
        if not block or block.get("timestamp") is None:
            return None
        return parse_quantity(block["timestamp"])

    async def locate_block_at_or_after(self, target_time: datetime) -> int:
        """
        Find the smallest block whose timestamp is >= target_time.

        Args:
            target_time: Wall-clock time (naive values are treated as UTC)

        Returns:
            Block height, or the linear estimate if the window holds no match
        """
        if target_time.tzinfo is None:
            target_time = target_time.replace(tzinfo=timezone.utc)
        target_ts = int(target_time.timestamp())

        current_height = await self.gateway.current_height()
        current_ts = await self._block_timestamp(current_height)
        if current_ts is None:
            raise ConnectivityError(f"Could not read latest block {current_height}")

        blocks_back = (current_ts - target_ts) // self.seconds_per_block
        estimated = max(0, current_height - blocks_back)

        try:
            return await self._search(target_ts, estimated, current_height)
        except LocatorExhausted as e:
            logger.warning(f"{e}; using estimate {estimated}")
            return estimated

    async def _search(self, target_ts: int, estimated: int, current_height: int) -> int:
        """Lower-bound binary search around the estimate."""
        low = max(0, estimated - self.search_radius)
        high = min(current_height, estimated + self.search_radius)
        best: Optional[int] = None
        probes = 0

        while low <= high:
            mid = (low + high) // 2
            block_ts = await self._block_timestamp(mid)
            probes += 1

            # Failed probes count as "too high"
            if block_ts is None or block_ts >= target_ts:
                if block_ts is not None:
                    best = mid
                high = mid - 1
            else:
                low = mid + 1

        if best is None:
            raise LocatorExhausted(
                f"No block at or after {target_ts} within {self.search_radius} blocks of {estimated}"
            )

        logger.info(f"Located block {best} for timestamp {target_ts} after {probes} probes")
        return best
