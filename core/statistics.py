"""
Statistics engine: rankings, inter-transfer timing and the moving-average series.

Every figure is recomputed from the record store on each call; nothing is cached.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Sequence

from core.database import Database
from core.models import (
    AggregateSnapshot,
    InitiatorCount,
    InitiatorStats,
    MovingAveragePoint,
    TransferAlert,
    TransferRecord,
    ensure_utc,
)

logger = logging.getLogger(__name__)


def mean_gap(timestamps: Sequence[datetime]) -> Optional[timedelta]:
    """
    Mean of consecutive deltas of an already ordered timestamp sequence.

    Returns:
        None when fewer than 2 timestamps are given
    """
    if len(timestamps) < 2:
        return None

    deltas = [later - earlier for earlier, later in zip(timestamps, timestamps[1:])]
    return sum(deltas, timedelta()) / len(deltas)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class StatisticsEngine:
    """Read-through aggregations over the transfer store."""

    def __init__(self, db: Database):
        """Initialize engine over a connected database."""
        self.db = db

    async def total_amount(self, token_address: Optional[str] = None, recipient_address: Optional[str] = None) -> int:
        """Exact sum of stored amounts."""
        amounts = await self.db.get_amounts(token_address, recipient_address)
        return sum(amounts)

    async def count(self, token_address: Optional[str] = None, recipient_address: Optional[str] = None) -> int:
        return await self.db.get_transfer_count(token_address, recipient_address)

    async def total_initiators(self) -> int:
        return await self.db.get_total_initiators()

    async def initiator_stats(self, initiator_address: str) -> InitiatorStats:
        """
        Count and dense rank of one initiator.

        Rank is 1 + the number of distinct per-initiator counts strictly greater
        than this initiator's count, so tied initiators share a rank. An address
        with no stored transfers has count 0 and ranks below everyone.
        """
        count = await self.db.get_initiator_count(initiator_address)
        rank = await self.db.get_initiator_rank(count)
        total = await self.db.get_total_initiators()
        return InitiatorStats(count=count, rank=rank, total_initiators=total)

    async def top_initiators(self, n: int = 3) -> List[InitiatorCount]:
        """Top n initiators by count. Callers must not rely on the order of ties."""
        return await self.db.get_top_initiators(n)

    async def previous_transfer(
        self,
        tx_id: str,
        timestamp: datetime,
        block_height: Optional[int] = None
    ) -> Optional[TransferRecord]:
        """
        Transfer that precedes the given one in (block_height, timestamp) order.

        The pivot height is block_height when given, else the stored record's own height.
        """
        if block_height is None:
            stored = await self.db.get_transfer(tx_id)
            if stored is None:
                logger.debug(f"Transfer {tx_id} not stored and no height given, no previous transfer")
                return None
            block_height = stored.block_height

        return await self.db.get_previous_transfer(tx_id, block_height, timestamp)

    async def time_since_previous(self, record: TransferRecord) -> Optional[timedelta]:
        """Gap between a record and the transfer before it, or None for the first one."""
        previous = await self.previous_transfer(record.tx_id, record.timestamp, record.block_height)
        if previous is None:
            return None
        return record.timestamp - previous.timestamp

    async def average_gap(self) -> Optional[timedelta]:
        """Mean time between consecutive transfers in block order; None with fewer than 2."""
        timestamps = await self.db.get_ordered_timestamps()
        return mean_gap(timestamps)

    async def daily_moving_average(
        self,
        max_days: int = 30,
        window_days: int = 7,
        now: Optional[datetime] = None
    ) -> List[MovingAveragePoint]:
        """
        Daily series of the trailing-window average gap, in hours.

        Days run from the first transfer's UTC day (or max_days - 1 days before
        today when history is longer) through today. For each day the records
        before the end of that day are taken; fewer than 2 gives None. Those are
        then restricted to the trailing window_days ending at the end of the day;
        fewer than 2 again gives None, otherwise the mean consecutive gap.

        Args:
            max_days: Maximum number of days in the series
            window_days: Width of the trailing window
            now: Reference time (defaults to the current UTC time)

        Returns:
            One point per day, oldest first; empty when no transfers are stored
        """
        timestamps = await self.db.get_ordered_timestamps()
        if not timestamps:
            return []

        today = ensure_utc(now or datetime.now(timezone.utc)).date()
        first_day = min(timestamps).date()
        start_day = max(first_day, today - timedelta(days=max_days - 1))
        window = timedelta(days=window_days)

        series: List[MovingAveragePoint] = []
        day = start_day
        while day <= today:
            day_end = _start_of_day(day + timedelta(days=1))
            average_hours = None

            up_to_day = [ts for ts in timestamps if ts < day_end]
            if len(up_to_day) >= 2:
                in_window = [ts for ts in up_to_day if ts >= day_end - window]
                gap = mean_gap(in_window)
                if gap is not None:
                    average_hours = gap.total_seconds() / 3600

            series.append(MovingAveragePoint(day=day, average_gap_hours=average_hours))
            day += timedelta(days=1)

        return series

    async def snapshot(
        self,
        top_n: int = 3,
        token_address: Optional[str] = None,
        recipient_address: Optional[str] = None,
        include_series: bool = True,
        now: Optional[datetime] = None
    ) -> AggregateSnapshot:
        """Fresh aggregate figures over the whole store."""
        return AggregateSnapshot(
            total_amount=await self.total_amount(token_address, recipient_address),
            total_count=await self.count(token_address, recipient_address),
            total_initiators=await self.total_initiators(),
            top_initiators=await self.top_initiators(top_n),
            average_gap=await self.average_gap(),
            moving_average=await self.daily_moving_average(now=now) if include_series else []
        )

    async def build_alert(
        self,
        record: TransferRecord,
        token_address: Optional[str] = None,
        recipient_address: Optional[str] = None,
        include_series: bool = False
    ) -> TransferAlert:
        """Gather everything the notifier renders for one stored transfer."""
        initiator_stats = None
        if record.initiator_address:
            initiator_stats = await self.initiator_stats(record.initiator_address)

        return TransferAlert(
            record=record,
            time_since_previous=await self.time_since_previous(record),
            initiator_stats=initiator_stats,
            snapshot=await self.snapshot(
                token_address=token_address,
                recipient_address=recipient_address,
                include_series=include_series
            )
        )
