"""
Tests for rankings, gap statistics and the moving-average series.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from core.statistics import StatisticsEngine, mean_gap
from tests.conftest import RECIPIENT, TOKEN, make_record, tx_hash

A = "0x" + "1" * 40
B = "0x" + "2" * 40
C = "0x" + "3" * 40


@pytest.fixture
def stats(db):
    return StatisticsEngine(db)


async def add_initiators(db, at, counts):
    """Store transfers so that each initiator has the given count."""
    n = 0
    for address, count in counts.items():
        for _ in range(count):
            n += 1
            await db.add_transfer(make_record(tx_hash(n), n, at(n), initiator=address))


class TestRanking:

    @pytest.mark.asyncio
    async def test_distinct_counts(self, db, stats, at):
        await add_initiators(db, at, {A: 3, B: 2, C: 1})

        assert (await stats.initiator_stats(A)).rank == 1
        assert (await stats.initiator_stats(B)).rank == 2
        c_stats = await stats.initiator_stats(C)
        assert c_stats.rank == 3
        assert c_stats.count == 1
        assert c_stats.total_initiators == 3

    @pytest.mark.asyncio
    async def test_ties_share_rank(self, db, stats, at):
        await add_initiators(db, at, {A: 2, B: 2, C: 1})

        assert (await stats.initiator_stats(A)).rank == 1
        assert (await stats.initiator_stats(B)).rank == 1
        assert (await stats.initiator_stats(C)).rank == 2

    @pytest.mark.asyncio
    async def test_unknown_initiator_ranks_last(self, db, stats, at):
        await add_initiators(db, at, {A: 2, B: 1})

        unknown = await stats.initiator_stats("0x" + "9" * 40)

        assert unknown.count == 0
        assert unknown.rank == 3

    @pytest.mark.asyncio
    async def test_null_initiators_excluded(self, db, stats, at):
        await add_initiators(db, at, {A: 1})
        await db.add_transfer(make_record(tx_hash(100), 100, at(100), initiator=None))

        assert await stats.total_initiators() == 1
        assert await stats.count() == 2

    @pytest.mark.asyncio
    async def test_top_initiators(self, db, stats, at):
        await add_initiators(db, at, {C: 1, A: 3, B: 2})

        top = await stats.top_initiators(2)

        assert [(t.address, t.count) for t in top] == [(A, 3), (B, 2)]

    @pytest.mark.asyncio
    async def test_top_initiators_with_ties(self, db, stats, at):
        await add_initiators(db, at, {A: 2, B: 2, C: 1})

        top = await stats.top_initiators(3)

        # Tie order is unspecified
        assert {t.address for t in top[:2]} == {A, B}
        assert top[2].address == C


class TestTotals:

    @pytest.mark.asyncio
    async def test_sum_beyond_int64(self, db, stats, at):
        amount = 4000 * 10 ** 18
        for n in range(1, 4):
            await db.add_transfer(make_record(tx_hash(n), n, at(n), amount=amount))

        assert await stats.total_amount() == 12000 * 10 ** 18
        assert await stats.total_amount(TOKEN, RECIPIENT) == 12000 * 10 ** 18

    @pytest.mark.asyncio
    async def test_empty_store(self, stats):
        assert await stats.total_amount() == 0
        assert await stats.count() == 0


class TestGaps:

    @pytest.mark.asyncio
    async def test_average_gap(self, db, stats, at):
        for n, hours in enumerate([0, 24, 72], start=1):
            await db.add_transfer(make_record(tx_hash(n), n * 100, at(hours)))

        gap = await stats.average_gap()

        assert gap == timedelta(hours=36)
        assert gap.total_seconds() * 1000 == 129600000

    @pytest.mark.asyncio
    async def test_average_gap_uses_block_order(self, db, stats, at):
        # Inserted out of order
        await db.add_transfer(make_record(tx_hash(3), 300, at(72)))
        await db.add_transfer(make_record(tx_hash(1), 100, at(0)))
        await db.add_transfer(make_record(tx_hash(2), 200, at(24)))

        assert await stats.average_gap() == timedelta(hours=36)

    @pytest.mark.asyncio
    async def test_fewer_than_two_records(self, db, stats, at):
        assert await stats.average_gap() is None

        await db.add_transfer(make_record(tx_hash(1), 1, at(0)))

        assert await stats.average_gap() is None
        series = await stats.daily_moving_average(now=at(1))
        assert [p.average_gap_hours for p in series] == [None]

    def test_mean_gap_helper(self, at):
        assert mean_gap([]) is None
        assert mean_gap([at(0), at(3), at(9)]) == timedelta(hours=4, minutes=30)

    @pytest.mark.asyncio
    async def test_time_since_previous(self, db, stats, at):
        first = make_record(tx_hash(1), 10, at(0))
        second = make_record(tx_hash(2), 20, at(1) + timedelta(minutes=1, seconds=5))
        await db.add_transfers([first, second])

        assert await stats.time_since_previous(first) is None
        assert await stats.time_since_previous(second) == timedelta(hours=1, minutes=1, seconds=5)

    @pytest.mark.asyncio
    async def test_previous_transfer_uses_stored_height(self, db, stats, at):
        await db.add_transfer(make_record(tx_hash(1), 10, at(3)))
        await db.add_transfer(make_record(tx_hash(2), 20, at(1)))

        previous = await stats.previous_transfer(tx_hash(2), at(1))

        assert previous.tx_id == tx_hash(1)

    @pytest.mark.asyncio
    async def test_previous_transfer_of_unknown_tx(self, stats, at):
        assert await stats.previous_transfer(tx_hash(9), at(0)) is None


class TestMovingAverage:

    @pytest.mark.asyncio
    async def test_series(self, db, stats):
        jan1 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await db.add_transfers([
            make_record(tx_hash(1), 1, jan1),
            make_record(tx_hash(2), 2, jan1 + timedelta(hours=12)),
            make_record(tx_hash(3), 3, jan1 + timedelta(days=2, hours=12)),
        ])

        series = await stats.daily_moving_average(now=jan1 + timedelta(days=2, hours=18))

        assert [p.day for p in series] == [date(2026, 1, 1), date(2026, 1, 2), date(2026, 1, 3)]
        assert [p.average_gap_hours for p in series] == [12.0, 12.0, 30.0]

    @pytest.mark.asyncio
    async def test_trailing_window_leaves_gaps(self, db, stats):
        jan1 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await db.add_transfers([
            make_record(tx_hash(1), 1, jan1),
            make_record(tx_hash(2), 2, jan1 + timedelta(hours=12)),
            make_record(tx_hash(3), 3, jan1 + timedelta(days=2, hours=12)),
        ])

        series = await stats.daily_moving_average(window_days=1, now=jan1 + timedelta(days=2))

        assert [p.average_gap_hours for p in series] == [12.0, None, None]

    @pytest.mark.asyncio
    async def test_first_day_unavailable(self, db, stats):
        jan1 = datetime(2026, 1, 1, 20, tzinfo=timezone.utc)
        await db.add_transfers([
            make_record(tx_hash(1), 1, jan1),
            make_record(tx_hash(2), 2, jan1 + timedelta(days=1)),
        ])

        series = await stats.daily_moving_average(now=jan1 + timedelta(days=1))

        assert [p.average_gap_hours for p in series] == [None, 24.0]

    @pytest.mark.asyncio
    async def test_long_history_capped(self, db, stats):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await db.add_transfers([
            make_record(tx_hash(n), n, start + timedelta(days=n)) for n in range(40)
        ])
        now = start + timedelta(days=39, hours=1)

        series = await stats.daily_moving_average(max_days=30, now=now)

        assert len(series) == 30
        assert series[0].day == now.date() - timedelta(days=29)
        assert series[-1].day == now.date()
        assert all(p.average_gap_hours == 24.0 for p in series)

    @pytest.mark.asyncio
    async def test_empty_store(self, stats):
        assert await stats.daily_moving_average() == []


class TestSnapshot:

    @pytest.mark.asyncio
    async def test_snapshot(self, db, stats, at):
        await add_initiators(db, at, {A: 2, B: 1})

        snapshot = await stats.snapshot(top_n=1, token_address=TOKEN, recipient_address=RECIPIENT, now=at(4))

        assert snapshot.total_count == 3
        assert snapshot.total_amount == 3 * 4000 * 10 ** 18
        assert snapshot.total_initiators == 2
        assert [t.address for t in snapshot.top_initiators] == [A]
        assert snapshot.average_gap == timedelta(hours=1)
        assert snapshot.moving_average

    @pytest.mark.asyncio
    async def test_snapshot_without_series(self, db, stats, at):
        await add_initiators(db, at, {A: 2})

        snapshot = await stats.snapshot(include_series=False)

        assert snapshot.moving_average == []

    @pytest.mark.asyncio
    async def test_build_alert(self, db, stats, at):
        await add_initiators(db, at, {A: 2, B: 1})
        record = await db.get_transfer(tx_hash(3))

        alert = await stats.build_alert(record, TOKEN, RECIPIENT)

        assert alert.record == record
        assert alert.time_since_previous == timedelta(hours=1)
        assert alert.initiator_stats.rank == 2
        assert alert.snapshot.total_count == 3

    @pytest.mark.asyncio
    async def test_build_alert_without_initiator(self, db, stats, at):
        record = make_record(tx_hash(1), 1, at(0), initiator=None)
        await db.add_transfer(record)

        alert = await stats.build_alert(record)

        assert alert.initiator_stats is None
        assert alert.time_since_previous is None
