"""
Message formatting utilities for Telegram transfer notifications.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from core.models import AggregateSnapshot, MovingAveragePoint, TransferAlert, TransferRecord, ensure_utc
from utils.filters import format_address


def format_token_amount(value: int, decimals: int = 18, max_fraction: int = 4) -> str:
    """
    Format a raw token amount in whole-token units.

    Uses integer arithmetic only, so amounts beyond float precision stay exact.

    Args:
        value: Raw amount in the token's smallest unit
        decimals: Token decimals
        max_fraction: Maximum fractional digits shown (truncated, not rounded)

    Returns:
        e.g. "12,000" or "1.5"
    """
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10 ** decimals)

    text = f"{sign}{whole:,}"
    if decimals and max_fraction:
        fraction_digits = str(fraction).zfill(decimals)[:max_fraction].rstrip("0")
        if fraction_digits:
            text += f".{fraction_digits}"
    return text


def format_time_difference(delta: Optional[timedelta]) -> str:
    """
    Format a duration compactly: 45s, 2m 5s, 1h 1m 5s, 1d 1h 0m.

    Returns "N/A" when there is no duration.
    """
    if delta is None:
        return "N/A"

    total_seconds = max(0, int(delta.total_seconds()))
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_gas_price_gwei(gas_price: Optional[int]) -> str:
    """Format a wei gas price as Gwei with 2 decimals."""
    if gas_price is None:
        return "N/A"
    return f"{gas_price / 1e9:.2f} Gwei"


def format_time_ago(timestamp: datetime, now: Optional[datetime] = None) -> str:
    """Relative age of a timestamp, e.g. '3h 12m ago'."""
    now = ensure_utc(now or datetime.now(timezone.utc))
    total_minutes = max(0, int((now - ensure_utc(timestamp)).total_seconds()) // 60)
    hours, minutes = divmod(total_minutes, 60)

    if hours > 0:
        return f"{hours}h {minutes}m ago"
    return f"{minutes}m ago"


def format_timestamp(timestamp: datetime) -> str:
    return ensure_utc(timestamp).strftime('%Y-%m-%d %H:%M:%S') + " UTC"


def _format_status(status: Optional[int]) -> str:
    if status is None:
        return "Unknown"
    return "✅ Success" if status == 1 else "❌ Failed"


def _format_moving_average(series: List[MovingAveragePoint]) -> List[str]:
    lines = []
    for point in series:
        if point.average_gap_hours is None:
            value = "n/a"
        else:
            value = f"{point.average_gap_hours:.1f}h"
        lines.append(f"  {point.day.isoformat()}: {value}")
    return lines


def _format_snapshot(snapshot: AggregateSnapshot, token_symbol: str, token_decimals: int) -> List[str]:
    lines = [
        "📊 Statistics",
        f"Total transfers: {snapshot.total_count:,}",
        f"Total sent: {format_token_amount(snapshot.total_amount, token_decimals)} {token_symbol}",
        f"Unique initiators: {snapshot.total_initiators:,}",
        f"Average time between transfers: {format_time_difference(snapshot.average_gap)}",
    ]

    if snapshot.top_initiators:
        lines.append("")
        lines.append("🏆 Top initiators")
        for position, initiator in enumerate(snapshot.top_initiators, start=1):
            lines.append(f"{position}. {format_address(initiator.address)} ({initiator.count} tx)")

    return lines


def format_transfer_alert(
    alert: TransferAlert,
    token_symbol: str = "TOKEN",
    token_decimals: int = 18,
    explorer_url: str = "https://etherscan.io",
    header: str = "🔔 TOKEN TRANSFER DETECTED"
) -> str:
    """
    Format one transfer and its statistics into a Telegram message.

    Example output:
    🔔 TOKEN TRANSFER DETECTED

    💰 Amount: 4,000 TOKEN
    📤 From: 0x1234...abcd
    📥 To: 0x9876...4321
    👤 Initiator: 0x1234...abcd (3 tx, rank #1 of 12)
    ⏱ Since previous: 1h 1m 5s
    ...
    """
    record = alert.record

    lines = [
        header,
        "",
        f"💰 Amount: {format_token_amount(record.amount, token_decimals)} {token_symbol}",
        f"📤 From: {format_address(record.from_address)}",
        f"📥 To: {format_address(record.to_address)}",
    ]

    if record.initiator_address:
        initiator_line = f"👤 Initiator: {format_address(record.initiator_address)}"
        if alert.initiator_stats:
            stats = alert.initiator_stats
            initiator_line += f" ({stats.count} tx, rank #{stats.rank} of {stats.total_initiators})"
        lines.append(initiator_line)

    if record.gas_used is not None:
        gas_line = f"⛽ Gas: {record.gas_used:,} @ {format_gas_price_gwei(record.gas_price)}"
    else:
        gas_line = f"⛽ Gas price: {format_gas_price_gwei(record.gas_price)}"

    lines.extend([
        f"⏱ Since previous: {format_time_difference(alert.time_since_previous)}",
        gas_line,
        f"Status: {_format_status(record.status)}",
        f"📦 Block: {record.block_height:,}",
        f"🕒 {format_timestamp(record.timestamp)}",
        "",
    ])

    lines.extend(_format_snapshot(alert.snapshot, token_symbol, token_decimals))

    lines.append("")
    lines.append(f"🔗 {explorer_url.rstrip('/')}/tx/{record.tx_id}")

    return "\n".join(lines)


def format_backfill_summary(
    alert: TransferAlert,
    found_count: int,
    since: datetime,
    token_symbol: str = "TOKEN",
    token_decimals: int = 18,
    explorer_url: str = "https://etherscan.io"
) -> str:
    """Startup message: most recent historical transfer, full statistics and the moving average."""
    header = (
        f"🤖 Bot Started - {found_count} Transfer(s) since "
        f"{ensure_utc(since).strftime('%Y-%m-%d %H:%M')} UTC\n\nMost recent:"
    )
    message = format_transfer_alert(alert, token_symbol, token_decimals, explorer_url, header=header)

    series = alert.snapshot.moving_average
    if series:
        lines = ["", "📈 7-day moving average gap (daily)"]
        lines.extend(_format_moving_average(series))
        message += "\n" + "\n".join(lines)

    return message + "\n\nBot is now monitoring for new transfers..."


def format_no_history_message(since: datetime) -> str:
    """Startup message when the backfill found nothing."""
    return (
        "🤖 Bot Started - No Historical Transfers\n\n"
        f"Bot is now monitoring. No matching transfers found since "
        f"{ensure_utc(since).strftime('%Y-%m-%d %H:%M')} UTC."
    )


def format_history_entry(
    record: TransferRecord,
    index: int,
    token_symbol: str = "TOKEN",
    token_decimals: int = 18,
    now: Optional[datetime] = None
) -> str:
    """One numbered block of the history listing."""
    return "\n".join([
        f"{index}. Transaction: {record.tx_id}",
        f"   Block: {record.block_height:,}",
        f"   Amount: {format_token_amount(record.amount, token_decimals)} {token_symbol} ({record.amount} raw)",
        f"   From: {record.from_address}",
        f"   To: {record.to_address}",
        f"   Initiator: {record.initiator_address or 'N/A'}",
        f"   Timestamp: {format_timestamp(record.timestamp)} ({format_time_ago(record.timestamp, now)})",
        f"   Gas Used: {record.gas_used if record.gas_used is not None else 'N/A'}",
        f"   Gas Price: {format_gas_price_gwei(record.gas_price)}",
    ])
