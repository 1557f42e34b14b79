"""
Pydantic models for TransferTracker Bot data structures.
"""
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def ensure_utc(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TransferRecord(BaseModel):
    """One confirmed transfer matching the configured filter."""
    model_config = ConfigDict(frozen=True)

    tx_id: str
    block_height: int
    token_address: str
    from_address: str
    to_address: str
    initiator_address: Optional[str] = None  # tx.from, may differ from from_address

    amount: int  # raw token units, arbitrary precision
    timestamp: datetime

    # Display-only metadata
    gas_used: Optional[int] = None
    gas_price: Optional[int] = None  # wei
    status: Optional[int] = None  # 1 = success, 0 = reverted

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("token_address", "from_address", "to_address", "initiator_address")
    @classmethod
    def _lowercase_address(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value


class TransferFilter(BaseModel):
    """The single token/recipient/amount combination an engine instance watches."""
    model_config = ConfigDict(frozen=True)

    token_address: str
    recipient_address: str
    target_amount: int = Field(ge=0)

    @field_validator("token_address", "recipient_address")
    @classmethod
    def _lowercase_address(cls, value: str) -> str:
        return value.lower()


class RejectReason(str, Enum):
    """Why a raw log was not decoded into a transfer."""
    MISSING_FIELDS = "missing_fields"
    TOPIC_COUNT = "topic_count"
    SIGNATURE_MISMATCH = "signature_mismatch"
    MALFORMED_TOPIC = "malformed_topic"
    MALFORMED_DATA = "malformed_data"


class DecodedTransfer(BaseModel):
    """A well-formed Transfer(address,address,uint256) log."""
    model_config = ConfigDict(frozen=True)

    tx_id: str
    block_height: int
    log_index: Optional[int] = None
    token_address: str
    from_address: str
    to_address: str
    amount: int


class RejectedLog(BaseModel):
    """A raw log that is not a decodable Transfer event."""
    model_config = ConfigDict(frozen=True)

    reason: RejectReason
    detail: str = ""
    tx_id: Optional[str] = None


DecodeResult = Union[DecodedTransfer, RejectedLog]


class ScanWindow(BaseModel):
    """Inclusive block range handed to the scanner."""
    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1


class ScanCursor(BaseModel):
    """Process-local poller position. Unset only before the first poll."""
    last_scanned_height: Optional[int] = None
    failed_attempts: int = 0  # consecutive failures of the pending window


class InitiatorCount(BaseModel):
    """Number of matched transfers submitted by one address."""
    address: str
    count: int


class InitiatorStats(BaseModel):
    """Count and dense rank of one initiator."""
    count: int
    rank: int
    total_initiators: int


class MovingAveragePoint(BaseModel):
    """One day of the trailing-window average gap series."""
    day: date
    average_gap_hours: Optional[float] = None  # None = unavailable


class AggregateSnapshot(BaseModel):
    """Statistics recomputed from the full record set."""
    total_amount: int = 0
    total_count: int = 0
    total_initiators: int = 0
    top_initiators: List[InitiatorCount] = Field(default_factory=list)
    average_gap: Optional[timedelta] = None
    moving_average: List[MovingAveragePoint] = Field(default_factory=list)


class TransferAlert(BaseModel):
    """Everything the notifier needs to render one transfer."""
    record: TransferRecord
    time_since_previous: Optional[timedelta] = None
    initiator_stats: Optional[InitiatorStats] = None
    snapshot: AggregateSnapshot = Field(default_factory=AggregateSnapshot)
