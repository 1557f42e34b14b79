"""
Database layer using aiosqlite for TransferTracker Bot.
Append-only store of matched transfers with versioned schema migrations.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import aiosqlite

from core.models import InitiatorCount, TransferRecord, ensure_utc

logger = logging.getLogger(__name__)


# Forward-only migrations: (version, description, statements).
# Each version is applied exactly once and recorded in schema_migrations.
MIGRATIONS: List[Tuple[int, str, List[str]]] = [
    (1, "create transfer_records", [
        """
        CREATE TABLE IF NOT EXISTS transfer_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tx_id TEXT UNIQUE NOT NULL,
            block_height INTEGER NOT NULL,
            token_address TEXT NOT NULL,
            from_address TEXT NOT NULL,
            to_address TEXT NOT NULL,
            initiator_address TEXT,
            amount TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            gas_used INTEGER,
            gas_price TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_tx_id ON transfer_records(tx_id)",
        "CREATE INDEX IF NOT EXISTS idx_block_height ON transfer_records(block_height)",
        "CREATE INDEX IF NOT EXISTS idx_token_address ON transfer_records(token_address)",
        "CREATE INDEX IF NOT EXISTS idx_to_address ON transfer_records(to_address)",
        "CREATE INDEX IF NOT EXISTS idx_initiator_address ON transfer_records(initiator_address)",
    ]),
    (2, "add transaction status", [
        "ALTER TABLE transfer_records ADD COLUMN status INTEGER",
    ]),
]


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC text with fixed millisecond precision (sorts lexicographically)."""
    return ensure_utc(value).isoformat(timespec="milliseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def _filter_clause(token_address: Optional[str], recipient_address: Optional[str]) -> Tuple[str, list]:
    """Build an optional WHERE clause for token/recipient filtering."""
    conditions = []
    params = []

    if token_address:
        conditions.append("token_address = ?")
        params.append(token_address.lower())

    if recipient_address:
        conditions.append("to_address = ?")
        params.append(recipient_address.lower())

    if conditions:
        return " WHERE " + " AND ".join(conditions), params
    return "", params


class Database:
    """Async transfer store using SQLite."""

    def __init__(self, db_path: str):
        """Initialize database with path."""
        self.db_path = db_path
        self.conn: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Connect to the database and apply pending migrations."""
        self.conn = await aiosqlite.connect(self.db_path)
        self.conn.row_factory = aiosqlite.Row
        await self._migrate()
        logger.info(f"Database connected: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
            logger.info("Database connection closed")

    async def _migrate(self):
        """Create the version table and apply migrations newer than the recorded version."""
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """)
        await self.conn.commit()

        current = await self.get_schema_version()

        for version, description, statements in MIGRATIONS:
            if version <= current:
                continue

            logger.info(f"Migrating database to version {version}: {description}")
            try:
                for statement in statements:
                    await self.conn.execute(statement)
                await self.conn.execute("""
                    INSERT INTO schema_migrations (version, description, applied_at)
                    VALUES (?, ?, ?)
                """, (version, description, datetime.now(timezone.utc).isoformat()))
                await self.conn.commit()
            except Exception:
                await self.conn.rollback()
                logger.error(f"Migration {version} failed", exc_info=True)
                raise

    async def get_schema_version(self) -> int:
        """Highest applied migration version (0 for a fresh database)."""
        cursor = await self.conn.execute("SELECT MAX(version) AS version FROM schema_migrations")
        row = await cursor.fetchone()
        return row['version'] or 0

    @staticmethod
    def _row_to_record(row) -> TransferRecord:
        return TransferRecord(
            tx_id=row['tx_id'],
            block_height=row['block_height'],
            token_address=row['token_address'],
            from_address=row['from_address'],
            to_address=row['to_address'],
            initiator_address=row['initiator_address'],
            amount=int(row['amount']),
            timestamp=parse_timestamp(row['timestamp']),
            gas_used=row['gas_used'],
            gas_price=int(row['gas_price']) if row['gas_price'] else None,
            status=row['status']
        )

    # Writes
    async def transfer_exists(self, tx_id: str) -> bool:
        """Check whether a transaction is already stored."""
        cursor = await self.conn.execute("""
            SELECT 1 FROM transfer_records WHERE tx_id = ?
        """, (tx_id,))
        return await cursor.fetchone() is not None

    async def add_transfer(self, record: TransferRecord) -> bool:
        """
        Insert a transfer unless its tx_id is already stored.

        Returns:
            True if a row was inserted, False for a duplicate
        """
        cursor = await self.conn.execute("""
            INSERT OR IGNORE INTO transfer_records (
                tx_id, block_height, token_address, from_address, to_address,
                initiator_address, amount, timestamp, gas_used, gas_price, status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.tx_id,
            record.block_height,
            record.token_address,
            record.from_address,
            record.to_address,
            record.initiator_address,
            str(record.amount),
            format_timestamp(record.timestamp),
            record.gas_used,
            str(record.gas_price) if record.gas_price is not None else None,
            record.status
        ))
        await self.conn.commit()

        inserted = cursor.rowcount > 0
        if not inserted:
            logger.debug(f"Transfer {record.tx_id} already stored, skipping")
        return inserted

    async def add_transfers(self, records: Iterable[TransferRecord]) -> int:
        """Insert many transfers; duplicates are skipped. Returns the number inserted."""
        inserted = 0
        for record in records:
            if await self.add_transfer(record):
                inserted += 1
        return inserted

    # Reads
    async def get_transfer(self, tx_id: str) -> Optional[TransferRecord]:
        """Get a stored transfer by transaction id."""
        cursor = await self.conn.execute("""
            SELECT * FROM transfer_records WHERE tx_id = ?
        """, (tx_id,))
        row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def get_transfer_history(
        self,
        token_address: Optional[str] = None,
        recipient_address: Optional[str] = None,
        limit: int = 10
    ) -> List[TransferRecord]:
        """Most recent transfers first."""
        where, params = _filter_clause(token_address, recipient_address)
        cursor = await self.conn.execute(
            f"SELECT * FROM transfer_records{where} ORDER BY block_height DESC, timestamp DESC LIMIT ?",
            (*params, limit)
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def get_transfer_count(
        self,
        token_address: Optional[str] = None,
        recipient_address: Optional[str] = None
    ) -> int:
        """Number of stored transfers, optionally filtered."""
        where, params = _filter_clause(token_address, recipient_address)
        cursor = await self.conn.execute(f"SELECT COUNT(*) AS count FROM transfer_records{where}", params)
        return (await cursor.fetchone())['count']

    async def get_amounts(
        self,
        token_address: Optional[str] = None,
        recipient_address: Optional[str] = None
    ) -> List[int]:
        """All stored amounts as Python ints."""
        # Summing in SQL would go through a 64-bit integer or a float
        where, params = _filter_clause(token_address, recipient_address)
        cursor = await self.conn.execute(f"SELECT amount FROM transfer_records{where}", params)
        rows = await cursor.fetchall()
        return [int(row['amount']) for row in rows]

    async def get_initiator_counts(self) -> Dict[str, int]:
        """Transfer count per non-null initiator."""
        cursor = await self.conn.execute("""
            SELECT initiator_address, COUNT(*) AS tx_count
            FROM transfer_records
            WHERE initiator_address IS NOT NULL
            GROUP BY initiator_address
        """)
        rows = await cursor.fetchall()
        return {row['initiator_address']: row['tx_count'] for row in rows}

    async def get_initiator_count(self, initiator_address: str) -> int:
        """Number of transfers submitted by one initiator."""
        cursor = await self.conn.execute("""
            SELECT COUNT(*) AS count FROM transfer_records WHERE initiator_address = ?
        """, (initiator_address.lower(),))
        return (await cursor.fetchone())['count']

    async def get_total_initiators(self) -> int:
        """Number of distinct non-null initiators."""
        cursor = await self.conn.execute("""
            SELECT COUNT(DISTINCT initiator_address) AS total
            FROM transfer_records
            WHERE initiator_address IS NOT NULL
        """)
        return (await cursor.fetchone())['total']

    async def get_initiator_rank(self, tx_count: int) -> int:
        """Dense rank of a transfer count: 1 + distinct initiator counts strictly greater."""
        cursor = await self.conn.execute("""
            WITH initiator_counts AS (
                SELECT initiator_address, COUNT(*) AS tx_count
                FROM transfer_records
                WHERE initiator_address IS NOT NULL
                GROUP BY initiator_address
            )
            SELECT COUNT(DISTINCT tx_count) + 1 AS initiator_rank
            FROM initiator_counts
            WHERE tx_count > ?
        """, (tx_count,))
        return (await cursor.fetchone())['initiator_rank']

    async def get_top_initiators(self, limit: int = 3) -> List[InitiatorCount]:
        """Initiators by transfer count, highest first. Order among equal counts is unspecified."""
        cursor = await self.conn.execute("""
            SELECT initiator_address, COUNT(*) AS tx_count
            FROM transfer_records
            WHERE initiator_address IS NOT NULL
            GROUP BY initiator_address
            ORDER BY tx_count DESC
            LIMIT ?
        """, (limit,))
        rows = await cursor.fetchall()
        return [InitiatorCount(address=row['initiator_address'], count=row['tx_count']) for row in rows]

    async def get_previous_transfer(
        self,
        tx_id: str,
        block_height: int,
        timestamp: datetime
    ) -> Optional[TransferRecord]:
        """Transfer immediately before (block_height, timestamp), excluding tx_id itself."""
        cursor = await self.conn.execute("""
            SELECT *
            FROM transfer_records
            WHERE tx_id != ?
              AND (block_height < ?
                   OR (block_height = ? AND timestamp < ?))
            ORDER BY block_height DESC, timestamp DESC
            LIMIT 1
        """, (tx_id, block_height, block_height, format_timestamp(timestamp)))
        row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def get_ordered_timestamps(self) -> List[datetime]:
        """All transfer timestamps in block order."""
        cursor = await self.conn.execute("""
            SELECT timestamp FROM transfer_records ORDER BY block_height ASC, timestamp ASC
        """)
        rows = await cursor.fetchall()
        return [parse_timestamp(row['timestamp']) for row in rows]
