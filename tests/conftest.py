"""
Pytest fixtures for TransferTracker tests: temporary SQLite store and an in-memory chain.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest

from core.database import Database
from core.decoder import TRANSFER_EVENT_SIGNATURE, address_to_topic
from core.exceptions import ConnectivityError
from core.models import TransferFilter, TransferRecord

TOKEN = "0x" + "a" * 40
RECIPIENT = "0x" + "b" * 40
SENDER = "0x" + "c" * 40
AMOUNT = 4000 * 10 ** 18

GENESIS = datetime(2026, 1, 1, tzinfo=timezone.utc)
BLOCK_TIME = 12


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def make_log(
    tx_id: str,
    block: int,
    amount: int = AMOUNT,
    sender: str = SENDER,
    recipient: str = RECIPIENT,
    token: str = TOKEN
) -> dict:
    """Raw eth_getLogs entry for a Transfer event."""
    return {
        "address": token,
        "topics": [TRANSFER_EVENT_SIGNATURE, address_to_topic(sender), address_to_topic(recipient)],
        "data": "0x" + f"{amount:064x}",
        "blockNumber": hex(block),
        "transactionHash": tx_id,
        "logIndex": "0x0",
    }


def make_record(
    tx_id: str,
    block: int,
    timestamp: datetime,
    initiator: Optional[str] = SENDER,
    amount: int = AMOUNT
) -> TransferRecord:
    return TransferRecord(
        tx_id=tx_id,
        block_height=block,
        token_address=TOKEN,
        from_address=SENDER,
        to_address=RECIPIENT,
        initiator_address=initiator,
        amount=amount,
        timestamp=timestamp,
        gas_used=21000,
        gas_price=30 * 10 ** 9,
        status=1
    )


class FakeLedgerGateway:
    """
    In-memory chain with the LedgerGateway interface.

    Block h has timestamp GENESIS + h * block_time unless overridden.
    """

    def __init__(self, head: int = 1000, block_time: int = BLOCK_TIME):
        self.head = head
        self.block_time = block_time
        self.logs: List[dict] = []
        self.transactions: Dict[str, dict] = {}
        self.receipts: Dict[str, dict] = {}

        # Failure injection
        self.logs_failures = 0
        self.height_error = False
        self.failing_blocks: Set[int] = set()

        self.log_queries: List[tuple] = []
        self.block_probes: List[int] = []

    def timestamp_of(self, height: int) -> int:
        return int(GENESIS.timestamp()) + height * self.block_time

    def add_transfer(
        self,
        tx_id: str,
        block: int,
        amount: int = AMOUNT,
        initiator: str = SENDER,
        with_tx: bool = True
    ) -> dict:
        """Register a Transfer log plus its transaction and receipt."""
        log = make_log(tx_id, block, amount=amount)
        self.logs.append(log)
        if with_tx:
            self.transactions[tx_id] = {"hash": tx_id, "from": initiator, "gasPrice": hex(30 * 10 ** 9)}
        self.receipts[tx_id] = {"transactionHash": tx_id, "gasUsed": hex(52000), "status": "0x1"}
        return log

    async def current_height(self) -> int:
        if self.height_error:
            raise ConnectivityError("eth_blockNumber: connection refused")
        return self.head

    async def block_by_height(self, height: int) -> Optional[dict]:
        self.block_probes.append(height)
        if height in self.failing_blocks:
            raise ConnectivityError(f"eth_getBlockByNumber {height}: timeout")
        if height < 0 or height > self.head:
            return None
        return {"number": hex(height), "timestamp": hex(self.timestamp_of(height))}

    async def logs_in_range(self, contract_address, event_signature, from_height, to_height, topic_filters=None):
        self.log_queries.append((from_height, to_height))
        if self.logs_failures > 0:
            self.logs_failures -= 1
            raise ConnectivityError("eth_getLogs: timeout")
        return [
            log for log in self.logs
            if from_height <= int(log["blockNumber"], 16) <= to_height
        ]

    async def transaction_by_hash(self, tx_id: str) -> Optional[dict]:
        return self.transactions.get(tx_id)

    async def receipt_by_hash(self, tx_id: str) -> Optional[dict]:
        return self.receipts.get(tx_id)

    async def close(self):
        pass


@pytest.fixture
def transfer_filter():
    return TransferFilter(token_address=TOKEN, recipient_address=RECIPIENT, target_amount=AMOUNT)


@pytest.fixture
def gateway():
    return FakeLedgerGateway()


@pytest.fixture
async def db(tmp_path):
    """Connected database in a temporary directory."""
    database = Database(str(tmp_path / "transfers.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def at():
    """Build timestamps relative to GENESIS in hours."""
    def _at(hours: float) -> datetime:
        return GENESIS + timedelta(hours=hours)
    return _at
