"""
Event scanner: turns a block range into validated transfer records.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from core.decoder import TRANSFER_EVENT_SIGNATURE, address_to_topic, decode_transfer_log
from core.exceptions import EnrichmentError, GatewayError, ScanError
from core.gateway import LedgerGateway, parse_quantity
from core.models import DecodedTransfer, RejectedLog, TransferFilter, TransferRecord
from utils.filters import matches_transfer_filter

logger = logging.getLogger(__name__)


def _receipt_status(receipt: dict) -> Optional[int]:
    """Normalize receipt status (hex quantity or bool) to 1/0."""
    status = receipt.get("status")
    if status is None:
        return None
    if isinstance(status, bool):
        return int(status)
    return parse_quantity(status)


class EventScanner:
    """
    Scans block ranges for Transfer events matching one TransferFilter.

    Pure read: the caller decides what to persist.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        transfer_filter: TransferFilter,
        max_concurrent_lookups: int = 8
    ):
        """Initialize scanner for a gateway and filter."""
        self.gateway = gateway
        self.filter = transfer_filter
        self._lookup_semaphore = asyncio.Semaphore(max_concurrent_lookups)

    async def scan(self, start_height: int, end_height: int) -> List[TransferRecord]:
        """
        Scan an inclusive block range.

        Args:
            start_height: First block to scan
            end_height: Last block to scan (>= start_height)

        Returns:
            One TransferRecord per matching log, in the order the node returned the logs

        Raises:
            ScanError: if the logs query itself fails
        """
        if start_height > end_height:
            raise ValueError(f"Empty scan range {start_height}-{end_height}")

        logger.info(f"Scanning blocks {start_height} to {end_height} for Transfer events")

        try:
            logs = await self.gateway.logs_in_range(
                self.filter.token_address,
                TRANSFER_EVENT_SIGNATURE,
                start_height,
                end_height,
                [TRANSFER_EVENT_SIGNATURE, None, address_to_topic(self.filter.recipient_address)]
            )
        except GatewayError as e:
            raise ScanError(start_height, end_height, str(e)) from e

        candidates: List[DecodedTransfer] = []
        for log in logs:
            result = decode_transfer_log(log)
            if isinstance(result, RejectedLog):
                logger.debug(f"Skipping log ({result.reason.value}): {result.detail}")
                continue
            if matches_transfer_filter(result, self.filter):
                candidates.append(result)

        if not candidates:
            logger.debug(f"No matching transfers in blocks {start_height}-{end_height} ({len(logs)} logs)")
            return []

        logger.info(f"{len(candidates)} candidate transfer(s) of {len(logs)} log(s), fetching details")

        # gather preserves argument order, so output order follows log order
        enriched = await asyncio.gather(*(self._enrich_safely(c) for c in candidates))
        return [record for record in enriched if record is not None]

    async def scan_chunked(
        self,
        start_height: int,
        end_height: int,
        chunk_size: int = 5000,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ) -> List[TransferRecord]:
        """
        Scan a long range in chunk_size windows, retrying each failed chunk.

        Raises:
            ScanError: if a chunk still fails after max_retries retries
        """
        records: List[TransferRecord] = []
        chunk_start = start_height

        while chunk_start <= end_height:
            chunk_end = min(chunk_start + chunk_size - 1, end_height)
            delay = retry_delay
            attempt = 0

            while True:
                try:
                    records.extend(await self.scan(chunk_start, chunk_end))
                    break
                except ScanError as e:
                    attempt += 1
                    if attempt > max_retries:
                        raise
                    logger.warning(f"{e} (attempt {attempt}/{max_retries}), retrying in {delay:.0f}s")
                    await asyncio.sleep(delay)
                    delay *= 2

            chunk_start = chunk_end + 1

        return records

    async def _enrich_safely(self, candidate: DecodedTransfer) -> Optional[TransferRecord]:
        """Enrich one candidate; failures drop only this candidate."""
        async with self._lookup_semaphore:
            try:
                return await self._enrich(candidate)
            except (EnrichmentError, GatewayError, ValueError) as e:
                logger.warning(f"Error fetching details for tx {candidate.tx_id}: {e}")
                return None

    async def _enrich(self, candidate: DecodedTransfer) -> TransferRecord:
        """Fetch transaction, receipt and block for a candidate and build the record."""
        tx, receipt, block = await asyncio.gather(
            self.gateway.transaction_by_hash(candidate.tx_id),
            self.gateway.receipt_by_hash(candidate.tx_id),
            self.gateway.block_by_height(candidate.block_height)
        )

        if not tx:
            raise EnrichmentError("transaction not found")
        if not receipt:
            raise EnrichmentError("receipt not found")
        if not block or block.get("timestamp") is None:
            raise EnrichmentError(f"block {candidate.block_height} not found")

        gas_price = tx.get("gasPrice") or receipt.get("effectiveGasPrice")

        return TransferRecord(
            tx_id=candidate.tx_id,
            block_height=candidate.block_height,
            token_address=candidate.token_address or self.filter.token_address,
            from_address=candidate.from_address,
            to_address=candidate.to_address,
            initiator_address=tx.get("from"),
            amount=candidate.amount,
            timestamp=datetime.fromtimestamp(parse_quantity(block["timestamp"]), tz=timezone.utc),
            gas_used=parse_quantity(receipt.get("gasUsed")),
            gas_price=parse_quantity(gas_price),
            status=_receipt_status(receipt)
        )
