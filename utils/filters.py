"""
Filtering utilities for decoded transfer events.
Determines whether a decoded log is a transfer the engine should record.
"""
import logging

from core.models import DecodedTransfer, TransferFilter

logger = logging.getLogger(__name__)


def matches_transfer_filter(transfer: DecodedTransfer, transfer_filter: TransferFilter) -> bool:
    """
    Check if a decoded transfer matches the configured token, recipient and amount.

    Args:
        transfer: The decoded Transfer event
        transfer_filter: Token/recipient/amount the engine watches

    Returns:
        True if the transfer should be recorded, False otherwise
    """
    # Server-side topic filtering is best effort, so re-check token and recipient
    if transfer.token_address and transfer.token_address != transfer_filter.token_address:
        return False

    if transfer.to_address != transfer_filter.recipient_address:
        return False

    # Exact match on raw units, no tolerance
    if transfer.amount != transfer_filter.target_amount:
        logger.debug(
            f"Amount mismatch for {transfer.tx_id[:10]}...: "
            f"{transfer.amount} != {transfer_filter.target_amount}"
        )
        return False

    return True


def format_address(address: str, length: int = 6) -> str:
    """
    Format blockchain address for display (0x1234...abcd).

    Args:
        address: Full blockchain address
        length: Number of characters to show on each side

    Returns:
        Formatted address string
    """
    if not address or len(address) <= length * 2:
        return address

    return f"{address[:length]}...{address[-length:]}"
