"""
Strict decoding of ERC-20 Transfer logs.

Every raw log maps to exactly one DecodedTransfer or RejectedLog; callers
never see partially decoded objects.
"""
import logging
import re

from core.exceptions import DecodeError
from core.gateway import parse_quantity
from core.models import DecodedTransfer, DecodeResult, RejectedLog, RejectReason

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_SIGNATURE = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

_TOPIC_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_HEX_RE = re.compile(r"^0x[0-9a-fA-F]+$")


def address_to_topic(address: str) -> str:
    """Left-pad an address into a 32-byte indexed topic."""
    return "0x" + "0" * 24 + address.lower()[2:]


def decode_address_topic(topic: str) -> str:
    """Extract the lowercase address from a 32-byte indexed topic."""
    if not isinstance(topic, str) or not _TOPIC_RE.match(topic):
        raise DecodeError(f"Malformed address topic: {topic!r}")
    if int(topic[2:26], 16) != 0:
        raise DecodeError(f"Address topic has non-zero padding: {topic}")
    return "0x" + topic[-40:].lower()


def decode_uint256(data: str) -> int:
    """Decode the uint256 payload of a Transfer log."""
    if not isinstance(data, str) or not _HEX_RE.match(data):
        raise DecodeError(f"Malformed log data: {data!r}")
    # ABI words are 32 bytes; the payload is exactly one word
    if len(data) - 2 != 64:
        raise DecodeError(f"Expected one 32-byte word, got {(len(data) - 2) // 2} bytes")
    return int(data, 16)


def decode_transfer_log(log: dict) -> DecodeResult:
    """
    Decode a raw eth_getLogs entry.

    Args:
        log: Raw log dict as returned by the node

    Returns:
        DecodedTransfer for a well-formed 3-topic Transfer event,
        RejectedLog (with reason) otherwise
    """
    tx_id = log.get("transactionHash")
    block_number = log.get("blockNumber")
    if not isinstance(tx_id, str) or not tx_id or block_number is None:
        return RejectedLog(reason=RejectReason.MISSING_FIELDS, detail="transactionHash/blockNumber missing")

    topics = log.get("topics") or []
    if len(topics) != 3:
        return RejectedLog(
            reason=RejectReason.TOPIC_COUNT,
            detail=f"expected 3 topics, got {len(topics)}",
            tx_id=tx_id
        )

    if not isinstance(topics[0], str) or topics[0].lower() != TRANSFER_EVENT_SIGNATURE:
        return RejectedLog(reason=RejectReason.SIGNATURE_MISMATCH, detail=str(topics[0]), tx_id=tx_id)

    try:
        from_address = decode_address_topic(topics[1])
        to_address = decode_address_topic(topics[2])
    except DecodeError as e:
        return RejectedLog(reason=RejectReason.MALFORMED_TOPIC, detail=str(e), tx_id=tx_id)

    try:
        amount = decode_uint256(log.get("data"))
    except DecodeError as e:
        return RejectedLog(reason=RejectReason.MALFORMED_DATA, detail=str(e), tx_id=tx_id)

    try:
        block_height = parse_quantity(block_number)
        log_index = parse_quantity(log.get("logIndex"))
    except ValueError as e:
        return RejectedLog(reason=RejectReason.MISSING_FIELDS, detail=str(e), tx_id=tx_id)

    return DecodedTransfer(
        tx_id=tx_id,
        block_height=block_height,
        log_index=log_index,
        token_address=(log.get("address") or "").lower(),
        from_address=from_address,
        to_address=to_address,
        amount=amount
    )
