"""
Exception hierarchy for TransferTracker Bot.

Gateway errors are transient and retried on the next poll tick.
Decode and enrichment errors only ever drop a single candidate log.
"""


class TrackerError(Exception):
    """Base class for all tracker errors."""


class GatewayError(TrackerError):
    """A ledger RPC call failed."""


class ConnectivityError(GatewayError):
    """RPC endpoint unreachable, timed out or returned a non-200 response."""


class RpcResponseError(GatewayError):
    """RPC endpoint answered with a JSON-RPC error object."""

    def __init__(self, method: str, code, message: str):
        self.method = method
        self.code = code
        super().__init__(f"{method} failed ({code}): {message}")


class ScanError(TrackerError):
    """Logs query for a block window failed; the window was not scanned."""

    def __init__(self, start_height: int, end_height: int, reason: str = ""):
        self.start_height = start_height
        self.end_height = end_height
        message = f"Scan of blocks {start_height}-{end_height} failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DecodeError(TrackerError):
    """A log topic or payload could not be decoded."""


class EnrichmentError(TrackerError):
    """Transaction, receipt or block lookup for a matched log came back empty."""


class LocatorExhausted(TrackerError):
    """No block in the search window satisfies the target timestamp."""
