"""
Logging configuration for TransferTracker Bot.

Features:
- Separate log file for matched transfers
- Rotating file handlers (max 50MB per file, keep 5 backups)
- Automatic cleanup of old logs (keeps last 7 days)
- Console output for real-time monitoring
"""
import glob
import logging
import logging.handlers
from datetime import datetime, timedelta
from pathlib import Path

from core.models import TransferRecord


# Log directory structure
LOG_DIR = Path("logs")

# Separate log files for different purposes
SYSTEM_LOG = LOG_DIR / "system.log"
TRANSFERS_LOG = LOG_DIR / "transfers.log"
ERRORS_LOG = LOG_DIR / "errors.log"

# Rotation settings
MAX_BYTES = 50 * 1024 * 1024  # 50 MB per file
BACKUP_COUNT = 5

# Cleanup settings
LOG_RETENTION_DAYS = 7


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level: str = "INFO") -> dict:
    """
    Configure logging with rotation and cleanup.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        dict: Dictionary of specialized loggers
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    LOG_DIR.mkdir(exist_ok=True)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Configure root logger (catches all logs)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(SYSTEM_LOG, level, formatter))
    # Errors only, easier to monitor
    root_logger.addHandler(_rotating_handler(ERRORS_LOG, logging.ERROR, formatter))

    transfers_logger = logging.getLogger('transfers')
    transfers_logger.handlers.clear()
    transfers_logger.addHandler(_rotating_handler(TRANSFERS_LOG, logging.INFO, formatter))
    transfers_logger.propagate = True  # Also log to root (console + system)

    cleanup_old_logs()

    root_logger.info("=" * 80)
    root_logger.info("TransferTracker Bot logging system initialized")
    root_logger.info(f"Log directory: {LOG_DIR.absolute()}")
    root_logger.info(f"Log level: {log_level}")
    root_logger.info(f"Rotation: {MAX_BYTES // (1024*1024)} MB per file, {BACKUP_COUNT} backups")
    root_logger.info(f"Retention: {LOG_RETENTION_DAYS} days")
    root_logger.info("=" * 80)

    return {
        'system': root_logger,
        'transfers': transfers_logger,
    }


def cleanup_old_logs():
    """
    Delete log files older than LOG_RETENTION_DAYS.

    Runs on startup. Rotated backups (.log.1, .log.2, ...) are included.
    """
    cutoff_time = datetime.now() - timedelta(days=LOG_RETENTION_DAYS)
    deleted_count = 0
    total_size_freed = 0

    log_patterns = [
        LOG_DIR / "*.log",
        LOG_DIR / "*.log.*",
    ]

    for pattern in log_patterns:
        for log_file in glob.glob(str(pattern)):
            log_path = Path(log_file)

            try:
                stat = log_path.stat()
            except FileNotFoundError:
                continue

            if datetime.fromtimestamp(stat.st_mtime) < cutoff_time:
                try:
                    log_path.unlink()
                except OSError as e:
                    logging.error(f"Error cleaning up {log_path}: {e}")
                    continue
                deleted_count += 1
                total_size_freed += stat.st_size

    if deleted_count > 0:
        size_mb = total_size_freed / (1024 * 1024)
        logging.info(f"Cleaned up {deleted_count} old log files ({size_mb:.2f} MB freed)")


def log_transfer(record: TransferRecord):
    """Log a matched transfer to the dedicated transfers log."""
    logger = logging.getLogger('transfers')
    initiator = record.initiator_address or "unknown"
    logger.info(
        f"{record.tx_id} block={record.block_height} amount={record.amount} "
        f"from={record.from_address} initiator={initiator}"
    )


def log_system(message: str, level: str = "INFO"):
    """Log system event."""
    logger = logging.getLogger()
    log_func = getattr(logger, level.lower(), logger.info)
    log_func(message)
