"""
Notification system for sending transfer alerts to Telegram.
Handles message formatting and delivery with rate limiting.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional, Set, Tuple

from aiogram import Bot
from aiogram.exceptions import TelegramForbiddenError, TelegramRetryAfter

from core.models import TransferAlert
from utils.formatting import format_backfill_summary, format_no_history_message, format_transfer_alert

logger = logging.getLogger(__name__)


def parse_chat_destination(chat_config: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    """
    Parse chat destination from config string.

    Args:
        chat_config: Either "chat_id" or "chat_id:thread_id"

    Returns:
        Tuple of (chat_id, message_thread_id)
    """
    if not chat_config:
        return None, None

    try:
        if ':' in chat_config:
            chat_id_str, thread_id_str = chat_config.split(':', 1)
            return int(chat_id_str), int(thread_id_str)
        else:
            return int(chat_config), None
    except ValueError:
        logger.error(f"Invalid chat destination format: {chat_config}")
        return None, None


class Notifier:
    """
    Sends transfer notifications to one Telegram chat.
    Manages rate limiting and error handling.
    """

    def __init__(
        self,
        bot: Bot,
        chat_destination: str,
        token_symbol: str = "TOKEN",
        token_decimals: int = 18,
        explorer_url: str = "https://etherscan.io"
    ):
        """Initialize notifier with bot instance and destination."""
        self.bot = bot
        self.chat_id, self.thread_id = parse_chat_destination(chat_destination)
        self.token_symbol = token_symbol
        self.token_decimals = token_decimals
        self.explorer_url = explorer_url
        self._rate_limit_delay = 0.05  # 50ms between messages
        self._blocked_chats: Set[int] = set()

    async def notify_transfer(self, alert: TransferAlert) -> bool:
        """Send a new-transfer alert."""
        message = format_transfer_alert(alert, self.token_symbol, self.token_decimals, self.explorer_url)
        return await self._deliver(message)

    async def notify_backfill_summary(self, alert: TransferAlert, found_count: int, since: datetime) -> bool:
        """Send the startup summary built around the most recent historical transfer."""
        message = format_backfill_summary(
            alert, found_count, since, self.token_symbol, self.token_decimals, self.explorer_url
        )
        return await self._deliver(message)

    async def notify_no_history(self, since: datetime) -> bool:
        """Send the startup message for an empty backfill."""
        return await self._deliver(format_no_history_message(since))

    async def _deliver(self, text: str) -> bool:
        """
        Send to the configured destination.

        Returns:
            True if the message was handed to Telegram
        """
        if self.chat_id is None:
            logger.warning("No valid chat destination configured, notification dropped")
            return False

        if self.chat_id in self._blocked_chats:
            logger.debug(f"Chat {self.chat_id} is blocked, notification dropped")
            return False

        return await self._send_message(self.chat_id, text, self.thread_id)

    async def _send_message(self, chat_id: int, text: str, message_thread_id: Optional[int] = None) -> bool:
        """
        Send message with rate limiting and error handling.

        Args:
            chat_id: Telegram chat ID (user, group, or supergroup)
            text: Message text to send
            message_thread_id: Optional topic/thread ID for supergroups
        """
        # Rate limiting
        await asyncio.sleep(self._rate_limit_delay)

        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                message_thread_id=message_thread_id,
                parse_mode=None,  # Plain text for better emoji support
                disable_web_page_preview=True
            )
            return True

        except TelegramRetryAfter as e:
            logger.warning(f"Rate limit hit for chat {chat_id}, waiting {e.retry_after}s")
            await asyncio.sleep(e.retry_after)
            # Retry once
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                message_thread_id=message_thread_id,
                parse_mode=None,
                disable_web_page_preview=True
            )
            return True

        except TelegramForbiddenError:
            # Bot blocked or removed from group
            logger.warning(f"Bot blocked or removed from chat {chat_id}")
            self._blocked_chats.add(chat_id)
            return False

        except Exception as e:
            logger.error(f"Error sending message to chat {chat_id}: {e}")
            raise
