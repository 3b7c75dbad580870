"""
Telegram notification channel for validator alerts.

Sends alert text through the Telegram bot API ``sendMessage`` method.
"""

import asyncio
import os
from typing import Optional, Union

import aiohttp
import structlog

from .base import NotificationChannel

logger = structlog.get_logger(__name__)


class TelegramNotificationChannel(NotificationChannel):
    """
    Telegram notification channel for validator alerts.

    Handles message delivery via the Telegram bot API with rate
    limiting and error handling.
    """

    channel_name = "telegram"

    def __init__(self,
                 bot_token: Optional[str] = None,
                 chat_id: Optional[Union[int, str]] = None,
                 validator_name: str = "",
                 rate_limit_per_minute: int = 30,
                 timeout: float = 5.0):
        """
        Initialize Telegram notification channel.

        Args:
            bot_token: Telegram bot token (defaults to TELEGRAM_BOT_TOKEN env var)
            chat_id: Telegram chat ID (defaults to TELEGRAM_CHAT_ID env var)
            validator_name: Validator moniker used as message prefix
            rate_limit_per_minute: Rate limit for message sending
            timeout: Request timeout in seconds
        """
        super().__init__(rate_limit_per_minute, timeout)
        self.bot_token = bot_token or os.getenv('TELEGRAM_BOT_TOKEN')
        self.chat_id = chat_id or os.getenv('TELEGRAM_CHAT_ID')

        if not self.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")
        if not self.chat_id:
            raise ValueError("TELEGRAM_CHAT_ID environment variable is required")

        self.validator_name = validator_name
        self.api_url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"

        logger.info("Telegram notification channel initialized",
                    chat_id=self.chat_id,
                    rate_limit=rate_limit_per_minute)

    def _format_message(self, message: str) -> str:
        if self.validator_name:
            return f"{self.validator_name}: {message}"
        return message

    async def send_message(self, message: str) -> bool:
        """
        Send a Telegram message.

        Args:
            message: Alert text

        Returns:
            True if successful, False otherwise
        """
        try:
            if not self._check_rate_limit():
                logger.warning("Rate limit exceeded for Telegram notifications")
                return False

            data = {
                'chat_id': self.chat_id,
                'text': self._format_message(message),
                'disable_web_page_preview': True
            }

            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    json=data,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status == 200:
                        response_data = await response.json()
                        if response_data.get('ok'):
                            self._track_send()
                            logger.info("Telegram alert sent successfully")
                            return True
                        logger.error("Telegram API returned error",
                                     error=response_data.get('description'))
                        return False

                    error_text = await response.text()
                    logger.error("Failed to send Telegram alert",
                                 status_code=response.status,
                                 error=error_text)
                    return False

        except asyncio.TimeoutError:
            logger.error("Telegram notification timeout")
            return False
        except aiohttp.ClientError as e:
            logger.error("Error sending Telegram alert", error=str(e))
            return False
