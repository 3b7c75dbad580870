"""
Slack notification channel using an incoming webhook.
"""

import asyncio
import os
from typing import Optional

import aiohttp
import structlog

from .base import NotificationChannel

logger = structlog.get_logger(__name__)


class SlackNotificationChannel(NotificationChannel):
    """Posts alert text to a Slack incoming webhook."""

    channel_name = "slack"

    def __init__(self,
                 webhook_url: Optional[str] = None,
                 rate_limit_per_minute: int = 30,
                 timeout: float = 5.0):
        """
        Initialize Slack notification channel.

        Args:
            webhook_url: Incoming webhook URL (defaults to SLACK_WEBHOOK_URL env var)
            rate_limit_per_minute: Rate limit for message sending
            timeout: Request timeout in seconds
        """
        super().__init__(rate_limit_per_minute, timeout)
        self.webhook_url = webhook_url or os.getenv('SLACK_WEBHOOK_URL')
        if not self.webhook_url:
            raise ValueError("SLACK_WEBHOOK_URL environment variable is required")

        logger.info("Slack notification channel initialized",
                    rate_limit=rate_limit_per_minute)

    async def send_message(self, message: str) -> bool:
        """
        Post a message to the webhook.

        Args:
            message: Alert text

        Returns:
            True if successful, False otherwise
        """
        try:
            if not self._check_rate_limit():
                logger.warning("Rate limit exceeded for Slack notifications")
                return False

            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.webhook_url,
                    json={'text': message},
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status == 200:
                        self._track_send()
                        logger.info("Slack alert sent successfully")
                        return True

                    error_text = await response.text()
                    logger.error("Failed to send Slack alert",
                                 status_code=response.status,
                                 error=error_text)
                    return False

        except asyncio.TimeoutError:
            logger.error("Slack notification timeout")
            return False
        except aiohttp.ClientError as e:
            logger.error("Error sending Slack alert", error=str(e))
            return False
