"""
Email notification channel using the SendGrid API.

Provides email notifications for validator alerts with:
- SendGrid v3 mail/send integration
- API key from config or the SENDGRID_API_KEY environment variable
- Rate limiting and throttling
"""

import asyncio
import os
from typing import Optional

import aiohttp
import structlog

from .base import NotificationChannel

logger = structlog.get_logger(__name__)


class EmailNotificationChannel(NotificationChannel):
    """
    Email notification channel using the SendGrid API.

    Handles email delivery for validator alerts with authentication,
    rate limiting, and error handling.
    """

    channel_name = "email"

    def __init__(self,
                 receiver_email: str,
                 sender_email: str,
                 sender_name: str = "Solana Monitor",
                 api_key: Optional[str] = None,
                 subject: str = "Solana validator alert",
                 rate_limit_per_minute: int = 60,
                 timeout: float = 5.0):
        """
        Initialize email notification channel.

        Args:
            receiver_email: Address every alert goes to
            sender_email: Verified SendGrid sender address
            sender_name: Display name of the sender
            api_key: SendGrid API key (defaults to SENDGRID_API_KEY env var)
            subject: Subject line for alert emails
            rate_limit_per_minute: Rate limit for email sending
            timeout: Request timeout in seconds
        """
        super().__init__(rate_limit_per_minute, timeout)
        self.api_key = api_key or os.getenv('SENDGRID_API_KEY')
        if not self.api_key:
            raise ValueError("SENDGRID_API_KEY environment variable is required")
        if not receiver_email or not sender_email:
            raise ValueError("Receiver and sender email addresses are required")

        self.receiver_email = receiver_email
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.subject = subject
        self.api_url = "https://api.sendgrid.com/v3/mail/send"

        logger.info("Email notification channel initialized",
                    sender_email=sender_email,
                    rate_limit=rate_limit_per_minute)

    def _build_payload(self, message: str) -> dict:
        return {
            'personalizations': [{'to': [{'email': self.receiver_email}]}],
            'from': {'email': self.sender_email, 'name': self.sender_name},
            'subject': self.subject,
            'content': [{'type': 'text/plain', 'value': message}],
        }

    async def send_message(self, message: str) -> bool:
        """
        Send an alert email.

        Args:
            message: Alert text

        Returns:
            True if successful, False otherwise
        """
        try:
            if not self._check_rate_limit():
                logger.warning("Rate limit exceeded for email notifications")
                return False

            headers = {
                'Authorization': f'Bearer {self.api_key}',
                'Content-Type': 'application/json'
            }

            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    headers=headers,
                    json=self._build_payload(message),
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    # SendGrid accepts mail with 202
                    if response.status in (200, 202):
                        self._track_send()
                        logger.info("Email alert sent successfully",
                                    receiver=self.receiver_email)
                        return True

                    error_text = await response.text()
                    logger.error("Failed to send email alert",
                                 status_code=response.status,
                                 error=error_text)
                    return False

        except asyncio.TimeoutError:
            logger.error("Email notification timeout")
            return False
        except aiohttp.ClientError as e:
            logger.error("Error sending email alert", error=str(e))
            return False
