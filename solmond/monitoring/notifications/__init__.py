"""
Notification channels for validator alerts.

Provides notification delivery via multiple channels:
- Telegram bot notifications
- Email notifications via SendGrid
- Slack incoming webhooks
"""

from .base import NotificationChannel
from .dispatcher import NotificationDispatcher
from .email_notification import EmailNotificationChannel
from .slack_notification import SlackNotificationChannel
from .telegram_notification import TelegramNotificationChannel

__all__ = [
    'NotificationChannel',
    'NotificationDispatcher',
    'EmailNotificationChannel',
    'SlackNotificationChannel',
    'TelegramNotificationChannel'
]
