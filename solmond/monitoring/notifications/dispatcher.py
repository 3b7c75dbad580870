"""
Fan-out of alert messages to the configured notification channels.
"""

import time
from typing import Dict, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram

from .base import NotificationChannel

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """
    Sends one message to every configured channel.

    Each channel is attempted independently; a failing or raising channel
    is logged and counted and never prevents delivery on the others.
    """

    def __init__(self,
                 channels: Dict[str, NotificationChannel],
                 registry: Optional[CollectorRegistry] = None):
        """
        Initialize the dispatcher.

        Args:
            channels: Channel instances keyed by channel name
            registry: Prometheus registry for dispatch metrics
        """
        self.channels = dict(channels)
        self.registry = registry
        self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        """Initialize Prometheus metrics for notifications."""
        self.notification_duration = Histogram(
            'solana_alert_notification_duration_seconds',
            'Time spent sending notifications',
            ['channel'],
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
            registry=self.registry
        )

        self.notification_errors = Counter(
            'solana_alert_notification_errors_total',
            'Total notification errors',
            ['channel', 'error_type'],
            registry=self.registry
        )

    async def send(self, channel_name: str, message: str) -> bool:
        """Send ``message`` on a single channel."""
        channel = self.channels.get(channel_name)
        if channel is None:
            logger.warning("Unknown notification channel", channel=channel_name)
            return False

        start_time = time.time()
        try:
            delivered = await channel.send_message(message)
        except Exception as e:
            self.notification_errors.labels(
                channel=channel_name,
                error_type=type(e).__name__
            ).inc()
            logger.error("Error sending notification",
                         channel=channel_name,
                         error=str(e))
            return False

        self.notification_duration.labels(channel=channel_name).observe(time.time() - start_time)
        if not delivered:
            self.notification_errors.labels(channel=channel_name, error_type='rejected').inc()
        return delivered

    async def dispatch(self, message: str) -> Dict[str, bool]:
        """
        Send ``message`` to all channels.

        Returns:
            Delivery result per channel name
        """
        results = {}
        for channel_name in self.channels:
            results[channel_name] = await self.send(channel_name, message)

        if self.channels and not any(results.values()):
            logger.error("Alert could not be delivered on any channel", message=message)
        return results
