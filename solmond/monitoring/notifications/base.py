"""
Base class for notification channels.
"""

import time
from abc import ABC, abstractmethod
from typing import List


class NotificationChannel(ABC):
    """
    A single alert delivery channel.

    ``send_message`` never raises on a delivery failure: it logs and
    returns False so one broken channel cannot stop the others.
    """

    channel_name = "channel"

    def __init__(self, rate_limit_per_minute: int = 30, timeout: float = 5.0):
        self.rate_limit_per_minute = rate_limit_per_minute
        self.timeout = timeout

        # Rate limiting
        self._sent_messages: List[float] = []
        self._last_cleanup = time.time()

    def _cleanup_rate_limit(self) -> None:
        """Clean up old entries from rate limiting."""
        current_time = time.time()
        if current_time - self._last_cleanup > 60:
            cutoff_time = current_time - 60
            self._sent_messages = [t for t in self._sent_messages if t > cutoff_time]
            self._last_cleanup = current_time

    def _check_rate_limit(self) -> bool:
        """Check if we're within rate limits."""
        self._cleanup_rate_limit()
        return len(self._sent_messages) < self.rate_limit_per_minute

    def _track_send(self) -> None:
        self._sent_messages.append(time.time())

    @abstractmethod
    async def send_message(self, message: str) -> bool:
        """
        Deliver ``message``.

        Returns:
            True if the upstream accepted the message, False otherwise
        """
        pass
