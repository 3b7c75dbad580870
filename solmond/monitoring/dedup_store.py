"""
Dedup stores for scheduled status alerts.

A dedup store answers one question for an alert window: has the status
alert already gone out? ``True`` and ``False`` are definite answers;
``None`` means the store could not tell, and callers must not treat it
as permission to send.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)

ALERT_COUNT_QUERY = 'count_over_time(solana_val_alert_count{alert_count="true"}[%s])'


def normalize_flag(raw: Optional[str]) -> Optional[bool]:
    """Map the string-typed 'true'/'false' signal onto a boolean, anything else to None."""
    if raw is None:
        return None
    value = raw.strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return None


class DedupStore(ABC):
    """Abstract dedup store keyed by alert window."""

    @abstractmethod
    async def already_sent(self, window: str) -> Optional[bool]:
        pass

    @abstractmethod
    async def mark_sent(self, window: str, sent_at: datetime) -> None:
        pass


class LocalDedupStore(DedupStore):
    """In-process record of the last send time per alert window."""

    def __init__(self, retention: timedelta = timedelta(days=2)):
        self.retention = retention
        self._sent: Dict[str, datetime] = {}

    async def already_sent(self, window: str) -> Optional[bool]:
        return window in self._sent

    async def mark_sent(self, window: str, sent_at: datetime) -> None:
        self._sent[window] = sent_at
        self._prune(sent_at)

    def last_sent(self, window: str) -> Optional[datetime]:
        return self._sent.get(window)

    def _prune(self, now: datetime) -> None:
        cutoff = now - self.retention
        for window in [w for w, t in self._sent.items() if t < cutoff]:
            del self._sent[window]


class PrometheusDedupSignal(DedupStore):
    """
    Dedup signal read back from Prometheus.

    Asks Prometheus whether ``solana_val_alert_count{alert_count="true"}``
    was scraped within the lookback window. The answer is produced as the
    string "true" or "false" and normalized with ``normalize_flag``.
    """

    def __init__(self,
                 prometheus_address: str,
                 lookback: str = "2m",
                 timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not prometheus_address:
            raise ValueError("prometheus_address is required for the prometheus dedup backend")
        self.query_url = prometheus_address.rstrip("/") + "/api/v1/query"
        self.lookback = lookback
        self.timeout = timeout
        self._transport = transport

    async def fetch_raw_signal(self) -> str:
        """Return "true" or "false"; raises on transport or API errors."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.query_url,
                                        params={"query": ALERT_COUNT_QUERY % self.lookback})
            response.raise_for_status()
            data = response.json()

        if data.get("status") != "success":
            raise ValueError(f"Prometheus query failed: {data.get('error', 'unknown error')}")

        for series in data.get("data", {}).get("result", []):
            value = series.get("value", [None, "0"])[1]
            if float(value) > 0:
                return "true"
        return "false"

    async def already_sent(self, window: str) -> Optional[bool]:
        try:
            raw = await self.fetch_raw_signal()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error reading dedup signal from Prometheus", window=window, error=str(e))
            return None
        return normalize_flag(raw)

    async def mark_sent(self, window: str, sent_at: datetime) -> None:
        # the exported alert-count gauge is the record
        return None
