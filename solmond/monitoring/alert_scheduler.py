"""
Scheduled status alerts with dedup.

Status alerts go out only at configured wall-clock time slots (minute
resolution, kitchen format such as ``10:00AM``). On a matching tick the
dedup store decides whether the slot's alert has already been sent.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

import structlog
from prometheus_client import Counter, Gauge

from .dedup_store import DedupStore

logger = structlog.get_logger(__name__)


class AlertTickOutcome(Enum):
    """Result of evaluating one tick."""
    NO_MATCH = "no_match"
    SENT = "sent"
    ALREADY_SENT = "already_sent"
    UNKNOWN = "unknown"


def parse_alert_time(value: str) -> Tuple[int, int]:
    """
    Parse a kitchen-clock string into (hour, minute) on a 24h clock.

    Raises:
        ValueError: If the string is not a valid time of day
    """
    text = value.replace(" ", "").upper()
    return tuple(datetime.strptime(text, "%I:%M%p").timetuple()[3:5])


def format_kitchen(hour: int, minute: int) -> str:
    """Format a time of day the way alert slots are written, e.g. ``3:04PM``."""
    suffix = "AM" if hour < 12 else "PM"
    return f"{(hour % 12) or 12}:{minute:02d}{suffix}"


def matching_slot(now: datetime, slots: Iterable[str]) -> Optional[str]:
    """Return the first configured slot that matches ``now`` to the minute."""
    for slot in slots:
        if parse_alert_time(slot) == (now.hour, now.minute):
            return format_kitchen(now.hour, now.minute)
    return None


def is_alert_tick(now: datetime, slots: Iterable[str]) -> bool:
    """True if ``now`` falls on one of the configured alert slots."""
    return matching_slot(now, slots) is not None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlertDedupScheduler:
    """
    Evaluates status alerts against the configured time slots.

    Holds no per-window state of its own: whether a window's alert has gone
    out is always asked of the dedup store.
    """

    def __init__(self,
                 alert_timings: List[str],
                 dedup_store: DedupStore,
                 dispatcher,
                 alert_count_gauge: Optional[Gauge] = None,
                 dedup_errors: Optional[Counter] = None,
                 clock: Callable[[], datetime] = utc_now):
        """
        Initialize the scheduler.

        Args:
            alert_timings: Kitchen-clock time slots, validated at config load
            dedup_store: Store consulted on every matching tick
            dispatcher: NotificationDispatcher used to fan out the alert
            alert_count_gauge: ``solana_val_alert_count`` gauge, labelled by ``alert_count``
            dedup_errors: Counter incremented when the dedup answer is unknown
            clock: Returns the current time, UTC by default
        """
        for timing in alert_timings:
            parse_alert_time(timing)

        self.alert_timings = list(alert_timings)
        self.dedup_store = dedup_store
        self.dispatcher = dispatcher
        self.alert_count_gauge = alert_count_gauge
        self.dedup_errors = dedup_errors
        self._clock = clock
        self._sent_sequence = 0
        self._recorded_label: Optional[str] = None

    @property
    def sent_sequence(self) -> int:
        """How many dedup-approved sends have happened."""
        return self._sent_sequence

    def window_key(self, now: datetime, slot: str) -> str:
        return f"{now.date().isoformat()} {slot}"

    async def evaluate(self, message: str, now: Optional[datetime] = None) -> AlertTickOutcome:
        """
        Evaluate one tick for a status message.

        Args:
            message: Alert text to dispatch when the tick fires
            now: Time to evaluate at; defaults to the scheduler's clock

        Returns:
            What happened on this tick
        """
        now = now or self._clock()
        slot = matching_slot(now, self.alert_timings)
        if slot is None:
            return AlertTickOutcome.NO_MATCH

        window = self.window_key(now, slot)
        already_sent = await self.dedup_store.already_sent(window)

        if already_sent is None:
            if self.dedup_errors is not None:
                self.dedup_errors.inc()
            logger.warning("Dedup state unknown, skipping status alert", window=window)
            return AlertTickOutcome.UNKNOWN

        if already_sent:
            self._record("false")
            logger.debug("Status alert already sent", window=window)
            return AlertTickOutcome.ALREADY_SENT

        results = await self.dispatcher.dispatch(message)
        self._sent_sequence += 1
        await self.dedup_store.mark_sent(window, now)
        self._record("true")

        logger.info("Status alert sent",
                    window=window,
                    sequence=self._sent_sequence,
                    channels=results)
        return AlertTickOutcome.SENT

    def _record(self, label: str) -> None:
        if self.alert_count_gauge is None:
            return
        # the new series is set before the previous one is removed
        self.alert_count_gauge.labels(alert_count=label).set(self._sent_sequence)
        previous = self._recorded_label
        if previous is not None and previous != label:
            self.alert_count_gauge.remove(previous)
        self._recorded_label = label
