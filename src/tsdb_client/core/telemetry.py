"""
Structured telemetry for transport and cursor activity.

Every HTTP exchange, every wait imposed by the rate limiter and every page a
cursor consumes becomes one TelemetryEvent. Events are logged through the
module logger and, when enabled, folded into TelemetryStats so tests and
callers can ask how many round trips a query actually cost.
"""
import json
import logging
import threading
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class TelemetryLevel(Enum):
    INFO = "info"
    DEBUG = "debug"


class TelemetryDecision(Enum):
    """What happened to a request."""
    ALLOW = "allow"              # Exchange completed without waiting
    THROTTLE = "throttle"        # Waited for a rate limit token
    BACKOFF_429 = "backoff_429"  # Server throttled us
    BACKOFF_5XX = "backoff_5xx"  # Server error, retrying
    PAGE = "page"                # Cursor consumed a page


# Worth INFO even when nothing failed
_NOTABLE = frozenset({
    TelemetryDecision.THROTTLE.value,
    TelemetryDecision.BACKOFF_429.value,
    TelemetryDecision.BACKOFF_5XX.value,
})


@dataclass
class TelemetryEvent:
    """
    One unit of transport or cursor activity.

    Attributes:
        timestamp: ISO 8601 time the event was created
        host: API host
        path: Request URI
        method: HTTP method
        status: HTTP status code, None for waits and page events
        elapsed_ms: Exchange duration in milliseconds
        decision: TelemetryDecision value
        sleep_s: Seconds slept because of this event
        attempt: Retry attempt (0 for the first send)
        records: Records on the page, page events only
    """
    timestamp: str
    host: str
    path: str
    method: str
    status: Optional[int]
    elapsed_ms: float
    decision: str
    sleep_s: float = 0.0
    attempt: int = 0
    records: Optional[int] = None

    @property
    def is_page(self) -> bool:
        return self.decision == TelemetryDecision.PAGE.value

    @property
    def is_exchange(self) -> bool:
        """A completed HTTP round trip, as opposed to a wait or a page."""
        return self.decision == TelemetryDecision.ALLOW.value

    @property
    def is_notable(self) -> bool:
        return self.decision in _NOTABLE or (self.status is not None and self.status >= 400)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.records is None:
            del data["records"]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_keyvalue(self) -> str:
        return " ".join(f"{key}={value}" for key, value in self.to_dict().items())


@dataclass
class TelemetryStats:
    """
    Running totals over recorded events.

    Only exchanges count as requests and contribute latency and status codes;
    throttles and backoffs count as sleeps, pages as pages.
    """
    total_requests: int = 0
    total_pages: int = 0
    total_sleeps: int = 0
    total_sleep_time: float = 0.0
    total_elapsed_time: float = 0.0
    decisions_by_type: Dict[str, int] = field(default_factory=Counter)
    status_codes: Dict[int, int] = field(default_factory=Counter)

    def add(self, event: TelemetryEvent) -> None:
        """Fold one event into the totals."""
        if event.is_page:
            self.total_pages += 1
        elif event.is_exchange:
            self.total_requests += 1
            self.total_elapsed_time += event.elapsed_ms
            if event.status:
                self.status_codes[event.status] = self.status_codes.get(event.status, 0) + 1

        if event.sleep_s > 0:
            self.total_sleeps += 1
            self.total_sleep_time += event.sleep_s

        self.decisions_by_type[event.decision] = self.decisions_by_type.get(event.decision, 0) + 1

    def copy(self) -> "TelemetryStats":
        return TelemetryStats(
            total_requests=self.total_requests,
            total_pages=self.total_pages,
            total_sleeps=self.total_sleeps,
            total_sleep_time=self.total_sleep_time,
            total_elapsed_time=self.total_elapsed_time,
            decisions_by_type=Counter(self.decisions_by_type),
            status_codes=Counter(self.status_codes),
        )

    def to_dict(self) -> Dict[str, Any]:
        avg_latency = self.total_elapsed_time / self.total_requests if self.total_requests else 0.0
        return {
            "total_requests": self.total_requests,
            "total_pages": self.total_pages,
            "total_sleeps": self.total_sleeps,
            "total_sleep_time": self.total_sleep_time,
            "avg_latency_ms": round(avg_latency, 2),
            "decisions_by_type": dict(self.decisions_by_type),
            "status_codes": dict(self.status_codes),
        }


class TelemetryRecorder:
    """
    Logs telemetry events and keeps them for inspection.

    At INFO level only throttling, backoffs and error statuses are logged at
    INFO; everything else goes to DEBUG. At DEBUG level every event is
    logged at DEBUG. Recording is safe from several threads.
    """

    def __init__(
        self,
        level: TelemetryLevel = TelemetryLevel.INFO,
        format_json: bool = True,
        collect_stats: bool = False
    ):
        """
        Args:
            level: Logging verbosity level
            format_json: Log events as JSON; otherwise key=value
            collect_stats: Keep running TelemetryStats
        """
        self.level = level
        self.format_json = format_json
        self.collect_stats = collect_stats

        self._lock = threading.Lock()
        self._stats = TelemetryStats()
        self._events: List[TelemetryEvent] = []

    def record(self, event: TelemetryEvent) -> None:
        rendered = event.to_json() if self.format_json else event.to_keyvalue()
        if self.level == TelemetryLevel.INFO and event.is_notable:
            logger.info(f"[telemetry] {rendered}")
        else:
            logger.debug(f"[telemetry] {rendered}")

        with self._lock:
            if self.collect_stats:
                self._stats.add(event)
            self._events.append(event)

    def get_stats(self) -> TelemetryStats:
        """Snapshot of the running totals."""
        with self._lock:
            return self._stats.copy()

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = TelemetryStats()

    def get_events(self) -> List[TelemetryEvent]:
        """Every event recorded so far, oldest first."""
        with self._lock:
            return list(self._events)

    def clear_events(self) -> None:
        with self._lock:
            self._events.clear()


_recorder = TelemetryRecorder()
_recorder_lock = threading.Lock()


def get_recorder() -> TelemetryRecorder:
    """The process-wide recorder used by the transport, limiter and cursors."""
    return _recorder


def set_recorder(recorder: TelemetryRecorder) -> None:
    """Replace the process-wide recorder (tests install one with stats enabled)."""
    global _recorder
    with _recorder_lock:
        _recorder = recorder


def create_event(
    host: str,
    path: str,
    decision: TelemetryDecision,
    method: str = "GET",
    status: Optional[int] = None,
    elapsed_ms: float = 0.0,
    sleep_s: float = 0.0,
    attempt: int = 0,
    records: Optional[int] = None,
) -> TelemetryEvent:
    """Build an event stamped with the current UTC time."""
    return TelemetryEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        host=host,
        path=path,
        method=method,
        status=status,
        elapsed_ms=elapsed_ms,
        decision=decision.value,
        sleep_s=sleep_s,
        attempt=attempt,
        records=records,
    )
