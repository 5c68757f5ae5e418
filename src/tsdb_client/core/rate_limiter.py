"""
Request pacing and retry policy for the HTTP transport.

A RateLimiter owns one token bucket per client. The transport takes a token
before every send (sleeping when the bucket is dry), then asks the limiter
whether the response calls for another attempt:

- 429 waits for Retry-After (delta-seconds or HTTP-date), falling back to
  exponential backoff when the header is absent or unreadable
- 5xx waits for exponential backoff with jitter, and only idempotent methods
  are resent
- anything else is final

Cursors never see any of this; a page either arrives or the final response
is handed up.
"""
import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterator, Mapping, Optional

from .config import HeaderConfig, LimitsConfig
from .telemetry import TelemetryDecision, create_event, get_recorder

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE", "OPTIONS"})


def _is_server_error(status_code: int) -> bool:
    return 500 <= status_code < 600


class TimeProvider(ABC):
    """Clock and sleep used by the limiter, replaceable in tests."""

    @abstractmethod
    def now(self) -> float:
        """Seconds since the epoch."""

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Block the calling thread."""


class SystemTimeProvider(TimeProvider):

    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class TokenBucket:
    """
    Classic token bucket: ``rate`` tokens per second, at most ``capacity`` held.

    The bucket starts full unless ``initial_tokens`` says otherwise.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        time_provider: TimeProvider,
        initial_tokens: Optional[int] = None
    ):
        self.rate = rate
        self.capacity = capacity
        self.time_provider = time_provider
        self._tokens = float(capacity if initial_tokens is None else initial_tokens)
        self._stamp = time_provider.now()
        self._lock = threading.Lock()

    def _level(self) -> float:
        # Caller holds the lock
        now = self.time_provider.now()
        self._tokens = min(self.capacity, self._tokens + (now - self._stamp) * self.rate)
        self._stamp = now
        return self._tokens

    def consume(self, tokens: int = 1) -> bool:
        """Take ``tokens`` if they are all available; report whether it happened."""
        with self._lock:
            if self._level() < tokens:
                return False
            self._tokens -= tokens
            return True

    def peek(self) -> float:
        with self._lock:
            return self._level()

    def time_until_tokens(self, tokens: int = 1) -> float:
        """Seconds until ``tokens`` could be consumed; 0.0 if they already can."""
        with self._lock:
            missing = tokens - self._level()
        if missing <= 0:
            return 0.0
        if self.rate <= 0:
            return float('inf')
        return missing / self.rate


@dataclass
class RateLimiterStats:
    requests_total: int = 0
    requests_throttled: int = 0
    requests_429: int = 0
    requests_5xx: int = 0
    total_wait_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RateLimitGuard:
    """Yielded by RateLimiter.acquire(); ``wait_time`` is how long the caller was held back."""

    wait_time: float = 0.0


class RateLimiter:
    """
    Paces requests to one API host and decides on retries.

    Args:
        limits: Rate and retry policy
        host: API host, used to label telemetry
        headers: Response header names (defaults to HeaderConfig())
        time_provider: Clock to pace with (defaults to the system clock)
    """

    def __init__(
        self,
        limits: LimitsConfig,
        host: str,
        headers: Optional[HeaderConfig] = None,
        time_provider: Optional[TimeProvider] = None
    ):
        self.limits = limits
        self.host = host
        self.headers = headers or HeaderConfig()
        self.time_provider = time_provider or SystemTimeProvider()

        self._bucket = TokenBucket(limits.steady_rate, limits.burst, self.time_provider)
        self._stats = RateLimiterStats()
        self._stats_lock = threading.Lock()

    @property
    def bucket(self) -> TokenBucket:
        return self._bucket

    def parse_retry_after(self, retry_after: str) -> Optional[float]:
        """
        Seconds to wait according to a Retry-After value.

        Accepts delta-seconds or an HTTP-date (measured against the limiter's
        clock). Negative results clamp to zero; unreadable values give None.
        """
        try:
            seconds = float(retry_after)
        except ValueError:
            try:
                seconds = parsedate_to_datetime(retry_after).timestamp() - self.time_provider.now()
            except (ValueError, TypeError):
                return None
        return max(0.0, seconds)

    def calculate_backoff(self, attempt: int, jitter: bool = True) -> float:
        """``base_backoff * 2**attempt`` capped at ``max_backoff``, +/-25% when jittered."""
        backoff = min(self.limits.base_backoff * 2 ** attempt, self.limits.max_backoff)
        if jitter:
            backoff *= random.uniform(0.75, 1.25)
        return backoff

    @contextmanager
    def acquire(self, method: str, url: str) -> Iterator[RateLimitGuard]:
        """Hold the caller until a token is available, then let one request through."""
        waited = 0.0
        while not self._bucket.consume():
            delay = self._bucket.time_until_tokens()
            if delay > 0:
                self.time_provider.sleep(delay)
                waited += delay

        with self._stats_lock:
            self._stats.requests_total += 1
            if waited:
                self._stats.requests_throttled += 1
                self._stats.total_wait_time += waited

        if waited:
            logger.debug(f"Throttled {method} {url} for {waited:.3f}s")
            get_recorder().record(create_event(
                host=self.host,
                path=url,
                method=method,
                decision=TelemetryDecision.THROTTLE,
                sleep_s=waited,
            ))

        yield RateLimitGuard(wait_time=waited)

    def handle_response(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        status_code: int,
        attempt: int = 0
    ) -> Optional[float]:
        """
        Inspect a response and return how long to wait before another attempt.

        Nothing is logged or recorded here; whether the wait actually happens
        is up to should_retry(), and record_backoff() reports it when it does.

        Returns:
            Seconds to wait, or None when the response is final
        """
        if status_code == 429:
            retry_after = headers.get(self.headers.retry_after)
            wait_time = self.parse_retry_after(retry_after) if retry_after is not None else None
            if wait_time is None:
                wait_time = self.calculate_backoff(attempt)
            with self._stats_lock:
                self._stats.requests_429 += 1
            return wait_time
        if _is_server_error(status_code):
            with self._stats_lock:
                self._stats.requests_5xx += 1
            return self.calculate_backoff(attempt)
        return None

    def record_backoff(
        self,
        method: str,
        url: str,
        status_code: int,
        wait_time: float,
        attempt: int = 0
    ) -> None:
        """Log and record a backoff the caller is about to sleep through."""
        decision = TelemetryDecision.BACKOFF_429 if status_code == 429 else TelemetryDecision.BACKOFF_5XX
        logger.warning(f"{status_code} from {url} (attempt {attempt}), backing off {wait_time:.2f}s")
        get_recorder().record(create_event(
            host=self.host,
            path=url,
            method=method,
            decision=decision,
            status=status_code,
            sleep_s=wait_time,
            attempt=attempt,
        ))

    def should_retry(self, status_code: int, attempt: int, method: str = "GET") -> bool:
        """
        Whether a request that got ``status_code`` on ``attempt`` (0-based) is resent.

        429 is always safe to resend since the server did not process the
        request; 5xx is resent only for idempotent methods.
        """
        if status_code != 429 and not _is_server_error(status_code):
            return False
        if attempt >= self.limits.max_retries:
            logger.error(f"Giving up after {attempt} retries, last status {status_code}")
            return False
        if _is_server_error(status_code) and method.upper() not in IDEMPOTENT_METHODS:
            logger.warning(f"Not resending {method} after {status_code}")
            return False
        return True

    def get_stats(self) -> RateLimiterStats:
        with self._stats_lock:
            return RateLimiterStats(**asdict(self._stats))

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = RateLimiterStats()
