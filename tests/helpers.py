"""Test helpers: an in-memory transport, a fake clock and page builders."""
import json
import threading
from urllib.parse import urljoin

from tsdb_client.core.rate_limiter import TimeProvider
from tsdb_client.core.transport import (
    RequestSpec,
    TextBody,
    Transport,
    TransportResponse,
)

BASE_URL = "https://api.example.com"


class FakeTransport(Transport):
    """
    In-memory transport serving canned responses by URI.

    Records every requested URI in ``calls``. A value in ``responses`` may be
    an exception instance, which is raised instead of answering.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls: list[str] = []

    def request(self, spec: RequestSpec) -> TransportResponse:
        self.calls.append(spec.url)
        response = self.responses[spec.url]
        if isinstance(response, Exception):
            raise response
        return response

    def resolve(self, path: str) -> str:
        return urljoin(f"{BASE_URL}/", path)


def page(body, next_link=None, status=200):
    """Build a TransportResponse for one page."""
    return TransportResponse(
        status_code=status,
        headers={"Truncated": "true" if next_link else ""},
        links={"next": next_link} if next_link else {},
        body=TextBody(body if isinstance(body, str) else json.dumps(body)),
    )


def points(*values, minute=0):
    """JSON datapoints one minute apart starting at 2012-01-01T00:<minute>."""
    return [
        {"t": f"2012-01-01T00:{minute + i:02d}:00.000Z", "v": v}
        for i, v in enumerate(values)
    ]


class FakeTimeProvider(TimeProvider):
    """
    Deterministic clock; sleeping returns at once and moves the clock forward.

    Every requested sleep is appended to ``sleep_history``.
    """

    def __init__(self, initial_time: float = 1000.0):
        self._now = initial_time
        self._lock = threading.Lock()
        self.sleep_history: list[float] = []

    def now(self) -> float:
        with self._lock:
            return self._now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleep_history.append(seconds)
            self._now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds

    def set(self, time: float) -> None:
        with self._lock:
            self._now = time
