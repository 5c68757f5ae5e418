"""
Stub API server for integration and end-to-end tests.

Serves a queue of canned responses over real HTTP so the client's transport,
retry loop and cursor can be exercised end to end. Pages announce a
successor the way the API does: a non-empty ``Truncated`` header plus a
``Link: <...>; rel="next"`` header.
"""
import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional

from aiohttp import web

logger = logging.getLogger(__name__)


@dataclass
class StubResponse:
    """One canned answer."""

    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = "[]"
    delay: float = 0.0  # seconds


@dataclass
class RecordedRequest:
    """What the server saw for one request; header names are lowercased."""

    method: str
    path: str
    query: str
    headers: Dict[str, str]
    body: str = ""

    def json(self) -> Any:
        return json.loads(self.body)


class StubServer:
    """
    Queue-driven HTTP server on a fixed host and port.

    Responses are served in the order they were enqueued; once the queue is
    drained every request gets ``default_response`` (an empty final page).

    Example:
        server = StubServer(port=8889)
        await server.start()
        server.enqueue_response(page_response({"data": []}))
        ...
        await server.stop()
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8889,
        default_response: Optional[StubResponse] = None
    ):
        self.host = host
        self.port = port
        self.default_response = default_response or StubResponse()
        self.requests: List[RecordedRequest] = []

        self._queue: Deque[StubResponse] = deque()
        self._runner: Optional[web.AppRunner] = None

    @property
    def request_count(self) -> int:
        return len(self.requests)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def enqueue_response(self, response: StubResponse) -> None:
        self._queue.append(response)

    def enqueue_responses(self, responses: Iterable[StubResponse]) -> None:
        self._queue.extend(responses)

    def reset(self) -> None:
        """Drop queued responses and forget seen requests."""
        self._queue.clear()
        self.requests.clear()

    async def _handle(self, request: web.Request) -> web.Response:
        body = await request.read()
        self.requests.append(RecordedRequest(
            method=request.method,
            path=request.path,
            query=request.query_string,
            headers={name.lower(): value for name, value in request.headers.items()},
            body=body.decode("utf-8"),
        ))
        answer = self._queue.popleft() if self._queue else self.default_response
        logger.debug(f"stub #{self.request_count} {request.method} {request.path_qs} -> {answer.status}")

        if answer.delay:
            await asyncio.sleep(answer.delay)
        return web.Response(
            status=answer.status,
            headers=answer.headers,
            text=answer.body,
            content_type="application/json",
        )

    async def start(self) -> None:
        if self._runner is not None:
            logger.warning("Stub server already started")
            return

        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._handle)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        await web.TCPSite(self._runner, self.host, self.port).start()
        logger.info(f"Stub server listening on {self.base_url}")

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Stub server stopped")


def page_response(payload: Any, next_link: Optional[str] = None) -> StubResponse:
    """
    A 200 page.

    Args:
        payload: JSON-serializable page body
        next_link: Server-relative URI of the following page; marks the page truncated
    """
    headers = {}
    if next_link:
        headers["Truncated"] = "true"
        headers["Link"] = f'<{next_link}>; rel="next"'
    return StubResponse(status=200, headers=headers, body=json.dumps(payload))


def throttle_response(retry_after: int = 30) -> StubResponse:
    return StubResponse(
        status=429,
        headers={"Retry-After": str(retry_after)},
        body='{"error": "Rate limit exceeded"}',
    )


def error_response(status: int = 500) -> StubResponse:
    if not 500 <= status < 600:
        raise ValueError(f"Status {status} is not a 5xx error")
    return StubResponse(status=status, body='{"error": "Internal server error"}')


def status_response(status: int, body: str = "") -> StubResponse:
    """Any status with a plain body (an empty 200 acknowledges a write)."""
    return StubResponse(status=status, body=body)
