"""
Transport interface and the httpx-based implementation.

This module defines the seam between the pagination engine and the network.
A transport performs one authenticated HTTP exchange at a time and hands back
the status, headers, link relations and body of the response. Bodies are
resolved once, here, into a small tagged variant so nothing above this layer
has to guess what kind of payload it holds.
"""

import json
import logging
import ssl
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union
from urllib.parse import quote, urljoin

import httpx

from tsdb_client.core.config import ClientConfig
from tsdb_client.core.errors import TransportError
from tsdb_client.core.rate_limiter import RateLimiter, TimeProvider
from tsdb_client.core.telemetry import TelemetryDecision, create_event, get_recorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmptyBody:
    """No payload."""


@dataclass(frozen=True)
class TextBody:
    """A textual payload (JSON documents arrive this way)."""

    text: str


@dataclass(frozen=True)
class EncodedBody:
    """Raw bytes with their declared content type."""

    data: bytes
    content_type: str = "application/json"


Body = Union[EmptyBody, TextBody, EncodedBody]


def to_body(value: Any) -> Body:
    """
    Resolve an outgoing payload into a Body.

    None becomes EmptyBody, strings become TextBody, bytes are sent as an
    octet stream, and anything else is serialized to JSON.
    """
    if isinstance(value, (EmptyBody, TextBody, EncodedBody)):
        return value
    if value is None:
        return EmptyBody()
    if isinstance(value, str):
        return TextBody(value)
    if isinstance(value, bytes):
        return EncodedBody(value, "application/octet-stream")
    return EncodedBody(json.dumps(value).encode("utf-8"), "application/json")


def format_timestamp(value: datetime) -> str:
    """ISO-8601 with millisecond precision; UTC is written as ``Z``, naive means UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat(timespec="milliseconds")
    if value.utcoffset().total_seconds() == 0:
        text = text[: -len("+00:00")] + "Z"
    return text


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


def encode_query(params: Mapping[str, Any]) -> str:
    """
    Encode query parameters the way the API expects them.

    Lists repeat the key, dicts become ``key[sub]=value`` pairs, and None
    values are dropped. Brackets in keys are sent unescaped.
    """
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((key, _query_value(v)) for v in value)
        elif isinstance(value, dict):
            pairs.extend((f"{key}[{k}]", _query_value(v)) for k, v in value.items())
        else:
            pairs.append((key, _query_value(value)))
    return "&".join(f"{quote(k, safe='[]')}={quote(v, safe='')}" for k, v in pairs)


@dataclass
class RequestSpec:
    """
    Specification for an HTTP request.

    Attributes:
        url: Full URL to request, query string included
        method: HTTP method (GET, POST, etc.)
        headers: HTTP headers as key-value pairs
        body: Payload for POST/PUT requests
    """
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Body = field(default_factory=EmptyBody)


@dataclass(frozen=True)
class TransportResponse:
    """
    Result of one HTTP exchange.

    Attributes:
        status_code: HTTP status code
        headers: Response headers
        links: Link relations by name (``"next"`` -> URI)
        body: Response payload
    """
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    links: Mapping[str, str] = field(default_factory=dict)
    body: Body = field(default_factory=EmptyBody)

    def header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default


class Transport(ABC):
    """
    Abstract base class for transports the cursor and client call into.

    Subclasses perform the HTTP exchange and know how to turn a
    server-relative path into an absolute URI.
    """

    @abstractmethod
    def request(self, spec: RequestSpec) -> TransportResponse:
        """
        Execute one request.

        Raises:
            TransportError: If the server could not be reached
        """
        pass

    @abstractmethod
    def resolve(self, path: str) -> str:
        """
        Resolve a server-relative path (e.g. a ``next`` link) into an absolute URI.
        """
        pass

    def get(self, uri: str) -> TransportResponse:
        """Issue an authenticated GET to an absolute URI."""
        return self.request(RequestSpec(url=uri))

    def close(self) -> None:
        """Release connections. Safe to call more than once."""
        pass


class HttpTransport(Transport):
    """
    Transport backed by ``httpx.Client``.

    Every request carries HTTP Basic credentials, accepts gzip and identifies
    the library through the User-Agent header. When rate limiting is enabled
    in the config, requests are paced and 429/5xx responses retried here.
    """

    def __init__(
        self,
        config: ClientConfig,
        rate_limiter: RateLimiter | None = None,
        http_transport: httpx.BaseTransport | None = None,
        time_provider: TimeProvider | None = None,
    ):
        """
        Args:
            config: Connection settings
            rate_limiter: Explicit limiter; built from config.limits when omitted
            http_transport: httpx transport to send through (tests pass httpx.MockTransport)
            time_provider: Clock for the limiter built from config
        """
        self.config = config
        if rate_limiter is None and config.limits.enabled:
            rate_limiter = RateLimiter(
                config.limits,
                host=config.host,
                headers=config.headers,
                time_provider=time_provider,
            )
        self.rate_limiter = rate_limiter

        verify: Any = True
        if config.ca_file:
            verify = ssl.create_default_context(cafile=config.ca_file)

        self._client = httpx.Client(
            auth=httpx.BasicAuth(config.key, config.secret),
            headers=self.auth(),
            timeout=config.timeout,
            verify=verify,
            transport=http_transport,
        )

    def auth(self, initial_headers: dict[str, str] | None = None) -> dict[str, str]:
        """
        Identifying headers sent with every request.

        Credentials themselves travel through httpx.BasicAuth.
        """
        headers = initial_headers.copy() if initial_headers else {}
        headers["User-Agent"] = self.config.user_agent
        headers["Accept-Encoding"] = "gzip"
        return headers

    def build_uri(self, parts: list[str], params: Mapping[str, Any] | None = None) -> str:
        """
        Build a versioned API URI from path segments.

        Each segment is percent-escaped on its own, so keys may contain
        slashes, spaces or query characters.
        """
        escaped = [quote(str(part), safe="") for part in [self.config.api_version, *parts]]
        uri = f"{self.config.base_url}/{'/'.join(escaped)}/"
        if params:
            query = encode_query(params)
            if query:
                uri = f"{uri}?{query}"
        return uri

    def resolve(self, path: str) -> str:
        return urljoin(f"{self.config.base_url}/", path)

    def prepare_request(
        self,
        method: str,
        parts: list[str],
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> RequestSpec:
        """
        Prepare a request specification for an endpoint.

        Args:
            method: HTTP method
            parts: Path segments below the API version
            params: Optional query parameters
            body: Optional payload, resolved with to_body()
        """
        return RequestSpec(
            url=self.build_uri(parts, params),
            method=method,
            body=to_body(body),
        )

    def request(self, spec: RequestSpec) -> TransportResponse:
        attempt = 0
        while True:
            throttle = (
                self.rate_limiter.acquire(spec.method, spec.url)
                if self.rate_limiter is not None
                else nullcontext()
            )
            with throttle:
                response, elapsed_ms = self._send(spec)

            get_recorder().record(create_event(
                host=self.config.host,
                path=spec.url,
                method=spec.method,
                decision=TelemetryDecision.ALLOW,
                status=response.status_code,
                elapsed_ms=elapsed_ms,
                attempt=attempt,
            ))
            logger.debug(f"{spec.method} {spec.url} -> {response.status_code} ({elapsed_ms:.1f}ms)")

            if self.rate_limiter is not None:
                wait_time = self.rate_limiter.handle_response(
                    spec.method,
                    spec.url,
                    response.headers,
                    response.status_code,
                    attempt=attempt,
                )
                if wait_time is not None and self.rate_limiter.should_retry(
                    response.status_code, attempt, spec.method
                ):
                    self.rate_limiter.record_backoff(
                        spec.method, spec.url, response.status_code, wait_time, attempt
                    )
                    self.rate_limiter.time_provider.sleep(wait_time)
                    attempt += 1
                    continue

            return self._to_response(response)

    def _send(self, spec: RequestSpec) -> tuple[httpx.Response, float]:
        headers = dict(spec.headers)
        content = None
        if isinstance(spec.body, TextBody):
            content = spec.body.text.encode("utf-8")
        elif isinstance(spec.body, EncodedBody):
            content = spec.body.data
            headers.setdefault("Content-Type", spec.body.content_type)

        start = time.monotonic()
        try:
            response = self._client.request(spec.method, spec.url, headers=headers, content=content)
        except httpx.TransportError as exc:
            raise TransportError(
                f"Error connecting to {self.config.host}: {exc}",
                hint=self._tls_hint(exc),
            ) from exc
        return response, (time.monotonic() - start) * 1000

    def _tls_hint(self, exc: httpx.TransportError) -> str | None:
        message = str(exc).lower()
        if "ssl" not in message and "certificate" not in message:
            return None
        store = self.config.ca_file or "the system trust store"
        return f'there may be a problem with the set of certificates in "{store}"'

    @staticmethod
    def _to_response(response: httpx.Response) -> TransportResponse:
        links = {
            rel: link["url"]
            for rel, link in response.links.items()
            if "url" in link
        }

        content = response.content
        content_type = response.headers.get("Content-Type", "")
        if not content:
            body: Body = EmptyBody()
        elif not content_type or "json" in content_type or content_type.startswith("text/"):
            body = TextBody(response.text)
        else:
            body = EncodedBody(content, content_type)

        return TransportResponse(
            status_code=response.status_code,
            headers=response.headers,
            links=links,
            body=body,
        )

    def close(self) -> None:
        self._client.close()
