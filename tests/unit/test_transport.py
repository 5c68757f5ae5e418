"""
Unit tests for the HTTP transport.

Requests go through httpx.MockTransport, so these tests cover URI building,
headers, response conversion, error mapping and the retry loop without a
network.
"""
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tsdb_client.core import (
    ClientConfig,
    EmptyBody,
    EncodedBody,
    HttpTransport,
    LimitsConfig,
    RequestSpec,
    TextBody,
    TransportError,
    TransportResponse,
)
from tsdb_client.core.telemetry import TelemetryDecision
from tsdb_client.core.transport import encode_query, format_timestamp, to_body
from tests.helpers import FakeTimeProvider


class Recorder:
    """httpx handler serving queued responses and keeping the requests it saw."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queued = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        # A fresh Response per request; the last one repeats
        return httpx.Response(queued.status_code, headers=queued.headers, content=queued.content)


def make_transport(handler, **config_overrides):
    config = ClientConfig(key="key", secret="secret", **config_overrides)
    return HttpTransport(config, http_transport=httpx.MockTransport(handler))


class TestFormatting:

    def test_utc_timestamp_uses_z(self):
        ts = datetime(2012, 1, 1, tzinfo=timezone.utc)
        assert format_timestamp(ts) == "2012-01-01T00:00:00.000Z"

    def test_naive_timestamp_is_utc(self):
        assert format_timestamp(datetime(2012, 1, 2, 3, 4, 5)) == "2012-01-02T03:04:05.000Z"

    def test_offset_timestamp(self):
        ts = datetime(2013, 8, 1, 4, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert format_timestamp(ts) == "2013-08-01T04:00:00.000-05:00"

    def test_encode_query_lists_and_dicts(self):
        query = encode_query({"key": ["a", "b"], "attr": {"x": "1"}, "limit": 5})
        assert query == "key=a&key=b&attr[x]=1&limit=5"

    def test_encode_query_escapes_inside_brackets(self):
        query = encode_query({"attr": {"room name": "a&b"}, "tz": "America/Chicago"})
        assert query == "attr[room%20name]=a%26b&tz=America%2FChicago"

    def test_encode_query_booleans_and_none(self):
        assert encode_query({"hello": True, "skip": None, "off": False}) == "hello=true&off=false"

    def test_to_body(self):
        assert to_body(None) == EmptyBody()
        assert to_body("raw") == TextBody("raw")
        assert to_body(b"\x00") == EncodedBody(b"\x00", "application/octet-stream")
        assert to_body([{"t": "x"}]) == EncodedBody(b'[{"t": "x"}]', "application/json")


class TestBuildUri:

    def test_versioned_path_with_trailing_slash(self):
        transport = make_transport(Recorder(httpx.Response(200)))

        assert transport.build_uri(["series"]) == "https://api.tempo-db.com/v1/series/"

    def test_segments_are_escaped(self):
        transport = make_transport(Recorder(httpx.Response(200)))

        uri = transport.build_uri(["series", "key", "a b^d&e?f/g", "segment"])

        assert uri == "https://api.tempo-db.com/v1/series/key/a%20b%5Ed%26e%3Ff%2Fg/segment/"

    def test_query_is_appended(self):
        transport = make_transport(Recorder(httpx.Response(200)))

        uri = transport.build_uri(["series"], {"key": ["key1", "key2"]})

        assert uri == "https://api.tempo-db.com/v1/series/?key=key1&key=key2"

    def test_non_default_port_and_plain_http(self):
        transport = make_transport(
            Recorder(httpx.Response(200)), host="127.0.0.1", port=8889, secure=False
        )

        assert transport.build_uri(["multi"]) == "http://127.0.0.1:8889/v1/multi/"

    def test_resolve_server_relative_link(self):
        transport = make_transport(Recorder(httpx.Response(200)))

        assert (
            transport.resolve("/v1/series/key/k/segment/?cursor=abc")
            == "https://api.tempo-db.com/v1/series/key/k/segment/?cursor=abc"
        )


class TestRequests:

    def test_auth_and_identifying_headers(self):
        handler = Recorder(httpx.Response(200, json=[]))
        transport = make_transport(handler)

        transport.get("https://api.tempo-db.com/v1/series/")

        sent = handler.requests[0]
        assert sent.headers["Authorization"] == "Basic a2V5OnNlY3JldA=="
        assert sent.headers["User-Agent"].startswith("tsdb-client-python/")
        assert sent.headers["Accept-Encoding"] == "gzip"

    def test_json_body_is_sent_with_content_type(self):
        handler = Recorder(httpx.Response(200))
        transport = make_transport(handler)

        spec = transport.prepare_request("POST", ["series"], body={"key": "k"})
        transport.request(spec)

        sent = handler.requests[0]
        assert sent.method == "POST"
        assert sent.headers["Content-Type"] == "application/json"
        assert sent.content == b'{"key": "k"}'

    def test_response_conversion(self):
        handler = Recorder(httpx.Response(
            200,
            headers={
                "Truncated": "true",
                "Link": '</v1/series/?cursor=abc>; rel="next"',
                "Content-Type": "application/json",
            },
            content=b'[{"id": "1", "key": "k"}]',
        ))
        transport = make_transport(handler)

        response = transport.get("https://api.tempo-db.com/v1/series/")

        assert isinstance(response, TransportResponse)
        assert response.status_code == 200
        assert response.header("truncated") == "true"
        assert response.links == {"next": "/v1/series/?cursor=abc"}
        assert response.body == TextBody('[{"id": "1", "key": "k"}]')

    def test_empty_and_binary_bodies(self):
        transport = make_transport(Recorder(
            httpx.Response(200),
            httpx.Response(200, headers={"Content-Type": "application/octet-stream"}, content=b"\x01"),
        ))

        assert transport.get("https://api.tempo-db.com/v1/a/").body == EmptyBody()
        assert transport.get("https://api.tempo-db.com/v1/b/").body == EncodedBody(
            b"\x01", "application/octet-stream"
        )

    def test_connection_error_becomes_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        transport = make_transport(handler)

        with pytest.raises(TransportError) as exc_info:
            transport.get("https://api.tempo-db.com/v1/series/")

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert exc_info.value.hint is None

    def test_tls_error_carries_trust_store_hint(self):
        def handler(request):
            raise httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed")

        transport = make_transport(handler)

        with pytest.raises(TransportError, match="certificates"):
            transport.get("https://api.tempo-db.com/v1/series/")

    def test_exchange_is_recorded(self, recorder):
        transport = make_transport(Recorder(httpx.Response(404)))

        transport.request(RequestSpec(url="https://api.tempo-db.com/v1/series/key/x/"))

        events = recorder.get_events()
        assert len(events) == 1
        assert events[0].decision == TelemetryDecision.ALLOW.value
        assert events[0].status == 404
        assert events[0].host == "api.tempo-db.com"


class TestRetries:
    """Throttling and retries when limits are enabled."""

    @pytest.fixture
    def fake_time(self):
        return FakeTimeProvider(initial_time=1000.0)

    def limited(self, handler, fake_time, **limits):
        config = ClientConfig(
            key="key",
            secret="secret",
            limits=LimitsConfig(enabled=True, **limits),
        )
        return HttpTransport(
            config,
            http_transport=httpx.MockTransport(handler),
            time_provider=fake_time,
        )

    def test_disabled_by_default(self):
        handler = Recorder(httpx.Response(429, headers={"Retry-After": "1"}), httpx.Response(200))
        transport = make_transport(handler)

        response = transport.get("https://api.tempo-db.com/v1/series/")

        assert response.status_code == 429
        assert len(handler.requests) == 1
        assert transport.rate_limiter is None

    def test_429_honors_retry_after(self, fake_time):
        handler = Recorder(httpx.Response(429, headers={"Retry-After": "2"}), httpx.Response(200))
        transport = self.limited(handler, fake_time)

        response = transport.get("https://api.tempo-db.com/v1/series/")

        assert response.status_code == 200
        assert len(handler.requests) == 2
        assert fake_time.sleep_history == [2.0]

    def test_5xx_retried_for_get(self, fake_time):
        handler = Recorder(httpx.Response(503), httpx.Response(200))
        transport = self.limited(handler, fake_time)

        response = transport.get("https://api.tempo-db.com/v1/series/")

        assert response.status_code == 200
        assert len(fake_time.sleep_history) == 1
        assert 0.75 <= fake_time.sleep_history[0] <= 1.25

    def test_5xx_not_retried_for_post(self, fake_time):
        handler = Recorder(httpx.Response(503), httpx.Response(200))
        transport = self.limited(handler, fake_time)

        spec = transport.prepare_request("POST", ["multi"], body=[])
        response = transport.request(spec)

        assert response.status_code == 503
        assert len(handler.requests) == 1

    def test_final_response_records_no_backoff(self, fake_time, recorder):
        handler = Recorder(httpx.Response(503))
        transport = self.limited(handler, fake_time)

        transport.request(transport.prepare_request("POST", ["multi"], body=[]))

        stats = recorder.get_stats()
        assert fake_time.sleep_history == []
        assert stats.total_requests == 1
        assert stats.total_sleeps == 0
        assert stats.status_codes == {503: 1}
        assert [e.decision for e in recorder.get_events()] == [TelemetryDecision.ALLOW.value]

    def test_backoff_recorded_once_per_retry(self, fake_time, recorder):
        handler = Recorder(httpx.Response(429, headers={"Retry-After": "3"}), httpx.Response(200))
        transport = self.limited(handler, fake_time)

        transport.get("https://api.tempo-db.com/v1/series/")

        stats = recorder.get_stats()
        assert stats.total_requests == 2
        assert stats.total_sleeps == 1
        assert stats.total_sleep_time == 3.0
        assert [e.decision for e in recorder.get_events()] == [
            TelemetryDecision.ALLOW.value,
            TelemetryDecision.BACKOFF_429.value,
            TelemetryDecision.ALLOW.value,
        ]

    def test_exhausted_retries_record_no_final_backoff(self, fake_time, recorder):
        handler = Recorder(httpx.Response(500))
        transport = self.limited(handler, fake_time, max_retries=1)

        transport.get("https://api.tempo-db.com/v1/series/")

        assert len(fake_time.sleep_history) == 1
        assert recorder.get_stats().decisions_by_type == {"allow": 2, "backoff_5xx": 1}

    def test_retries_are_bounded(self, fake_time):
        handler = Recorder(httpx.Response(500))
        transport = self.limited(handler, fake_time, max_retries=2)

        response = transport.get("https://api.tempo-db.com/v1/series/")

        assert response.status_code == 500
        assert len(handler.requests) == 3

    def test_requests_are_paced(self, fake_time):
        handler = Recorder(httpx.Response(200))
        transport = self.limited(handler, fake_time, steady_rate=1.0, burst=1)

        transport.get("https://api.tempo-db.com/v1/a/")
        transport.get("https://api.tempo-db.com/v1/b/")

        assert fake_time.sleep_history == [pytest.approx(1.0)]
        assert transport.rate_limiter.get_stats().requests_throttled == 1
