"""
Client for the time-series database API.

Read calls that can return large collections hand back a Cursor, which
fetches pages lazily as it is iterated. Everything else is a single request
whose decoded response is returned directly.
"""

import dataclasses
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from tsdb_client.api.models import (
    DataPoint,
    DataPointFound,
    DataSet,
    DeleteSummary,
    MultiPointSegment,
    MultiWrite,
    Series,
    SeriesSummary,
    SingleValue,
)
from tsdb_client.core.codec import body_text, decode_body
from tsdb_client.core.config import ClientConfig, validate_config
from tsdb_client.core.cursor import Cursor
from tsdb_client.core.errors import ClientError, MultiStatusPartialFailure, UnexpectedStatus
from tsdb_client.core.extractors import ArrayExtractor, EnvelopeExtractor, PageExtractor
from tsdb_client.core.transport import HttpTransport, TransportResponse

logger = logging.getLogger(__name__)

SUCCESS_STATUS = 200
MULTI_STATUS = 207

ATTRIBUTE_PARAMS = {
    "ids": "id",
    "keys": "key",
    "tags": "tag",
    "attributes": "attr",
}

ROLLUP_PARAMS = {
    "rollup_function": "rollup.fold",
    "rollup_functions": "rollup.fold",
    "rollup_period": "rollup.period",
    "interpolation_function": "interpolation.function",
    "interpolation_period": "interpolation.period",
}

FIND_PARAMS = {
    "predicate_function": "predicate.function",
    "predicate_period": "predicate.period",
}


def map_params(params: Mapping[str, Any], mapping: Mapping[str, str]) -> dict[str, Any]:
    """
    Rename option names to API query parameter names.

    Options not named in the mapping pass through unchanged; None values are dropped.
    """
    remaining = dict(params)
    mapped: dict[str, Any] = {}
    for source, target in mapping.items():
        value = remaining.pop(source, None)
        if value is not None:
            mapped[target] = value
    mapped.update({k: v for k, v in remaining.items() if v is not None})
    return mapped


def _time_range(params: dict[str, Any], start: datetime, end: datetime) -> dict[str, Any]:
    params["start"] = start
    params["end"] = end
    return params


class Client:
    """
    Entry point for reading and writing series data.

    Example:
        with Client("key", "secret") as client:
            for point in client.read_data("temp-1", start, end):
                print(point.ts, point.value)
    """

    def __init__(
        self,
        key: str | None = None,
        secret: str | None = None,
        config: ClientConfig | None = None,
        transport: HttpTransport | None = None,
    ):
        """
        Args:
            key: API key; overrides config.key when given
            secret: API secret; overrides config.secret when given
            config: Connection settings (defaults to ClientConfig())
            transport: Transport to send requests through (built from config when omitted)

        Raises:
            ConfigValidationError: If the resulting config is invalid
        """
        config = config or ClientConfig()
        overrides = {name: value for name, value in (("key", key), ("secret", secret)) if value is not None}
        if overrides:
            config = dataclasses.replace(config, **overrides)
        validate_config(config)
        self.config = config
        self.transport = transport or HttpTransport(config)

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.transport.close()

    # Series

    def create_series(self, series_key: str | None = None) -> Series:
        body = {"key": series_key} if series_key else {}
        return Series.from_dict(self._call("POST", ["series"], body=body))

    def get_series(self, series_key: str) -> Series:
        return Series.from_dict(self._call("GET", ["series", "key", series_key]))

    def update_series(self, series: Series) -> Series:
        json = self._call("PUT", ["series", "id", series.id], body=series.to_dict())
        return Series.from_dict(json)

    def delete_series(self, **options: Any) -> DeleteSummary:
        """Delete every series matching the filter (ids, keys, tags, attributes)."""
        json = self._call("DELETE", ["series"], params=map_params(options, ATTRIBUTE_PARAMS))
        return DeleteSummary.from_dict(json)

    def list_series(self, **options: Any) -> Cursor[Series]:
        """List series, optionally filtered by ids, keys, tags or attributes."""
        return self._cursor(
            ["series"], map_params(options, ATTRIBUTE_PARAMS), ArrayExtractor(), Series
        )

    # Reads

    def read_data(self, series_key: str, start: datetime, end: datetime, **options: Any) -> Cursor[DataPoint]:
        """
        Read the datapoints of one series.

        Rollup and interpolation options (rollup_function, rollup_period,
        interpolation_function, interpolation_period) and ``tz`` are passed on.
        The cursor mirrors ``start``, ``end``, ``rollup`` and ``series``.
        """
        params = _time_range(map_params(options, ROLLUP_PARAMS), start, end)
        return self._cursor(
            ["series", "key", series_key, "segment"],
            params,
            EnvelopeExtractor("data"),
            DataSet,
            "start", "end", "rollup", "series",
        )

    def read_multi_rollups(self, series_key: str, start: datetime, end: datetime, **options: Any) -> Cursor[Any]:
        """Read several rollups of one series at once; each MultiPoint is keyed by fold."""
        params = _time_range(map_params(options, ROLLUP_PARAMS), start, end)
        return self._cursor(
            ["series", "key", series_key, "data", "rollups", "segment"],
            params,
            EnvelopeExtractor("data"),
            MultiPointSegment,
            "series",
        )

    def read_multi(self, start: datetime, end: datetime, **options: Any) -> Cursor[Any]:
        """Read several series at once; each MultiPoint is keyed by series key."""
        params = _time_range(
            map_params(map_params(options, ATTRIBUTE_PARAMS), ROLLUP_PARAMS), start, end
        )
        return self._cursor(["multi"], params, EnvelopeExtractor("data"), MultiPointSegment, "series")

    def find_data(self, series_key: str, start: datetime, end: datetime, **options: Any) -> Cursor[Any]:
        """Find the points matching a predicate (predicate_function, predicate_period) per interval."""
        params = _time_range(map_params(options, FIND_PARAMS), start, end)
        return self._cursor(
            ["series", "key", series_key, "find"],
            params,
            EnvelopeExtractor("data"),
            DataPointFound,
            "find", "predicate",
        )

    def aggregate_data(self, aggregation: str, start: datetime, end: datetime, **options: Any) -> Cursor[DataPoint]:
        """Fold several series into one with the given aggregation function."""
        params = _time_range(
            map_params(map_params(options, ATTRIBUTE_PARAMS), ROLLUP_PARAMS), start, end
        )
        params["aggregation.fold"] = aggregation
        return self._cursor(["segment"], params, EnvelopeExtractor("data"), DataSet)

    def get_summary(self, series_key: str, start: datetime, end: datetime, tz: str | None = None) -> SeriesSummary:
        params = _time_range({"tz": tz} if tz else {}, start, end)
        json = self._call("GET", ["series", "key", series_key, "summary"], params=params)
        return SeriesSummary.from_dict(json)

    def single_value(self, series_key: str, ts: datetime | None = None, direction: str | None = None, **options: Any) -> SingleValue:
        params = map_params({"ts": ts, "direction": direction, **options}, {})
        json = self._call("GET", ["series", "key", series_key, "single"], params=params)
        return SingleValue.from_dict(json)

    def multi_series_single_value(self, ts: datetime | None = None, direction: str | None = None, **options: Any) -> Cursor[SingleValue]:
        params = map_params({"ts": ts, "direction": direction, **options}, ATTRIBUTE_PARAMS)
        return self._cursor(["single"], params, ArrayExtractor(), SingleValue)

    # Writes

    def write_data(self, series_key: str, data: list[DataPoint]) -> Any:
        body = [point.to_dict() for point in data]
        return self._call("POST", ["series", "key", series_key, "data"], body=body)

    def increment_data(self, series_key: str, data: list[DataPoint]) -> Any:
        """Add each point's value to the value already stored at its timestamp."""
        body = [point.to_dict() for point in data]
        return self._call("POST", ["series", "key", series_key, "increment"], body=body)

    def write_multi(
        self,
        multi: MultiWrite | None = None,
        build: Callable[[MultiWrite], None] | None = None,
    ) -> Any:
        """
        Write points to several series in one request.

        Either pass a filled MultiWrite, or a ``build`` callback that fills
        the one it is given.

        Raises:
            MultiStatusPartialFailure: If some of the points were rejected
        """
        if build is not None:
            multi = multi or MultiWrite()
            build(multi)
        elif multi is None:
            raise ClientError("You must either pass a multi write object, or provide a build callback")

        logger.debug(f"Writing {len(multi)} points to multiple series")
        return self._call("POST", ["multi"], body=multi.series)

    def delete_data(self, series_key: str, start: datetime, end: datetime) -> Any:
        params = _time_range({}, start, end)
        return self._call("DELETE", ["series", "key", series_key, "data"], params=params)

    # Plumbing

    def _cursor(
        self,
        parts: list[str],
        params: Mapping[str, Any],
        extractor: PageExtractor,
        record_type: Any,
        *side_attributes: str,
    ) -> Cursor[Any]:
        return Cursor(
            self.transport.build_uri(parts, params),
            self.transport,
            extractor,
            record_type,
            side_attributes,
            truncated_header=self.config.headers.truncated,
        )

    def _call(
        self,
        method: str,
        parts: list[str],
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        spec = self.transport.prepare_request(method, parts, params, body)
        return self._parse_response(self.transport.request(spec))

    @staticmethod
    def _parse_response(response: TransportResponse) -> Any:
        if response.status_code == SUCCESS_STATUS:
            return decode_body(response.body)
        if response.status_code == MULTI_STATUS:
            raise MultiStatusPartialFailure(response.status_code, decode_body(response.body))
        raise UnexpectedStatus(response.status_code, body_text(response.body), SUCCESS_STATUS)
