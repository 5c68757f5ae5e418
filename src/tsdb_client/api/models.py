"""
Record types returned by the API.

Each type knows how to build itself from the decoded JSON object the server
sends (``from_dict``), and the types that are written back also know how to
serialize themselves (``to_dict``).
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from tsdb_client.core.transport import format_timestamp


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as sent by the API (``Z`` or numeric offset)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class DataPoint:
    """
    The fundamental unit of the database.

    Attributes:
        ts: Timestamp of the point
        value: Numeric value
    """
    ts: datetime
    value: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataPoint":
        return cls(ts=parse_timestamp(data["t"]), value=data["v"])

    def to_dict(self) -> dict[str, Any]:
        return {"t": format_timestamp(self.ts), "v": self.value}


@dataclass
class Series:
    """One logical stream of time series data."""
    id: str
    key: str
    name: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Series":
        return cls(
            id=data["id"],
            key=data["key"],
            name=data.get("name") or "",
            attributes=data.get("attributes") or {},
            tags=data.get("tags") or [],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "attributes": self.attributes,
            "tags": self.tags,
        }


@dataclass
class DataSet:
    """A page of DataPoints for one series, with the rollup that produced them."""
    data: list[DataPoint]
    series: Series | None = None
    rollup: dict[str, Any] | None = None
    tz: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataSet":
        series = Series.from_dict(data["series"]) if data.get("series") else None
        return cls(
            data=[DataPoint.from_dict(dp) for dp in data["data"]],
            series=series,
            rollup=data.get("rollup"),
            tz=data.get("tz"),
        )


@dataclass
class MultiPoint:
    """Several values sharing one timestamp, keyed by series key or rollup fold."""
    ts: datetime
    value: dict[str, float]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MultiPoint":
        return cls(ts=parse_timestamp(data["t"]), value=data["v"])

    def __getitem__(self, key: str) -> float:
        return self.value[key]


@dataclass
class MultiPointSegment:
    """A page of MultiPoints."""
    data: list[MultiPoint]
    rollup: dict[str, Any] | None = None
    tz: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MultiPointSegment":
        return cls(
            data=[MultiPoint.from_dict(mp) for mp in data["data"]],
            rollup=data.get("rollup"),
            tz=data.get("tz"),
        )


@dataclass
class FoundPoint:
    """A DataPoint located by find_data, with the interval it was found in."""
    found: DataPoint
    start: datetime
    end: datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FoundPoint":
        interval = data["interval"]
        return cls(
            found=DataPoint.from_dict(data["found"]),
            start=parse_timestamp(interval["start"]),
            end=parse_timestamp(interval["end"]),
        )


@dataclass
class DataPointFound:
    """A page of find_data results."""
    data: list[FoundPoint]
    interval: Any = None
    predicate: dict[str, Any] | None = None
    tz: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataPointFound":
        return cls(
            data=[FoundPoint.from_dict(found) for found in data["data"]],
            interval=data.get("interval"),
            predicate=data.get("predicate"),
            tz=data.get("tz"),
        )


@dataclass
class SingleValue:
    """The point nearest a timestamp for one series; data is None when the series is empty."""
    series: Series
    data: DataPoint | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SingleValue":
        point = data.get("data")
        return cls(
            series=Series.from_dict(data["series"]),
            data=DataPoint.from_dict(point) if point else None,
        )


class Summary(Mapping[str, Any]):
    """
    Read-only mapping of summary statistics (count, mean, max, ...).

    The set of keys depends on the server, so values are looked up by name
    rather than exposed as attributes.
    """

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values = dict(values or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Summary":
        return cls(data)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Summary({self._values!r})"


@dataclass
class SeriesSummary:
    """Aggregate statistics for a series over a time range."""
    summary: Summary
    series: dict[str, Any]
    start: datetime
    end: datetime
    tz: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeriesSummary":
        return cls(
            summary=Summary.from_dict(data["summary"]),
            series=data["series"],
            start=parse_timestamp(data["start"]),
            end=parse_timestamp(data["end"]),
            tz=data.get("tz"),
        )


@dataclass
class DeleteSummary:
    """Returned from delete calls."""
    deleted: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeleteSummary":
        return cls(deleted=data["deleted"])


class MultiWrite:
    """Collects datapoints for several series to send in one write_multi call."""

    def __init__(self):
        self.series: list[dict[str, Any]] = []

    def add(self, series_key: str, data: list[DataPoint]) -> None:
        """
        Queue datapoints for a series.

        Args:
            series_key: Key of the series to write to
            data: Points to write
        """
        for point in data:
            self.series.append({"key": series_key, **point.to_dict()})

    def __len__(self) -> int:
        return len(self.series)
