"""
Lazy cursor over paginated API responses.

A Cursor represents one logical read. It may issue several HTTP requests
while it is iterated, but never more than one per page and never before the
consumer actually needs the next page:

    cursor = client.read_data("temp-1", start, end)
    for point in cursor:
        print(point.ts, point.value)

Only one page is held in memory at a time. Iteration is single pass and
forward only; a consumer that stops early simply stops causing requests.

Pages continue while the response carries a non-empty ``Truncated`` header,
in which case the ``next`` link relation names the following page.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Generic, Optional, TypeVar
from urllib.parse import urlsplit

from tsdb_client.core.codec import WireRecord, body_text, decode_body, wrap
from tsdb_client.core.errors import MalformedPage, UnexpectedStatus
from tsdb_client.core.extractors import PageExtractor
from tsdb_client.core.telemetry import TelemetryDecision, create_event, get_recorder
from tsdb_client.core.transport import Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRUNCATED_HEADER = "Truncated"
NEXT_RELATION = "next"
EXPECTED_STATUS = 200


@dataclass(frozen=True)
class PageFetch:
    """
    Everything one page fetch produced.

    Attributes:
        records: Records of the page, in server order
        next_uri: Absolute URI of the following page, None on the last page
        side_values: Side attributes copied from the page's top level
    """
    records: tuple[Any, ...]
    next_uri: Optional[str] = None
    side_values: Mapping[str, Any] = field(default_factory=dict)


def fetch_page(
    transport: Transport,
    uri: str,
    extractor: PageExtractor,
    record_type: WireRecord[Any],
    side_attributes: Iterable[str] = (),
    truncated_header: str = TRUNCATED_HEADER,
) -> PageFetch:
    """
    Fetch and decode a single page.

    Args:
        transport: Transport to issue the GET through
        uri: Absolute URI of the page
        extractor: Strategy selecting the records from the page
        record_type: Type whose from_dict wraps each JSON object
        side_attributes: Top-level fields to copy from the page
        truncated_header: Header whose non-empty value means more pages follow

    Returns:
        PageFetch for the page

    Raises:
        TransportError: If the server could not be reached
        UnexpectedStatus: If the status is not 200
        MalformedPage: If the page does not match the extractor or record type
    """
    response = transport.get(uri)
    if response.status_code != EXPECTED_STATUS:
        raise UnexpectedStatus(response.status_code, body_text(response.body), EXPECTED_STATUS)

    decoded = decode_body(response.body)
    records = extractor.extract(wrap(decoded, record_type))

    side_values = {
        name: decoded.get(name) if isinstance(decoded, dict) else None
        for name in side_attributes
    }

    next_uri = None
    if response.header(truncated_header):
        link = response.links.get(NEXT_RELATION)
        if not link:
            raise MalformedPage(f"Truncated page from {uri} has no '{NEXT_RELATION}' link")
        next_uri = transport.resolve(link).rstrip("/")

    return PageFetch(
        records=tuple(records),
        next_uri=next_uri,
        side_values=MappingProxyType(side_values),
    )


class Cursor(Iterator[T], Generic[T]):
    """
    Forward-only iterator over every record of a paginated query.

    Side attributes (e.g. ``start``, ``end``, ``rollup``) are copied from each
    page envelope and can be looked up with ``cursor["rollup"]``. Looking one
    up before iteration started fetches the first page.

    A failed fetch raises from ``next()`` and leaves the cursor exhausted.
    """

    def __init__(
        self,
        uri: str,
        transport: Transport,
        extractor: PageExtractor,
        record_type: WireRecord[T],
        side_attributes: Iterable[str] = (),
        truncated_header: str = TRUNCATED_HEADER,
    ):
        self.uri = uri
        self.transport = transport
        self.extractor = extractor
        self.record_type = record_type
        self.side_attributes = tuple(side_attributes)
        self.truncated_header = truncated_header
        self.pages_fetched = 0

        self._next_uri: Optional[str] = uri
        # Reversed so the next record is popped from the tail
        self._buffer: list[T] = []
        self._side_values: dict[str, Any] = {}

    @property
    def next_uri(self) -> Optional[str]:
        """URI of the page the next fetch will request, None when no page is left."""
        return self._next_uri

    @property
    def exhausted(self) -> bool:
        return not self._buffer and self._next_uri is None

    def __iter__(self) -> "Cursor[T]":
        return self

    def __next__(self) -> T:
        # Loops only past empty pages that still announce a successor
        while not self._buffer:
            if self._next_uri is None:
                raise StopIteration
            self._load_page()
        return self._buffer.pop()

    def side_attribute(self, name: str) -> Any:
        """
        Value of a side attribute on the most recently fetched page.

        Raises:
            KeyError: If the cursor was not configured with this attribute
        """
        if name not in self.side_attributes:
            raise KeyError(name)
        if self.pages_fetched == 0 and self._next_uri is not None:
            self._load_page()
        return self._side_values.get(name)

    def __getitem__(self, name: str) -> Any:
        return self.side_attribute(name)

    def _load_page(self) -> None:
        uri = self._next_uri
        # Stays None if the fetch raises
        self._next_uri = None

        page = fetch_page(
            self.transport,
            uri,
            self.extractor,
            self.record_type,
            self.side_attributes,
            self.truncated_header,
        )

        self._buffer = list(reversed(page.records))
        self._side_values = dict(page.side_values)
        self._next_uri = page.next_uri
        self.pages_fetched += 1

        get_recorder().record(create_event(
            host=urlsplit(uri).hostname or "",
            path=uri,
            decision=TelemetryDecision.PAGE,
            records=len(page.records),
        ))
        logger.debug(
            f"Fetched page {self.pages_fetched} with {len(page.records)} records, "
            f"more pages: {page.next_uri is not None}"
        )

    def __repr__(self) -> str:
        return (
            f"Cursor(uri={self.uri!r}, extractor={self.extractor!r}, "
            f"pages_fetched={self.pages_fetched}, exhausted={self.exhausted})"
        )
