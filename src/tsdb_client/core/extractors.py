"""
Page extractors.

An extractor turns one decoded (and wrapped) page into the ordered list of
records a cursor yields. Endpoints either return a bare array of records or
a single envelope object that carries the records in one of its fields.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from tsdb_client.core.errors import MalformedPage


class PageExtractor(ABC):
    """Strategy for pulling the record sequence out of a page."""

    @abstractmethod
    def extract(self, page: Any) -> list[Any]:
        """
        Return the records of a page in server order.

        Raises:
            MalformedPage: If the page does not have the expected shape
        """
        pass


class ArrayExtractor(PageExtractor):
    """Pages whose JSON root is the record array itself."""

    def extract(self, page: Any) -> list[Any]:
        if not isinstance(page, list):
            raise MalformedPage(
                f"Expected an array page, got {type(page).__name__}"
            )
        return page

    def __repr__(self) -> str:
        return "ArrayExtractor()"


class EnvelopeExtractor(PageExtractor):
    """Pages whose JSON root is an object holding the records in a field."""

    def __init__(self, field: str = "data"):
        self.field = field

    def extract(self, page: Any) -> list[Any]:
        if isinstance(page, list):
            raise MalformedPage(
                f"Expected an envelope with a '{self.field}' field, got an array page"
            )

        if isinstance(page, Mapping):
            records = page.get(self.field)
        else:
            records = getattr(page, self.field, None)

        # An empty result set still carries the field
        if records is None:
            raise MalformedPage(f"Envelope page is missing the '{self.field}' field")
        return list(records)

    def __repr__(self) -> str:
        return f"EnvelopeExtractor(field={self.field!r})"
