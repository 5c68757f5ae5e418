"""API client and record types."""

from tsdb_client.api.client import Client, map_params
from tsdb_client.api.models import (
    DataPoint,
    DataPointFound,
    DataSet,
    DeleteSummary,
    FoundPoint,
    MultiPoint,
    MultiPointSegment,
    MultiWrite,
    Series,
    SeriesSummary,
    SingleValue,
    Summary,
)

__all__ = [
    "Client",
    "map_params",
    "DataPoint",
    "DataPointFound",
    "DataSet",
    "DeleteSummary",
    "FoundPoint",
    "MultiPoint",
    "MultiPointSegment",
    "MultiWrite",
    "Series",
    "SeriesSummary",
    "SingleValue",
    "Summary",
]
