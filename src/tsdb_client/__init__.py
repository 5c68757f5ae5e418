"""Client library for a hosted time-series database REST API."""

__version__ = "0.1.0"

from tsdb_client.api import Client  # noqa: E402

__all__ = ["Client", "__version__"]
