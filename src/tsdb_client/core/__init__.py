"""Core pagination engine, transport and supporting types."""

from tsdb_client.core.config import (
    ClientConfig,
    HeaderConfig,
    LimitsConfig,
    load_config,
    validate_config,
)
from tsdb_client.core.cursor import Cursor, PageFetch, fetch_page
from tsdb_client.core.errors import (
    ClientError,
    ConfigValidationError,
    MalformedPage,
    MultiStatusPartialFailure,
    TransportError,
    UnexpectedStatus,
)
from tsdb_client.core.extractors import ArrayExtractor, EnvelopeExtractor, PageExtractor
from tsdb_client.core.rate_limiter import (
    RateLimiter,
    RateLimiterStats,
    SystemTimeProvider,
    TimeProvider,
    TokenBucket,
)
from tsdb_client.core.transport import (
    Body,
    EmptyBody,
    EncodedBody,
    HttpTransport,
    RequestSpec,
    TextBody,
    Transport,
    TransportResponse,
)

__all__ = [
    # cursor
    "Cursor",
    "PageFetch",
    "fetch_page",
    # extractors
    "ArrayExtractor",
    "EnvelopeExtractor",
    "PageExtractor",
    # transport
    "Body",
    "EmptyBody",
    "EncodedBody",
    "HttpTransport",
    "RequestSpec",
    "TextBody",
    "Transport",
    "TransportResponse",
    # config
    "ClientConfig",
    "HeaderConfig",
    "LimitsConfig",
    "load_config",
    "validate_config",
    # errors
    "ClientError",
    "ConfigValidationError",
    "MalformedPage",
    "MultiStatusPartialFailure",
    "TransportError",
    "UnexpectedStatus",
    # rate_limiter
    "RateLimiter",
    "RateLimiterStats",
    "SystemTimeProvider",
    "TimeProvider",
    "TokenBucket",
]
