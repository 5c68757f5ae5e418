"""JSON decoding of response bodies and wrapping into record types."""

import json
from typing import Any, Protocol, TypeVar

from tsdb_client.core.errors import MalformedPage
from tsdb_client.core.transport import Body, EmptyBody, EncodedBody, TextBody

R = TypeVar("R", covariant=True)


class WireRecord(Protocol[R]):
    """Anything with a ``from_dict`` constructor can be yielded by a cursor."""

    def from_dict(self, data: dict[str, Any]) -> R:
        ...


def decode_body(body: Body) -> Any:
    """
    Decode a response body into native lists/dicts.

    An empty body decodes to an empty dict.

    Raises:
        MalformedPage: If the body is not UTF-8 encoded JSON
    """
    if isinstance(body, EmptyBody):
        return {}

    if isinstance(body, TextBody):
        text = body.text
    elif isinstance(body, EncodedBody):
        try:
            text = body.data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPage(f"Response body is not UTF-8 ({body.content_type}): {e}") from e
    else:
        raise TypeError(f"Unsupported body type: {type(body).__name__}")

    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPage(f"Response body is not valid JSON: {e}") from e


def body_text(body: Body) -> str:
    """Body as text, for error messages."""
    if isinstance(body, TextBody):
        return body.text
    if isinstance(body, EncodedBody):
        return body.data.decode("utf-8", errors="replace")
    return ""


def wrap(decoded: Any, record_type: WireRecord[R]) -> Any:
    """
    Convert a decoded JSON root into records.

    An array root gives a list of records, an object root a single record.

    Raises:
        MalformedPage: If an element does not match the record type
    """
    name = getattr(record_type, "__name__", repr(record_type))
    try:
        if isinstance(decoded, list):
            return [record_type.from_dict(obj) for obj in decoded]
        return record_type.from_dict(decoded)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedPage(f"Cannot decode {name} from response: {e!r}") from e
