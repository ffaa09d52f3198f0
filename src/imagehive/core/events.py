"""Streaming events produced by the relay and consumed by clients.

Events travel as server-sent-event records, one per ``data: <json>\\n\\n``
frame.  There are three kinds:

- ``token`` carries one incremental unit of text, forwarded as soon as the
  backend produced it.
- ``done`` terminates a successful stream with the full text and the
  ``fromGpu`` / ``offline`` flags.
- ``error`` terminates a failed stream with a human-readable message.

A well-formed stream is any number of ``token`` events followed by exactly
one ``done`` or ``error``.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import Iterable, Iterator
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

EVENT_BOUNDARY = "\n\n"
DATA_MARKER = "data:"


class TokenEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["token"] = "token"
    text: str


class DoneEvent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["done"] = "done"
    full_text: str = Field(default="", alias="fullText")
    from_gpu: bool = Field(default=False, alias="fromGpu")
    offline: bool = False


class ErrorEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[Union[TokenEvent, DoneEvent, ErrorEvent], Field(discriminator="kind")]

_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def encode_event(event: TokenEvent | DoneEvent | ErrorEvent) -> str:
    """Frame one event as an SSE ``data:`` record."""
    return f"{DATA_MARKER} {event.model_dump_json(by_alias=True)}{EVENT_BOUNDARY}"


def parse_event(payload: str | dict) -> TokenEvent | DoneEvent | ErrorEvent:
    """Validate one decoded record.

    Raises:
        ValueError: If the payload is not JSON or not a known event shape
            (``pydantic.ValidationError`` is a ``ValueError``).
    """
    if isinstance(payload, str):
        payload = json.loads(payload)
    return _event_adapter.validate_python(payload)


def iter_event_records(chunks: Iterable[str | bytes]) -> Iterator[str]:
    """Split a chunked SSE body into record payloads.

    Chunks are buffered until a blank-line boundary is seen, so a record may
    be split across any number of reads.  Only records that start with the
    ``data:`` marker are yielded, with the marker and surrounding whitespace
    stripped.  A final record left in the buffer without a trailing boundary
    is still yielded when the input ends.
    """
    buffer = ""
    # Incomplete UTF-8 sequences are held back until the next read.
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    for chunk in chunks:
        if isinstance(chunk, bytes):
            chunk = decoder.decode(chunk)
        # CRLF pairs may straddle two reads.
        buffer = (buffer + chunk).replace("\r\n", "\n")

        boundary = buffer.find(EVENT_BOUNDARY)
        while boundary != -1:
            raw = buffer[:boundary].strip()
            buffer = buffer[boundary + len(EVENT_BOUNDARY) :]
            if raw.startswith(DATA_MARKER):
                yield raw[len(DATA_MARKER) :].strip()
            boundary = buffer.find(EVENT_BOUNDARY)

    buffer += decoder.decode(b"", final=True)
    tail = buffer.strip()
    if tail.startswith(DATA_MARKER):
        yield tail[len(DATA_MARKER) :].strip()
