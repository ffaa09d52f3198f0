"""Client-side consumer of the relay's event stream.

:class:`StreamConsumer` turns one ``POST /api/chat?stream=true`` into a
final assistant reply and guarantees the caller gets one, unless both the
streaming and the non-streaming path fail.

Each send is a small state machine::

    IDLE -> STREAMING -> COMPLETED
                      -> STREAM_FAILED -> FALLBACK_REQUESTED -> COMPLETED
                                                             -> DOUBLE_FAILED

``COMPLETED`` and ``DOUBLE_FAILED`` are terminal.  Only ``COMPLETED`` adds
an assistant message to the transcript (see :class:`Conversation`).

Streaming rules
---------------
- ``token`` events are accumulated and handed to ``on_token`` immediately.
- ``done`` finalises the text.  Its ``fullText`` is used only when no token
  arrived, for backends that skip incremental output.
- ``error`` events are remembered, not acted on, until the stream ends.
- Records that fail to decode are skipped, so a ``done`` after a transient
  decoding problem still completes the send.

The stream has failed when the request could not be made, the initial
status was not a success, an ``error`` event was seen, or the body ended
without ``done``.  The consumer then makes exactly one non-streaming call
with the same messages.  If that also fails, the outcome carries one
message naming both failures.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import httpx

from imagehive.core.events import DoneEvent, ErrorEvent, TokenEvent, iter_event_records, parse_event
from imagehive.core.transcript import MessageMeta, Transcript

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"
EMPTY_REPLY = "No content returned from ImageHive yet."
IMAGE_ONLY_PROMPT = "Describe this image"


class SendState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    STREAM_FAILED = "stream_failed"
    FALLBACK_REQUESTED = "fallback_requested"
    DOUBLE_FAILED = "double_failed"


TRANSITIONS: dict[SendState, frozenset[SendState]] = {
    SendState.IDLE: frozenset({SendState.STREAMING}),
    SendState.STREAMING: frozenset({SendState.COMPLETED, SendState.STREAM_FAILED}),
    SendState.STREAM_FAILED: frozenset({SendState.FALLBACK_REQUESTED}),
    SendState.FALLBACK_REQUESTED: frozenset({SendState.COMPLETED, SendState.DOUBLE_FAILED}),
    SendState.COMPLETED: frozenset(),
    SendState.DOUBLE_FAILED: frozenset(),
}


class SendMachine:
    """Tracks the state of one send and rejects illegal transitions."""

    def __init__(self) -> None:
        self.state = SendState.IDLE
        self.history: list[SendState] = [SendState.IDLE]

    def advance(self, target: SendState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal send transition {self.state.value} -> {target.value}")
        logger.debug("Send state %s -> %s", self.state.value, target.value)
        self.state = target
        self.history.append(target)

    @property
    def terminal(self) -> bool:
        return not TRANSITIONS[self.state]


class StreamFailure(Exception):
    """The streaming path did not produce a usable reply."""


class FallbackFailure(Exception):
    """The non-streaming fallback did not produce a usable reply."""


class ConversationBusyError(RuntimeError):
    """A send was attempted while another one is still outstanding."""


@dataclass
class SendOutcome:
    """Result of one send.

    Attributes:
        state: ``COMPLETED`` or ``DOUBLE_FAILED``.
        content: Final assistant text (empty when the send failed).
        meta: Delivery flags of the reply.
        error: Combined failure message when ``state`` is ``DOUBLE_FAILED``.
        tokens: Token texts observed on the stream, in arrival order.
        history: Every state the send passed through.
        stream_error: Why the streaming path failed, if it did.
    """

    state: SendState
    content: str = ""
    meta: MessageMeta | None = None
    error: str | None = None
    tokens: list[str] = field(default_factory=list)
    history: list[SendState] = field(default_factory=list)
    stream_error: str | None = None

    @property
    def completed(self) -> bool:
        return self.state is SendState.COMPLETED


class StreamConsumer:
    """Read a chat reply from the relay, falling back to one atomic call.

    Args:
        http: An ``httpx.Client`` whose ``base_url`` points at the relay.
    """

    def __init__(self, http: httpx.Client) -> None:
        self.http = http

    @classmethod
    def connect(cls, base_url: str, *, timeout: float = 300.0) -> StreamConsumer:
        return cls(httpx.Client(base_url=base_url, timeout=httpx.Timeout(timeout, connect=10.0)))

    def close(self) -> None:
        self.http.close()

    def consume(
        self,
        messages: list[dict],
        on_token: Callable[[str], None] | None = None,
    ) -> SendOutcome:
        """Run one send for *messages* and return its outcome."""
        machine = SendMachine()
        machine.advance(SendState.STREAMING)
        tokens: list[str] = []

        try:
            content, meta = self._read_stream(messages, tokens, on_token)
        except StreamFailure as exc:
            stream_error = str(exc)
            logger.warning("Streaming failed, falling back: %s", stream_error)
            machine.advance(SendState.STREAM_FAILED)
            machine.advance(SendState.FALLBACK_REQUESTED)
            try:
                content, meta = self._request_fallback(messages)
            except FallbackFailure as fallback_exc:
                machine.advance(SendState.DOUBLE_FAILED)
                return SendOutcome(
                    state=machine.state,
                    error=(
                        f"Error contacting server: {stream_error}. "
                        f"Fallback failed: {fallback_exc}"
                    ),
                    tokens=tokens,
                    history=machine.history,
                    stream_error=stream_error,
                )
            machine.advance(SendState.COMPLETED)
            return SendOutcome(
                state=machine.state,
                content=content,
                meta=meta,
                tokens=tokens,
                history=machine.history,
                stream_error=stream_error,
            )

        machine.advance(SendState.COMPLETED)
        return SendOutcome(
            state=machine.state,
            content=content,
            meta=meta,
            tokens=tokens,
            history=machine.history,
        )

    def _read_stream(
        self,
        messages: list[dict],
        tokens: list[str],
        on_token: Callable[[str], None] | None,
    ) -> tuple[str, MessageMeta]:
        done: DoneEvent | None = None
        stream_error: str | None = None

        try:
            with self.http.stream(
                "POST", CHAT_PATH, params={"stream": "true"}, json={"messages": messages}
            ) as response:
                if response.is_error:
                    raise StreamFailure(f"HTTP {response.status_code}")

                for record in iter_event_records(response.iter_bytes()):
                    try:
                        event = parse_event(record)
                    except ValueError as exc:
                        logger.warning("Skipping undecodable stream record: %s", exc)
                        continue

                    if isinstance(event, TokenEvent):
                        tokens.append(event.text)
                        if on_token is not None:
                            on_token(event.text)
                    elif isinstance(event, DoneEvent):
                        done = event
                    elif isinstance(event, ErrorEvent):
                        stream_error = stream_error or event.message or "Streaming error"
        except httpx.HTTPError as exc:
            raise StreamFailure(str(exc) or exc.__class__.__name__) from exc

        if stream_error is not None:
            raise StreamFailure(stream_error)
        if done is None:
            raise StreamFailure("Stream ended without a done event")

        content = "".join(tokens) or done.full_text
        return content, MessageMeta(from_gpu=done.from_gpu, offline=done.offline)

    def _request_fallback(self, messages: list[dict]) -> tuple[str, MessageMeta]:
        try:
            response = self.http.post(
                CHAT_PATH, params={"stream": "false"}, json={"messages": messages}
            )
        except httpx.HTTPError as exc:
            raise FallbackFailure(str(exc) or exc.__class__.__name__) from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            detail = None
            if isinstance(data, dict):
                detail = data.get("detail") or data.get("message")
            raise FallbackFailure(str(detail) if detail else f"HTTP {response.status_code}")

        if not isinstance(data, dict):
            raise FallbackFailure("Fallback reply is not a JSON object")

        content = data.get("content") or EMPTY_REPLY
        meta = MessageMeta(from_gpu=bool(data.get("fromGpu")), offline=bool(data.get("offline")))
        return str(content), meta


class Conversation:
    """One transcript plus the consumer that extends it.

    At most one send is in flight: a second :meth:`send` while one is
    outstanding raises :class:`ConversationBusyError` instead of queueing.
    """

    def __init__(self, consumer: StreamConsumer, transcript: Transcript | None = None) -> None:
        self.consumer = consumer
        self.transcript = transcript if transcript is not None else Transcript()
        self._busy = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def send(
        self,
        text: str,
        images: list[str] | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> SendOutcome:
        """Append a user message, obtain the reply and record it.

        The assistant message is appended only when the send completed.  A
        double failure leaves the transcript with just the new user message.
        """
        if not self._busy.acquire(blocking=False):
            raise ConversationBusyError("A reply is still outstanding for this conversation")
        try:
            user_text = text or (IMAGE_ONLY_PROMPT if images else "")
            self.transcript.append_user(user_text, images)
            outcome = self.consumer.consume(self.transcript.to_payload(), on_token)
            if outcome.completed:
                self.transcript.append_assistant(outcome.content, outcome.meta)
            return outcome
        finally:
            self._busy.release()

    def clear(self) -> None:
        if self.busy:
            raise ConversationBusyError("Cannot clear while a reply is outstanding")
        self.transcript.clear()
