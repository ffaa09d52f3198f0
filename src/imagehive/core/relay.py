"""Chat relay between clients and the inference backend.

The relay takes a client transcript, prepends the system preamble and asks
the backend for a reply.  It offers two paths:

``complete``
    One atomic call returning a :class:`ChatReply`.  Backend failures never
    raise: they come back as an ``offline`` reply whose content explains what
    went wrong, because the client always expects something displayable.

``stream``
    An iterator of :mod:`~imagehive.core.events` — one ``token`` event per
    text unit the backend produces, then exactly one terminal ``done`` or
    ``error`` event.  Output is never truncated without an ``error``.

Requests are independent and stateless.  The only shared state is the
cached hardware status, which is computed once per process.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

import httpx

from imagehive.core.backend import InferenceBackend
from imagehive.core.errors import BackendError
from imagehive.core.events import DoneEvent, ErrorEvent, TokenEvent
from imagehive.core.hardware import GpuStatus, get_gpu_status
from imagehive.core.system_prompt import build_system_prompt
from imagehive.core.transcript import Message

logger = logging.getLogger(__name__)

UNAVAILABLE_TEMPLATE = (
    "Local model is unavailable. Check that the inference server is running "
    "and the model is served. ({reason})"
)


@dataclass(frozen=True)
class ChatReply:
    """Result of the non-streaming path."""

    content: str
    from_gpu: bool
    offline: bool = False

    def to_dict(self) -> dict:
        return {"content": self.content, "fromGpu": self.from_gpu, "offline": self.offline}


class ChatRelay:
    """Forward transcripts to an :class:`InferenceBackend`.

    Args:
        backend: The backend adapter to call.
        gpu_status: Callable returning the process-wide hardware status.
        preamble: System preamble prepended to every call.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        *,
        gpu_status: Callable[[], GpuStatus] = get_gpu_status,
        preamble: str | None = None,
    ) -> None:
        self.backend = backend
        self._gpu_status = gpu_status
        self.preamble = build_system_prompt() if preamble is None else preamble

    def build_messages(self, messages: Iterable[Message | dict]) -> list[dict]:
        """Return the backend message list: preamble first, then the transcript."""
        wire = [{"role": "system", "content": self.preamble}]
        for message in messages:
            if isinstance(message, Message):
                wire.append(message.to_wire())
            else:
                wire.append(Message.model_validate(message).to_wire())
        return wire

    def complete(self, messages: Iterable[Message | dict]) -> ChatReply:
        """Return one complete reply.  Never raises for backend failures."""
        from_gpu = self._gpu_status().available
        try:
            content = self.backend.send_chat(self.build_messages(messages))
        except (BackendError, httpx.HTTPError) as exc:
            logger.warning("Chat request to %s failed: %s", self.backend.host, exc)
            return ChatReply(
                content=UNAVAILABLE_TEMPLATE.format(reason=exc),
                from_gpu=False,
                offline=True,
            )
        return ChatReply(content=content, from_gpu=from_gpu)

    def stream(
        self, messages: Iterable[Message | dict]
    ) -> Iterator[TokenEvent | DoneEvent | ErrorEvent]:
        """Yield token events as they arrive, then one ``done`` or ``error``."""
        from_gpu = self._gpu_status().available
        wire = self.build_messages(messages)
        chunks: list[str] = []
        try:
            for text in self.backend.stream_chat(wire):
                chunks.append(text)
                yield TokenEvent(text=text)
        except (BackendError, httpx.HTTPError) as exc:
            logger.warning(
                "Stream from %s failed after %d tokens: %s", self.backend.host, len(chunks), exc
            )
            yield ErrorEvent(message=str(exc) or exc.__class__.__name__)
            return

        yield DoneEvent(full_text="".join(chunks), from_gpu=from_gpu, offline=False)
