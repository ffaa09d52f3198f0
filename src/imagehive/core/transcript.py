"""Conversation data model exchanged between the client and the relay.

A :class:`Transcript` is the ordered, append-only list of :class:`Message`
objects that make up one conversation, oldest first.  Each client send adds
exactly one ``user`` message and each completed relay response adds exactly
one ``assistant`` message.  The only other mutation is clearing the whole
transcript.

The system preamble is deliberately absent: the relay injects it at call
time (see :mod:`imagehive.core.system_prompt`), so a transcript refuses
``system`` messages.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]


class MessageMeta(BaseModel):
    """Delivery flags attached to assistant messages.

    Attributes:
        from_gpu: Whether the reply was produced with local acceleration.
        offline: Whether the reply is a degraded message describing a failure.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_gpu: bool = Field(default=False, alias="fromGpu")
    offline: bool = False


class Message(BaseModel):
    """A single chat message.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    images: list[str] | None = Field(
        default=None,
        description="Image references (URLs or data URLs) attached to the message.",
    )
    meta: MessageMeta | None = None

    def to_wire(self) -> dict:
        """Return the dict forwarded to the inference backend.

        ``meta`` is client bookkeeping and is never sent upstream.
        """
        data: dict = {"role": self.role, "content": self.content}
        if self.images:
            data["images"] = list(self.images)
        return data


class Transcript:
    """Append-only message list for one conversation."""

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = []
        for message in messages or ():
            self._append(message)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(tuple(self._messages))

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def _append(self, message: Message) -> Message:
        if message.role == "system":
            raise ValueError("system messages are injected by the relay and cannot be stored")
        self._messages.append(message)
        return message

    def append_user(self, content: str, images: list[str] | None = None) -> Message:
        return self._append(Message(role="user", content=content, images=images or None))

    def append_assistant(self, content: str, meta: MessageMeta | None = None) -> Message:
        return self._append(Message(role="assistant", content=content, meta=meta))

    def clear(self) -> None:
        self._messages.clear()

    def to_payload(self) -> list[dict]:
        """Serialise for ``POST /api/chat`` (wire names, unset fields dropped)."""
        return [
            message.model_dump(by_alias=True, exclude_none=True) for message in self._messages
        ]

    @classmethod
    def from_payload(cls, payload: list[dict]) -> Transcript:
        return cls(Message.model_validate(item) for item in payload)
