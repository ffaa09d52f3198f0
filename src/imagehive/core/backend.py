"""Inference backend adapter.

Everything that knows the wire format of the inference server lives here,
behind the narrow :class:`InferenceBackend` interface:

- :meth:`~InferenceBackend.send_chat` — one atomic chat completion.
- :meth:`~InferenceBackend.stream_chat` — the same call as a sequence of
  incremental text units.
- :meth:`~InferenceBackend.list_models` — the model identifiers the server
  currently serves.

The relay (:mod:`imagehive.core.relay`) and prober
(:mod:`imagehive.core.readiness`) only see this interface, so their failure
handling is independent of the dialect.

Dialect
-------
:class:`OpenAIChatBackend` speaks the OpenAI-compatible chat-completions
protocol served by vLLM, llama.cpp, LM Studio and friends:

- ``POST /v1/chat/completions`` with ``stream`` false or true
- ``GET /v1/models``

Streaming bodies are line oriented.  Lines are either SSE records
(``data: {...}``) or bare JSON objects, and ``data: [DONE]`` or a clean
close ends the stream.  Servers are free to split a line across two network
reads, so partial lines are held in a :class:`LineBuffer` until their
newline arrives.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator

import httpx

from imagehive.core.errors import BackendError

logger = logging.getLogger(__name__)

CHAT_PATH = "/v1/chat/completions"
MODELS_PATH = "/v1/models"
STREAM_DONE = "[DONE]"
EMPTY_REPLY = "No content returned from the local model."


class InferenceBackend(ABC):
    """Interface of a chat-completion service.

    Implementations raise :class:`BackendError` for every transport failure
    or protocol violation; callers never see raw HTTP client exceptions.
    """

    host: str = ""

    @abstractmethod
    def send_chat(self, messages: list[dict]) -> str:
        """Return the assistant reply for *messages* in one call."""

    @abstractmethod
    def stream_chat(self, messages: list[dict]) -> Iterator[str]:
        """Yield the assistant reply for *messages* as it is produced.

        The iterator ends normally when the backend signals completion and
        raises :class:`BackendError` if the channel fails at any point.
        """

    @abstractmethod
    def list_models(self) -> list[str]:
        """Return the model identifiers currently served."""

    def close(self) -> None:
        """Release network resources."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class LineBuffer:
    """Reassemble newline-terminated lines from arbitrarily split text."""

    def __init__(self) -> None:
        self._partial = ""

    def feed(self, text: str) -> list[str]:
        """Add *text* and return the lines it completed (without newlines)."""
        self._partial += text
        *lines, self._partial = self._partial.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> str:
        """Return and clear whatever is left after the last newline."""
        rest, self._partial = self._partial, ""
        return rest.strip()


def format_message(message: dict) -> dict:
    """Translate a transcript message to an OpenAI chat message.

    Attached images become ``image_url`` content parts next to the text.
    """
    role = message.get("role", "user")
    content = message.get("content") or ""
    images = message.get("images") or []
    if not images:
        return {"role": role, "content": content}

    parts: list[dict] = [{"type": "text", "text": content}]
    parts.extend({"type": "image_url", "image_url": {"url": image}} for image in images)
    return {"role": role, "content": parts}


def _chunk_text(chunk: dict) -> str | None:
    """Pull the text unit out of one decoded stream chunk."""
    choices = chunk.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        for container in (choice.get("delta"), choice.get("message")):
            if isinstance(container, dict) and isinstance(container.get("content"), str):
                return container["content"]
        if isinstance(choice.get("text"), str):
            return choice["text"]
        return None

    # Servers answering in the native registry dialect put the text here.
    message = chunk.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return None


def _content_text(content) -> str | None:
    """Flatten a message ``content`` that may be a list of content parts."""
    if content is None or isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part if isinstance(part, str) else str(part.get("text") or "")
            for part in content
            if isinstance(part, str) or (isinstance(part, dict) and part.get("type") == "text")
        )
    raise BackendError(
        f"Backend message content has an unexpected type: {type(content).__name__}"
    )


def parse_stream_line(line: str, *, final: bool = False) -> tuple[str | None, bool]:
    """Decode one line of a streaming chat body.

    Args:
        line: A complete line, or the trailing fragment when *final* is set.
        final: ``True`` for the fragment left in the buffer at close.  A
            fragment that is not valid JSON means the body was truncated.

    Returns:
        ``(text, finished)`` where *text* is the incremental unit (or
        ``None`` when the line carries none) and *finished* says whether the
        backend signalled completion.

    Raises:
        BackendError: The chunk reports an error, or *final* is set and the
            fragment cannot be decoded.
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None, False
    if line.startswith("data:"):
        line = line[len("data:") :].strip()
    elif line.split(":", 1)[0] in ("event", "id", "retry"):
        return None, False

    if line == STREAM_DONE:
        return None, True

    try:
        chunk = json.loads(line)
    except ValueError:
        if final:
            raise BackendError(f"Stream ended with an incomplete chunk: {line[:80]!r}")
        logger.warning("Skipping malformed stream chunk: %r", line[:200])
        return None, False

    if not isinstance(chunk, dict):
        logger.debug("Skipping non-object stream chunk: %r", chunk)
        return None, False

    if chunk.get("error"):
        error = chunk["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise BackendError(f"Backend stream error: {message}")

    return _chunk_text(chunk), chunk.get("done") is True


class OpenAIChatBackend(InferenceBackend):
    """HTTP client for an OpenAI-compatible chat-completions server.

    Attributes:
        host: Base URL of the server, without trailing slash.
        model: Model identifier sent with every chat request.
    """

    def __init__(
        self,
        host: str,
        model: str,
        *,
        temperature: float = 0.4,
        chat_timeout: float = 120.0,
        probe_timeout: float = 2.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.probe_timeout = probe_timeout
        self._client = httpx.Client(
            base_url=self.host,
            timeout=httpx.Timeout(chat_timeout, connect=10.0),
            transport=transport,
        )

    @classmethod
    def from_config(cls, cfg, *, host: str | None = None, model: str | None = None, **kwargs):
        """Build a backend from :class:`~imagehive.core.config.ImageHiveConfig`.

        *host* and *model* override the config values (the settings record
        supplies them at request time).
        """
        return cls(
            host or cfg.backend_host,
            model or cfg.backend_model,
            temperature=cfg.temperature,
            chat_timeout=cfg.chat_timeout,
            probe_timeout=cfg.probe_timeout,
            **kwargs,
        )

    def _payload(self, messages: list[dict], stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": [format_message(message) for message in messages],
            "stream": stream,
            "temperature": self.temperature,
        }

    def send_chat(self, messages: list[dict]) -> str:
        try:
            response = self._client.post(CHAT_PATH, json=self._payload(messages, stream=False))
        except httpx.HTTPError as exc:
            raise BackendError(f"Could not reach backend at {self.host}: {exc}") from exc

        if response.is_error:
            raise BackendError(
                f"Backend error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise BackendError("Backend returned a body that is not JSON") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise BackendError("Backend response has no choices")

        message = choices[0].get("message")
        content = _content_text(message.get("content")) if isinstance(message, dict) else None
        return content or EMPTY_REPLY

    def stream_chat(self, messages: list[dict]) -> Iterator[str]:
        buffer = LineBuffer()
        try:
            with self._client.stream(
                "POST", CHAT_PATH, json=self._payload(messages, stream=True)
            ) as response:
                if response.is_error:
                    response.read()
                    raise BackendError(
                        f"Backend error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )

                for text in response.iter_text():
                    for line in buffer.feed(text):
                        delta, finished = parse_stream_line(line)
                        if delta:
                            yield delta
                        if finished:
                            return

                tail = buffer.flush()
                if tail:
                    delta, _ = parse_stream_line(tail, final=True)
                    if delta:
                        yield delta
        except httpx.HTTPError as exc:
            raise BackendError(f"Stream from {self.host} failed: {exc}") from exc

    def list_models(self) -> list[str]:
        try:
            response = self._client.get(MODELS_PATH, timeout=self.probe_timeout)
        except httpx.HTTPError as exc:
            raise BackendError(f"Backend at {self.host} is not reachable: {exc}") from exc

        if response.is_error:
            raise BackendError(
                f"Backend at {self.host} answered {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise BackendError("Model listing is not JSON") from exc

        if not isinstance(data, dict):
            raise BackendError("Model listing has an unexpected shape")
        listed = data.get("data") or []
        named = data.get("models") or []
        if not isinstance(listed, list) or not isinstance(named, list):
            raise BackendError("Model listing has an unexpected shape")

        models: list[str] = []
        for entry in listed:
            if isinstance(entry, dict) and entry.get("id"):
                models.append(str(entry["id"]))
        # Registries answering in the native dialect list models by name.
        for entry in named:
            if isinstance(entry, dict) and (entry.get("name") or entry.get("model")):
                models.append(str(entry.get("name") or entry.get("model")))
        return models

    def close(self) -> None:
        self._client.close()
