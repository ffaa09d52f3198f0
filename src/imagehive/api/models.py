"""Pydantic request models for the ImageHive API.

These models define the JSON schema for every API endpoint that takes a
body.  FastAPI uses them for automatic request validation, serialisation,
and OpenAPI documentation generation.

Models
------
ChatRequest
    Payload for ``POST /api/chat`` — the conversation transcript.
SettingsUpdate
    Payload for ``POST /api/settings`` — partial settings update.
GalleryEntryRequest
    Payload for ``POST /api/gallery`` — a prompt worth keeping.
ImageGenerateRequest
    Payload for ``POST /api/image/generate`` — a prompt to render.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from imagehive.core.transcript import Message


class ChatRequest(BaseModel):
    """Request body for ``POST /api/chat``.

    Attributes:
        messages: The transcript, oldest first, without the system preamble.
    """

    messages: list[Message] = Field(
        ...,
        description="Conversation transcript (system preamble excluded).",
    )

    @field_validator("messages")
    @classmethod
    def reject_system_messages(cls, messages: list[Message]) -> list[Message]:
        """The relay owns the system preamble; clients may not send one."""
        if any(message.role == "system" for message in messages):
            raise ValueError("system messages are added by the server and cannot be sent")
        return messages


class SettingsUpdate(BaseModel):
    """Request body for ``POST /api/settings``.

    Every field is optional.  ``apiKey`` is applied whenever present (an
    empty string clears it); host and model only when non-empty.
    """

    model_config = ConfigDict(populate_by_name=True)

    api_key: str | None = Field(default=None, alias="apiKey")
    backend_host: str | None = Field(default=None, alias="backendHost")
    backend_model: str | None = Field(default=None, alias="backendModel")


class GalleryEntryRequest(BaseModel):
    """Request body for ``POST /api/gallery``."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    prompt_json: str = Field(..., min_length=1, alias="promptJson")
    image_url: str = Field(default="", alias="imageUrl")
    session_id: str = Field(default="", alias="sessionId")
    session_title: str = Field(default="", alias="sessionTitle")


class ImageGenerateRequest(BaseModel):
    """Request body for ``POST /api/image/generate``.

    Attributes:
        prompt_json: A JSON prompt block (string or object) or plain text.
        aspect_ratio: Aspect ratio understood by the image API (``"9:16"``).
        resolution: Resolution preset understood by the image API.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt_json: str | dict = Field(..., alias="promptJson")
    aspect_ratio: str | None = Field(default=None, alias="aspectRatio")
    resolution: str | None = None
