"""Tests for imagehive.api.models — Pydantic request models.

Tests cover:
- Transcript validation on ChatRequest (roles, meta wire names).
- Partial SettingsUpdate payloads.
- Required fields on GalleryEntryRequest.
- String and object prompts on ImageGenerateRequest.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from imagehive.api.models import (
    ChatRequest,
    GalleryEntryRequest,
    ImageGenerateRequest,
    SettingsUpdate,
)


class TestChatRequest:
    """Test ChatRequest Pydantic model."""

    def test_valid_transcript(self):
        req = ChatRequest.model_validate(
            {
                "messages": [
                    {"role": "user", "content": "hi"},
                    {"role": "assistant", "content": "hello", "meta": {"fromGpu": True}},
                ]
            }
        )
        assert req.messages[1].meta.from_gpu is True

    def test_messages_required(self):
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({})

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"messages": [{"role": "robot", "content": "x"}]})

    def test_system_message_rejected(self):
        with pytest.raises(ValidationError, match="system messages"):
            ChatRequest.model_validate(
                {"messages": [{"role": "system", "content": "x"}, {"role": "user", "content": "hi"}]}
            )

    def test_empty_transcript_allowed(self):
        assert ChatRequest.model_validate({"messages": []}).messages == []


class TestSettingsUpdate:
    """Test SettingsUpdate Pydantic model."""

    def test_all_fields_optional(self):
        req = SettingsUpdate.model_validate({})
        assert req.api_key is None
        assert req.backend_host is None

    def test_wire_names(self):
        req = SettingsUpdate.model_validate({"apiKey": "k", "backendModel": "m"})
        assert req.api_key == "k"
        assert req.backend_model == "m"


class TestGalleryEntryRequest:
    """Test GalleryEntryRequest Pydantic model."""

    def test_valid(self):
        req = GalleryEntryRequest.model_validate({"title": "Fox", "promptJson": "{}"})
        assert req.image_url == ""
        assert req.session_id == ""

    @pytest.mark.parametrize("payload", [{"title": "Fox"}, {"title": "", "promptJson": "{}"}])
    def test_invalid(self, payload):
        with pytest.raises(ValidationError):
            GalleryEntryRequest.model_validate(payload)


class TestImageGenerateRequest:
    """Test ImageGenerateRequest Pydantic model."""

    def test_string_prompt(self):
        req = ImageGenerateRequest.model_validate({"promptJson": "a fox"})
        assert req.prompt_json == "a fox"
        assert req.aspect_ratio is None

    def test_object_prompt(self):
        req = ImageGenerateRequest.model_validate(
            {"promptJson": {"prompt": "fox"}, "aspectRatio": "1:1"}
        )
        assert req.prompt_json == {"prompt": "fox"}
        assert req.aspect_ratio == "1:1"
