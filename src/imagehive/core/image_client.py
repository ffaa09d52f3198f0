"""Client for the remote image generation API.

The chat model usually answers with a JSON prompt block.  Users paste that
block (or plain text) into the render form, and :func:`normalize_prompt`
turns it into the request body the image API expects.

Configuration problems (no API key, nothing to render) are raised as
:class:`ConfigurationError` before any network call is made.
"""

from __future__ import annotations

import json
import logging

import httpx

from imagehive.core.errors import ConfigurationError, ImageGenerationError

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = "9:16"
DEFAULT_RESOLUTION = "auto-2k"


def normalize_prompt(payload) -> dict:
    """Turn a prompt payload into ``{prompt, negative_prompt?, seed?, image_url?}``.

    Strings are decoded as JSON when possible and otherwise used verbatim.
    Objects contribute ``prompt`` (or ``text`` / ``description``), the
    negative prompt, the seed and an input image URL under either snake or
    camel case.  An object with no prompt-like field is sent as its JSON.
    """
    if payload is None or payload == "":
        return {"prompt": ""}

    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except ValueError:
            return {"prompt": payload}
        if isinstance(decoded, (dict, str)):
            return normalize_prompt(decoded)
        return {"prompt": payload}

    if isinstance(payload, dict):
        base_prompt = payload.get("prompt") or payload.get("text") or payload.get("description")
        output: dict = {"prompt": base_prompt or json.dumps(payload)}
        negative = payload.get("negative_prompt") or payload.get("negativePrompt")
        if negative:
            output["negative_prompt"] = negative
        if payload.get("seed") is not None:
            output["seed"] = payload["seed"]
        image_url = payload.get("image_url") or payload.get("imageUrl")
        if image_url:
            output["image_url"] = image_url
        return output

    return {"prompt": str(payload)}


def extract_image_url(data) -> str:
    """Find the first image URL in an API response."""
    if not isinstance(data, dict):
        return ""
    images = data.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        if images[0].get("url"):
            return images[0]["url"]
    image = data.get("image")
    if isinstance(image, dict) and image.get("url"):
        return image["url"]
    return data.get("url") or ""


class FalImageClient:
    """Render prompts through the fal.ai HTTP API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://fal.run",
        model: str = "fal-ai/bytedance/seedream/v4.5/text-to-image",
        timeout: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.transport = transport

    def build_request(
        self,
        prompt_json,
        aspect_ratio: str | None = None,
        resolution: str | None = None,
    ) -> dict:
        if not self.api_key:
            raise ConfigurationError(
                "Image API key is not configured. Add it in Settings to render images."
            )

        normalized = normalize_prompt(prompt_json)
        if not normalized["prompt"]:
            raise ConfigurationError('Provide a prompt or JSON payload with a "prompt" field.')

        body = {
            "prompt": normalized["prompt"],
            "aspect_ratio": aspect_ratio or DEFAULT_ASPECT_RATIO,
            "resolution": resolution or DEFAULT_RESOLUTION,
        }
        for key in ("negative_prompt", "seed", "image_url"):
            if key in normalized:
                body[key] = normalized[key]
        return body

    def generate(
        self,
        prompt_json,
        aspect_ratio: str | None = None,
        resolution: str | None = None,
    ) -> dict:
        """Render one image.

        Returns:
            ``{"imageUrl", "request", "raw"}``.

        Raises:
            ConfigurationError: Missing API key or empty prompt.
            ImageGenerationError: The API failed or answered with an error.
        """
        body = self.build_request(prompt_json, aspect_ratio, resolution)
        url = f"{self.base_url}/{self.model}"
        logger.info("Rendering image with %s (aspect %s).", self.model, body["aspect_ratio"])

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    url,
                    json=body,
                    headers={"Authorization": f"Key {self.api_key}"},
                )
        except httpx.HTTPError as exc:
            raise ImageGenerationError(f"Image API request failed: {exc}") from exc

        if response.is_error:
            raise ImageGenerationError(
                f"Image API error {response.status_code}: {response.text}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ImageGenerationError("Image API returned a body that is not JSON") from exc

        return {"imageUrl": extract_image_url(data), "request": body, "raw": data}
