"""Shared pytest fixtures for ImageHive tests."""

import json
import os
import shutil
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Generator
from unittest.mock import patch

# Keep the import-time data directory out of the working tree.
os.environ.setdefault("IMAGEHIVE_DATA_DIR", tempfile.mkdtemp(prefix="imagehive-data-"))
os.environ.setdefault("IMAGEHIVE_STATIC_DIR", tempfile.mkdtemp(prefix="imagehive-static-"))

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from imagehive.core import hardware  # noqa: E402
from imagehive.core.config import ImageHiveConfig  # noqa: E402
from imagehive.core.hardware import GpuStatus  # noqa: E402
from imagehive.core.storage import GalleryStore, SettingsRecord, SettingsStore  # noqa: E402

TEST_MODEL = "Qwen2.5-VL-3B-Instruct"
TEST_HOST = "http://backend.test"


class ChunkStream(httpx.SyncByteStream):
    """Response body delivered as separate reads, optionally failing midway."""

    def __init__(self, chunks: Iterable[str | bytes], error: Exception | None = None):
        self._chunks = list(chunks)
        self._error = error

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk
        if self._error is not None:
            raise self._error


def sse_chunk(text: str) -> str:
    """One OpenAI-style streaming line carrying *text*."""
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}) + "\n\n"


class FakeInference:
    """Scriptable OpenAI-compatible inference server for ``httpx.MockTransport``.

    Attributes:
        models: Identifiers reported by ``GET /v1/models``.
        reply: Content of non-streaming chat replies.
        stream_chunks: Raw body reads for streaming chat replies.
        stream_error: Raised after the last streaming read, if set.
        chat_status: Status code for chat calls.
        models_status: Status code for the model listing.
        unreachable: Every request fails with a connection error.
        requests: Every request received, in order.
    """

    def __init__(self) -> None:
        self.models: list[str] = [TEST_MODEL]
        self.reply = "hello"
        self.stream_chunks: list[str | bytes] = [sse_chunk("He"), sse_chunk("llo"), "data: [DONE]\n\n"]
        self.stream_error: Exception | None = None
        self.chat_status = 200
        self.models_status = 200
        self.unreachable = False
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        if request.url.path == "/v1/models":
            return httpx.Response(
                self.models_status, json={"data": [{"id": model} for model in self.models]}
            )

        if request.url.path == "/v1/chat/completions":
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, text="model crashed")
            body = json.loads(request.content)
            if body.get("stream"):
                return httpx.Response(
                    200,
                    headers={"content-type": "text/event-stream"},
                    stream=ChunkStream(self.stream_chunks, self.stream_error),
                )
            return httpx.Response(200, json={"choices": [{"message": {"content": self.reply}}]})

        return httpx.Response(404, json={"error": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def chat_bodies(self) -> list[dict]:
        return [
            json.loads(request.content)
            for request in self.requests
            if request.url.path == "/v1/chat/completions"
        ]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ImageHiveConfig:
    """Create a test configuration with a temporary data directory."""
    return ImageHiveConfig(
        _env_file=None,
        backend_host=TEST_HOST,
        backend_model=TEST_MODEL,
        data_dir=str(temp_dir / "data"),
        static_dir=str(temp_dir / "static"),
        startup_timeout=5.0,
        startup_interval=1.0,
        probe_timeout=1.0,
    )


@pytest.fixture(autouse=True)
def fixed_gpu() -> Generator[GpuStatus, None, None]:
    """Pin hardware detection to a known CPU-only result."""
    status = GpuStatus(available=False, devices=(), method="torch")
    hardware.reset_gpu_status()
    with patch("imagehive.core.hardware.detect_gpu", return_value=status):
        yield status
    hardware.reset_gpu_status()


@pytest.fixture
def fake_inference() -> FakeInference:
    return FakeInference()


@pytest.fixture
def test_client(temp_dir: Path, fake_inference: FakeInference) -> Generator[TestClient, None, None]:
    """TestClient whose stores live in *temp_dir* and whose backend is faked."""
    from imagehive.api.main import app

    with TestClient(app) as client:
        app.state.settings_store = SettingsStore(
            temp_dir / "settings.json",
            SettingsRecord(api_key="", backend_host=TEST_HOST, backend_model=TEST_MODEL),
        )
        app.state.gallery_store = GalleryStore(temp_dir / "gallery.json")
        app.state.backend_transport = fake_inference.transport
        app.state.image_transport = None
        yield client
        app.state.backend_transport = None
