"""ImageHive — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that runs the startup handshake and launches the uvicorn server.

Architecture
------------
The application follows a stateless REST pattern:

- **Chat** requests are relayed to a local OpenAI-compatible inference
  server by :class:`~imagehive.core.relay.ChatRelay`, either as one JSON
  reply or as a ``text/event-stream`` of token events.
- **Readiness** of that server is probed on demand by
  :class:`~imagehive.core.readiness.ReadinessProber` and reported through
  ``GET /api/health``.
- **Settings and gallery persistence** use two JSON files in the data
  directory — no database required.
- **Image rendering** is forwarded to the remote image API by
  :class:`~imagehive.core.image_client.FalImageClient`.

The backend adapter is built per request from the current settings record,
so a ``POST /api/settings`` takes effect on the very next chat.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/``                         Serve the web client, if installed
GET       ``/api/health``               GPU status and backend readiness
GET       ``/api/settings``             Backend host/model, key presence
POST      ``/api/settings``             Update backend host/model/API key
POST      ``/api/chat``                 Relay a transcript (``?stream=``)
GET       ``/api/gallery``              Saved prompts, newest first
POST      ``/api/gallery``              Save a prompt
GET       ``/api/gallery/{id}``         Single gallery entry
DELETE    ``/api/gallery/{id}``         Delete a gallery entry
POST      ``/api/image/generate``       Render a prompt via the image API
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    imagehive

Direct invocation::

    python -m imagehive.api.main
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from imagehive import __version__
from imagehive.api.models import (
    ChatRequest,
    GalleryEntryRequest,
    ImageGenerateRequest,
    SettingsUpdate,
)
from imagehive.core.backend import OpenAIChatBackend
from imagehive.core.config import config
from imagehive.core.errors import ConfigurationError, ImageGenerationError
from imagehive.core.events import encode_event
from imagehive.core.hardware import get_gpu_status
from imagehive.core.image_client import FalImageClient
from imagehive.core.readiness import ReadinessProber, describe_status, run_startup_handshake
from imagehive.core.relay import ChatRelay
from imagehive.core.storage import GalleryStore, SettingsRecord, SettingsStore, ensure_data_files

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve paths from the global configuration instance.
# ---------------------------------------------------------------------------
STATIC_DIR: Path = config.static_dir


def default_settings() -> SettingsRecord:
    """Settings record seeded from the environment configuration."""
    return SettingsRecord(
        api_key=config.fal_api_key,
        backend_host=config.backend_host,
        backend_model=config.backend_model,
    )


# ---------------------------------------------------------------------------
# Application lifecycle: data stores setup.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the settings and gallery stores and bootstrap their files.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    app.state.settings_store = SettingsStore(config.settings_path, default_settings())
    app.state.gallery_store = GalleryStore(config.gallery_path)
    ensure_data_files(app.state.settings_store, app.state.gallery_store)
    logger.info("Data stores ready in %s.", config.data_dir)

    yield


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="ImageHive",
    description="Local-first prompt crafting chat relay with image rendering.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# The web client is optional.  Mount its assets only when they are installed.
if STATIC_DIR.is_dir():
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


# ---------------------------------------------------------------------------
# Per-request collaborators.
# ---------------------------------------------------------------------------


def _build_backend() -> OpenAIChatBackend:
    """Build a backend adapter from the current settings record.

    ``app.state.backend_transport`` may hold an ``httpx`` transport used in
    place of the network (tests set a ``MockTransport`` there).
    """
    settings = app.state.settings_store.load()
    return OpenAIChatBackend.from_config(
        config,
        host=settings.backend_host,
        model=settings.backend_model,
        transport=getattr(app.state, "backend_transport", None),
    )


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/", response_class=HTMLResponse)
async def index() -> HTMLResponse:
    """Serve ``index.html`` from the static directory.

    Raises:
        HTTPException: 404 if the web client is not installed.
    """
    index_path = STATIC_DIR / "index.html"
    if index_path.exists():
        return HTMLResponse(content=index_path.read_text(encoding="utf-8"))
    raise HTTPException(status_code=404, detail="index.html not found")


@app.get("/api/health")
def health() -> dict:
    """Report hardware status and backend readiness.

    Returns:
        Dictionary with ``status``, ``gpu`` (``available``, ``devices``),
        ``backend`` (``reachable``, ``modelReady``, ``error?``) and a
        human-readable ``message`` derived from the backend flags.
    """
    gpu = get_gpu_status()
    with _build_backend() as backend:
        readiness = ReadinessProber(backend, backend.model).probe()
    return {
        "status": "ok",
        "gpu": gpu.to_dict(),
        "backend": readiness.to_dict(),
        "message": describe_status(readiness),
    }


@app.get("/api/settings")
async def get_settings() -> dict:
    """Return backend host/model and whether an API key is stored."""
    return app.state.settings_store.load().public_view()


@app.post("/api/settings")
async def update_settings(req: SettingsUpdate) -> dict:
    """Persist a partial settings update.

    Returns:
        Dictionary with ``success`` and the updated public ``settings``.
    """
    record = app.state.settings_store.update(
        api_key=req.api_key,
        backend_host=req.backend_host,
        backend_model=req.backend_model,
    )
    return {"success": True, "settings": record.public_view()}


@app.post("/api/chat")
def chat(req: ChatRequest, stream: bool = True):
    """Relay a transcript to the inference backend.

    With ``stream=false`` the reply is one JSON object
    ``{content, fromGpu, offline}``; backend failures come back as an
    ``offline`` reply, not as an HTTP error.

    With ``stream=true`` (the default) the reply is ``text/event-stream``
    framed as ``data: <json>\\n\\n`` records: ``token`` events followed by
    one ``done`` or ``error`` event.
    """
    if not stream:
        with _build_backend() as backend:
            return ChatRelay(backend).complete(req.messages).to_dict()

    backend = _build_backend()

    def event_stream() -> Iterator[str]:
        try:
            for event in ChatRelay(backend).stream(req.messages):
                yield encode_event(event)
        finally:
            backend.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/api/gallery")
async def get_gallery(session_id: str | None = None) -> list[dict]:
    """Return saved gallery entries, newest first.

    Args:
        session_id: If provided, return only entries saved from that chat.
    """
    return app.state.gallery_store.load(session_id=session_id)


@app.post("/api/gallery")
async def add_gallery_entry(req: GalleryEntryRequest) -> dict:
    """Save a prompt (and optionally its rendered image) to the gallery."""
    return app.state.gallery_store.add(
        req.title,
        req.prompt_json,
        image_url=req.image_url,
        session_id=req.session_id,
        session_title=req.session_title,
    )


@app.get("/api/gallery/{entry_id}")
async def get_gallery_entry(entry_id: str) -> dict:
    """Return one gallery entry.

    Raises:
        HTTPException: 404 if the entry is not found.
    """
    entry = app.state.gallery_store.get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Gallery entry not found")
    return entry


@app.delete("/api/gallery/{entry_id}")
async def delete_gallery_entry(entry_id: str) -> dict:
    """Delete one gallery entry.

    Raises:
        HTTPException: 404 if the entry is not found.
    """
    if not app.state.gallery_store.delete(entry_id):
        raise HTTPException(status_code=404, detail="Gallery entry not found")
    return {"success": True, "deleted": entry_id}


@app.post("/api/image/generate")
def generate_image(req: ImageGenerateRequest) -> dict:
    """Render a prompt through the remote image API.

    Returns:
        Dictionary with ``imageUrl``, the ``request`` body sent and the
        ``raw`` API response.

    Raises:
        HTTPException: 400 when no API key is configured or the prompt is
            empty, 502 when the image API fails.
    """
    settings = app.state.settings_store.load()
    client = FalImageClient(
        settings.api_key or config.fal_api_key,
        base_url=config.fal_base_url,
        model=config.fal_model,
        transport=getattr(app.state, "image_transport", None),
    )
    try:
        return client.generate(req.prompt_json, req.aspect_ratio, req.resolution)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ImageGenerationError as exc:
        logger.warning("Image generation failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the startup handshake, then launch the uvicorn ASGI server.

    The handshake polls the inference backend until the configured model is
    served or ``IMAGEHIVE_STARTUP_TIMEOUT`` elapses.  Startup fails with exit
    status 1 unless ``IMAGEHIVE_ALLOW_OFFLINE`` is set.

    This function is registered as the ``imagehive`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting ImageHive %s...", __version__)

    settings_store = SettingsStore(config.settings_path, default_settings())
    settings = settings_store.load()
    with OpenAIChatBackend.from_config(
        config, host=settings.backend_host, model=settings.backend_model
    ) as backend:
        if not run_startup_handshake(config, backend):
            logger.error("Inference backend is not ready; set IMAGEHIVE_ALLOW_OFFLINE=1 to skip.")
            sys.exit(1)

    logger.info("Launching server on %s:%s", config.server_host, config.server_port)
    uvicorn.run(
        "imagehive.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
