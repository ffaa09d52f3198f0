"""File-backed settings and gallery storage.

Both stores are deliberately simple:

- the settings record lives in a single ``settings.json`` file
- saved prompts live in a single ``gallery.json`` list, newest first

Reads are forgiving.  A missing, empty, or corrupt file reads as the default
value instead of raising, which makes the data directory self-bootstrapping.
Writes replace the whole file with 2-space indented JSON.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# Keys written by earlier releases, mapped to their current names.
_LEGACY_KEYS = {
    "falApiKey": "apiKey",
    "ollamaHost": "backendHost",
    "vllmHost": "backendHost",
    "ollamaModel": "backendModel",
    "vllmModel": "backendModel",
}


def load_json(path: Path, default):
    """Load a JSON file from disk, returning *default* on any failure."""
    if path.exists():
        try:
            with open(path, encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable %s: %s", path, exc)
            return default
    return default


def save_json(path: Path, data) -> None:
    """Persist a Python object to a JSON file."""
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2)


class SettingsRecord(BaseModel):
    """Backend and image API configuration editable at runtime."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(default="", alias="apiKey")
    backend_host: str = Field(default="", alias="backendHost")
    backend_model: str = Field(default="", alias="backendModel")

    def public_view(self) -> dict:
        """Return the record for clients, reporting the key only as presence."""
        return {
            "apiKey": "stored" if self.api_key else "",
            "backendHost": self.backend_host,
            "backendModel": self.backend_model,
        }


class SettingsStore:
    """Persist a :class:`SettingsRecord` over environment defaults.

    Args:
        path: Location of ``settings.json``.
        defaults: Record used for every field the file does not set.
    """

    def __init__(self, path: Path, defaults: SettingsRecord) -> None:
        self.path = Path(path)
        self.defaults = defaults

    def load(self) -> SettingsRecord:
        stored = load_json(self.path, {})
        if not isinstance(stored, dict):
            stored = {}

        merged = self.defaults.model_dump(by_alias=True)
        for legacy, current in _LEGACY_KEYS.items():
            if stored.get(legacy) and not stored.get(current):
                stored[current] = stored[legacy]
        for key in merged:
            value = stored.get(key)
            if isinstance(value, str) and (value or key == "apiKey"):
                merged[key] = value
        return SettingsRecord.model_validate(merged)

    def save(self, record: SettingsRecord) -> None:
        save_json(self.path, record.model_dump(by_alias=True))

    def update(
        self,
        *,
        api_key: str | None = None,
        backend_host: str | None = None,
        backend_model: str | None = None,
    ) -> SettingsRecord:
        """Apply a partial update and persist the result.

        ``api_key`` is applied whenever it is not ``None`` (an empty string
        clears the stored key).  Host and model are applied only when
        non-empty.
        """
        record = self.load()
        changes: dict = {}
        if api_key is not None:
            changes["api_key"] = api_key
        if backend_host:
            changes["backend_host"] = backend_host.rstrip("/")
        if backend_model:
            changes["backend_model"] = backend_model
        record = record.model_copy(update=changes)
        self.save(record)
        logger.info(
            "Settings updated (host=%s, model=%s, api key %s).",
            record.backend_host,
            record.backend_model,
            "stored" if record.api_key else "not set",
        )
        return record


class GalleryStore:
    """Saved prompt/image entries in reverse-chronological order."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self, session_id: str | None = None) -> list[dict]:
        entries = load_json(self.path, [])
        if not isinstance(entries, list):
            return []
        entries = [entry for entry in entries if isinstance(entry, dict)]
        if session_id:
            entries = [entry for entry in entries if entry.get("sessionId") == session_id]
        return entries

    def get(self, entry_id: str) -> dict | None:
        return next((entry for entry in self.load() if entry.get("id") == entry_id), None)

    def add(
        self,
        title: str,
        prompt_json: str,
        *,
        image_url: str = "",
        session_id: str = "",
        session_title: str = "",
    ) -> dict:
        entry = {
            "id": f"entry-{uuid.uuid4().hex}",
            "title": title,
            "promptJson": prompt_json,
            "imageUrl": image_url or "",
            "sessionId": session_id or "",
            "sessionTitle": session_title or "",
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        entries = self.load()
        # Newest first.
        entries.insert(0, entry)
        save_json(self.path, entries)
        return entry

    def delete(self, entry_id: str) -> bool:
        entries = self.load()
        remaining = [entry for entry in entries if entry.get("id") != entry_id]
        if len(remaining) == len(entries):
            return False
        save_json(self.path, remaining)
        return True


def ensure_data_files(settings_store: SettingsStore, gallery_store: GalleryStore) -> None:
    """Create the data directory and empty stores if they do not exist."""
    settings_store.path.parent.mkdir(parents=True, exist_ok=True)
    if not settings_store.path.exists():
        settings_store.save(settings_store.defaults)
    gallery_store.path.parent.mkdir(parents=True, exist_ok=True)
    if not gallery_store.path.exists():
        save_json(gallery_store.path, [])
