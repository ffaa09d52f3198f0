"""Tests for imagehive.core.storage — settings and gallery files.

Tests cover:
- Forgiving JSON reads (missing, empty and corrupt files).
- Settings defaults, partial updates, legacy key migration and the
  public view that hides the API key.
- Gallery ordering, session filtering, lookup and deletion.
"""

from __future__ import annotations

import json

import pytest

from imagehive.core.storage import (
    GalleryStore,
    SettingsRecord,
    SettingsStore,
    ensure_data_files,
    load_json,
    save_json,
)

DEFAULTS = SettingsRecord(api_key="", backend_host="http://env:8000", backend_model="env-model")


@pytest.fixture
def settings_store(temp_dir):
    return SettingsStore(temp_dir / "settings.json", DEFAULTS)


@pytest.fixture
def gallery_store(temp_dir):
    return GalleryStore(temp_dir / "gallery.json")


class TestJsonFiles:
    def test_missing_file_returns_default(self, temp_dir):
        assert load_json(temp_dir / "missing.json", {"a": 1}) == {"a": 1}

    def test_corrupt_file_returns_default(self, temp_dir):
        path = temp_dir / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_json(path, []) == []

    def test_empty_file_returns_default(self, temp_dir):
        path = temp_dir / "empty.json"
        path.write_text("", encoding="utf-8")
        assert load_json(path, {}) == {}

    def test_save_is_indented(self, temp_dir):
        path = temp_dir / "out.json"
        save_json(path, {"a": 1})
        assert path.read_text(encoding="utf-8") == '{\n  "a": 1\n}'


class TestSettingsStore:
    def test_defaults_when_missing(self, settings_store):
        assert settings_store.load() == DEFAULTS

    def test_update_persists(self, settings_store):
        settings_store.update(api_key="secret", backend_host="http://gpu:8000/")
        record = settings_store.load()
        assert record.api_key == "secret"
        assert record.backend_host == "http://gpu:8000"
        assert record.backend_model == "env-model"

    def test_empty_host_ignored(self, settings_store):
        settings_store.update(backend_host="", backend_model="")
        assert settings_store.load().backend_host == "http://env:8000"

    def test_empty_key_clears(self, settings_store):
        settings_store.update(api_key="secret")
        settings_store.update(api_key="")
        assert settings_store.load().api_key == ""

    def test_legacy_keys_migrated(self, settings_store):
        settings_store.path.write_text(
            json.dumps({"falApiKey": "old", "ollamaHost": "http://old:11434"}), encoding="utf-8"
        )
        record = settings_store.load()
        assert record.api_key == "old"
        assert record.backend_host == "http://old:11434"

    def test_public_view_hides_key(self):
        record = SettingsRecord(api_key="secret", backend_host="h", backend_model="m")
        assert record.public_view() == {
            "apiKey": "stored",
            "backendHost": "h",
            "backendModel": "m",
        }

    def test_file_uses_wire_names(self, settings_store):
        settings_store.update(api_key="k")
        stored = json.loads(settings_store.path.read_text(encoding="utf-8"))
        assert set(stored) == {"apiKey", "backendHost", "backendModel"}


class TestGalleryStore:
    def test_empty(self, gallery_store):
        assert gallery_store.load() == []

    def test_newest_first(self, gallery_store):
        first = gallery_store.add("first", '{"prompt": "a"}')
        second = gallery_store.add("second", '{"prompt": "b"}')
        assert [entry["id"] for entry in gallery_store.load()] == [second["id"], first["id"]]

    def test_entry_fields(self, gallery_store):
        entry = gallery_store.add(
            "title", "{}", image_url="https://img/x.png", session_id="s1", session_title="Chat"
        )
        assert entry["id"].startswith("entry-")
        assert entry["imageUrl"] == "https://img/x.png"
        assert entry["sessionTitle"] == "Chat"
        assert entry["createdAt"]

    def test_filter_by_session(self, gallery_store):
        gallery_store.add("a", "{}", session_id="s1")
        gallery_store.add("b", "{}", session_id="s2")
        assert [entry["title"] for entry in gallery_store.load("s1")] == ["a"]

    def test_get(self, gallery_store):
        entry = gallery_store.add("a", "{}")
        assert gallery_store.get(entry["id"]) == entry
        assert gallery_store.get("entry-missing") is None

    def test_delete(self, gallery_store):
        entry = gallery_store.add("a", "{}")
        assert gallery_store.delete(entry["id"]) is True
        assert gallery_store.delete(entry["id"]) is False
        assert gallery_store.load() == []


def test_ensure_data_files(temp_dir):
    settings = SettingsStore(temp_dir / "nested" / "settings.json", DEFAULTS)
    gallery = GalleryStore(temp_dir / "nested" / "gallery.json")
    ensure_data_files(settings, gallery)
    assert settings.load() == DEFAULTS
    assert json.loads(gallery.path.read_text(encoding="utf-8")) == []
