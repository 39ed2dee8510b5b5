"""Tests for the JSON-backed metadata store."""

import json
import os
import threading
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from vidshelf.core.errors import (
    EntryNotFoundError,
    FileSystemError,
    MetadataDecodeError,
    PathTraversalError,
    PersistError,
)
from vidshelf.core.models import LibraryEntry
from vidshelf.library.store import MetadataStore


def _entry(library_dir, entry_id="abc123", title="Demo Clip", **overrides):
    filename = overrides.pop("filename", f"{title}.mp4")
    fields = dict(
        id=entry_id,
        title=title,
        filename=filename,
        file_path=os.path.join(str(library_dir), filename),
        file_size=500000,
        duration=42.0,
        created_at=datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return LibraryEntry(**fields)


class TestLoadAndSave:
    def test_missing_file_loads_empty(self, library_dir):
        store = MetadataStore(library_dir)
        assert store.load() == 0
        assert store.list_entries() == []

    def test_empty_store_round_trip(self, library_dir):
        store = MetadataStore(library_dir)
        store.save()

        reloaded = MetadataStore(library_dir)
        reloaded.load()
        assert reloaded.list_entries() == []
        assert json.loads((library_dir / "metadata.json").read_text()) == []

    def test_populated_round_trip_preserves_every_field(self, library_dir):
        store = MetadataStore(library_dir)
        full = _entry(
            library_dir,
            thumbnail_path=os.path.join(str(library_dir), "Demo Clip.jpg"),
            upload_date="20240115",
            uploader="Demo Channel",
            description="A short demo",
            source_url="https://example.com/watch?v=abc123",
        )
        sparse = _entry(library_dir, entry_id="bare", title="", filename="bare.mkv", file_size=0, duration=0.0)
        store.put_many([full, sparse])

        reloaded = MetadataStore(library_dir)
        assert reloaded.load() == 2
        assert reloaded.get("abc123") == full
        assert reloaded.get("bare") == sparse

    def test_file_uses_stable_field_names(self, library_dir):
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir, source_url="https://example.com/v", thumbnail_path=""))

        records = json.loads((library_dir / "metadata.json").read_text())
        assert set(records[0]) == {
            "id", "title", "filename", "file_path", "file_size", "duration",
            "thumbnail", "upload_date", "uploader", "description", "url", "created_at",
        }
        assert records[0]["url"] == "https://example.com/v"

    def test_loads_nanosecond_timestamps(self, library_dir):
        (library_dir / "metadata.json").write_text(json.dumps([{
            "id": "x1",
            "title": "Old",
            "filename": "Old.mp4",
            "file_path": str(library_dir / "Old.mp4"),
            "file_size": 10,
            "duration": 0,
            "thumbnail": "",
            "created_at": "2024-03-01T10:20:30.123456789Z",
        }]))

        store = MetadataStore(library_dir)
        store.load()
        assert store.get("x1").created_at == datetime(2024, 3, 1, 10, 20, 30, 123456, tzinfo=timezone.utc)

    @pytest.mark.parametrize("content", ["{not json", '{"id": "x"}', '[{"title": "no id"}]', "[1, 2]"])
    def test_malformed_file_raises_and_keeps_previous_contents(self, library_dir, content):
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir))

        (library_dir / "metadata.json").write_text(content)
        with pytest.raises(MetadataDecodeError):
            store.load()
        assert store.get("abc123") is not None

    def test_unreadable_file_raises_filesystem_error(self, library_dir):
        (library_dir / "metadata.json").write_text("[]")
        store = MetadataStore(library_dir)
        with patch("pathlib.Path.read_text", side_effect=PermissionError("denied")):
            with pytest.raises(FileSystemError):
                store.load()

    def test_save_leaves_no_temp_files(self, library_dir):
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir))
        store.put(_entry(library_dir, entry_id="second", title="Second"))
        assert sorted(os.listdir(library_dir)) == ["metadata.json"]


class TestPut:
    def test_put_is_idempotent(self, library_dir):
        store = MetadataStore(library_dir)
        entry = _entry(library_dir)
        store.put(entry)
        first = (library_dir / "metadata.json").read_text()

        store.put(entry)
        assert len(store) == 1
        assert (library_dir / "metadata.json").read_text() == first

    def test_put_overwrites_by_id(self, library_dir):
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir, title="Old"))
        store.put(_entry(library_dir, title="New"))
        assert len(store) == 1
        assert store.get("abc123").title == "New"

    def test_failed_save_rolls_back(self, library_dir):
        store = MetadataStore(library_dir)
        original = _entry(library_dir, title="Original")
        store.put(original)

        with patch("vidshelf.library.store.atomic_write_text", side_effect=OSError("disk full")):
            with pytest.raises(PersistError):
                store.put(_entry(library_dir, title="Replacement"))
            with pytest.raises(PersistError):
                store.put(_entry(library_dir, entry_id="new"))

        assert store.get("abc123") == original
        assert store.get("new") is None


class TestSearch:
    def test_matches_title_uploader_and_description_case_insensitively(self, library_dir):
        store = MetadataStore(library_dir)
        store.put_many([
            _entry(library_dir, entry_id="a", title="Demo Clip"),
            _entry(library_dir, entry_id="b", title="Other", uploader="DEMOS Inc"),
            _entry(library_dir, entry_id="c", title="Third", description="a demonstration"),
            _entry(library_dir, entry_id="d", title="Unrelated"),
        ])

        assert {entry.id for entry in store.search("demo")} == {"a", "b", "c"}
        assert {entry.id for entry in store.search("DEMO CLIP")} == {"a"}

    def test_empty_query_returns_everything(self, library_dir):
        store = MetadataStore(library_dir)
        store.put_many([_entry(library_dir, entry_id="a"), _entry(library_dir, entry_id="b")])
        assert len(store.search("")) == 2


class TestDelete:
    def test_removes_files_and_entry(self, library_dir):
        video = library_dir / "Demo Clip.mp4"
        thumb = library_dir / "Demo Clip.jpg"
        video.write_bytes(b"v")
        thumb.write_bytes(b"t")
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir, thumbnail_path=str(thumb)))

        deleted = store.delete("abc123")

        assert deleted.id == "abc123"
        assert not video.exists()
        assert not thumb.exists()
        assert store.get("abc123") is None
        assert json.loads((library_dir / "metadata.json").read_text()) == []

    def test_unknown_id_leaves_store_unchanged(self, library_dir):
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir))
        before = (library_dir / "metadata.json").read_text()

        with pytest.raises(EntryNotFoundError):
            store.delete("nope")
        assert len(store) == 1
        assert (library_dir / "metadata.json").read_text() == before

    def test_missing_video_file_is_tolerated(self, library_dir):
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir))
        store.delete("abc123")
        assert len(store) == 0

    def test_missing_thumbnail_is_tolerated(self, library_dir):
        (library_dir / "Demo Clip.mp4").write_bytes(b"v")
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir, thumbnail_path=str(library_dir / "gone.jpg")))
        store.delete("abc123")
        assert len(store) == 0

    def test_refuses_file_outside_library(self, library_dir, tmp_path):
        outside = tmp_path / "outside.mp4"
        outside.write_bytes(b"x")
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir, file_path=str(outside)))

        with pytest.raises(PathTraversalError):
            store.delete("abc123")
        assert outside.exists()
        assert store.get("abc123") is not None

    def test_removal_failure_keeps_entry(self, library_dir):
        (library_dir / "Demo Clip.mp4").write_bytes(b"v")
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir))

        with patch("vidshelf.library.store.remove_file", side_effect=PermissionError("denied")):
            with pytest.raises(FileSystemError):
                store.delete("abc123")
        assert store.get("abc123") is not None
        assert (library_dir / "Demo Clip.mp4").exists()

        reloaded = MetadataStore(library_dir)
        reloaded.load()
        assert reloaded.get("abc123") is not None

    def test_failed_save_touches_nothing(self, library_dir):
        (library_dir / "Demo Clip.mp4").write_bytes(b"v")
        (library_dir / "Demo Clip.jpg").write_bytes(b"t")
        store = MetadataStore(library_dir)
        store.put(_entry(library_dir, thumbnail_path=str(library_dir / "Demo Clip.jpg")))

        with patch("vidshelf.library.store.atomic_write_text", side_effect=OSError("disk full")):
            with pytest.raises(PersistError):
                store.delete("abc123")

        assert [e.id for e in store.list_entries()] == ["abc123"]
        records = json.loads((library_dir / "metadata.json").read_text())
        assert [record["id"] for record in records] == ["abc123"]
        assert (library_dir / "Demo Clip.mp4").exists()
        assert (library_dir / "Demo Clip.jpg").exists()


class TestRelativePaths:
    def test_relative_paths_are_made_absolute_on_load(self, library_dir, monkeypatch):
        monkeypatch.chdir(library_dir.parent)
        (library_dir / "Old.mp4").write_bytes(b"v")
        (library_dir / "metadata.json").write_text(json.dumps([{
            "id": "x1",
            "title": "Old",
            "filename": "Old.mp4",
            "file_path": f"{library_dir.name}/Old.mp4",
            "file_size": 1,
            "duration": 0,
            "thumbnail": f"{library_dir.name}/Old.jpg",
            "created_at": "2024-03-01T10:20:30Z",
        }]))

        store = MetadataStore(library_dir)
        store.load()

        entry = store.get("x1")
        assert entry.file_path == str(library_dir / "Old.mp4")
        assert entry.thumbnail_path == str(library_dir / "Old.jpg")
        assert store.file_paths() == {str(library_dir / "Old.mp4")}


class TestConcurrency:
    def test_parallel_puts_and_deletes_stay_consistent(self, library_dir):
        store = MetadataStore(library_dir)
        errors = []

        def worker(index):
            try:
                for n in range(15):
                    entry_id = f"w{index}-{n}"
                    store.put(_entry(library_dir, entry_id=entry_id, title=entry_id))
                    if n % 3 == 0:
                        store.delete(entry_id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        records = json.loads((library_dir / "metadata.json").read_text())
        assert len(store) == len(records) == 6 * 10
        assert {record["id"] for record in records} == {e.id for e in store.list_entries()}
        assert sorted(os.listdir(library_dir)) == ["metadata.json"]

        reloaded = MetadataStore(library_dir)
        assert reloaded.load() == len(store)
