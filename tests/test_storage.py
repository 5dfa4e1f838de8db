from __future__ import annotations

import base64
from datetime import datetime, timezone

import pytest

from canvas_nav.storage import (
    CheckpointNotFoundError,
    SnapshotStorage,
    StorageError,
    content_type_for,
    extension_for_mime,
)


def test_load_without_snapshot_returns_none(storage):
    assert storage.load_snapshot() is None


def test_save_and_load_snapshot(storage):
    assert storage.save_snapshot({"document": {"store": {}}}) is None
    assert storage.load_snapshot() == {"document": {"store": {}}}
    assert storage.snapshot_path.read_text(encoding="utf-8").startswith("{\n  ")


def test_checkpoint_copies_snapshot_and_assets(storage):
    storage.write_asset("asset_1-cat.png", b"png-bytes")
    backup = storage.save_snapshot({"v": 1}, checkpoint=True)

    assert backup is not None
    assert backup.name.startswith("backup-")
    assert (backup / "assets" / "asset_1-cat.png").read_bytes() == b"png-bytes"
    assert storage.checkpoint_snapshot(backup.name) == {"v": 1}


def test_checkpoints_are_listed_newest_first(storage):
    older = storage.create_checkpoint({"v": 1}, now=datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))
    newer = storage.create_checkpoint({"v": 2}, now=datetime(2024, 5, 6, 7, 8, 9, 10000, tzinfo=timezone.utc))

    assert older.name == "backup-2024-01-02T03-04-05-678Z"
    listed = storage.list_checkpoints()
    assert [c.folder_name for c in listed] == [newer.name, older.name]
    assert listed[1].timestamp == "2024-01-02 03:04:05.678"
    assert listed[0].to_dict()["assetCount"] == 0


def test_old_checkpoints_are_pruned(tmp_path):
    storage = SnapshotStorage(tmp_path / "data", max_checkpoints=1)
    storage.create_checkpoint({"v": 1}, now=datetime(2024, 1, 1, tzinfo=timezone.utc))
    latest = storage.create_checkpoint({"v": 2}, now=datetime(2024, 1, 2, tzinfo=timezone.utc))
    assert [c.folder_name for c in storage.list_checkpoints()] == [latest.name]


def test_restore_brings_back_assets_and_snapshot(storage):
    storage.write_asset("a.png", b"one")
    backup = storage.save_snapshot({"v": "old"}, checkpoint=True)
    storage.asset_path("a.png").unlink()
    storage.save_snapshot({"v": "new"})

    restored = storage.restore_checkpoint(backup.name)

    assert restored == {"v": "old"}
    assert storage.load_snapshot() == {"v": "old"}
    assert storage.asset_path("a.png").read_bytes() == b"one"


def test_missing_checkpoint(storage):
    storage.ensure_dirs()
    with pytest.raises(CheckpointNotFoundError):
        storage.checkpoint_snapshot("backup-nope")
    (storage.backups_dir / "backup-empty").mkdir()
    with pytest.raises(CheckpointNotFoundError, match="Snapshot file not found"):
        storage.restore_checkpoint("backup-empty")


@pytest.mark.parametrize("name", ["", "..", "../escape", "a\\b"])
def test_names_must_be_single_path_components(storage, name):
    with pytest.raises(StorageError):
        storage.asset_path(name)


def test_export_assets_reports_each_item(storage):
    payload = [
        {"id": "asset-1", "mimeType": "image/png", "blob": base64.b64encode(b"png").decode()},
        {"id": "asset-2", "mimeType": "application/x-unknown", "blob": base64.b64encode(b"raw").decode()},
        {"id": "asset-3", "mimeType": "image/png"},
        {"id": "../bad", "mimeType": "image/png", "blob": base64.b64encode(b"x").decode()},
    ]
    result = storage.export_assets(payload)

    assert result["successCount"] == 2
    assert result["failCount"] == 2
    assert result["message"] == "Export complete: 2 successful, 2 failed"
    assert storage.asset_path("asset-1.png").read_bytes() == b"png"
    assert storage.asset_path("asset-2.bin").read_bytes() == b"raw"
    assert [r["success"] for r in result["results"]] == [True, True, False, False]


def test_export_assets_reports_undecodable_blobs_per_item(storage):
    payload = [
        {"id": "ok", "mimeType": "image/png", "blob": base64.b64encode(b"png").decode()},
        {"id": "accented", "mimeType": "image/png", "blob": "café"},
        {"id": "number", "mimeType": "image/png", "blob": 123},
        {"id": "listed", "mimeType": "image/png", "blob": ["aGk="]},
    ]
    result = storage.export_assets(payload)

    assert result["successCount"] == 1
    assert result["failCount"] == 3
    assert [r["id"] for r in result["results"]] == ["ok", "accented", "number", "listed"]
    assert [r["success"] for r in result["results"]] == [True, False, False, False]
    assert result["results"][2]["error"] == "Asset blob must be a base64 string"
    assert storage.list_assets() == ["ok.png"]


def test_mime_tables():
    assert content_type_for("x.JPEG") == "image/jpeg"
    assert content_type_for("x.svg") == "image/svg+xml"
    assert content_type_for("x.bmp") == "application/octet-stream"
    assert extension_for_mime("image/jpg") == ".jpg"
    assert extension_for_mime(None) == ".bin"
    assert extension_for_mime("video/mp4") == ".bin"
