from __future__ import annotations

import base64
import json
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from shutil import copy2
from typing import Any, Iterable

logger = logging.getLogger(__name__)

SNAPSHOT_FILENAME = "snapshot.json"
BACKUP_PREFIX = "backup-"

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
    ".json": "application/json",
}

MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
    "image/x-icon": ".ico",
    "application/pdf": ".pdf",
    "application/json": ".json",
    "text/plain": ".txt",
    "application/octet-stream": ".bin",
}


class StorageError(ValueError):
    pass


class CheckpointNotFoundError(StorageError):
    pass


def content_type_for(filename: str) -> str:
    return CONTENT_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


def extension_for_mime(mime_type: str | None) -> str:
    return MIME_EXTENSIONS.get(mime_type or "application/octet-stream", ".bin")


def _safe_name(name: str) -> str:
    cleaned = str(name or "").strip()
    if not cleaned or cleaned in (".", "..") or "/" in cleaned or "\\" in cleaned or "\x00" in cleaned:
        raise StorageError(f"Invalid name: {name!r}")
    return cleaned


def _checkpoint_stamp(moment: datetime) -> str:
    # ISO-8601 UTC with millisecond precision, ':' and '.' replaced for the filesystem.
    iso = moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def _display_stamp(stamp: str) -> str:
    try:
        moment = datetime.strptime(stamp, "%Y-%m-%dT%H-%M-%S-%fZ")
    except ValueError:
        return stamp
    return moment.strftime("%Y-%m-%d %H:%M:%S.") + f"{moment.microsecond // 1000:03d}"


@dataclass
class Checkpoint:
    folder_name: str
    timestamp: str
    path: Path
    snapshot_path: Path
    assets_path: Path
    asset_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "folderName": self.folder_name,
            "timestamp": self.timestamp,
            "path": str(self.path),
            "snapshotPath": str(self.snapshot_path),
            "assetsPath": str(self.assets_path),
            "assetCount": self.asset_count,
        }


class SnapshotStorage:
    """Snapshot, checkpoint and asset files under one data directory."""

    def __init__(self, data_dir: Path, max_checkpoints: int = 0) -> None:
        self.data_dir = Path(data_dir)
        self.assets_dir = self.data_dir / "assets"
        self.backups_dir = self.data_dir / "backups"
        self.snapshot_path = self.data_dir / SNAPSHOT_FILENAME
        self.max_checkpoints = max_checkpoints

    def ensure_dirs(self) -> None:
        for directory in (self.data_dir, self.assets_dir, self.backups_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # -- snapshots -------------------------------------------------------

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    def save_snapshot(self, snapshot: Any, checkpoint: bool = False) -> Path | None:
        self.ensure_dirs()
        backup = self.create_checkpoint(snapshot) if checkpoint else None
        self._write_json(self.snapshot_path, snapshot)
        logger.info("Snapshot saved%s", " with checkpoint" if backup else "")
        return backup

    def load_snapshot(self) -> Any | None:
        if not self.snapshot_path.exists():
            return None
        return json.loads(self.snapshot_path.read_text(encoding="utf-8"))

    # -- checkpoints -----------------------------------------------------

    def create_checkpoint(self, snapshot: Any, now: datetime | None = None) -> Path:
        self.ensure_dirs()
        backup_dir = self.backups_dir / f"{BACKUP_PREFIX}{_checkpoint_stamp(now or datetime.now(timezone.utc))}"
        backup_assets = backup_dir / "assets"
        backup_assets.mkdir(parents=True, exist_ok=True)
        self._write_json(backup_dir / SNAPSHOT_FILENAME, snapshot)

        copied = 0
        for asset in self.list_assets():
            copy2(self.assets_dir / asset, backup_assets / asset)
            copied += 1
        logger.info("Backup created with %d assets: %s", copied, backup_dir)
        self._prune_checkpoints()
        return backup_dir

    def _checkpoint_dirs(self) -> list[Path]:
        if not self.backups_dir.exists():
            return []
        dirs = [p for p in self.backups_dir.iterdir() if p.is_dir() and p.name.startswith(BACKUP_PREFIX)]
        return sorted(dirs, key=lambda p: p.name, reverse=True)

    def _prune_checkpoints(self) -> None:
        if self.max_checkpoints <= 0:
            return
        for old in self._checkpoint_dirs()[self.max_checkpoints :]:
            shutil.rmtree(old, ignore_errors=True)
            logger.info("Pruned old checkpoint %s", old.name)

    def list_checkpoints(self) -> list[Checkpoint]:
        checkpoints: list[Checkpoint] = []
        for folder in self._checkpoint_dirs():
            assets = folder / "assets"
            try:
                count = sum(1 for _ in assets.iterdir()) if assets.exists() else 0
            except OSError:
                count = 0
            checkpoints.append(
                Checkpoint(
                    folder_name=folder.name,
                    timestamp=_display_stamp(folder.name[len(BACKUP_PREFIX) :]),
                    path=folder,
                    snapshot_path=folder / SNAPSHOT_FILENAME,
                    assets_path=assets,
                    asset_count=count,
                )
            )
        return checkpoints

    def _checkpoint_dir(self, folder: str) -> Path:
        backup_dir = self.backups_dir / _safe_name(folder)
        if not backup_dir.is_dir():
            raise CheckpointNotFoundError("Backup folder not found")
        if not (backup_dir / SNAPSHOT_FILENAME).exists():
            raise CheckpointNotFoundError("Snapshot file not found in backup")
        return backup_dir

    def checkpoint_snapshot(self, folder: str) -> Any:
        backup_dir = self._checkpoint_dir(folder)
        return json.loads((backup_dir / SNAPSHOT_FILENAME).read_text(encoding="utf-8"))

    def restore_checkpoint(self, folder: str) -> Any:
        backup_dir = self._checkpoint_dir(folder)
        snapshot = json.loads((backup_dir / SNAPSHOT_FILENAME).read_text(encoding="utf-8"))
        self.ensure_dirs()
        backup_assets = backup_dir / "assets"
        if backup_assets.is_dir():
            restored = 0
            for asset in backup_assets.iterdir():
                if asset.is_file():
                    copy2(asset, self.assets_dir / asset.name)
                    restored += 1
            logger.info("Restored %d assets from backup", restored)
        self._write_json(self.snapshot_path, snapshot)
        logger.info("Restored from backup: %s", folder)
        return snapshot

    # -- assets ----------------------------------------------------------

    def list_assets(self) -> list[str]:
        if not self.assets_dir.exists():
            return []
        return sorted(p.name for p in self.assets_dir.iterdir() if p.is_file())

    def asset_path(self, name: str) -> Path:
        return self.assets_dir / _safe_name(name)

    def write_asset(self, name: str, data: bytes) -> Path:
        self.ensure_dirs()
        path = self.asset_path(name)
        path.write_bytes(data)
        logger.info("Asset uploaded: %s", path.name)
        return path

    def export_assets(self, items: Iterable[Any]) -> dict[str, Any]:
        """Write base64 encoded assets as `<id><ext>`, reporting each item."""
        results: list[dict[str, Any]] = []
        success = 0
        failed = 0
        for item in items:
            item = item if isinstance(item, dict) else {}
            asset_id = item.get("id")
            blob = item.get("blob")
            if not asset_id or not blob:
                failed += 1
                results.append({"id": asset_id, "success": False, "error": "Missing asset ID or blob data"})
                continue
            if not isinstance(blob, str):
                failed += 1
                results.append({"id": asset_id, "success": False, "error": "Asset blob must be a base64 string"})
                continue
            mime_type = item.get("mimeType") or "application/octet-stream"
            filename = f"{asset_id}{extension_for_mime(mime_type)}"
            try:
                data = base64.b64decode(blob, validate=False)
                self.write_asset(filename, data)
            except (ValueError, OSError) as exc:
                # binascii.Error and StorageError are ValueErrors; non-ASCII text raises a bare one.
                failed += 1
                results.append({"id": asset_id, "success": False, "error": str(exc)})
                logger.error("Error exporting asset %s: %s", asset_id, exc)
                continue
            success += 1
            results.append({"id": asset_id, "filename": filename, "success": True})
        return {
            "success": True,
            "message": f"Export complete: {success} successful, {failed} failed",
            "successCount": success,
            "failCount": failed,
            "results": results,
        }
