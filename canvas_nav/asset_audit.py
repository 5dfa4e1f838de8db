"""Report which pages use which uploaded assets, and which files are unused."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable
from urllib.parse import unquote

from .config import load_settings
from .storage import SnapshotStorage

logger = logging.getLogger(__name__)

UPLOADS_MARKER = "/uploads/"


def asset_key(filename: str) -> str:
    return Path(unquote(filename)).stem


def _store(snapshot: Any) -> dict[str, Any]:
    if not isinstance(snapshot, dict):
        return {}
    document = snapshot.get("document") if isinstance(snapshot.get("document"), dict) else snapshot
    store = document.get("store")
    return store if isinstance(store, dict) else {}


def _key_for_asset(record: Any, asset_id: str) -> str | None:
    props = record.get("props") if isinstance(record, dict) else None
    if not isinstance(props, dict):
        return None
    src = str(props.get("src") or "")
    if src.startswith("asset:"):
        return asset_id[len("asset:") :] if asset_id.startswith("asset:") else asset_id
    if UPLOADS_MARKER in src:
        return asset_key(src.split(UPLOADS_MARKER, 1)[1])
    return None


def build_asset_mapping(snapshot: Any) -> dict[str, str | None]:
    return {key: _key_for_asset(value, key) for key, value in _store(snapshot).items() if key.startswith("asset:")}


def find_page_for_shape(shape_id: str | None, store: dict[str, Any], page_names: dict[str, str]) -> str | None:
    seen: set[str] = set()
    current = shape_id
    while current and current not in seen:
        seen.add(current)
        if current in page_names:
            return current
        record = store.get(current)
        if not isinstance(record, dict) or not record.get("parentId"):
            break
        current = record["parentId"]
    return None


def build_asset_to_page_mapping(snapshot: Any) -> tuple[dict[str, list[str]], dict[str, str]]:
    store = _store(snapshot)
    page_names = {
        key: value["name"]
        for key, value in store.items()
        if key.startswith("page:") and isinstance(value, dict) and value.get("name")
    }

    asset_to_pages: dict[str, list[str]] = {}
    for key, value in store.items():
        if not key.startswith("shape:") or not isinstance(value, dict) or value.get("type") != "image":
            continue
        asset_id = (value.get("props") or {}).get("assetId")
        if not asset_id:
            continue
        page_id = find_page_for_shape(value.get("parentId"), store, page_names)
        if page_id is None:
            continue
        pages = asset_to_pages.setdefault(asset_id, [])
        if page_id not in pages:
            pages.append(page_id)
    return asset_to_pages, page_names


@dataclass
class PageAssets:
    page_id: str
    page_name: str
    assets: list[tuple[str, str | None]] = field(default_factory=list)  # (asset id, file or None)


@dataclass
class AuditReport:
    pages: list[PageAssets] = field(default_factory=list)
    unused_files: list[str] = field(default_factory=list)

    @property
    def missing(self) -> list[str]:
        return [asset_id for page in self.pages for asset_id, file in page.assets if file is None]


def audit(snapshot: Any, asset_files: Iterable[str]) -> AuditReport:
    # Several files can share a stem (x.png, x.jpg); keep them all.
    files_by_key: dict[str, list[str]] = {}
    for name in sorted(asset_files):
        files_by_key.setdefault(asset_key(name), []).append(name)
    mapping = build_asset_mapping(snapshot)
    asset_to_pages, page_names = build_asset_to_page_mapping(snapshot)

    report = AuditReport()
    used: set[str] = set()
    for page_id, page_name in page_names.items():
        entry = PageAssets(page_id=page_id, page_name=page_name)
        for asset_id, pages in asset_to_pages.items():
            if page_id not in pages:
                continue
            key = mapping.get(asset_id)
            if key:
                used.add(key)
            files = files_by_key.get(key) if key else None
            entry.assets.append((asset_id, files[0] if files else None))
        if entry.assets:
            report.pages.append(entry)

    report.unused_files = sorted(
        name for key, names in files_by_key.items() if key not in used for name in names
    )
    return report


def format_report(report: AuditReport) -> str:
    lines: list[str] = []
    for page in report.pages:
        lines.append(page.page_name or page.page_id)
        for asset_id, file in page.assets:
            lines.append(f"  {asset_id} -> {file or 'MISSING'}")
        lines.append("")
    if report.unused_files:
        lines.append("ASSET FILES ON DISK BUT NOT USED:")
        lines.extend(f"  {name}" for name in report.unused_files)
    else:
        lines.append("No unused asset files found on disk.")
    return "\n".join(lines)


def remove_unused(storage: SnapshotStorage, report: AuditReport) -> list[str]:
    removed: list[str] = []
    for name in report.unused_files:
        try:
            storage.asset_path(name).unlink()
        except OSError as exc:
            logger.error("Failed to remove %s: %s", name, exc)
            continue
        removed.append(name)
    return removed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--data-dir", type=Path, help="Data directory (defaults to the configured one).")
    parser.add_argument("--rm", action="store_true", help="Remove asset files no page uses.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    settings = load_settings()
    storage = SnapshotStorage(args.data_dir or settings.data_dir)
    try:
        snapshot = storage.load_snapshot()
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Error reading %s: %s", storage.snapshot_path, exc)
        return 1
    if snapshot is None:
        logger.error("No snapshot found at %s", storage.snapshot_path)
        return 1

    report = audit(snapshot, storage.list_assets())
    print(format_report(report))
    if report.unused_files:
        if args.rm:
            for name in remove_unused(storage, report):
                print(f"Removed: {name}")
        else:
            print("Use --rm to remove these unused files.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
