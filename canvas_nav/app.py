from __future__ import annotations

import json
import logging
from typing import Any

from flask import Flask, jsonify, request, send_file
from flask_cors import CORS

from . import page_tree
from .config import load_settings
from .page_store import SnapshotPageStore
from .page_tree import Node, TreeError
from .session import UiSession
from .storage import CheckpointNotFoundError, SnapshotStorage, StorageError, content_type_for

logger = logging.getLogger(__name__)

SETTINGS = load_settings()
STORAGE = SnapshotStorage(SETTINGS.data_dir, max_checkpoints=SETTINGS.max_checkpoints)
UI_STATE_PATH = SETTINGS.ui_state_path

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = SETTINGS.max_upload_bytes
CORS(app)

TREE_ERROR_STATUS = {
    page_tree.ALREADY_EXISTS: 409,
    page_tree.NOT_FOUND: 404,
}

ASSET_CACHE_SECONDS = 31536000


def _json_error(message: str, status: int = 400, **extra: Any):
    payload: dict[str, Any] = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def _tree_error(error: TreeError):
    return _json_error(error.message, TREE_ERROR_STATUS.get(error.code, 400), code=error.code, path=error.path)


def _load_ui_session() -> UiSession:
    if not UI_STATE_PATH.exists():
        return UiSession()
    try:
        with UI_STATE_PATH.open("r", encoding="utf-8") as handle:
            return UiSession.from_dict(json.load(handle))
    except (OSError, json.JSONDecodeError):
        return UiSession()


def _save_ui_session(session: UiSession) -> None:
    UI_STATE_PATH.parent.mkdir(parents=True, exist_ok=True)
    with UI_STATE_PATH.open("w", encoding="utf-8") as handle:
        json.dump(session.to_dict(), handle, indent=2, ensure_ascii=True)


def _page_store() -> tuple[SnapshotPageStore | None, Any]:
    try:
        snapshot = STORAGE.load_snapshot()
    except (OSError, json.JSONDecodeError):
        logger.exception("Error loading snapshot")
        return None, _json_error("Failed to load snapshot", 500)
    if snapshot is None:
        return None, None
    return SnapshotPageStore(snapshot), None


def _save_pages(store: SnapshotPageStore) -> Any:
    try:
        STORAGE.save_snapshot(store.snapshot)
    except OSError:
        logger.exception("Error saving snapshot")
        return _json_error("Failed to save snapshot", 500)
    return None


def _payload() -> dict[str, Any] | None:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else None


def _node_for(store: SnapshotPageStore, path: str | None) -> Node | None:
    nodes = store.nodes()
    if path is None or not str(path).strip():
        return store.get_current_page()
    return page_tree.find(path, nodes)


# -- snapshots -----------------------------------------------------------


@app.route("/api/meta", methods=["GET"])
def api_meta():
    return jsonify(
        {
            "data_dir": str(STORAGE.data_dir),
            "snapshot_path": str(STORAGE.snapshot_path),
            "assets_dir": str(STORAGE.assets_dir),
            "backups_dir": str(STORAGE.backups_dir),
            "ui_state_path": str(UI_STATE_PATH),
        }
    )


@app.route("/api/save", methods=["POST"])
def api_save():
    payload = _payload() or {}
    snapshot = payload.get("snapshot")
    if not snapshot:
        return _json_error("No snapshot provided", 400)
    checkpoint = bool(payload.get("checkpoint", False))
    try:
        STORAGE.save_snapshot(snapshot, checkpoint=checkpoint)
    except OSError:
        logger.exception("Error saving snapshot")
        return _json_error("Failed to save snapshot", 500)
    return jsonify(
        {
            "success": True,
            "message": "Snapshot saved with checkpoint" if checkpoint else "Snapshot saved",
        }
    )


@app.route("/api/load", methods=["GET"])
def api_load():
    try:
        snapshot = STORAGE.load_snapshot()
    except (OSError, json.JSONDecodeError):
        logger.exception("Error loading snapshot")
        return _json_error("Failed to load snapshot", 500)
    return jsonify({"snapshot": snapshot})


@app.route("/api/checkpoints", methods=["GET"])
def api_checkpoints():
    try:
        checkpoints = STORAGE.list_checkpoints()
    except OSError:
        logger.exception("Error getting checkpoints")
        return _json_error("Failed to get checkpoints", 500)
    return jsonify({"checkpoints": [c.to_dict() for c in checkpoints]})


@app.route("/api/restore/<backup_folder>", methods=["GET"])
def api_get_backup(backup_folder: str):
    try:
        snapshot = STORAGE.checkpoint_snapshot(backup_folder)
    except CheckpointNotFoundError as exc:
        return _json_error(str(exc), 404)
    except StorageError as exc:
        return _json_error(str(exc), 400)
    except (OSError, json.JSONDecodeError):
        logger.exception("Error getting backup snapshot")
        return _json_error("Failed to get backup snapshot", 500)
    logger.info("Sent backup snapshot data: %s", backup_folder)
    return jsonify(
        {
            "success": True,
            "snapshot": snapshot,
            "message": f"Backup snapshot data retrieved: {backup_folder}",
        }
    )


@app.route("/api/restore/<backup_folder>", methods=["POST"])
def api_restore_backup(backup_folder: str):
    try:
        STORAGE.restore_checkpoint(backup_folder)
    except CheckpointNotFoundError as exc:
        return _json_error(str(exc), 404)
    except StorageError as exc:
        return _json_error(str(exc), 400)
    except (OSError, json.JSONDecodeError):
        logger.exception("Error restoring from backup")
        return _json_error("Failed to restore from backup", 500)
    return jsonify({"success": True, "message": f"Successfully restored from backup {backup_folder}"})


# -- assets --------------------------------------------------------------


@app.route("/uploads/<asset_id>", methods=["PUT"])
def api_upload_asset(asset_id: str):
    try:
        STORAGE.write_asset(asset_id, request.get_data())
    except StorageError as exc:
        return _json_error(str(exc), 400)
    except OSError:
        logger.exception("Error uploading asset")
        return _json_error("Failed to upload asset", 500)
    return jsonify({"ok": True})


@app.route("/uploads/<asset_id>", methods=["GET"])
def api_serve_asset(asset_id: str):
    try:
        path = STORAGE.asset_path(asset_id)
    except StorageError as exc:
        return _json_error(str(exc), 400)
    if not path.is_file():
        return _json_error("Asset not found", 404)
    response = send_file(path, mimetype=content_type_for(asset_id), max_age=ASSET_CACHE_SECONDS)
    response.headers["Cache-Control"] = f"public, max-age={ASSET_CACHE_SECONDS}"
    return response


@app.route("/api/export-assets", methods=["POST"])
def api_export_assets():
    payload = _payload() or {}
    assets = payload.get("assets")
    if not isinstance(assets, list):
        return _json_error("No assets array provided", 400)
    return jsonify(STORAGE.export_assets(assets))


# -- pages ---------------------------------------------------------------


@app.route("/api/pages", methods=["GET"])
def api_pages():
    store, error = _page_store()
    if error is not None:
        return error
    if store is None:
        return jsonify({"pages": [], "current": None})
    current = store.get_current_page()
    return jsonify(
        {
            "pages": [n.to_dict() for n in store.nodes()],
            "current": current.to_dict() if current else None,
        }
    )


def _query_node() -> tuple[SnapshotPageStore | None, Node | None, Any]:
    store, error = _page_store()
    if error is not None:
        return None, None, error
    if store is None:
        return None, None, _json_error("No snapshot saved.", 404)
    path = request.args.get("path")
    node = _node_for(store, path)
    if node is None:
        return store, None, _json_error("Page not found.", 404, code=page_tree.NOT_FOUND, path=path)
    return store, node, None


@app.route("/api/pages/children", methods=["GET"])
def api_page_children():
    store, node, error = _query_node()
    if error is not None:
        return error
    return jsonify({"page": node.to_dict(), "children": [n.to_dict() for n in page_tree.children(node, store.nodes())]})


@app.route("/api/pages/descendants", methods=["GET"])
def api_page_descendants():
    store, node, error = _query_node()
    if error is not None:
        return error
    found = page_tree.descendants(node, store.nodes())
    return jsonify({"page": node.to_dict(), "descendants": [n.to_dict() for n in found]})


@app.route("/api/pages/breadcrumb", methods=["GET"])
def api_page_breadcrumb():
    store, node, error = _query_node()
    if error is not None:
        return error
    return jsonify({"crumbs": [c.to_dict() for c in page_tree.breadcrumb(node, store.nodes())]})


@app.route("/api/pages/search", methods=["GET"])
def api_page_search():
    try:
        limit = int(request.args.get("limit") or 10)
    except ValueError:
        return _json_error("`limit` must be an integer.", 400)
    if limit < 1:
        return _json_error("`limit` must be at least 1.", 400)
    store, error = _page_store()
    if error is not None:
        return error
    if store is None:
        return jsonify({"pages": []})
    hits = page_tree.search(request.args.get("q") or "", store.nodes(), limit=limit)
    return jsonify({"pages": [n.to_dict() for n in hits]})


def _mutation_target(payload: dict[str, Any]) -> tuple[SnapshotPageStore | None, Node | None, Any]:
    store, error = _page_store()
    if error is not None:
        return None, None, error
    if store is None:
        return None, None, _json_error("No snapshot saved.", 404)
    store.ensure_root()
    path = payload.get("path")
    node = _node_for(store, path)
    if node is None:
        return store, None, _json_error("Page not found.", 404, code=page_tree.NOT_FOUND, path=path)
    return store, node, None


@app.route("/api/pages", methods=["POST"])
def api_create_page():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    store, error = _page_store()
    if error is not None:
        return error
    if store is None:
        return _json_error("No snapshot saved.", 404)
    store.ensure_root()
    parent_path = payload.get("parent_path")
    if parent_path is None:
        current = store.get_current_page()
        parent_path = current.path if current else page_tree.ROOT_PATH
    result = store.add_child(str(parent_path), str(payload.get("name") or ""))
    if not result.ok:
        return _tree_error(result.error)
    error = _save_pages(store)
    if error is not None:
        return error
    return jsonify({"status": "ok", "page": result.value.to_dict()}), 201


@app.route("/api/pages/rename", methods=["POST"])
def api_rename_page():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    new_path = str(payload.get("new_path") or "").strip()
    if not new_path:
        return _json_error("`new_path` is required.", 400)
    store, node, error = _mutation_target(payload)
    if error is not None:
        return error
    result = store.move(node, new_path)
    if not result.ok:
        return _tree_error(result.error)
    if not result.value.is_empty:
        error = _save_pages(store)
        if error is not None:
            return error
    return jsonify({"status": "ok", "plan": result.value.to_dict()})


@app.route("/api/pages/delete", methods=["POST"])
def api_delete_page():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    store, node, error = _mutation_target(payload)
    if error is not None:
        return error
    result = store.remove(node)
    if not result.ok:
        return _tree_error(result.error)
    error = _save_pages(store)
    if error is not None:
        return error
    return jsonify({"status": "ok", **result.value.to_dict()})


@app.route("/api/pages/current", methods=["POST"])
def api_set_current_page():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    if not str(payload.get("path") or "").strip():
        return _json_error("`path` is required.", 400)
    store, node, error = _mutation_target(payload)
    if error is not None:
        return error
    store.set_current_page(node)
    error = _save_pages(store)
    if error is not None:
        return error
    return jsonify({"status": "ok", "page": node.to_dict()})


# -- ui state ------------------------------------------------------------


@app.route("/api/ui_state", methods=["GET"])
def api_get_ui_state():
    return jsonify(_load_ui_session().to_dict())


@app.route("/api/ui_state", methods=["POST"])
def api_save_ui_state():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    session = _load_ui_session()
    if payload.get("toggle"):
        session.toggle_keyboard_mode()
    elif "keyboard_mode" in payload:
        session.set_keyboard_mode(bool(payload["keyboard_mode"]))
    _save_ui_session(session)
    return jsonify({"status": "ok", **session.to_dict()})


@app.errorhandler(413)
def payload_too_large(_exc):
    return _json_error("Payload too large.", 413)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    STORAGE.ensure_dirs()
    logger.info("Persistence server running on http://%s:%d", SETTINGS.host, SETTINGS.port)
    app.run(host=SETTINGS.host, port=SETTINGS.port)


if __name__ == "__main__":
    main()
