from __future__ import annotations

import copy

import pytest

import canvas_nav.app as server
from canvas_nav.storage import SnapshotStorage


def _page(page_id: str, path: str, index: str) -> dict:
    return {"id": page_id, "typeName": "page", "name": path, "index": index, "meta": {}}


SAMPLE_SNAPSHOT = {
    "document": {
        "store": {
            "page:root": _page("page:root", "/", "a1"),
            "page:a": _page("page:a", "/a", "a2"),
            "page:ab": _page("page:ab", "/a/b", "a3"),
            "shape:frame": {"id": "shape:frame", "typeName": "shape", "type": "frame", "parentId": "page:ab"},
            "shape:img": {
                "id": "shape:img",
                "typeName": "shape",
                "type": "image",
                "parentId": "shape:frame",
                "props": {"assetId": "asset:one"},
            },
            "shape:note": {"id": "shape:note", "typeName": "shape", "type": "note", "parentId": "page:a"},
            "instance_page_state:page:ab": {
                "id": "instance_page_state:page:ab",
                "typeName": "instance_page_state",
                "pageId": "page:ab",
            },
        },
        "schema": {"schemaVersion": 2},
    },
    "session": {"currentPageId": "page:a"},
}


@pytest.fixture
def snapshot() -> dict:
    return copy.deepcopy(SAMPLE_SNAPSHOT)


@pytest.fixture
def storage(tmp_path) -> SnapshotStorage:
    return SnapshotStorage(tmp_path / "data")


@pytest.fixture
def client(storage, tmp_path, monkeypatch):
    monkeypatch.setattr(server, "STORAGE", storage)
    monkeypatch.setattr(server, "UI_STATE_PATH", tmp_path / "ui_state.json")
    server.app.config["TESTING"] = True
    with server.app.test_client() as test_client:
        yield test_client
