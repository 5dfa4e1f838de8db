from __future__ import annotations

import copy
import logging
from typing import Any
from uuid import uuid4

from . import page_tree
from .page_tree import DeletePlan, Node, Result, RewritePlan

logger = logging.getLogger(__name__)

PAGE_TYPE = "page"
BASE_62_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


class PageNotFoundError(KeyError):
    pass


def _new_page_id() -> str:
    return f"page:{uuid4().hex}"


def _index_above(key: str) -> str:
    """Next integer index key after `key`.

    Keys are fractional indexes: a head letter `a`..`z` giving the number of
    base-62 integer digits that follow, then an optional fraction. The integer
    part is incremented, so keys stay short however many pages are appended.
    """
    head = key[:1]
    size = ord(head) - ord("a") + 1 if "a" <= head <= "z" else 0
    digits = list(key[1 : 1 + size])
    if not size or len(digits) != size or any(d not in BASE_62_DIGITS for d in digits):
        return key + "V"
    for pos in range(size - 1, -1, -1):
        value = BASE_62_DIGITS.index(digits[pos])
        if value < len(BASE_62_DIGITS) - 1:
            digits[pos] = BASE_62_DIGITS[value + 1]
            return head + "".join(digits)
        digits[pos] = "0"
    if head == "z":
        return key + "V"
    return chr(ord(head) + 1) + "0" * (size + 1)


class SnapshotPageStore:
    """Page store backed by an editor snapshot.

    Pages are the `typeName == "page"` records of the snapshot's store; a
    page's `name` holds its path.
    """

    def __init__(self, snapshot: dict[str, Any] | None = None) -> None:
        self.snapshot: dict[str, Any] = snapshot if isinstance(snapshot, dict) else {}

    # -- snapshot layout -------------------------------------------------

    def _document(self) -> dict[str, Any]:
        # Current snapshots nest the store under "document"; legacy ones don't.
        if "document" in self.snapshot or "store" not in self.snapshot:
            return self.snapshot.setdefault("document", {})
        return self.snapshot

    def _records(self) -> dict[str, Any]:
        document = self._document()
        store = document.get("store")
        if not isinstance(store, dict):
            store = document["store"] = {}
        return store

    def _page_record(self, page_id: str) -> dict[str, Any]:
        record = self._records().get(page_id)
        if not isinstance(record, dict) or record.get("typeName") != PAGE_TYPE:
            raise PageNotFoundError(page_id)
        return record

    def _page_records(self) -> list[dict[str, Any]]:
        return [r for r in self._records().values() if isinstance(r, dict) and r.get("typeName") == PAGE_TYPE]

    def _next_index(self) -> str:
        indexes = [str(r.get("index")) for r in self._page_records() if r.get("index")]
        if not indexes:
            return "a1"
        return _index_above(max(indexes))

    # -- collaborator interface -----------------------------------------

    def list_pages(self) -> list[dict[str, str]]:
        return [{"id": str(r.get("id")), "path": str(r.get("name") or "")} for r in self._page_records()]

    def nodes(self) -> list[Node]:
        return page_tree.parse(self.list_pages())

    def create_page(self, path: str) -> Node:
        node = Node(id=_new_page_id(), path=page_tree.normalize_path(path))
        self._records()[node.id] = {
            "id": node.id,
            "typeName": PAGE_TYPE,
            "name": node.path,
            "index": self._next_index(),
            "meta": {},
        }
        logger.info("Created page %s (%s)", node.path, node.id)
        return node

    def rename_page(self, page_id: str, new_path: str) -> None:
        record = self._page_record(page_id)
        record["name"] = page_tree.normalize_path(new_path)

    def delete_page(self, page_id: str) -> None:
        self._page_record(page_id)
        records = self._records()
        owned = [key for key, value in records.items() if self._belongs_to_page(key, value, page_id)]
        shape_ids = {key for key in owned if key.startswith("shape:")}
        # Bindings (arrow ends) pointing at a removed shape go with it.
        owned += [
            key
            for key, value in records.items()
            if isinstance(value, dict)
            and value.get("typeName") == "binding"
            and (value.get("fromId") in shape_ids or value.get("toId") in shape_ids)
            and key not in owned
        ]
        for key in owned:
            del records[key]
        del records[page_id]
        session = self.snapshot.get("session")
        if isinstance(session, dict) and session.get("currentPageId") == page_id:
            session.pop("currentPageId", None)
        logger.info("Deleted page %s with %d owned records", page_id, len(owned))

    def _belongs_to_page(self, key: str, record: Any, page_id: str) -> bool:
        if not isinstance(record, dict) or key == page_id:
            return False
        if record.get("pageId") == page_id:
            return True
        if str(key).startswith("shape:"):
            return self._shape_page(key) == page_id
        return False

    def _shape_page(self, shape_id: str) -> str | None:
        records = self._records()
        seen: set[str] = set()
        current: str | None = shape_id
        while current and current not in seen:
            seen.add(current)
            record = records.get(current)
            if not isinstance(record, dict):
                return None
            if record.get("typeName") == PAGE_TYPE:
                return current
            current = record.get("parentId")
        return None

    def get_current_page(self) -> Node | None:
        nodes = self.nodes()
        session = self.snapshot.get("session")
        current_id = session.get("currentPageId") if isinstance(session, dict) else None
        for node in nodes:
            if node.id == current_id:
                return node
        return page_tree.root(nodes)

    def set_current_page(self, node: Node) -> None:
        self._page_record(node.id)
        session = self.snapshot.get("session")
        if not isinstance(session, dict):
            session = self.snapshot["session"] = {}
        session["currentPageId"] = node.id

    def ensure_root(self) -> Node:
        existing = page_tree.root(self.nodes())
        if existing is not None:
            return existing
        return self.create_page(page_tree.ROOT_PATH)

    # -- plan application ------------------------------------------------

    def _transaction(self) -> "SnapshotPageStore":
        return SnapshotPageStore(copy.deepcopy(self.snapshot))

    def _commit(self, draft: "SnapshotPageStore") -> None:
        self.snapshot.clear()
        self.snapshot.update(draft.snapshot)

    def add_child(self, parent_path: str, name: str) -> Result[Node]:
        result = page_tree.create(parent_path, name, self.nodes())
        if not result.ok:
            return Result(error=result.error)
        draft = self._transaction()
        node = draft.create_page(result.value)
        draft.set_current_page(node)
        self._commit(draft)
        return Result(value=node)

    def move(self, node: Node, new_path: str) -> Result[RewritePlan]:
        result = page_tree.rename(node, new_path, self.nodes())
        if not result.ok or result.value.is_empty:
            return result
        plan = result.value
        draft = self._transaction()
        for path in plan.create:
            draft.create_page(path)
        for change in plan.changes:
            draft.rename_page(change.id, change.new_path)
        draft.set_current_page(Node(id=plan.node_id, path=plan.new_path))
        self._commit(draft)
        logger.info("Moved %s -> %s (%d pages rewritten)", plan.old_path, plan.new_path, len(plan.changes))
        return result

    def remove(self, node: Node) -> Result[DeletePlan]:
        result = page_tree.delete(node, self.nodes())
        if not result.ok:
            return result
        plan = result.value
        draft = self._transaction()
        for doomed in plan.nodes:
            draft.delete_page(doomed.id)
        if plan.navigate_to is not None:
            draft.set_current_page(plan.navigate_to)
        self._commit(draft)
        return result
