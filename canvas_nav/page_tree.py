from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, TypeVar

ROOT_PATH = "/"

ALREADY_EXISTS = "ALREADY_EXISTS"
CANNOT_RENAME_ROOT = "CANNOT_RENAME_ROOT"
CANNOT_DELETE_ROOT = "CANNOT_DELETE_ROOT"
NOT_FOUND = "NOT_FOUND"
INVALID_NAME = "INVALID_NAME"
INVALID_PATH = "INVALID_PATH"
INVALID_MOVE = "INVALID_MOVE"

T = TypeVar("T")


@dataclass(frozen=True)
class Node:
    id: str
    path: str  # normalized, "/" for root

    @property
    def segments(self) -> list[str]:
        return [part for part in self.path.split("/") if part]

    @property
    def name(self) -> str:
        segments = self.segments
        return segments[-1] if segments else ""

    @property
    def parent_path(self) -> str:
        # "" means the root is the parent
        return "/".join(self.segments[:-1])

    @property
    def is_root(self) -> bool:
        return self.path == ROOT_PATH

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "name": self.name,
            "parent_path": self.parent_path,
        }


@dataclass(frozen=True)
class TreeError:
    code: str
    message: str
    path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "error": self.message, "path": self.path}


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: TreeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PathChange:
    id: str
    old_path: str
    new_path: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "from": self.old_path, "to": self.new_path}


@dataclass
class RewritePlan:
    """Steps for a rename/move, in the order the caller must apply them.

    `create` holds missing ancestor paths of the target, outermost first.
    `changes` starts with the renamed node itself, followed by its descendants.
    """

    node_id: str
    old_path: str
    new_path: str
    create: list[str] = field(default_factory=list)
    changes: list[PathChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.create and not self.changes

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "from": self.old_path,
            "to": self.new_path,
            "create": list(self.create),
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass
class DeletePlan:
    nodes: list[Node]
    navigate_to: Node | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "navigate_to": self.navigate_to.to_dict() if self.navigate_to else None,
        }


@dataclass(frozen=True)
class Crumb:
    label: str
    path: str
    node: Node | None
    is_last: bool

    @property
    def clickable(self) -> bool:
        return self.node is not None and not self.is_last

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "path": self.path,
            "id": self.node.id if self.node else None,
            "is_last": self.is_last,
            "clickable": self.clickable,
        }


def _ok(value: T) -> Result[T]:
    return Result(value=value)


def _fail(code: str, message: str, path: str | None = None) -> Result[Any]:
    return Result(error=TreeError(code=code, message=message, path=path))


def normalize_path(raw: str | None) -> str:
    segments = [part for part in str(raw or "").strip().split("/") if part]
    return "/" + "/".join(segments)


def join_path(parent_path: str, name: str) -> str:
    """Rebuild a path from a node's `parent_path` and `name`."""
    return normalize_path(f"{parent_path}/{name}")


def ancestor_paths(path: str) -> list[str]:
    """Strict ancestors of `path` excluding the root, outermost first."""
    segments = normalize_path(path).strip("/").split("/")
    return ["/" + "/".join(segments[:i]) for i in range(1, len(segments))]


def _bad_segment(segment: str) -> bool:
    return not segment.strip() or segment in (".", "..")


def _field(raw: Any, key: str) -> Any:
    if isinstance(raw, dict):
        return raw.get(key)
    return getattr(raw, key, None)


def parse(nodes: Iterable[Any]) -> list[Node]:
    parsed = [Node(id=str(_field(raw, "id") or ""), path=normalize_path(_field(raw, "path"))) for raw in nodes]
    parsed.sort(key=lambda n: n.name)
    return parsed


def find(path: str, all_nodes: Iterable[Node]) -> Node | None:
    target = normalize_path(path)
    for node in all_nodes:
        if node.path == target:
            return node
    return None


def root(all_nodes: Iterable[Node]) -> Node | None:
    return find(ROOT_PATH, all_nodes)


def children(parent: Node, all_nodes: Iterable[Node]) -> list[Node]:
    key = parent.path.strip("/")
    return [n for n in all_nodes if n.id != parent.id and not n.is_root and n.parent_path == key]


def descendants(node: Node, all_nodes: Iterable[Node]) -> list[Node]:
    if node.is_root:
        return [n for n in all_nodes if n.id != node.id and not n.is_root]
    prefix = node.path + "/"
    return [n for n in all_nodes if n.id != node.id and n.path.startswith(prefix)]


def create(parent_path: str, name: str, all_nodes: list[Node]) -> Result[str]:
    name = (name or "").strip()
    if not name or "/" in name or _bad_segment(name):
        return _fail(INVALID_NAME, "Page name must be a single non-empty segment.")

    parent = normalize_path(parent_path)
    if parent != ROOT_PATH and find(parent, all_nodes) is None:
        return _fail(NOT_FOUND, "Parent page not found.", parent)

    candidate = f"{'' if parent == ROOT_PATH else parent}/{name}"
    if any(n.path == candidate for n in all_nodes):
        return _fail(ALREADY_EXISTS, "A page with this name already exists.", candidate)
    return _ok(candidate)


def _replace_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    # Anchored at the start of the path; the rest is kept verbatim.
    return new_prefix + path[len(old_prefix) :]


def rename(node: Node, new_path: str, all_nodes: list[Node]) -> Result[RewritePlan]:
    if node.is_root:
        return _fail(CANNOT_RENAME_ROOT, "Cannot rename the root page.", node.path)

    target = normalize_path(new_path)
    if target == ROOT_PATH:
        return _fail(INVALID_PATH, "New path must contain at least one segment.", target)
    if any(_bad_segment(part) for part in target.strip("/").split("/")):
        return _fail(INVALID_PATH, "New path contains an invalid segment.", target)
    if target == node.path:
        return _ok(RewritePlan(node_id=node.id, old_path=node.path, new_path=target))
    if target.startswith(node.path + "/"):
        return _fail(INVALID_MOVE, "Cannot move a page underneath itself.", target)
    if any(n.id != node.id and n.path == target for n in all_nodes):
        return _fail(ALREADY_EXISTS, "A page with this path already exists.", target)

    moving = [node, *descendants(node, all_nodes)]
    moving_ids = {n.id for n in moving}
    staying = {n.path for n in all_nodes if n.id not in moving_ids}

    changes = [PathChange(id=node.id, old_path=node.path, new_path=target)]
    for child in moving[1:]:
        changes.append(
            PathChange(id=child.id, old_path=child.path, new_path=_replace_prefix(child.path, node.path, target))
        )
    for change in changes:
        if change.new_path in staying:
            return _fail(ALREADY_EXISTS, "A page with this path already exists.", change.new_path)

    missing = [p for p in ancestor_paths(target) if p not in staying]
    return _ok(RewritePlan(node_id=node.id, old_path=node.path, new_path=target, create=missing, changes=changes))


def delete(node: Node, all_nodes: list[Node]) -> Result[DeletePlan]:
    if node.is_root:
        return _fail(CANNOT_DELETE_ROOT, "Cannot delete the root page.", node.path)
    doomed = [node, *descendants(node, all_nodes)]
    doomed_ids = {n.id for n in doomed}
    survivors = [n for n in all_nodes if n.id not in doomed_ids]
    target = find("/" + node.parent_path, survivors) or root(survivors)
    return _ok(DeletePlan(nodes=doomed, navigate_to=target))


def breadcrumb(node: Node, all_nodes: list[Node]) -> list[Crumb]:
    crumbs = [Crumb(label="root", path=ROOT_PATH, node=root(all_nodes), is_last=node.is_root)]
    segments = node.segments
    current = ""
    for index, segment in enumerate(segments):
        current += f"/{segment}"
        crumbs.append(
            Crumb(label=segment, path=current, node=find(current, all_nodes), is_last=index == len(segments) - 1)
        )
    return crumbs


def search_score(query: str, text: str) -> float:
    """Subsequence fuzzy score, higher is better; -1 when `query` does not match."""
    if not query:
        return 0
    query_lower = query.lower()
    text_lower = text.lower()

    score = 0.0
    query_index = 0
    run = 0
    for i, char in enumerate(text_lower):
        if query_index >= len(query_lower):
            break
        if char == query_lower[query_index]:
            run += 1
            score += 1 + run * 0.5
            if i == 0 or text_lower[i - 1] in ("/", " "):
                score += 2
            query_index += 1
        else:
            run = 0
    return score if query_index == len(query_lower) else -1


def search(query: str, all_nodes: list[Node], limit: int = 10) -> list[Node]:
    if not (query or "").strip():
        return list(all_nodes)[:limit]
    scored = [(search_score(query, n.path) + search_score(query, n.name), n) for n in all_nodes]
    hits = [item for item in scored if item[0] > 0]
    hits.sort(key=lambda item: item[0], reverse=True)
    return [n for _, n in hits[:limit]]
