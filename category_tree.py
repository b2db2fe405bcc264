"""Materialized-path helpers and tree assembly for categories.

A category path lists every ancestor id followed by the category's own
id, e.g. ``/3/7/12``. Roots are ``/<id>`` at level 1.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from models import CategoryType

PATH_SEPARATOR = "/"
BREADCRUMB_SEPARATOR = " > "


class CategoryLike(Protocol):
    id: int
    name: str
    type: CategoryType
    parent_id: Optional[int]
    path: str
    level: int
    sort_order: int
    is_deleted: bool


@dataclass
class CategoryNode:
    id: int
    name: str
    type: CategoryType
    parent_id: Optional[int]
    path: str
    level: int
    sort_order: int
    children: list["CategoryNode"] = field(default_factory=list)


def normalize_parent_id(parent_id: Optional[int]) -> Optional[int]:
    # 0 has always meant "no parent".
    return parent_id or None


def child_level(parent_level: Optional[int]) -> int:
    return 1 if parent_level is None else parent_level + 1


def child_path(parent_path: Optional[str], own_id: int) -> str:
    if parent_path is None:
        return f"{PATH_SEPARATOR}{own_id}"
    return f"{parent_path.rstrip(PATH_SEPARATOR)}{PATH_SEPARATOR}{own_id}"


def parse_path(path: str) -> list[int]:
    """Return the ancestor ids encoded in ``path``, root first.

    Raises ``ValueError`` when a segment is not an integer.
    """
    ids: list[int] = []
    for chunk in (path or "").strip(PATH_SEPARATOR).split(PATH_SEPARATOR):
        if not chunk:
            continue
        try:
            ids.append(int(chunk))
        except ValueError as exc:
            raise ValueError(f"Malformed category path: {path!r}") from exc
    return ids


def breadcrumb(names: Iterable[str]) -> str:
    return BREADCRUMB_SEPARATOR.join(names)


def _sort_key(category: CategoryLike) -> tuple[int, int]:
    return (category.sort_order or 0, category.id)


def build_tree(categories: Iterable[CategoryLike]) -> list[CategoryNode]:
    """Assemble a forest from an unordered flat list.

    Deleted categories are ignored. A category whose parent is not in the
    list (for example because the parent was deleted) is dropped: it is
    neither a root nor attached anywhere. Siblings are ordered by
    ``(sort_order, id)`` so the result does not depend on input order.
    """
    live = [c for c in categories if not c.is_deleted]
    nodes = {
        c.id: CategoryNode(
            id=c.id,
            name=c.name,
            type=c.type,
            parent_id=normalize_parent_id(c.parent_id),
            path=c.path,
            level=c.level,
            sort_order=c.sort_order or 0,
        )
        for c in live
    }

    roots: list[CategoryNode] = []
    for category in sorted(live, key=_sort_key):
        node = nodes[category.id]
        if node.parent_id is None:
            roots.append(node)
            continue
        parent = nodes.get(node.parent_id)
        if parent is not None:
            parent.children.append(node)
    return roots
