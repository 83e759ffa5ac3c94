"""
Taxonomy hierarchy for categories, tags and link categories.

A flat snapshot of taxonomy rows is turned into an immutable forest
(`build_tree`).  Breadcrumbs (`resolve_path`) and "category plus all
subcategories" filters (`resolve_subtree`) are pure reads over that
snapshot.  `TaxonomyCache` owns the current snapshot and swaps it
wholesale after a successful rebuild.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Hashable, Iterable, Iterator, Mapping

log = logging.getLogger(__name__)

ROOT = None  # parent_id of top-level nodes


class TaxonomyType(str, Enum):
    POST = "post"  # post category
    TAG = "tag"
    LINK = "link"  # link category

    @property
    def hierarchical(self) -> bool:
        return self is not TaxonomyType.TAG


class TaxonomyStatus(str, Enum):
    PUBLISH = "publish"
    HIDDEN = "hidden"
    REQUIRED = "required"  # system-reserved, always visible


################################################################################
# Errors
################################################################################
class TaxonomyError(Exception):
    """Base class for everything raised by this module."""


class StructuralError(TaxonomyError):
    """The snapshot violates a forest invariant (dangling parent, cycle …)."""


class NotFoundError(TaxonomyError, LookupError):
    """No node with the requested id / slug (or it is not visible)."""


################################################################################
# Data
################################################################################
@dataclass(frozen=True)
class TaxonomyNode:
    id: Hashable
    type: TaxonomyType
    slug: str
    name: str
    description: str = ""
    parent_id: Hashable | None = ROOT
    order: int = 0
    status: TaxonomyStatus = TaxonomyStatus.PUBLISH
    count: int = 0

    @property
    def hidden(self) -> bool:
        return self.status is TaxonomyStatus.HIDDEN

    @property
    def required(self) -> bool:
        return self.status is TaxonomyStatus.REQUIRED

    @classmethod
    def from_row(cls, row) -> "TaxonomyNode":
        """Map one `taxonomy` table row (sqlite3.Row or dict)."""
        return cls(
            id=row["id"],
            type=TaxonomyType(row["type"]),
            slug=row["slug"],
            name=row["name"],
            description=row["description"] or "",
            parent_id=row["parent_id"],
            order=row["term_order"] or 0,
            status=TaxonomyStatus(row["status"]),
            count=row["count"] or 0,
        )


@dataclass(frozen=True)
class Crumb:
    label: str
    tooltip: str
    url: str
    is_current: bool = False
    slug: str = ""


@dataclass(frozen=True)
class Subtree:
    root: TaxonomyNode
    descendant_ids: frozenset
    ordered_ids: tuple  # breadth-first, sibling order


@dataclass(frozen=True)
class TaxonomyTree:
    """
    Immutable snapshot.  `children` maps a parent id (or ROOT) to its
    child ids in sibling order; `slugs` maps (type, slug) to an id.
    """

    nodes: Mapping[Hashable, TaxonomyNode]
    children: Mapping[Hashable | None, tuple]
    slugs: Mapping[tuple[TaxonomyType, str], Hashable]

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id) -> bool:
        return node_id in self.nodes

    def get(self, node_id) -> TaxonomyNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise NotFoundError(f"taxonomy {node_id!r} does not exist") from None

    def by_slug(self, taxonomy_type: TaxonomyType, slug: str) -> TaxonomyNode:
        try:
            return self.nodes[self.slugs[(TaxonomyType(taxonomy_type), slug)]]
        except KeyError:
            raise NotFoundError(
                f"{TaxonomyType(taxonomy_type).value} {slug!r} does not exist"
            ) from None

    def child_ids(self, node_id) -> tuple:
        return self.children.get(node_id, ())

    def roots(self, taxonomy_type: TaxonomyType) -> list[TaxonomyNode]:
        taxonomy_type = TaxonomyType(taxonomy_type)
        return [
            self.nodes[i]
            for i in self.children.get(ROOT, ())
            if self.nodes[i].type is taxonomy_type
        ]

    def walk(
        self, taxonomy_type: TaxonomyType, *, include_hidden: bool = False
    ) -> Iterator[tuple[TaxonomyNode, int]]:
        """Pre-order `(node, depth)` pairs; hidden subtrees pruned unless asked."""
        stack = [(n, 0) for n in reversed(self.roots(taxonomy_type))]
        while stack:
            node, depth = stack.pop()
            if node.hidden and not include_hidden:
                continue
            yield node, depth
            stack.extend(
                (self.nodes[c], depth + 1) for c in reversed(self.child_ids(node.id))
            )

    def visible_ids(self, taxonomy_type: TaxonomyType) -> frozenset:
        """Ids whose node and every ancestor are not hidden."""
        return frozenset(n.id for n, _ in self.walk(taxonomy_type))

    def is_visible(self, node_id) -> bool:
        node = self.get(node_id)
        for _ in range(len(self.nodes)):
            if node.hidden:
                return False
            if node.parent_id is ROOT:
                return True
            node = self.nodes[node.parent_id]
        raise StructuralError(f"ancestor chain of {node_id!r} does not terminate")


################################################################################
# Build
################################################################################
def _sibling_key(node: TaxonomyNode):
    return (node.order, node.id)


def build_tree(nodes: Iterable[TaxonomyNode]) -> TaxonomyTree:
    """
    Turn a flat snapshot into a `TaxonomyTree`.

    Raises `StructuralError` for duplicate ids or slugs, parents that are
    missing or of another type, tags with a parent, and parent cycles.
    """
    by_id: dict = {}
    slugs: dict = {}
    for node in nodes:
        if node.id in by_id:
            raise StructuralError(f"duplicate taxonomy id {node.id!r}")
        key = (node.type, node.slug)
        if key in slugs:
            raise StructuralError(
                f"duplicate {node.type.value} slug {node.slug!r} "
                f"(ids {slugs[key]!r} and {node.id!r})"
            )
        by_id[node.id] = node
        slugs[key] = node.id

    groups: defaultdict = defaultdict(list)
    for node in by_id.values():
        pid = node.parent_id
        if pid is not ROOT:
            if not node.type.hierarchical:
                raise StructuralError(f"tag {node.slug!r} must not have a parent")
            parent = by_id.get(pid)
            if parent is None:
                raise StructuralError(
                    f"taxonomy {node.id!r} references missing parent {pid!r}"
                )
            if parent.type is not node.type:
                raise StructuralError(
                    f"taxonomy {node.id!r} ({node.type.value}) has parent "
                    f"{pid!r} of type {parent.type.value}"
                )
        groups[pid].append(node)

    _check_acyclic(by_id)

    children = {
        pid: tuple(n.id for n in sorted(group, key=_sibling_key))
        for pid, group in groups.items()
    }
    return TaxonomyTree(
        nodes=MappingProxyType(by_id),
        children=MappingProxyType(children),
        slugs=MappingProxyType(slugs),
    )


def _check_acyclic(by_id: Mapping) -> None:
    # Each node is appended to `proven` once, so the total work is O(n).
    proven: set = set()
    limit = len(by_id)
    for start in by_id:
        path: list = []
        on_path: set = set()
        cur = start
        while cur is not ROOT and cur not in proven:
            if cur in on_path or len(path) > limit:
                raise StructuralError(f"parent cycle through taxonomy {cur!r}")
            on_path.add(cur)
            path.append(cur)
            cur = by_id[cur].parent_id
        proven.update(path)


################################################################################
# Resolvers
################################################################################
def resolve_path(
    tree: TaxonomyTree,
    node_id,
    url_for_node: Callable[[TaxonomyNode], str],
) -> list[Crumb]:
    """Root-first breadcrumbs ending at *node_id* (the only current crumb)."""
    node = tree.get(node_id)
    chain = [node]
    while node.parent_id is not ROOT:
        if len(chain) > len(tree):
            raise StructuralError(f"ancestor chain of {node_id!r} does not terminate")
        node = tree.get(node.parent_id)
        chain.append(node)
    chain.reverse()

    last = len(chain) - 1
    return [
        Crumb(
            label=n.name,
            tooltip=n.description or n.name,
            url=url_for_node(n),
            is_current=i == last,
            slug=n.slug,
        )
        for i, n in enumerate(chain)
    ]


def resolve_subtree(
    tree: TaxonomyTree,
    slug: str,
    taxonomy_type: TaxonomyType,
    *,
    include_hidden: bool = False,
) -> Subtree:
    """
    The node of *taxonomy_type* called *slug* plus every descendant id.

    Visitors (`include_hidden=False`) never see hidden nodes: a hidden
    node prunes its whole subtree, and a root that is hidden itself or
    sits below a hidden ancestor is reported as not found.
    """
    root = tree.by_slug(taxonomy_type, slug)
    if not include_hidden and not tree.is_visible(root.id):
        raise NotFoundError(f"{root.type.value} {slug!r} is not visible")

    ordered = []
    queue = deque([root.id])
    while queue:
        cur = queue.popleft()
        ordered.append(cur)
        for child in tree.child_ids(cur):
            if include_hidden or not tree.nodes[child].hidden:
                queue.append(child)
    return Subtree(root=root, descendant_ids=frozenset(ordered), ordered_ids=tuple(ordered))


################################################################################
# Snapshot owner
################################################################################
class TaxonomyCache:
    """
    Holds the published `TaxonomyTree`.

    *loader* returns the full flat snapshot.  Readers get the current tree
    without locking; a rebuild happens under a lock and only replaces the
    tree once `build_tree` succeeded.  A rejected rebuild keeps serving the
    previous snapshot and records the error on `last_error`.
    """

    def __init__(
        self,
        loader: Callable[[], Iterable[TaxonomyNode]],
        *,
        logger: logging.Logger | None = None,
    ):
        self._loader = loader
        self._log = logger or log
        self._lock = threading.Lock()
        self._tree: TaxonomyTree | None = None
        self._version = None
        self._stale = True
        self.last_error: StructuralError | None = None

    def invalidate(self) -> None:
        self._stale = True

    def get(self, version=None) -> TaxonomyTree:
        """
        Return the current snapshot, rebuilding first if it was invalidated
        or *version* (an external change counter) moved on.
        """
        tree = self._tree
        if tree is not None and not self._stale and version == self._version:
            return tree
        with self._lock:
            if self._tree is None or self._stale or version != self._version:
                self._rebuild(version)
            return self._tree

    def _rebuild(self, version) -> None:
        try:
            tree = build_tree(self._loader())
        except StructuralError as exc:
            self.last_error = exc
            if self._tree is None:
                raise
            # keep serving the old snapshot until the data is fixed
            self._stale = False
            self._version = version
            self._log.error("Taxonomy rebuild rejected: %s", exc)
            return
        self._tree = tree
        self._stale = False
        self._version = version
        self.last_error = None
        self._log.debug("Taxonomy snapshot rebuilt (%d nodes)", len(tree))
