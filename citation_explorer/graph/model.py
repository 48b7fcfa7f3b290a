# citation_explorer/graph/model.py

"""
In-memory citation tree.

The tree is an arena: a dict of GraphNodes addressed by stable node ids
("n0", "n1", ...), with children kept as ordered lists of node ids and a
parent id per node for lookups. Mutations patch the arena in place and return
the affected node, the same way the graph builders update a NetworkX graph in
place and hand it back.

Invariants kept by every mutation:

  - a node has at most `max_children` real children;
  - no child has the same paper key as its parent;
  - no two children of a node share a paper key;
  - children only appear through an explicit expansion (or hydration) of that
    exact node; nothing is expanded recursively.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import networkx as nx

from citation_explorer.config.settings import settings
from citation_explorer.errors import DataIntegrityError, ValidationError
from citation_explorer.graph.filters import TreeFilter
from citation_explorer.graph.schema import ANNOTATION_FIELDS, NodeType
from citation_explorer.graph.selection import TopKSelector, get_score
from citation_explorer.models.identifiers import PaperKey, normalize_all, normalize_id
from citation_explorer.models.network import CitationNetworkResponse, NetworkNode
from citation_explorer.models.paper import Paper
from citation_explorer.models.relationship import ChildDescriptor

logger = logging.getLogger("citation_explorer.graph")

PLACEHOLDER_LABEL = "Searching related papers..."


@dataclass
class GraphNode:
    node_id: str
    label: str
    depth: int
    paper_id: Optional[PaperKey] = None
    paper: Optional[Paper] = None
    parent_id: Optional[str] = None
    children: List[str] = field(default_factory=list)
    node_type: NodeType = NodeType.RELATED
    score: Optional[float] = None
    collapsed: bool = False
    expandable: bool = True

    # annotation state
    keywords: List[str] = field(default_factory=list)
    selected_fields: List[str] = field(default_factory=list)

    @property
    def is_placeholder(self) -> bool:
        return self.node_type == NodeType.PLACEHOLDER

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def has_data(self) -> bool:
        return self.paper is not None


@dataclass
class _SeedCandidate:
    """A verified direct neighbour of the root in a seed payload."""

    paper_id: PaperKey
    paper: Optional[Paper]
    score: float
    label: str
    node_type: NodeType


class GraphModel:
    def __init__(
        self,
        max_children: Optional[int] = None,
        max_annotations: Optional[int] = None,
        selector: Optional[TopKSelector] = None,
    ) -> None:
        self.max_children = max_children or settings.max_children
        self.max_annotations = max_annotations or settings.max_annotations
        self.selector = selector or TopKSelector()

        self.nodes: Dict[str, GraphNode] = {}
        self.root_id: Optional[str] = None
        self._ids = itertools.count()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_paper(cls, paper: Paper, **kwargs: Any) -> "GraphModel":
        """A tree holding only the root paper."""
        model = cls(**kwargs)
        root = model._new_node(
            label=paper.title or str(paper.key),
            depth=0,
            paper_id=paper.key,
            paper=paper,
            node_type=NodeType.ROOT,
            score=paper.score,
        )
        model.root_id = root.node_id
        return model

    @classmethod
    def from_network(
        cls,
        response: CitationNetworkResponse | Mapping[str, Any],
        **kwargs: Any,
    ) -> "GraphModel":
        """
        Build the root and its direct children from a citation-network payload.

        Children are every node sharing an edge with the root, deduplicated by
        paper key and ranked by their own score. Non-root nodes must carry their
        own `data`; nodes without it are dropped.
        """
        if not isinstance(response, CitationNetworkResponse):
            response = CitationNetworkResponse.model_validate(response)

        network = response.citation_network
        if network is None:
            raise ValueError("citation-network response has no citationNetwork")
        root_payload = network.root()
        if root_payload is None:
            raise ValueError("citation network has no node flagged isRoot")

        model = cls(**kwargs)
        root_key = normalize_id(root_payload.id)
        root_paper = _verified_root_paper(root_payload, response.paper, root_key)
        if root_paper is not None:
            root_key = root_paper.key

        root = model._new_node(
            label=root_payload.label or (root_paper.title if root_paper else str(root_key)),
            depth=0,
            paper_id=root_key,
            paper=root_paper,
            node_type=NodeType.ROOT,
            score=_own_score(root_payload, root_paper),
        )
        model.root_id = root.node_id

        candidates = _seed_candidates(network.nodes, network.edges, root_payload.id)
        selected = model.selector.select_top(candidates, model.max_children, exclude_ids=[root_key])
        for cand in selected:
            model._append_child(
                root,
                paper_id=cand.paper_id,
                paper=cand.paper,
                label=cand.label,
                node_type=cand.node_type,
                score=cand.score,
            )
        model._refresh(root)

        logger.info(
            "Seeded tree for %s with %d of %d candidate children",
            root_key,
            len(selected),
            len(candidates),
        )
        return model

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def root(self) -> GraphNode:
        if self.root_id is None:
            raise KeyError("graph has no root")
        return self.nodes[self.root_id]

    def node(self, node_id: str) -> GraphNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise KeyError(f"Unknown node {node_id!r}") from None

    def children_of(self, node_id: str, include_placeholders: bool = False) -> List[GraphNode]:
        result = [self.nodes[c] for c in self.node(node_id).children]
        if include_placeholders:
            return result
        return [c for c in result if not c.is_placeholder]

    def child_keys(self, node_id: str) -> Set[PaperKey]:
        return {c.paper_id for c in self.children_of(node_id) if c.paper_id is not None}

    def find_by_paper(self, raw_id: Any) -> List[GraphNode]:
        """All nodes showing a given paper, in creation order."""
        key = normalize_id(raw_id)
        return [n for n in self.nodes.values() if n.paper_id == key]

    def require_paper(self, node_id: str) -> Paper:
        """
        The node's own paper, or DataIntegrityError when the node has none.

        Callers that need paper data must go through here instead of reaching
        for a parent's or a cached paper.
        """
        node = self.node(node_id)
        if node.paper is None:
            raise DataIntegrityError(
                f"Node {node_id} ({node.paper_id}) has no paper data",
                expected_id=node.paper_id,
            )
        return node.paper

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def expand(
        self,
        node_id: str,
        children: Sequence[Paper],
        node_type: NodeType = NodeType.RELATED,
    ) -> GraphNode:
        """
        Append up to `max_children - current` new children to a node.

        Candidates already present among the children, equal to the node's own
        paper, or repeated in the input are skipped. Repeating the same call is
        a no-op.
        """
        node = self.node(node_id)
        self._merge_children(node, children, node_type)
        node.collapsed = False
        return node

    def collapse(self, node_id: str) -> GraphNode:
        node = self.node(node_id)
        node.collapsed = True
        return node

    def restore(self, node_id: str) -> GraphNode:
        node = self.node(node_id)
        node.collapsed = False
        return node

    def hydrate(self, relationships: Mapping[Any, Sequence[ChildDescriptor]]) -> List[str]:
        """
        Merge stored children into every existing node that has an entry.

        Only nodes present before the call are considered: children added here
        are not hydrated in the same pass; they hydrate when they are opened.
        Returns the ids of nodes that gained children.
        """
        entries = _normalize_entries(relationships)
        if not entries:
            return []

        grown: List[str] = []
        for node in list(self.nodes.values()):
            if node.is_placeholder or node.paper_id is None:
                continue
            stored = entries.get(node.paper_id)
            if not stored:
                continue
            before = len(node.children)
            self._merge_children(node, [d.to_paper() for d in stored], NodeType.RELATED)
            if len(node.children) != before:
                grown.append(node.node_id)

        logger.debug("Hydrated %d nodes from %d stored entries", len(grown), len(entries))
        return grown

    def hydrate_node(
        self,
        node_id: str,
        relationships: Mapping[Any, Sequence[ChildDescriptor]],
    ) -> GraphNode:
        """Hydrate a single node (lazy restore when a node is opened)."""
        node = self.node(node_id)
        if node.paper_id is None or node.is_placeholder:
            return node
        stored = _normalize_entries(relationships).get(node.paper_id)
        if stored:
            self._merge_children(node, [d.to_paper() for d in stored], NodeType.RELATED)
        return node

    def open_papers(
        self,
        relationships: Mapping[Any, Sequence[ChildDescriptor]],
        paper_ids: Iterable[Any],
    ) -> List[str]:
        """
        Open every node showing one of `paper_ids` and hydrate it from the store.

        Works in passes over the tree, so a paper that only appears once an
        earlier one is opened is reached too. A node is not opened when an
        ancestor shows the same paper. Returns the ids of nodes that gained
        children.
        """
        wanted = normalize_all(paper_ids)
        if not wanted:
            return []
        entries = _normalize_entries(relationships)

        opened: Set[str] = set()
        grown: List[str] = []
        progress = True
        while progress:
            progress = False
            for node in list(self.nodes.values()):
                if node.node_id in opened or node.is_placeholder or node.paper_id not in wanted:
                    continue
                opened.add(node.node_id)
                if self._ancestor_shows(node, node.paper_id):
                    continue
                progress = True
                node.collapsed = False

                stored = entries.get(node.paper_id)
                if not stored:
                    continue
                before = len(node.children)
                self._merge_children(node, [d.to_paper() for d in stored], NodeType.RELATED)
                if len(node.children) != before:
                    grown.append(node.node_id)

        logger.debug("Opened %d nodes, %d gained stored children", len(opened), len(grown))
        return grown

    def add_placeholders(self, node_id: str, count: Optional[int] = None) -> List[str]:
        """
        Add speculative children standing in for a pending expansion.

        They fill the free slots only, so the fan-out cap still holds.
        """
        node = self.node(node_id)
        free = self.max_children - len(node.children)
        count = free if count is None else min(count, free)

        created = []
        for _ in range(max(count, 0)):
            child = self._new_node(
                label=PLACEHOLDER_LABEL,
                depth=node.depth + 1,
                parent_id=node.node_id,
                node_type=NodeType.PLACEHOLDER,
            )
            child.expandable = False
            node.children.append(child.node_id)
            created.append(child.node_id)
        return created

    def remove_placeholders(self, node_id: str) -> int:
        node = self.node(node_id)
        doomed = [c for c in node.children if self.nodes[c].is_placeholder]
        for child_id in doomed:
            self.remove_subtree(child_id)
        return len(doomed)

    def remove_subtree(self, node_id: str) -> None:
        node = self.node(node_id)
        if node.parent_id is None:
            raise ValueError("cannot remove the root node")

        stack = [node_id]
        while stack:
            current = stack.pop()
            stack.extend(self.nodes[current].children)
            del self.nodes[current]

        parent = self.nodes.get(node.parent_id)
        if parent is not None:
            parent.children = [c for c in parent.children if c != node_id]
            self._refresh(parent)

    def attach_paper(self, node_id: str, paper: Paper) -> GraphNode:
        """
        Attach fetched paper details to a node after checking they belong to it.

        A payload for a different paper raises DataIntegrityError and leaves the
        node untouched.
        """
        node = self.node(node_id)
        if node.is_placeholder:
            raise ValueError(f"cannot attach paper data to placeholder {node_id}")
        if node.paper_id is not None and paper.key != node.paper_id:
            raise DataIntegrityError(
                f"Fetched paper {paper.key} does not match node {node_id} ({node.paper_id})",
                expected_id=node.paper_id,
                actual_id=paper.key,
            )
        node.paper = paper
        node.paper_id = paper.key
        if node.score is None:
            node.score = paper.score
        self._refresh(node)
        return node

    # ------------------------------------------------------------------
    # Annotation state
    # ------------------------------------------------------------------

    def set_keywords(self, node_id: str, keywords: Iterable[str]) -> GraphNode:
        self.require_paper(node_id)
        cleaned = _clean_unique(keywords)
        if len(cleaned) > self.max_annotations:
            raise ValidationError(
                f"At most {self.max_annotations} keyword tags per node, got {len(cleaned)}",
                user_message=f"Select at most {self.max_annotations} keywords.",
            )
        node = self.node(node_id)
        node.keywords = cleaned
        return node

    def set_selected_fields(self, node_id: str, fields: Iterable[str]) -> GraphNode:
        self.require_paper(node_id)
        cleaned = _clean_unique(fields)
        unknown = [f for f in cleaned if f not in ANNOTATION_FIELDS]
        if unknown:
            raise ValidationError(f"Unknown metadata fields: {unknown}")
        if len(cleaned) > self.max_annotations:
            raise ValidationError(
                f"At most {self.max_annotations} metadata fields per node, got {len(cleaned)}",
                user_message=f"Select at most {self.max_annotations} fields.",
            )
        node = self.node(node_id)
        node.selected_fields = cleaned
        return node

    def field_values(self, node_id: str) -> Dict[str, str]:
        """Display values for the node's selected metadata fields."""
        node = self.node(node_id)
        if not node.selected_fields:
            return {}
        paper = self.require_paper(node_id)
        return {name: _field_value(paper, name) for name in node.selected_fields}

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def visible_nodes(self, tree_filter: Optional[TreeFilter] = None) -> List[GraphNode]:
        """
        Depth-first (pre-order) list of visible nodes.

        Children of collapsed nodes are hidden; with a filter, rejected
        children hide their whole subtree.
        """
        if self.root_id is None:
            return []

        result: List[GraphNode] = []
        stack = [self.root_id]
        while stack:
            node = self.nodes[stack.pop()]
            result.append(node)
            if node.collapsed:
                continue
            children = [self.nodes[c] for c in node.children]
            if tree_filter is not None:
                children = tree_filter.order(children)
            stack.extend(c.node_id for c in reversed(children))
        return result

    def edges(self, visible_only: bool = True) -> List[Tuple[str, str]]:
        nodes = self.visible_nodes() if visible_only else list(self.nodes.values())
        present = {n.node_id for n in nodes}
        return [
            (n.parent_id, n.node_id)
            for n in nodes
            if n.parent_id is not None and n.parent_id in present
        ]

    def validate(self) -> List[str]:
        """Return a list of invariant violations (empty when consistent)."""
        problems: List[str] = []
        for node in self.nodes.values():
            if len(node.children) > self.max_children:
                problems.append(f"{node.node_id} has {len(node.children)} children")
            seen: Set[PaperKey] = set()
            for child_id in node.children:
                child = self.nodes.get(child_id)
                if child is None:
                    problems.append(f"{node.node_id} references missing child {child_id}")
                    continue
                if child.parent_id != node.node_id:
                    problems.append(f"{child_id} does not point back to {node.node_id}")
                if child.paper_id is None:
                    continue
                if node.paper_id is not None and child.paper_id == node.paper_id:
                    problems.append(f"{child_id} repeats its parent's paper {child.paper_id}")
                if child.paper_id in seen:
                    problems.append(f"{node.node_id} has duplicate child paper {child.paper_id}")
                seen.add(child.paper_id)
        return problems

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_node(self, **attrs: Any) -> GraphNode:
        node_id = f"n{next(self._ids)}"
        node = GraphNode(node_id=node_id, **attrs)
        self.nodes[node_id] = node
        return node

    def _append_child(
        self,
        parent: GraphNode,
        *,
        paper_id: PaperKey,
        paper: Optional[Paper],
        label: str,
        node_type: NodeType,
        score: Optional[float],
    ) -> GraphNode:
        # Real children take the slots of pending placeholders first.
        if len(parent.children) >= self.max_children:
            for child_id in parent.children:
                if self.nodes[child_id].is_placeholder:
                    self.remove_subtree(child_id)
                    break

        child = self._new_node(
            label=label,
            depth=parent.depth + 1,
            paper_id=paper_id,
            paper=paper,
            parent_id=parent.node_id,
            node_type=node_type,
            score=score,
        )
        parent.children.append(child.node_id)
        self._refresh(child)
        return child

    def _merge_children(
        self,
        node: GraphNode,
        papers: Sequence[Paper],
        node_type: NodeType,
    ) -> None:
        if node.is_placeholder:
            raise ValueError(f"cannot expand placeholder node {node.node_id}")

        present = self.child_keys(node.node_id)
        slots = self.max_children - len(self.children_of(node.node_id))
        for paper in papers:
            if slots <= 0:
                break
            key = paper.key
            if key == node.paper_id or key in present:
                continue
            self._append_child(
                node,
                paper_id=key,
                paper=paper,
                label=paper.title or str(key),
                node_type=node_type,
                score=paper.score,
            )
            present.add(key)
            slots -= 1
        self._refresh(node)

    def _ancestor_shows(self, node: GraphNode, key: PaperKey) -> bool:
        parent_id = node.parent_id
        while parent_id is not None:
            parent = self.nodes[parent_id]
            if parent.paper_id == key:
                return True
            parent_id = parent.parent_id
        return False

    def _refresh(self, node: GraphNode) -> None:
        if node.is_placeholder:
            node.expandable = False
            return
        node.expandable = node.paper is not None and (
            len(self.children_of(node.node_id)) < self.max_children
        )


# ----------------------------------------------------------------------
# Seed helpers
# ----------------------------------------------------------------------


def _own_score(payload: NetworkNode, paper: Optional[Paper]) -> Optional[float]:
    if payload.score is not None:
        return payload.score
    if paper is not None:
        return paper.score
    return None


def _verified_root_paper(
    root: NetworkNode,
    response_paper: Optional[Paper],
    root_key: PaperKey,
) -> Optional[Paper]:
    if root.data is not None:
        if root.data.key == root_key:
            return root.data
        logger.warning(
            "Root node %s carries data for paper %s; ignoring it",
            root_key,
            root.data.key,
        )
    if response_paper is not None:
        if response_paper.key == root_key:
            return response_paper
        logger.warning(
            "Response paper %s does not match root node %s; root has no data",
            response_paper.key,
            root_key,
        )
    return None


def _seed_candidates(
    nodes: Sequence[NetworkNode],
    edges: Sequence[Any],
    root_node_id: str,
) -> List[_SeedCandidate]:
    """
    Direct neighbours of the root (in edge order), each built strictly from its
    own payload.
    """
    G = nx.Graph()
    for payload in nodes:
        if payload.id not in G:
            G.add_node(payload.id, payload=payload)
    for edge in edges:
        G.add_edge(edge.source, edge.target)

    root_key = normalize_id(root_node_id)
    candidates: List[_SeedCandidate] = []
    for neighbour in G.neighbors(root_node_id):
        if neighbour == root_node_id:
            continue
        payload: Optional[NetworkNode] = G.nodes[neighbour].get("payload")
        if payload is None:
            logger.debug("Edge points at unknown node %s; skipping", neighbour)
            continue
        if payload.data is None:
            logger.debug("Node %s has no paper data of its own; dropping it", neighbour)
            continue

        key = normalize_id(payload.id)
        paper: Optional[Paper] = payload.data
        if paper.key != key:
            err = DataIntegrityError(
                f"Node {payload.id} carries data for paper {paper.key}",
                expected_id=key,
                actual_id=paper.key,
            )
            logger.warning("%s; keeping the node without data", err)
            paper = None
        if key == root_key:
            continue

        candidates.append(
            _SeedCandidate(
                paper_id=key,
                paper=paper,
                score=get_score(payload) if paper is not None else (payload.score or 0.0),
                label=payload.label or (paper.title if paper else str(key)),
                node_type=NodeType.from_payload(payload.node_type or NodeType.RELATED.value),
            )
        )
    return candidates


def _normalize_entries(
    relationships: Mapping[Any, Sequence[ChildDescriptor]],
) -> Dict[PaperKey, Sequence[ChildDescriptor]]:
    return {normalize_id(k): v for k, v in relationships.items()}


def _clean_unique(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for v in values:
        v = (v or "").strip()
        if v and v not in out:
            out.append(v)
    return out


def _field_value(paper: Paper, name: str) -> str:
    if name == "title":
        return paper.title
    if name == "authors":
        return paper.authors or ""
    if name == "year":
        return "" if paper.year is None else str(paper.year)
    if name == "citations":
        return str(paper.citation_count)
    if name == "score":
        return "" if paper.score is None else f"{paper.score:.2f}"
    if name == "fieldsOfStudy":
        return ", ".join(paper.fields_of_study)
    if name == "publicationType":
        return paper.publication_type or ""
    if name == "journal":
        return paper.journal_name or ""
    if name == "doi":
        return paper.doi or ""
    if name == "tldr":
        return paper.tldr or ""
    return ""
