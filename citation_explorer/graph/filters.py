# citation_explorer/graph/filters.py

"""
View-level filtering and ordering of a node's children.

Filters never mutate the GraphModel; they only decide which materialized
children are shown and in which order. A child that is filtered out hides its
whole subtree.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from citation_explorer.graph.model import GraphNode


class SortOption(str, Enum):
    RELEVANCE = "relevance"
    CITATIONS = "citations"
    YEAR = "year"
    SCORE = "score"
    PUBLICATION_TYPE = "publicationType"
    AUTHORS = "authors"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


def _citations(node: "GraphNode") -> int:
    return node.paper.citation_count if node.paper is not None else 0


def _year(node: "GraphNode") -> Optional[int]:
    return node.paper.year if node.paper is not None else None


def _publication_type(node: "GraphNode") -> Optional[str]:
    return node.paper.publication_type if node.paper is not None else None


def _authors(node: "GraphNode") -> str:
    return (node.paper.authors or "") if node.paper is not None else ""


def relevance(node: "GraphNode") -> float:
    """Blend of citations, score and recency used for the default ordering."""
    return (
        _citations(node) * 0.4
        + (node.score or 0.0) * 100 * 0.4
        + ((_year(node) or 0) / 100) * 0.2
    )


class TreeFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    publication_types: List[str] = Field(default_factory=list)
    min_score: Optional[float] = None
    max_score: Optional[float] = None
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    min_citations: Optional[int] = None
    max_citations: Optional[int] = None
    authors: List[str] = Field(default_factory=list)

    sort_by: Optional[SortOption] = None
    sort_order: SortOrder = SortOrder.DESC

    def accepts(self, node: "GraphNode") -> bool:
        # Pending placeholders are always shown.
        if node.is_placeholder:
            return True

        if self.publication_types:
            if _publication_type(node) not in self.publication_types:
                return False
        if self.min_score is not None and (node.score or 0.0) < self.min_score:
            return False
        if self.max_score is not None and (node.score if node.score is not None else 1.0) > self.max_score:
            return False

        year = _year(node)
        if self.min_year is not None and (year is None or year < self.min_year):
            return False
        if self.max_year is not None and (year is None or year > self.max_year):
            return False

        citations = _citations(node)
        if self.min_citations is not None and citations < self.min_citations:
            return False
        if self.max_citations is not None and citations > self.max_citations:
            return False

        if self.authors:
            names = _authors(node).lower()
            if not names or not any(a.lower() in names for a in self.authors):
                return False

        return True

    def _sort_key(self, node: "GraphNode") -> Any:
        if self.sort_by == SortOption.CITATIONS:
            return _citations(node)
        if self.sort_by == SortOption.YEAR:
            return _year(node) or 0
        if self.sort_by == SortOption.SCORE:
            return node.score or 0.0
        if self.sort_by == SortOption.PUBLICATION_TYPE:
            return _publication_type(node) or ""
        if self.sort_by == SortOption.AUTHORS:
            return _authors(node)
        return relevance(node)

    def order(self, nodes: Sequence["GraphNode"]) -> List["GraphNode"]:
        """Filter then (stably) sort one sibling group."""
        kept = [n for n in nodes if self.accepts(n)]
        if self.sort_by is None:
            return kept
        return sorted(kept, key=self._sort_key, reverse=self.sort_order == SortOrder.DESC)
