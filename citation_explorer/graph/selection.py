# citation_explorer/graph/selection.py

"""
Deterministic ranking and pruning of candidate papers into a bounded child set.

Candidates can be Paper records, seed NetworkNodes, GraphNodes or anything
with an `id`/`score` (and optionally `data`/`paper`) attribute. The score of a
candidate always comes from the candidate itself: its own score, else its own
paper's score, else 0. Never from a sibling or the parent.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Sequence, TypeVar

from citation_explorer.models.identifiers import PaperKey, normalize_all, normalize_id

T = TypeVar("T")


def get_score(item: Any) -> float:
    own = getattr(item, "score", None)
    if own is not None:
        return float(own)

    paper = getattr(item, "data", None) or getattr(item, "paper", None)
    if paper is not None:
        paper_score = getattr(paper, "score", None)
        if paper_score is not None:
            return float(paper_score)

    return 0.0


def candidate_key(item: Any) -> Optional[PaperKey]:
    """Normalized paper identifier of a candidate, if it has one."""
    paper = getattr(item, "data", None) or getattr(item, "paper", None)
    if paper is not None and getattr(paper, "id", None):
        return normalize_id(paper.id)

    paper_id = getattr(item, "paper_id", None)
    if paper_id:
        return normalize_id(paper_id)

    raw = getattr(item, "id", None)
    if raw is None:
        return None
    return normalize_id(raw)


class TopKSelector:
    """
    Stable top-k selection.

    `rank` is a stable sort (Python's sort is stable, so ties keep their input
    order); `select_top` filters exclusions and duplicates before truncating.
    """

    def __init__(
        self,
        score: Callable[[Any], float] = get_score,
        key: Callable[[Any], Optional[PaperKey]] = candidate_key,
    ) -> None:
        self.score = score
        self.key = key

    def rank(self, items: Iterable[T], descending: bool = True) -> List[T]:
        return sorted(items, key=self.score, reverse=descending)

    def select_top(
        self,
        items: Sequence[T],
        k: int,
        exclude_ids: Iterable[Any] = (),
    ) -> List[T]:
        if k <= 0:
            return []

        excluded = normalize_all(exclude_ids)
        seen = set()
        candidates: List[T] = []
        for item in items:
            item_key = self.key(item)
            if item_key is None or item_key in excluded or item_key in seen:
                continue
            seen.add(item_key)
            candidates.append(item)

        return self.rank(candidates)[:k]


_default_selector = TopKSelector()


def rank(items: Iterable[T], descending: bool = True) -> List[T]:
    return _default_selector.rank(items, descending=descending)


def select_top(items: Sequence[T], k: int, exclude_ids: Iterable[Any] = ()) -> List[T]:
    return _default_selector.select_top(items, k, exclude_ids)
