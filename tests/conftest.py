# tests/conftest.py

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from citation_explorer.graph.storage import MemoryRelationshipStore
from citation_explorer.models.paper import Paper


def _paper_payload(pid: str, title: Optional[str] = None, score: Optional[float] = None, **extra: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {"id": pid, "title": title or f"Paper {pid}"}
    if score is not None:
        data["score"] = score
    data.update(extra)
    return data


@pytest.fixture
def paper_payload():
    """Factory for backend-shaped paper dicts."""
    return _paper_payload


@pytest.fixture
def make_paper():
    def _make(pid: str, title: Optional[str] = None, score: Optional[float] = None, **extra: Any) -> Paper:
        return Paper.model_validate(_paper_payload(pid, title, score, **extra))

    return _make


@pytest.fixture
def make_network():
    """
    Factory for citation-network payloads.

    `children` is a list of (node id, score) pairs linked to the root, in edge
    order. Each child carries its own `data`.
    """

    def _make(
        root_id: str = "root-1",
        children: Sequence[Tuple[str, Optional[float]]] = (),
        root_data: bool = True,
        extra_nodes: Sequence[Dict[str, Any]] = (),
        extra_edges: Sequence[Dict[str, Any]] = (),
    ) -> Dict[str, Any]:
        root_key = root_id.replace("root-", "")
        root: Dict[str, Any] = {
            "id": root_id,
            "isRoot": True,
            "label": "Root paper",
            "score": 1.0,
        }
        if root_data:
            root["data"] = _paper_payload(
                root_key,
                "Root paper",
                1.0,
                fieldsOfStudy=["Computer Science", "Biology"],
                publicationType="journal",
            )

        nodes: List[Dict[str, Any]] = [root]
        edges: List[Dict[str, Any]] = []
        for child_id, score in children:
            nodes.append(
                {
                    "id": child_id,
                    "label": f"Paper {child_id}",
                    "score": score,
                    "type": "citing",
                    "data": _paper_payload(child_id, score=score),
                }
            )
            edges.append({"source": child_id, "target": root_id, "type": "cites"})

        nodes.extend(extra_nodes)
        edges.extend(extra_edges)
        return {
            "paper": _paper_payload(root_key, "Root paper", 1.0),
            "citationNetwork": {"nodes": nodes, "edges": edges, "stats": {}},
        }

    return _make


@pytest.fixture
def memory_store() -> MemoryRelationshipStore:
    return MemoryRelationshipStore(max_children=3)


class FakeSleep:
    """Records requested sleeps instead of sleeping."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()
