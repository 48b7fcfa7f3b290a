# citation_explorer/models/network.py

"""
Pydantic models for the citation-network seed payload:

    {paper, citationNetwork: {nodes: [...], edges: [...], stats}}

Parsing happens once here; graph construction works with these models only.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .paper import Paper, normalize_score


class _NetworkModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class NetworkNode(_NetworkModel):
    id: str
    is_root: bool = False
    label: str = ""
    score: Optional[float] = None
    data: Optional[Paper] = None
    node_type: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("nodeType", "type", "node_type"),
    )
    citations: int = 0
    references: Optional[int] = None
    year: Optional[int] = None
    authors: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("label", mode="before")
    @classmethod
    def _coerce_label(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("score", mode="before")
    @classmethod
    def _normalize_score(cls, v: Any) -> Optional[float]:
        return normalize_score(v)

    @field_validator("data", mode="before")
    @classmethod
    def _drop_unidentified_data(cls, v: Any) -> Any:
        # A payload without an id cannot be attributed to any paper.
        if isinstance(v, dict) and not v.get("id"):
            return None
        return v

    @field_validator("citations", mode="before")
    @classmethod
    def _none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


def _endpoint_id(v: Any) -> str:
    # Force-simulation libraries replace endpoint ids with node objects.
    if isinstance(v, dict):
        v = v.get("id")
    return str(v)


class NetworkEdge(_NetworkModel):
    source: str
    target: str
    type: Optional[str] = None
    weight: Optional[float] = None

    @field_validator("source", "target", mode="before")
    @classmethod
    def _coerce_endpoint(cls, v: Any) -> str:
        return _endpoint_id(v)


class CitationNetwork(_NetworkModel):
    nodes: List[NetworkNode] = Field(default_factory=list)
    edges: List[NetworkEdge] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)

    def root(self) -> Optional[NetworkNode]:
        for node in self.nodes:
            if node.is_root:
                return node
        return None


class CitationNetworkResponse(_NetworkModel):
    paper: Optional[Paper] = None
    citation_network: Optional[CitationNetwork] = None


class CitationNetworkRequest(_NetworkModel):
    """Body of POST /citation-network."""

    corpus_id: Optional[str] = None
    paper_id: Optional[str] = None
    depth: int = Field(1, ge=1)
    chat_id: Optional[str] = None
