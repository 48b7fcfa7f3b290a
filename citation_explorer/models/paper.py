# citation_explorer/models/paper.py

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .identifiers import PaperKey, normalize_id


def normalize_score(value: Any) -> Optional[float]:
    """
    Bring a relevance score onto the canonical 0-1 scale.

    Backends report either fractions or percentages; values in (1, 100] are
    treated as percentages, anything above 100 clamps to 1 and negatives to 0.
    """
    if value is None or value == "":
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:  # NaN
        return None
    if score < 0.0:
        return 0.0
    if score <= 1.0:
        return score
    if score <= 100.0:
        return score / 100.0
    return 1.0


class _ApiModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class ImpactFactor(_ApiModel):
    citation_count: int = 0
    reference_count: int = 0
    influential_citation_count: int = 0

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class Paper(_ApiModel):
    """
    An academic paper as returned by the search backend.

    This is the single parsing boundary for paper payloads: everything inside
    the package works with already-validated Paper records. Instances are
    immutable and are never merged field-by-field with another paper.
    """

    id: str = Field(..., description="Backend paper identifier (may carry a prefix).")
    title: str = Field("", description="Paper title.")
    score: Optional[float] = Field(None, description="Relevance score on the 0-1 scale.")
    authors: Optional[str] = Field(None, description="Comma-separated author names.")
    year: Optional[int] = None
    fields_of_study: List[str] = Field(default_factory=list)
    abstract: Optional[str] = None
    tldr: Optional[str] = None
    impact_factor: ImpactFactor = Field(default_factory=ImpactFactor)
    publication_type: Optional[str] = None
    journal_name: Optional[str] = None
    doi: Optional[str] = None
    published_at: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> str:
        if v is None or str(v).strip() == "":
            raise ValueError("paper id is required")
        return str(v).strip()

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("score", mode="before")
    @classmethod
    def _normalize_score(cls, v: Any) -> Optional[float]:
        return normalize_score(v)

    @field_validator("authors", mode="before")
    @classmethod
    def _join_authors(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, (list, tuple)):
            names = []
            for a in v:
                if isinstance(a, dict):
                    a = a.get("name")
                if a:
                    names.append(str(a).strip())
            return ", ".join(names) or None
        return str(v)

    @field_validator("fields_of_study", mode="before")
    @classmethod
    def _coerce_fields(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(f) for f in v if f]

    @field_validator("year", mode="before")
    @classmethod
    def _coerce_year(cls, v: Any) -> Optional[int]:
        if v in (None, ""):
            return None
        return v

    @property
    def key(self) -> PaperKey:
        return normalize_id(self.id)

    @property
    def citation_count(self) -> int:
        return self.impact_factor.citation_count

    @property
    def author_list(self) -> List[str]:
        if not self.authors:
            return []
        return [a.strip() for a in self.authors.split(",") if a.strip()]

    @classmethod
    def minimal(cls, paper_id: str, title: Optional[str] = None) -> "Paper":
        """A bare record for a child we only know by id and title."""
        return cls(id=paper_id, title=title or "Unknown")

    def to_payload(self) -> dict:
        """Serialize using the backend's camelCase field names."""
        return self.model_dump(by_alias=True, mode="json")
