# citation_explorer/models/relationship.py

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from .identifiers import PaperKey, normalize_id
from .paper import Paper

logger = logging.getLogger("citation_explorer.graph")


class ChildDescriptor(BaseModel):
    """
    One stored child of a parent paper: {id, title, sourceParentId, paper}.

    `id` is stored normalized; `paper` is the full cached payload when we had
    one at expansion time.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    id: str
    title: str = "Unknown"
    source_parent_id: Optional[str] = None
    paper: Optional[Paper] = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return str(normalize_id(v))

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, v: Any) -> str:
        return str(v) if v else "Unknown"

    @property
    def key(self) -> PaperKey:
        return normalize_id(self.id)

    @classmethod
    def from_paper(cls, paper: Paper, parent_id: Any) -> "ChildDescriptor":
        return cls(
            id=paper.key,
            title=paper.title or "Unknown",
            source_parent_id=str(normalize_id(parent_id)),
            paper=paper,
        )

    def to_paper(self) -> Paper:
        """
        The child as a Paper record.

        The cached payload is used only when it belongs to this child; a
        payload for some other paper is discarded in favour of a minimal
        record instead of being shown under this child's id.
        """
        if self.paper is not None:
            if self.paper.key == self.key:
                return self.paper
            logger.warning(
                "Stored payload for child %s belongs to paper %s; using a minimal record",
                self.key,
                self.paper.key,
            )
        return Paper.minimal(self.key, self.title)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
