# citation_explorer/models/job.py

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from citation_explorer.errors import ValidationError

from .paper import Paper

MIN_PHRASES = 1
MAX_PHRASES = 10
# The backend rejects keyword jobs with fewer phrases than this.
BACKEND_MIN_PHRASES = 3
MIN_QUERY_CHARS = 50
MAX_QUERY_CHARS = 5000

ALLOWED_LIMITS = (100, 200, 300)
ALLOWED_QUARTILES = ("Q1", "Q2", "Q3", "Q4")
ALLOWED_PUBLICATION_TYPES = ("journal", "book series", "conference")

_SORT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*:(asc|desc)$")
_YEAR_RE = re.compile(r"^\d{4}(:\d{4})?$")


class JobType(str, Enum):
    KEYWORD_SEARCH = "keywordSearch"
    QUERY_SEARCH = "querySearch"
    COMBINED_SEARCH = "combinedSearch"

    @property
    def needs_phrases(self) -> bool:
        return self in (JobType.KEYWORD_SEARCH, JobType.COMBINED_SEARCH)

    @property
    def needs_query(self) -> bool:
        return self in (JobType.QUERY_SEARCH, JobType.COMBINED_SEARCH)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.ERROR)


class _JobModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class SearchJob(_JobModel):
    """One observation of a search job, as returned by GET /jobs/{jobId}."""

    id: str
    job_type: Optional[JobType] = None
    status: JobStatus
    results: List[Paper] = Field(default_factory=list)
    error: Optional[str] = None

    @field_validator("results", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class SearchBody(_JobModel):
    """Search material for a job: keyword phrases and/or a free-text query."""

    phrases: List[str] = Field(default_factory=list)
    query: Optional[str] = None


class JobFilters(_JobModel):
    """Optional result filters accepted by every job type."""

    fields_of_study: Optional[List[str]] = None
    min_citation_count: Optional[int] = Field(None, ge=0)
    open_access_pdf: Optional[bool] = None
    downloadable: Optional[bool] = None
    quartile_ranking: Optional[List[str]] = None
    publication_types: Optional[List[str]] = None
    sort: Optional[str] = None
    year: Optional[str] = None
    limit: Optional[int] = None

    @field_validator("quartile_ranking")
    @classmethod
    def _check_quartiles(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        bad = [q for q in v if q not in ALLOWED_QUARTILES]
        if bad:
            raise ValueError(f"quartileRanking must be within {ALLOWED_QUARTILES}, got {bad}")
        return v

    @field_validator("publication_types")
    @classmethod
    def _check_publication_types(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        bad = [p for p in v if p not in ALLOWED_PUBLICATION_TYPES]
        if bad:
            raise ValueError(
                f"publicationTypes must be within {ALLOWED_PUBLICATION_TYPES}, got {bad}"
            )
        return v

    @field_validator("sort")
    @classmethod
    def _check_sort(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _SORT_RE.match(v):
            raise ValueError("sort must look like 'field:asc' or 'field:desc'")
        return v

    @field_validator("year", mode="before")
    @classmethod
    def _check_year(cls, v: Any) -> Optional[str]:
        if v is None:
            return v
        v = str(v)
        if not _YEAR_RE.match(v):
            raise ValueError("year must be 'YYYY' or 'YYYY:YYYY'")
        return v

    @field_validator("limit")
    @classmethod
    def _check_limit(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in ALLOWED_LIMITS:
            raise ValueError(f"limit must be one of {ALLOWED_LIMITS}")
        return v

    @classmethod
    def parse(cls, data: Optional[Mapping[str, Any]]) -> "JobFilters":
        """Validate raw filter options, raising our ValidationError on failure."""
        if data is None:
            return cls()
        if isinstance(data, JobFilters):
            return data
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid search filters: {exc}") from exc

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
