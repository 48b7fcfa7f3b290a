# citation_explorer/search/phrases.py

"""
Turn an anchor paper plus user input into search material for a job.

The search backend wants 3-10 keyword phrases and/or a 50-5000 character
free-text query. Everything here is pure and deterministic.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

from citation_explorer.models.job import (
    BACKEND_MIN_PHRASES,
    MAX_PHRASES,
    MAX_QUERY_CHARS,
    MIN_QUERY_CHARS,
    JobType,
    SearchBody,
)
from citation_explorer.models.paper import Paper

QUERY_FILLER = ". This research explores various aspects and applications in the field."

STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by from as is are was were be
    been being have has had do does did will would should could may might must
    can this that these those it its they them their we our us i my me you
    your he she his her him
    """.split()
)

_NON_WORD_RE = re.compile(r"[^\w\s]")
_AUTHOR_SPLIT_RE = re.compile(r"[,;|&]")


def dedupe_phrases(phrases: Iterable[Optional[str]]) -> List[str]:
    """Strip, drop blanks and case-insensitive duplicates, keep first spelling."""
    out: List[str] = []
    seen = set()
    for p in phrases:
        p = (p or "").strip()
        if not p or p.lower() in seen:
            continue
        seen.add(p.lower())
        out.append(p)
    return out


def anchor_phrases(paper: Paper) -> List[str]:
    """Phrases derived from a paper alone: title, fields of study, publication type."""
    return dedupe_phrases([paper.title, *paper.fields_of_study, paper.publication_type])


def pad_phrases(
    phrases: Sequence[str],
    anchor: Optional[Paper],
    minimum: int = BACKEND_MIN_PHRASES,
) -> List[str]:
    """
    Top a phrase list up to `minimum` entries from the anchor paper.

    Never exceeds MAX_PHRASES. If the anchor has too little metadata the list
    stays short; the caller decides whether that is acceptable.
    """
    out = dedupe_phrases(phrases)
    if anchor is not None and len(out) < minimum:
        # User phrases come first; anchor phrases only fill up to the minimum.
        out = dedupe_phrases([*out, *anchor_phrases(anchor)])[:minimum]
    return out[:MAX_PHRASES]


def build_query(
    paper: Paper,
    keywords: Sequence[str] = (),
    authors: Sequence[str] = (),
    references: Sequence[str] = (),
) -> str:
    parts = [f"Research related to {paper.title or paper.key}"]
    if paper.fields_of_study:
        parts.append(f"in fields: {', '.join(paper.fields_of_study)}")
    if keywords:
        parts.append(f"focusing on keywords: {', '.join(keywords)}")
    if authors:
        parts.append(f"by authors: {', '.join(authors)}")
    if references:
        parts.append(f"related to references: {', '.join(references)}")

    query = ". ".join(parts)
    if len(query) < MIN_QUERY_CHARS:
        query += QUERY_FILLER
    if len(query) > MAX_QUERY_CHARS:
        query = query[: MAX_QUERY_CHARS - 3] + "..."
    return query


def build_search_body(
    paper: Paper,
    job_type: JobType = JobType.KEYWORD_SEARCH,
    keywords: Sequence[str] = (),
    authors: Sequence[str] = (),
    references: Sequence[str] = (),
    query: Optional[str] = None,
) -> SearchBody:
    """
    Build phrases and/or query for `job_type` from an anchor paper and user input.

    Phrases: title, up to 2 fields, up to 3 keywords, 2 authors, 2 references,
    capped at 10 and padded to 3 from the remaining fields. An explicit
    `query` overrides the generated one.
    """
    keywords = dedupe_phrases(keywords)
    authors = dedupe_phrases(authors)
    references = dedupe_phrases(references)

    phrases: List[str] = []
    if job_type.needs_phrases:
        phrases = dedupe_phrases(
            [
                paper.title,
                *paper.fields_of_study[:2],
                *keywords[:3],
                *authors[:2],
                *references[:2],
            ]
        )[:MAX_PHRASES]
        phrases = pad_phrases(phrases, paper)

    text: Optional[str] = None
    if job_type.needs_query:
        text = (query or "").strip() or build_query(paper, keywords, authors, references)

    return SearchBody(phrases=phrases, query=text)


# ---------------------------------------------------------------------------
# Keyword suggestion
# ---------------------------------------------------------------------------


def _words(text: str, min_len: int) -> List[str]:
    return [w for w in _NON_WORD_RE.sub(" ", text.lower()).split() if len(w) >= min_len]


def _text_terms(text: str) -> List[str]:
    words = _words(text, 3)
    grams: List[str] = []
    for i in range(len(words) - 1):
        grams.append(f"{words[i]} {words[i + 1]}")
        if i < len(words) - 2:
            grams.append(f"{words[i]} {words[i + 1]} {words[i + 2]}")
    return words + grams


def _title_ngrams(title: str) -> List[str]:
    words = _words(title, 2)
    grams = list(words)
    grams += [f"{words[i]} {words[i + 1]}" for i in range(len(words) - 1)]
    grams += [f"{words[i]} {words[i + 1]} {words[i + 2]}" for i in range(len(words) - 2)]
    return grams


def _author_terms(authors: str) -> List[str]:
    terms: List[str] = []
    for name in _AUTHOR_SPLIT_RE.split(authors):
        parts = name.split()
        if not parts:
            continue
        terms.append(" ".join(parts))
        terms.append(parts[0])
        if len(parts) > 1:
            terms.append(parts[-1])
    return terms


def suggest_keywords(paper: Paper, limit: Optional[int] = None) -> List[str]:
    """
    Candidate keyword tags for a paper, in discovery order.

    Sources: tldr, title n-grams, author names, fields of study and the first
    500 characters of the abstract. Lower-cased; stop words and terms shorter
    than 3 characters are dropped.
    """
    terms: List[str] = []
    if paper.tldr:
        terms += _text_terms(paper.tldr)
    if paper.title:
        terms += _title_ngrams(paper.title)
    if paper.authors:
        terms += _author_terms(paper.authors)
    for field_name in paper.fields_of_study:
        terms += _text_terms(field_name)
    if paper.abstract:
        terms += _text_terms(paper.abstract[:500])

    out: List[str] = []
    seen = set()
    for t in terms:
        t = t.lower()
        if t in seen or len(t) < 3 or t in STOP_WORDS:
            continue
        seen.add(t)
        out.append(t)

    return out if limit is None else out[:limit]
