# citation_explorer/models/identifiers.py

from __future__ import annotations

from typing import Any, Iterable, Set

# Prefixes the backend and older clients put in front of paper identifiers.
KNOWN_ID_PREFIXES = ("corpus:", "paper-", "root-")


class PaperKey(str):
    """
    A normalized paper identifier.

    Only `normalize_id` should construct these. Store boundaries accept raw
    identifiers and normalize them, so a PaperKey in hand means the prefix
    stripping already happened.
    """

    __slots__ = ()

    def __repr__(self) -> str:
        return f"PaperKey({str.__repr__(self)})"


def normalize_id(raw: Any) -> PaperKey:
    """
    Strip all known prefixes (repeatedly, from the front) and surrounding
    whitespace from a paper identifier.

    >>> normalize_id("root-paper-42")
    PaperKey('42')
    """
    if isinstance(raw, PaperKey):
        return raw
    if raw is None:
        raise ValueError("paper identifier must not be None")

    value = str(raw).strip()
    stripped = True
    while stripped:
        stripped = False
        for prefix in KNOWN_ID_PREFIXES:
            if value.startswith(prefix):
                value = value[len(prefix):].strip()
                stripped = True
    return PaperKey(value)


def same_paper(a: Any, b: Any) -> bool:
    """True if two raw identifiers refer to the same paper."""
    if a is None or b is None:
        return False
    return normalize_id(a) == normalize_id(b)


def normalize_all(raw_ids: Iterable[Any]) -> Set[PaperKey]:
    return {normalize_id(r) for r in raw_ids if r is not None}
