# citation_explorer/graph/schema.py

from enum import Enum


class NodeType(str, Enum):
    ROOT = "root"

    # Seed relations to the root paper
    CITING = "citing"
    REFERENCED = "referenced"
    BOTH = "both"

    # Discovered through a search-job expansion
    RELATED = "related"

    # Speculative node standing in for a pending expansion
    PLACEHOLDER = "placeholder"

    @classmethod
    def from_payload(cls, value) -> "NodeType":
        try:
            return cls(str(value))
        except ValueError:
            return cls.RELATED


# Metadata fields a user may pin to a node's annotation panel.
ANNOTATION_FIELDS = (
    "title",
    "authors",
    "year",
    "citations",
    "score",
    "fieldsOfStudy",
    "publicationType",
    "journal",
    "doi",
    "tldr",
)
