# tests/test_models.py

import pytest

from citation_explorer.errors import ValidationError
from citation_explorer.models.identifiers import PaperKey, normalize_all, normalize_id, same_paper
from citation_explorer.models.job import JobFilters, JobStatus, SearchJob
from citation_explorer.models.network import CitationNetworkResponse, NetworkEdge, NetworkNode
from citation_explorer.models.paper import Paper, normalize_score
from citation_explorer.models.relationship import ChildDescriptor


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("42", "42"),
        ("corpus:42", "42"),
        ("paper-42", "42"),
        ("root-paper-42", "42"),
        ("  corpus: 42 ", "42"),
        (42, "42"),
    ],
)
def test_normalize_id_strips_known_prefixes(raw, expected):
    key = normalize_id(raw)
    assert key == expected
    assert isinstance(key, PaperKey)


def test_normalize_id_is_idempotent():
    once = normalize_id("root-corpus:7")
    assert normalize_id(once) == once
    assert normalize_id(str(once)) == once


def test_normalize_id_rejects_none():
    with pytest.raises(ValueError):
        normalize_id(None)


def test_same_paper_and_normalize_all():
    assert same_paper("corpus:1", "paper-1")
    assert not same_paper("1", "2")
    assert not same_paper(None, "1")
    assert normalize_all(["corpus:1", "1", None, "root-2"]) == {"1", "2"}


# ---------------------------------------------------------------------------
# Paper
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, None),
        (0.42, 0.42),
        (1, 1.0),
        (85, 0.85),
        (100, 1.0),
        (250, 1.0),
        (-3, 0.0),
        ("0.5", 0.5),
        ("n/a", None),
    ],
)
def test_normalize_score(raw, expected):
    assert normalize_score(raw) == expected


def test_paper_parses_camel_case_payload():
    paper = Paper.model_validate(
        {
            "id": "corpus:99",
            "title": "Deep Nets",
            "score": 87,
            "authors": [{"name": "Ada Lovelace"}, "Alan Turing"],
            "year": "2020",
            "fieldsOfStudy": ["Computer Science"],
            "impactFactor": {"citationCount": 12, "referenceCount": None},
            "publicationType": "journal",
            "journalName": "JMLR",
            "somethingElse": True,
        }
    )

    assert paper.key == "99"
    assert paper.score == pytest.approx(0.87)
    assert paper.authors == "Ada Lovelace, Alan Turing"
    assert paper.author_list == ["Ada Lovelace", "Alan Turing"]
    assert paper.year == 2020
    assert paper.citation_count == 12
    assert paper.impact_factor.reference_count == 0
    assert paper.journal_name == "JMLR"

    payload = paper.to_payload()
    assert payload["fieldsOfStudy"] == ["Computer Science"]
    assert payload["impactFactor"]["citationCount"] == 12


def test_paper_is_immutable():
    paper = Paper(id="1", title="A")
    with pytest.raises(Exception):
        paper.title = "B"


def test_paper_requires_id():
    with pytest.raises(Exception):
        Paper.model_validate({"title": "No id"})


def test_minimal_paper():
    paper = Paper.minimal("5", None)
    assert paper.id == "5"
    assert paper.title == "Unknown"
    assert paper.score is None


# ---------------------------------------------------------------------------
# Citation network payload
# ---------------------------------------------------------------------------

def test_network_node_drops_data_without_id_and_reads_type_alias():
    node = NetworkNode.model_validate(
        {"id": 7, "label": None, "type": "citing", "data": {"title": "anonymous"}, "citations": None}
    )
    assert node.id == "7"
    assert node.label == ""
    assert node.node_type == "citing"
    assert node.data is None
    assert node.citations == 0


def test_network_edge_accepts_object_endpoints():
    edge = NetworkEdge.model_validate({"source": {"id": "a"}, "target": "b"})
    assert (edge.source, edge.target) == ("a", "b")


def test_citation_network_root(make_network):
    response = CitationNetworkResponse.model_validate(make_network(children=[("c1", 0.5)]))
    root = response.citation_network.root()
    assert root is not None
    assert root.id == "root-1"
    assert root.data.key == "1"


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

def test_search_job_parses_results():
    job = SearchJob.model_validate(
        {"id": "j1", "status": "success", "results": [{"id": "p1", "score": 0.3}]}
    )
    assert job.status == JobStatus.SUCCESS
    assert job.status.is_terminal
    assert job.results[0].key == "p1"

    pending = SearchJob.model_validate({"id": "j1", "status": "processing", "results": None})
    assert not pending.status.is_terminal
    assert pending.results == []


def test_job_filters_valid_payload():
    filters = JobFilters.parse(
        {
            "fieldsOfStudy": ["Biology"],
            "minCitationCount": 5,
            "quartileRanking": ["Q1", "Q2"],
            "publicationTypes": ["journal"],
            "sort": "citationCount:desc",
            "year": "2015:2020",
            "limit": 100,
        }
    )
    payload = filters.to_payload()
    assert payload["minCitationCount"] == 5
    assert payload["year"] == "2015:2020"
    assert "openAccessPdf" not in payload


@pytest.mark.parametrize(
    "bad",
    [
        {"minCitationCount": -1},
        {"quartileRanking": ["Q5"]},
        {"publicationTypes": ["preprint"]},
        {"sort": "citations"},
        {"year": "20"},
        {"limit": 50},
    ],
)
def test_job_filters_reject_invalid_values(bad):
    with pytest.raises(ValidationError):
        JobFilters.parse(bad)


# ---------------------------------------------------------------------------
# Relationship descriptors
# ---------------------------------------------------------------------------

def test_child_descriptor_normalizes_and_defaults():
    child = ChildDescriptor.model_validate({"id": "corpus:3", "title": None})
    assert child.id == "3"
    assert child.title == "Unknown"


def test_child_descriptor_never_shows_a_foreign_payload():
    foreign = Paper(id="999", title="Someone else")
    child = ChildDescriptor(id="3", title="Mine", paper=foreign)

    paper = child.to_paper()
    assert paper.key == "3"
    assert paper.title == "Mine"


def test_child_descriptor_round_trips_own_payload():
    own = Paper(id="paper-3", title="Mine", score=0.4)
    child = ChildDescriptor.from_paper(own, parent_id="root-1")

    assert child.source_parent_id == "1"
    assert child.to_paper() is own
    assert child.to_payload()["sourceParentId"] == "1"
