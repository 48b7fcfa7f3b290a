# tests/test_graph_model.py

import pytest

from citation_explorer.errors import DataIntegrityError, ValidationError
from citation_explorer.graph.filters import SortOption, SortOrder, TreeFilter
from citation_explorer.graph.model import GraphModel
from citation_explorer.graph.schema import NodeType
from citation_explorer.models.paper import Paper
from citation_explorer.models.relationship import ChildDescriptor


def _child_keys(graph, node_id):
    return [graph.node(c).paper_id for c in graph.node(node_id).children]


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------

def test_seed_picks_top_three_children_by_own_score(make_network):
    payload = make_network(
        children=[("c1", 0.9), ("c2", 0.8), ("c3", 0.8), ("c4", 0.5), ("c5", 0.1)]
    )
    graph = GraphModel.from_network(payload, max_children=3)

    root = graph.root
    assert root.paper_id == "1"
    assert root.node_type == NodeType.ROOT
    assert root.paper is not None and root.paper.title == "Root paper"
    assert _child_keys(graph, root.node_id) == ["c1", "c2", "c3"]

    for child in graph.children_of(root.node_id):
        assert child.depth == 1
        assert child.parent_id == root.node_id
        assert child.paper.key == child.paper_id
        assert child.node_type == NodeType.CITING
        assert child.children == []

    assert graph.validate() == []


def test_seed_uses_edges_in_both_directions_and_dedupes(make_network):
    payload = make_network(
        children=[("c1", 0.2)],
        extra_nodes=[
            {"id": "c2", "score": 0.7, "data": {"id": "c2", "title": "Two"}},
            {"id": "paper-c1", "score": 0.99, "data": {"id": "c1", "title": "dup"}},
        ],
        extra_edges=[
            {"source": "root-1", "target": "c2"},
            {"source": "paper-c1", "target": "root-1"},
        ],
    )
    graph = GraphModel.from_network(payload)

    assert sorted(_child_keys(graph, graph.root_id)) == ["c1", "c2"]


def test_seed_drops_children_without_their_own_data(make_network):
    payload = make_network(
        children=[("c1", 0.5)],
        extra_nodes=[{"id": "c2", "score": 0.9}],
        extra_edges=[{"source": "c2", "target": "root-1"}],
    )
    graph = GraphModel.from_network(payload)

    assert _child_keys(graph, graph.root_id) == ["c1"]


def test_seed_keeps_mismatched_node_without_data(make_network, caplog):
    payload = make_network(
        extra_nodes=[{"id": "c9", "score": 0.9, "data": {"id": "other", "title": "Wrong"}}],
        extra_edges=[{"source": "c9", "target": "root-1"}],
    )
    graph = GraphModel.from_network(payload)

    (child,) = graph.children_of(graph.root_id)
    assert child.paper_id == "c9"
    assert child.paper is None
    assert child.expandable is False
    assert "carries data for paper other" in caplog.text

    with pytest.raises(DataIntegrityError):
        graph.require_paper(child.node_id)


def test_seed_excludes_root_key_among_neighbours(make_network):
    payload = make_network(
        children=[("c1", 0.5)],
        extra_nodes=[{"id": "corpus:1", "score": 0.99, "data": {"id": "1", "title": "Root again"}}],
        extra_edges=[{"source": "corpus:1", "target": "root-1"}],
    )
    graph = GraphModel.from_network(payload)

    assert _child_keys(graph, graph.root_id) == ["c1"]


def test_seed_root_falls_back_to_matching_response_paper(make_network):
    payload = make_network(root_data=False, children=[("c1", 0.5)])
    graph = GraphModel.from_network(payload)
    assert graph.root.paper is not None
    assert graph.root.paper.key == "1"

    payload = make_network(root_data=False)
    payload["paper"] = {"id": "someone-else", "title": "Other"}
    graph = GraphModel.from_network(payload)
    assert graph.root.paper is None


def test_seed_without_root_raises(make_network):
    payload = make_network()
    payload["citationNetwork"]["nodes"][0]["isRoot"] = False
    with pytest.raises(ValueError):
        GraphModel.from_network(payload)


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------

def test_expand_caps_dedupes_and_skips_self(make_paper):
    graph = GraphModel.from_paper(make_paper("p1"), max_children=3)
    root_id = graph.root_id

    graph.expand(root_id, [make_paper("c1"), make_paper("paper-p1"), make_paper("c1"), make_paper("c2")])
    assert _child_keys(graph, root_id) == ["c1", "c2"]

    graph.expand(root_id, [make_paper("c2"), make_paper("c3"), make_paper("c4")])
    assert _child_keys(graph, root_id) == ["c1", "c2", "c3"]
    assert graph.root.expandable is False
    assert graph.validate() == []


def test_expand_is_idempotent(make_paper):
    graph = GraphModel.from_paper(make_paper("p1"))
    batch = [make_paper("c1"), make_paper("c2")]

    graph.expand(graph.root_id, batch)
    snapshot = dict(graph.nodes)
    graph.expand(graph.root_id, batch)

    assert dict(graph.nodes) == snapshot


def test_children_never_borrow_parent_data(make_paper):
    graph = GraphModel.from_paper(make_paper("p1", title="Parent"))
    graph.expand(graph.root_id, [Paper.minimal("c1", "Child")])

    (child,) = graph.children_of(graph.root_id)
    assert child.paper.key == "c1"
    assert child.paper.title == "Child"
    assert child.depth == 1


def test_collapse_and_restore_keep_children(make_paper):
    graph = GraphModel.from_paper(make_paper("p1"))
    graph.expand(graph.root_id, [make_paper("c1"), make_paper("c2")])

    graph.collapse(graph.root_id)
    assert [n.node_id for n in graph.visible_nodes()] == [graph.root_id]
    assert len(graph.node(graph.root_id).children) == 2

    graph.restore(graph.root_id)
    assert len(graph.visible_nodes()) == 3


def test_placeholders_fill_free_slots_and_roll_back(make_paper):
    graph = GraphModel.from_paper(make_paper("p1"))
    graph.expand(graph.root_id, [make_paper("c1")])

    created = graph.add_placeholders(graph.root_id)
    assert len(created) == 2
    assert all(graph.node(p).is_placeholder for p in created)
    assert graph.validate() == []

    assert graph.remove_placeholders(graph.root_id) == 2
    assert _child_keys(graph, graph.root_id) == ["c1"]
    assert all(p not in graph for p in created)


def test_real_children_replace_placeholders(make_paper):
    graph = GraphModel.from_paper(make_paper("p1"))
    graph.add_placeholders(graph.root_id)

    graph.expand(graph.root_id, [make_paper("c1"), make_paper("c2")])

    children = graph.children_of(graph.root_id, include_placeholders=True)
    assert len(children) == 3
    assert [c.paper_id for c in children if not c.is_placeholder] == ["c1", "c2"]


# ---------------------------------------------------------------------------
# Hydration
# ---------------------------------------------------------------------------

def test_hydrate_restores_prior_expansions_one_level(make_network, make_paper):
    graph = GraphModel.from_network(make_network(children=[("c1", 0.9), ("c2", 0.5)]))
    relationships = {
        "corpus:1": [ChildDescriptor.from_paper(make_paper("c3"), "1")],
        "c1": [
            ChildDescriptor.from_paper(make_paper("g1"), "c1"),
            ChildDescriptor(id="g2", title="Only a title"),
        ],
        # g1 is added by this pass; its own entry is applied when it is opened
        "g1": [ChildDescriptor(id="gg1", title="Great-grandchild")],
    }

    hydrated = graph.hydrate(relationships)

    root_id = graph.root_id
    assert _child_keys(graph, root_id) == ["c1", "c2", "c3"]
    (c1,) = graph.find_by_paper("c1")
    assert _child_keys(graph, c1.node_id) == ["g1", "g2"]
    (g2,) = graph.find_by_paper("g2")
    assert g2.paper.title == "Only a title"
    (g1,) = graph.find_by_paper("g1")
    assert g1.children == []
    assert set(hydrated) == {root_id, c1.node_id}

    graph.hydrate_node(g1.node_id, relationships)
    assert _child_keys(graph, g1.node_id) == ["gg1"]
    assert graph.validate() == []


def test_open_papers_restores_deeper_expansions_in_any_order(make_network):
    graph = GraphModel.from_network(make_network(children=[("c1", 0.9)]))
    relationships = {
        "c1": [ChildDescriptor(id="g1", title="Grandchild")],
        "g1": [ChildDescriptor(id="gg1", title="Great-grandchild")],
        "gg1": [ChildDescriptor(id="ggg1", title="Deepest")],
        "zzz": [ChildDescriptor(id="nowhere")],
    }
    graph.hydrate(relationships)
    (g1,) = graph.find_by_paper("g1")
    graph.collapse(g1.node_id)

    grown = graph.open_papers(relationships, ["paper-gg1", "g1", "zzz"])

    (gg1,) = graph.find_by_paper("gg1")
    assert grown == [g1.node_id, gg1.node_id]
    assert g1.collapsed is False
    assert _child_keys(graph, g1.node_id) == ["gg1"]
    assert _child_keys(graph, gg1.node_id) == ["ggg1"]
    assert graph.find_by_paper("nowhere") == []
    assert graph.validate() == []


def test_open_papers_stops_at_repeated_ancestors(make_network):
    graph = GraphModel.from_network(make_network(children=[("c1", 0.9)]))
    relationships = {
        "c1": [ChildDescriptor(id="g1")],
        "g1": [ChildDescriptor(id="c1")],
    }
    graph.hydrate(relationships)

    graph.open_papers(relationships, ["c1", "g1"])

    first, second = graph.find_by_paper("c1")
    assert _child_keys(graph, first.node_id) == ["g1"]
    assert second.depth == 3
    assert second.children == []


def test_hydrate_ignores_stored_payload_for_another_paper(make_paper):
    graph = GraphModel.from_paper(make_paper("p1"))
    wrong = ChildDescriptor(id="c1", title="Stored title", paper=Paper(id="c999", title="Wrong paper"))

    graph.hydrate({"p1": [wrong]})

    (child,) = graph.children_of(graph.root_id)
    assert child.paper_id == "c1"
    assert child.paper.title == "Stored title"


# ---------------------------------------------------------------------------
# Paper data and annotations
# ---------------------------------------------------------------------------

def test_attach_paper_verifies_identity(make_network, make_paper):
    payload = make_network(
        extra_nodes=[{"id": "c9", "score": 0.9, "data": {"id": "other"}}],
        extra_edges=[{"source": "c9", "target": "root-1"}],
    )
    graph = GraphModel.from_network(payload)
    (child,) = graph.children_of(graph.root_id)

    with pytest.raises(DataIntegrityError):
        graph.attach_paper(child.node_id, make_paper("c10"))
    assert child.paper is None

    graph.attach_paper(child.node_id, make_paper("corpus:c9", title="Right"))
    assert child.paper.title == "Right"
    assert child.expandable is True


def test_annotations_are_capped_and_validated(make_paper):
    graph = GraphModel.from_paper(
        make_paper("p1", title="Graph Nets", year=2021, fieldsOfStudy=["CS"]),
        max_annotations=4,
    )
    root_id = graph.root_id

    graph.set_keywords(root_id, ["a", "b", " b ", "", "c", "d"])
    assert graph.root.keywords == ["a", "b", "c", "d"]

    with pytest.raises(ValidationError):
        graph.set_keywords(root_id, ["a", "b", "c", "d", "e"])

    with pytest.raises(ValidationError):
        graph.set_selected_fields(root_id, ["title", "colour"])

    graph.set_selected_fields(root_id, ["title", "year", "fieldsOfStudy"])
    assert graph.field_values(root_id) == {
        "title": "Graph Nets",
        "year": "2021",
        "fieldsOfStudy": "CS",
    }


def test_annotations_require_paper_data(make_network):
    payload = make_network(
        extra_nodes=[{"id": "c9", "data": {"id": "other"}}],
        extra_edges=[{"source": "c9", "target": "root-1"}],
    )
    graph = GraphModel.from_network(payload)
    (child,) = graph.children_of(graph.root_id)

    with pytest.raises(DataIntegrityError):
        graph.set_keywords(child.node_id, ["x"])


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def test_visible_nodes_is_depth_first(make_paper):
    graph = GraphModel.from_paper(make_paper("p1"))
    graph.expand(graph.root_id, [make_paper("a"), make_paper("b")])
    (a,) = graph.find_by_paper("a")
    graph.expand(a.node_id, [make_paper("a1")])

    order = [n.paper_id for n in graph.visible_nodes()]
    assert order == ["p1", "a", "a1", "b"]
    assert len(graph.edges()) == 3


def test_tree_filter_hides_and_sorts_children(make_paper):
    graph = GraphModel.from_paper(make_paper("p1"))
    graph.expand(
        graph.root_id,
        [
            make_paper("old", score=0.9, year=1999, publicationType="conference"),
            make_paper("mid", score=0.5, year=2010, publicationType="journal"),
            make_paper("new", score=0.7, year=2022, publicationType="journal"),
        ],
    )

    by_year = TreeFilter(sort_by=SortOption.YEAR, sort_order=SortOrder.ASC)
    assert [n.paper_id for n in graph.visible_nodes(by_year)] == ["p1", "old", "mid", "new"]

    journals = TreeFilter.model_validate({"publicationTypes": ["journal"], "sortBy": "score"})
    assert [n.paper_id for n in graph.visible_nodes(journals)] == ["p1", "new", "mid"]

    recent = TreeFilter(min_year=2005, max_score=0.6)
    assert [n.paper_id for n in graph.visible_nodes(recent)] == ["p1", "mid"]
