# tests/test_cli.py

import asyncio
import json

import pytest
from typer.testing import CliRunner

from citation_explorer.cli import tree_cli
from citation_explorer.cli.main import app as cli_app
from citation_explorer.errors import JobFailed
from citation_explorer.graph.storage import MemoryRelationshipStore
from citation_explorer.models.paper import Paper
from citation_explorer.models.relationship import ChildDescriptor

runner = CliRunner()


class FakeJobs:
    def __init__(self, response):
        self.response = response

    async def create(self, job_type, body, filters=None, anchor=None):
        return "job-1"

    async def await_completion(self, job_id, profile=None):
        if isinstance(self.response, Exception):
            raise self.response
        return list(self.response)

    async def aclose(self):
        return None


@pytest.fixture
def seed_file(tmp_path, make_network):
    path = tmp_path / "seed.json"
    path.write_text(json.dumps(make_network(children=[("c1", 0.9), ("c2", 0.4)])), encoding="utf-8")
    return path


@pytest.fixture
def store(monkeypatch):
    store = MemoryRelationshipStore(max_children=3)
    monkeypatch.setattr(tree_cli, "_store", lambda: store)
    return store


def _use_jobs(monkeypatch, response):
    monkeypatch.setattr(tree_cli, "_job_client", lambda: FakeJobs(response))


def test_show_prints_seeded_tree(seed_file, store):
    result = runner.invoke(cli_app, ["tree", "show", str(seed_file)])

    assert result.exit_code == 0
    assert "Root paper" in result.stdout
    assert "Paper c1" in result.stdout
    assert "Paper c2" in result.stdout


def test_show_restores_stored_children(seed_file, store):
    asyncio.run(store.merge("chat-1", "c1", [ChildDescriptor(id="g1", title="Grandchild")]))

    result = runner.invoke(cli_app, ["tree", "show", str(seed_file), "--chat-id", "chat-1"])

    assert result.exit_code == 0
    assert "Grandchild" in result.stdout
    assert "Restored stored children for 1 node(s)" in result.stdout


def test_missing_or_broken_seed_exits(tmp_path, store):
    result = runner.invoke(cli_app, ["tree", "show", str(tmp_path / "nope.json")])
    assert result.exit_code == 1

    broken = tmp_path / "broken.json"
    broken.write_text("{}", encoding="utf-8")
    result = runner.invoke(cli_app, ["tree", "show", str(broken)])
    assert result.exit_code == 1


def test_expand_adds_and_stores_children(seed_file, store, monkeypatch):
    _use_jobs(monkeypatch, [Paper(id="n1", title="New paper", score=0.7)])

    result = runner.invoke(
        cli_app,
        ["tree", "expand", str(seed_file), "paper-c1", "--chat-id", "chat-1", "-k", "gnn"],
    )

    assert result.exit_code == 0, result.stdout
    assert "Added 1 related paper(s)." in result.stdout
    assert "New paper" in result.stdout

    stored = asyncio.run(store.get("chat-1", "c1"))
    assert [c.id for c in stored] == ["n1"]


def test_expand_failure_exits_with_message(seed_file, store, monkeypatch):
    _use_jobs(monkeypatch, JobFailed("job-1", "boom"))

    result = runner.invoke(
        cli_app,
        ["tree", "expand", str(seed_file), "c1", "--chat-id", "chat-1", "-k", "gnn"],
    )

    assert result.exit_code == 1
    assert "The search failed" in result.stdout
    assert asyncio.run(store.load("chat-1")) == {}


def test_expand_unknown_paper(seed_file, store, monkeypatch):
    _use_jobs(monkeypatch, [])

    result = runner.invoke(
        cli_app,
        ["tree", "expand", str(seed_file), "zzz", "--chat-id", "chat-1", "-k", "gnn"],
    )

    assert result.exit_code == 1
    assert "not in the tree" in result.stdout


def test_layout_prints_positions(seed_file, store):
    result = runner.invoke(cli_app, ["tree", "layout", str(seed_file)])

    assert result.exit_code == 0
    assert "Layout" in result.stdout
    assert "260.0" in result.stdout


def test_relationships_listing(store):
    result = runner.invoke(cli_app, ["tree", "relationships", "--chat-id", "chat-1"])
    assert result.exit_code == 0
    assert "No relationships stored" in result.stdout

    asyncio.run(store.merge("chat-1", "P1", [ChildDescriptor(id="C1", title="One")]))
    result = runner.invoke(cli_app, ["tree", "relationships", "--chat-id", "chat-1", "-p", "P1"])
    assert result.exit_code == 0
    assert "C1" in result.stdout
    assert "One" in result.stdout


def test_keywords_suggestions(seed_file, store):
    result = runner.invoke(cli_app, ["tree", "keywords", str(seed_file), "1", "--limit", "20"])

    assert result.exit_code == 0
    assert "computer science" in result.stdout


def test_show_opens_listed_papers(seed_file, store):
    asyncio.run(store.merge("chat-1", "c1", [ChildDescriptor(id="g1", title="Grandchild")]))
    asyncio.run(store.merge("chat-1", "g1", [ChildDescriptor(id="gg1", title="Great-grandchild")]))

    result = runner.invoke(cli_app, ["tree", "show", str(seed_file), "--chat-id", "chat-1"])
    assert "Great-grandchild" not in result.stdout

    result = runner.invoke(
        cli_app,
        ["tree", "show", str(seed_file), "--chat-id", "chat-1", "--open", "g1"],
    )

    assert result.exit_code == 0
    assert "Great-grandchild" in result.stdout
    assert "Restored stored children for 2 node(s)" in result.stdout
