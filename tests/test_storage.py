# tests/test_storage.py

import json

import httpx
import pytest

from citation_explorer.errors import StorageError, ValidationError
from citation_explorer.graph.storage import (
    FileRelationshipStore,
    HttpRelationshipStore,
    MemoryRelationshipStore,
    merge_children,
)
from citation_explorer.models.paper import Paper
from citation_explorer.models.relationship import ChildDescriptor


def _kids(*ids):
    return [ChildDescriptor(id=i, title=f"T{i}") for i in ids]


def _ids(children):
    return [c.id for c in children]


def test_merge_children_appends_dedupes_and_truncates():
    merged = merge_children(_kids("A", "B"), _kids("B", "C"), limit=3)
    assert _ids(merged) == ["A", "B", "C"]

    merged = merge_children(merged, _kids("D"), limit=3)
    assert _ids(merged) == ["A", "B", "C"]

    merged = merge_children([], _kids("corpus:X", "X", "Y"), limit=3)
    assert _ids(merged) == ["X", "Y"]


@pytest.mark.asyncio
async def test_memory_store_merge_scenario(memory_store):
    await memory_store.merge("chat1", "P1", _kids("C1", "C2"))
    merged = await memory_store.merge("chat1", "corpus:P1", _kids("C2", "C3", "C4"))

    assert _ids(merged) == ["C1", "C2", "C3"]
    assert _ids(await memory_store.get("chat1", "paper-P1")) == ["C1", "C2", "C3"]
    assert await memory_store.get("chat2", "P1") == []


@pytest.mark.asyncio
async def test_memory_store_delete_chat(memory_store):
    await memory_store.merge("chat1", "P1", _kids("C1"))
    await memory_store.delete_chat("chat1")
    assert await memory_store.load("chat1") == {}


@pytest.mark.asyncio
async def test_file_store_persists_across_instances(tmp_path):
    store = FileRelationshipStore(tmp_path, max_children=3)
    paper = Paper(id="C1", title="Child one", score=0.8)
    await store.merge("chat-1", "root-P1", [ChildDescriptor.from_paper(paper, "P1")])
    await store.merge("chat-1", "P1", _kids("C2", "C1"))

    reopened = FileRelationshipStore(tmp_path, max_children=3)
    entries = await reopened.load("chat-1")

    assert list(entries) == ["P1"]
    children = entries["P1"]
    assert _ids(children) == ["C1", "C2"]
    assert children[0].paper is not None
    assert children[0].paper.score == 0.8
    assert children[0].source_parent_id == "P1"

    raw = json.loads((tmp_path / "chat-1.json").read_text())
    assert raw["P1"]["childPapers"][1]["id"] == "C2"


@pytest.mark.asyncio
async def test_file_store_merges_legacy_prefixed_keys(tmp_path):
    doc = {
        "corpus:P1": {"childPapers": [{"id": "corpus:C1", "title": "One"}]},
        "P1": {"childPapers": [{"id": "C1", "title": "dup"}, {"id": "C2"}]},
    }
    (tmp_path / "legacy.json").write_text(json.dumps(doc))

    store = FileRelationshipStore(tmp_path)
    children = await store.get("legacy", "P1")

    assert _ids(children) == ["C1", "C2"]
    assert children[1].title == "Unknown"


@pytest.mark.asyncio
async def test_file_store_wraps_corrupt_files(tmp_path):
    (tmp_path / "broken.json").write_text("{not json")
    store = FileRelationshipStore(tmp_path)

    with pytest.raises(StorageError):
        await store.load("broken")


@pytest.mark.asyncio
async def test_file_store_rejects_path_like_chat_ids(tmp_path):
    store = FileRelationshipStore(tmp_path)
    with pytest.raises(ValidationError):
        await store.load("../etc/passwd")


@pytest.mark.asyncio
async def test_file_store_delete_chat(tmp_path):
    store = FileRelationshipStore(tmp_path)
    await store.merge("gone", "P1", _kids("C1"))
    assert (tmp_path / "gone.json").exists()

    await store.delete_chat("gone")
    assert not (tmp_path / "gone.json").exists()
    await store.delete_chat("gone")


@pytest.mark.asyncio
async def test_http_store_round_trip():
    remote = MemoryRelationshipStore()

    async def handler(request: httpx.Request) -> httpx.Response:
        chat_id = request.url.params.get("chatId")
        if request.method == "POST":
            body = json.loads(request.content)
            merged = await remote.merge(body["chatId"], body["paperId"], body["childPapers"])
            return httpx.Response(200, json={"success": True, "totalChildren": len(merged)})
        if request.method == "GET":
            paper_id = request.url.params.get("paperId")
            if paper_id:
                children = await remote.get(chat_id, paper_id)
                return httpx.Response(
                    200, json={"paperId": paper_id, "childPapers": [c.to_payload() for c in children]}
                )
            entries = await remote.load(chat_id)
            return httpx.Response(
                200,
                json={
                    "relationships": {
                        k: {"childPapers": [c.to_payload() for c in v]} for k, v in entries.items()
                    }
                },
            )
        await remote.delete_chat(chat_id)
        return httpx.Response(200, json={"success": True})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = HttpRelationshipStore("http://relationships.test", client=client)

    merged = await store.merge("c1", "corpus:P1", _kids("A", "B"))
    assert _ids(merged) == ["A", "B"]

    merged = await store.merge("c1", "P1", _kids("B", "C", "D"))
    assert _ids(merged) == ["A", "B", "C"]

    entries = await store.load("c1")
    assert _ids(entries["P1"]) == ["A", "B", "C"]

    await store.delete_chat("c1")
    assert await store.load("c1") == {}

    await client.aclose()


@pytest.mark.asyncio
async def test_http_store_wraps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = HttpRelationshipStore("http://relationships.test", client=client)

    with pytest.raises(StorageError):
        await store.merge("c1", "P1", _kids("A"))

    await client.aclose()
