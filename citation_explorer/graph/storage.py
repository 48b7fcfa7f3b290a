# citation_explorer/graph/storage.py

"""
Persistence of parent -> child relationships per conversation.

Layout on disk (FileRelationshipStore):

    <relationships_dir>/<chat_id>.json
        {"<paperKey>": {"childPapers": [{id, title, sourceParentId, paper}, ...]}, ...}

Every read and write boundary normalizes paper identifiers, so a caller can
pass "corpus:42", "paper-42" or "42" and hit the same entry. `merge` is the
only write path and never removes an entry; only `delete_chat` does.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from citation_explorer.config.settings import Settings, settings
from citation_explorer.errors import StorageError, ValidationError
from citation_explorer.models.identifiers import PaperKey, normalize_id
from citation_explorer.models.relationship import ChildDescriptor

logger = logging.getLogger("citation_explorer.graph")

Relationships = Dict[PaperKey, List[ChildDescriptor]]

_CHAT_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def merge_children(
    existing: Sequence[ChildDescriptor],
    incoming: Iterable[ChildDescriptor],
    limit: Optional[int] = None,
) -> List[ChildDescriptor]:
    """
    Append new children to an existing list.

    Children whose id is already present (or repeats within `incoming`) are
    skipped; the result is truncated to `limit`. Existing children always win.
    """
    limit = settings.max_children if limit is None else limit
    merged = list(existing)
    seen = {c.key for c in merged}
    for child in incoming:
        if len(merged) >= limit:
            break
        if child.key in seen:
            continue
        seen.add(child.key)
        merged.append(child)
    return merged[:limit]


def _coerce_children(children: Iterable[Any]) -> List[ChildDescriptor]:
    out: List[ChildDescriptor] = []
    for c in children:
        if isinstance(c, ChildDescriptor):
            out.append(c)
        else:
            out.append(ChildDescriptor.model_validate(c))
    return out


class RelationshipStore(ABC):
    """Keyed by (chat_id, paper key); values are ordered child lists."""

    def __init__(self, max_children: Optional[int] = None) -> None:
        self.max_children = max_children or settings.max_children
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    async def get(self, chat_id: str, paper_id: Any) -> List[ChildDescriptor]:
        entries = await self.load(chat_id)
        return list(entries.get(normalize_id(paper_id), []))

    @abstractmethod
    async def load(self, chat_id: str) -> Relationships:
        """All relationships stored for a conversation."""

    @abstractmethod
    async def merge(
        self,
        chat_id: str,
        paper_id: Any,
        children: Iterable[Any],
    ) -> List[ChildDescriptor]:
        """Merge children into the entry for `paper_id`; returns the merged list."""

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> None:
        """Drop every relationship of a conversation."""

    async def aclose(self) -> None:
        return None


class MemoryRelationshipStore(RelationshipStore):
    def __init__(self, max_children: Optional[int] = None) -> None:
        super().__init__(max_children)
        self._data: Dict[str, Relationships] = {}

    async def load(self, chat_id: str) -> Relationships:
        return {k: list(v) for k, v in self._data.get(chat_id, {}).items()}

    async def merge(self, chat_id: str, paper_id: Any, children: Iterable[Any]) -> List[ChildDescriptor]:
        key = normalize_id(paper_id)
        incoming = _coerce_children(children)
        async with self._lock(chat_id):
            chat = self._data.setdefault(chat_id, {})
            merged = merge_children(chat.get(key, []), incoming, self.max_children)
            chat[key] = merged
            return list(merged)

    async def delete_chat(self, chat_id: str) -> None:
        async with self._lock(chat_id):
            self._data.pop(chat_id, None)


class FileRelationshipStore(RelationshipStore):
    """
    One JSON document per conversation under `directory`.

    Writes go to a temporary file that is then moved over the original, so a
    crash mid-write never leaves a truncated document behind.
    """

    def __init__(self, directory: Optional[Path] = None, max_children: Optional[int] = None) -> None:
        super().__init__(max_children)
        self.directory = Path(directory) if directory is not None else settings.relationships_dir

    def path_for(self, chat_id: str) -> Path:
        if not _CHAT_ID_RE.match(chat_id or ""):
            raise ValidationError(f"Invalid chat id {chat_id!r}")
        return self.directory / f"{chat_id}.json"

    # -- sync helpers, run in a worker thread -------------------------

    def _read(self, path: Path) -> Relationships:
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Could not read relationships from {path}: {exc}") from exc

        if not isinstance(raw, dict):
            raise StorageError(f"Relationship file {path} does not hold an object")

        entries: Relationships = {}
        for paper_id, entry in raw.items():
            children = entry.get("childPapers", []) if isinstance(entry, dict) else entry
            try:
                parsed = _coerce_children(children or [])
            except PydanticValidationError as exc:
                raise StorageError(f"Malformed entry {paper_id!r} in {path}: {exc}") from exc
            key = normalize_id(paper_id)
            # Older files may hold the same paper under several prefixed keys.
            entries[key] = merge_children(entries.get(key, []), parsed, self.max_children)
        return entries

    def _write(self, path: Path, entries: Relationships) -> None:
        doc = {
            str(key): {"childPapers": [c.to_payload() for c in children]}
            for key, children in entries.items()
        }
        tmp = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(doc, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise StorageError(f"Could not write relationships to {path}: {exc}") from exc

    def _delete(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not delete {path}: {exc}") from exc

    # -- async API ----------------------------------------------------

    async def load(self, chat_id: str) -> Relationships:
        path = self.path_for(chat_id)
        async with self._lock(chat_id):
            return await run_in_threadpool(self._read, path)

    async def merge(self, chat_id: str, paper_id: Any, children: Iterable[Any]) -> List[ChildDescriptor]:
        path = self.path_for(chat_id)
        key = normalize_id(paper_id)
        incoming = _coerce_children(children)

        async with self._lock(chat_id):
            entries = await run_in_threadpool(self._read, path)
            before = entries.get(key, [])
            merged = merge_children(before, incoming, self.max_children)
            if len(merged) != len(before) or key not in entries:
                entries[key] = merged
                await run_in_threadpool(self._write, path, entries)
                logger.info(
                    "Stored %d new children for %s in chat %s",
                    len(merged) - len(before),
                    key,
                    chat_id,
                )
            return list(merged)

    async def delete_chat(self, chat_id: str) -> None:
        path = self.path_for(chat_id)
        async with self._lock(chat_id):
            await run_in_threadpool(self._delete, path)


class HttpRelationshipStore(RelationshipStore):
    """
    Client for a remote relationship service exposing
    GET/POST/DELETE {base}/relationships (see citation_explorer.web.app).
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        max_children: Optional[int] = None,
    ) -> None:
        super().__init__(max_children)
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout or settings.http_timeout)

    async def _request(self, method: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}/relationships"
        try:
            resp = await self.client.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"Relationship service {method} {url} failed: {exc}") from exc
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise StorageError(f"Relationship service returned invalid JSON: {exc}") from exc

    async def load(self, chat_id: str) -> Relationships:
        data = await self._request("GET", params={"chatId": chat_id}) or {}
        raw = data.get("relationships", {}) if isinstance(data, dict) else {}
        try:
            return {
                normalize_id(k): _coerce_children((v or {}).get("childPapers", []))
                for k, v in raw.items()
            }
        except PydanticValidationError as exc:
            raise StorageError(f"Malformed relationships for chat {chat_id}: {exc}") from exc

    async def get(self, chat_id: str, paper_id: Any) -> List[ChildDescriptor]:
        data = await self._request(
            "GET",
            params={"chatId": chat_id, "paperId": str(normalize_id(paper_id))},
        ) or {}
        try:
            return _coerce_children(data.get("childPapers", []))
        except PydanticValidationError as exc:
            raise StorageError(f"Malformed relationship entry: {exc}") from exc

    async def merge(self, chat_id: str, paper_id: Any, children: Iterable[Any]) -> List[ChildDescriptor]:
        key = normalize_id(paper_id)
        incoming = _coerce_children(children)
        async with self._lock(chat_id):
            await self._request(
                "POST",
                json={
                    "chatId": chat_id,
                    "paperId": str(key),
                    "childPapers": [c.to_payload() for c in incoming],
                },
            )
            return await self.get(chat_id, key)

    async def delete_chat(self, chat_id: str) -> None:
        await self._request("DELETE", params={"chatId": chat_id})

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def build_store(cfg: Optional[Settings] = None) -> RelationshipStore:
    """Pick the store implementation from settings."""
    cfg = cfg or settings
    if cfg.RELATIONSHIPS_API_URL:
        return HttpRelationshipStore(cfg.RELATIONSHIPS_API_URL, timeout=cfg.http_timeout, max_children=cfg.max_children)
    return FileRelationshipStore(cfg.relationships_dir, max_children=cfg.max_children)
