# citation_explorer/expansion/controller.py

"""
Per-node expansion state machine.

    Idle -> Expanding -> Applied          (children merged into store and tree)
                      -> FailedRolledBack (placeholders removed, store untouched)

and back to Idle in every terminal case. A node that is Expanding rejects a
second request with ExpansionInProgress; different nodes expand concurrently.

The store write and the tree mutation for one expansion happen under a single
asyncio.Lock, which hydration also takes, so a reader never sees the store and
the tree disagree about an expansion that is half applied.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from citation_explorer.config.settings import settings
from citation_explorer.errors import (
    CitationExplorerError,
    ExpansionInProgress,
    SearchTimeout,
    StorageError,
    ValidationError,
    user_message,
)
from citation_explorer.graph.model import GraphModel, GraphNode
from citation_explorer.graph.selection import TopKSelector
from citation_explorer.graph.storage import RelationshipStore
from citation_explorer.models.job import JobFilters, JobType
from citation_explorer.models.paper import Paper
from citation_explorer.models.relationship import ChildDescriptor
from citation_explorer.search.client import JobClient
from citation_explorer.search.phrases import build_search_body

logger = logging.getLogger("citation_explorer.expansion")


class ExpansionState(str, Enum):
    IDLE = "idle"
    EXPANDING = "expanding"
    APPLIED = "applied"
    FAILED_ROLLED_BACK = "failed_rolled_back"


@dataclass
class ExpansionParams:
    """User input for one expansion. Empty keywords fall back to the node's tags."""

    job_type: JobType = JobType.KEYWORD_SEARCH
    keywords: List[str] = field(default_factory=list)
    authors: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    query: Optional[str] = None
    filters: Union[JobFilters, Mapping[str, Any], None] = None


@dataclass
class ExpansionOutcome:
    node_id: str
    state: ExpansionState
    added: List[str] = field(default_factory=list)
    error: Optional[BaseException] = None
    message: Optional[str] = None
    storage_error: Optional[StorageError] = None

    @property
    def ok(self) -> bool:
        return self.state == ExpansionState.APPLIED


class ExpansionController:
    def __init__(
        self,
        graph: GraphModel,
        jobs: JobClient,
        store: RelationshipStore,
        chat_id: str,
        selector: Optional[TopKSelector] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.graph = graph
        self.jobs = jobs
        self.store = store
        self.chat_id = chat_id
        self.selector = selector or graph.selector
        self.timeout = timeout if timeout is not None else settings.expansion_timeout
        self._clock = clock

        self.events: "asyncio.Queue[ExpansionOutcome]" = asyncio.Queue()
        self.last_outcome: Dict[str, ExpansionOutcome] = {}

        self._states: Dict[str, ExpansionState] = {}
        # node_id -> (claim token, start time)
        self._claims: Dict[str, tuple] = {}
        self._tokens = itertools.count(1)
        self._apply_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state(self, node_id: str) -> ExpansionState:
        return self._states.get(node_id, ExpansionState.IDLE)

    def is_expanding(self, node_id: str) -> bool:
        return self.state(node_id) == ExpansionState.EXPANDING

    def _claim(self, node_id: str) -> int:
        self.graph.node(node_id)

        if self.is_expanding(node_id):
            _, started = self._claims[node_id]
            if self._clock() - started < self.timeout:
                raise ExpansionInProgress(node_id)
            logger.warning(
                "Node %s stuck expanding for more than %.0fs; releasing it",
                node_id,
                self.timeout,
            )
            # The new run adds its own placeholders.
            self.graph.remove_placeholders(node_id)

        token = next(self._tokens)
        self._claims[node_id] = (token, self._clock())
        self._states[node_id] = ExpansionState.EXPANDING
        return token

    def _owns(self, node_id: str, token: int) -> bool:
        current = self._claims.get(node_id)
        return current is not None and current[0] == token

    def _release(self, node_id: str, token: int) -> None:
        # A stale run released by the escape hatch must not reset a newer claim.
        if self._owns(node_id, token):
            del self._claims[node_id]
            self._states[node_id] = ExpansionState.IDLE

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    async def request_expand(
        self,
        node_id: str,
        params: Optional[ExpansionParams] = None,
    ) -> ExpansionOutcome:
        """
        Expand a node and wait for the outcome.

        Raises ExpansionInProgress if the node is already expanding. Every other
        failure is reported on the returned outcome.
        """
        token = self._claim(node_id)
        return await self._run(node_id, token, params or ExpansionParams())

    def start_expand(
        self,
        node_id: str,
        params: Optional[ExpansionParams] = None,
    ) -> "asyncio.Task[ExpansionOutcome]":
        """
        Start an expansion in the background.

        The outcome is put on `events` when the task finishes. Nobody has to
        await the task or read the queue for the expansion to complete.
        """
        token = self._claim(node_id)
        task = asyncio.create_task(self._deliver(node_id, token, params or ExpansionParams()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every background expansion to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(self, node_id: str, token: int, params: ExpansionParams) -> ExpansionOutcome:
        try:
            outcome = await self._run(node_id, token, params)
        except Exception as exc:
            logger.exception("Background expansion of %s crashed", node_id)
            outcome = ExpansionOutcome(
                node_id=node_id,
                state=ExpansionState.FAILED_ROLLED_BACK,
                error=exc,
                message=user_message(exc),
            )
        await self.events.put(outcome)
        return outcome

    async def _run(self, node_id: str, token: int, params: ExpansionParams) -> ExpansionOutcome:
        try:
            try:
                outcome = await self._expand(node_id, token, params)
            except CitationExplorerError as exc:
                self._rollback(node_id, token)
                logger.warning("Expansion of %s failed: %s", node_id, exc)
                outcome = ExpansionOutcome(
                    node_id=node_id,
                    state=ExpansionState.FAILED_ROLLED_BACK,
                    error=exc,
                    message=user_message(exc),
                )
            except BaseException:
                self._rollback(node_id, token)
                raise
            if self._owns(node_id, token):
                self.last_outcome[node_id] = outcome
            return outcome
        finally:
            self._release(node_id, token)

    async def _expand(self, node_id: str, token: int, params: ExpansionParams) -> ExpansionOutcome:
        paper = self.graph.require_paper(node_id)
        node = self.graph.node(node_id)

        present = len(self.graph.children_of(node_id))
        if present >= self.graph.max_children:
            raise ValidationError(
                f"Node {node_id} already has {present} children",
                user_message="This paper already has the maximum number of related papers.",
            )

        self.graph.add_placeholders(node_id)

        try:
            results = await asyncio.wait_for(self._search(node, paper, params), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise SearchTimeout(None, 0, ExpansionState.EXPANDING.value) from None

        async with self._apply_lock:
            if not self._owns(node_id, token):
                # A newer run took the node over; its placeholders stay.
                raise ExpansionInProgress(node_id)

            before = set(node.children)
            storage_error: Optional[StorageError] = None
            try:
                stored = await self.store.get(self.chat_id, paper.key)
            except StorageError as exc:
                logger.error("Could not read stored children of %s: %s", paper.key, exc)
                storage_error = exc
                stored = []
            if stored:
                self.graph.hydrate_node(node_id, {paper.key: stored})

            # Only what fits next to the children already shown is stored.
            free = self.graph.max_children - len(self.graph.children_of(node_id))
            exclude = {paper.key} | self.graph.child_keys(node_id)
            chosen = self.selector.select_top(results, free, exclude_ids=exclude)

            if chosen and storage_error is None:
                descriptors = [ChildDescriptor.from_paper(p, paper.key) for p in chosen]
                try:
                    await self.store.merge(self.chat_id, paper.key, descriptors)
                except StorageError as exc:
                    logger.error("Could not store children of %s: %s", paper.key, exc)
                    storage_error = exc

            self.graph.remove_placeholders(node_id)
            self.graph.expand(node_id, chosen)
            added = [c for c in node.children if c not in before]

        logger.info(
            "Expanded %s (%s): %d results, %d new children",
            node_id,
            paper.key,
            len(results),
            len(added),
        )
        return ExpansionOutcome(
            node_id=node_id,
            state=ExpansionState.APPLIED,
            added=added,
            storage_error=storage_error,
            message=storage_error.user_message if storage_error else None,
        )

    async def _search(self, node: GraphNode, paper: Paper, params: ExpansionParams) -> List[Paper]:
        body = build_search_body(
            paper,
            job_type=params.job_type,
            keywords=params.keywords or node.keywords,
            authors=params.authors,
            references=params.references,
            query=params.query,
        )
        job_id = await self.jobs.create(params.job_type, body, params.filters, anchor=paper)
        return await self.jobs.await_completion(job_id)

    def _rollback(self, node_id: str, token: int) -> None:
        if node_id in self.graph and self._owns(node_id, token):
            self.graph.remove_placeholders(node_id)

    # ------------------------------------------------------------------
    # Restoring prior expansions
    # ------------------------------------------------------------------

    async def restore_session(self, opened: Iterable[Any] = ()) -> List[str]:
        """
        Hydrate a freshly seeded tree from the store. Returns hydrated node ids.

        Papers listed in `opened` are opened as well, so expansions stored
        deeper than the seeded children come back too.
        """
        async with self._apply_lock:
            relationships = await self.store.load(self.chat_id)
            hydrated = self.graph.hydrate(relationships)
            for node_id in self.graph.open_papers(relationships, opened):
                if node_id not in hydrated:
                    hydrated.append(node_id)
            return hydrated

    async def open_node(self, node_id: str) -> GraphNode:
        """
        Show a node's children, restoring stored ones without a new search.
        """
        node = self.graph.node(node_id)
        if node.paper_id is not None and not node.is_placeholder:
            async with self._apply_lock:
                stored = await self.store.get(self.chat_id, node.paper_id)
                if stored:
                    self.graph.hydrate_node(node_id, {node.paper_id: stored})
        return self.graph.restore(node_id)
