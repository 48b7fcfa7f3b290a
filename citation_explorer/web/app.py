from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from citation_explorer.config.settings import settings
from citation_explorer.errors import (
    CitationExplorerError,
    DataIntegrityError,
    ExpansionInProgress,
    JobFailed,
    SearchBackendError,
    SearchTimeout,
    StorageError,
    ValidationError,
)
from citation_explorer.graph.filters import TreeFilter
from citation_explorer.graph.model import GraphModel
from citation_explorer.graph.storage import RelationshipStore, build_store
from citation_explorer.layout.engine import layout_graph
from citation_explorer.models.identifiers import normalize_id
from citation_explorer.models.network import CitationNetworkResponse
from citation_explorer.models.relationship import ChildDescriptor
from citation_explorer.web.security import api_key_auth, rate_limiter

logger = logging.getLogger("citation_explorer.web")
logging.basicConfig(level=logging.INFO)


# -------------------------------------------------------------------
# Lifespan: build the relationship store once at startup
# -------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    store = _get_store(app)
    logger.info("Relationship store: %s", type(store).__name__)

    yield

    await store.aclose()


app = FastAPI(
    title="Citation Explorer API",
    description="Relationship persistence and tree layout for incremental citation graphs.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------------------
# Middleware
# -------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log method, path, and response status with the request duration.
    """
    logger.info(f"Incoming request: {request.method} {request.url.path}")
    start = time.time()

    response = await call_next(request)

    duration_ms = (time.time() - start) * 1000
    logger.info(
        f"Completed {request.method} {request.url.path} "
        f"with status {response.status_code} in {duration_ms:.2f}ms"
    )

    return response


# -------------------------------------------------------------------
# Models
# -------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class StoreChildrenRequest(_CamelModel):
    chat_id: str
    paper_id: str
    child_papers: List[ChildDescriptor] = Field(default_factory=list)


class LayoutRequest(_CamelModel):
    network: CitationNetworkResponse
    chat_id: Optional[str] = None

    # keyed by paper id; `opened` papers get their stored children restored
    opened: List[str] = Field(default_factory=list)
    collapsed: List[str] = Field(default_factory=list)
    keywords: Dict[str, List[str]] = Field(default_factory=dict)
    selected_fields: Dict[str, List[str]] = Field(default_factory=dict)

    # node id -> y from an earlier layout of the same tree
    previous: Dict[str, float] = Field(default_factory=dict)
    filter: Optional[TreeFilter] = None


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------


def _get_store(app_obj: FastAPI) -> RelationshipStore:
    """
    Fetch the relationship store from app.state, building it from settings
    if needed.
    """
    store = getattr(app_obj.state, "store", None)
    if store is None:
        store = build_store(settings)
        app_obj.state.store = store
    return store


_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (DataIntegrityError, 409),
    (ExpansionInProgress, 409),
    (StorageError, 503),
    (SearchTimeout, 504),
    (JobFailed, 502),
    (SearchBackendError, 502),
)


def _to_http(exc: CitationExplorerError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = 500
    logger.warning("%s: %s", type(exc).__name__, exc)
    return HTTPException(status_code=status_code, detail=exc.user_message)


def _node_payload(graph: GraphModel, node_id: str) -> Dict[str, Any]:
    node = graph.node(node_id)
    return {
        "id": node.node_id,
        "paperId": node.paper_id,
        "parentId": node.parent_id,
        "label": node.label,
        "depth": node.depth,
        "nodeType": node.node_type.value,
        "score": node.score,
        "collapsed": node.collapsed,
        "expandable": node.expandable,
        "keywords": list(node.keywords),
        "fields": graph.field_values(node_id) if node.paper is not None else {},
    }


# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------


@app.get("/health", summary="Health check")
async def health() -> dict:
    return {"status": "ok"}


@app.get(
    "/relationships",
    summary="Stored children of one paper, or every relationship of a chat",
    dependencies=[Depends(api_key_auth), Depends(rate_limiter)],
)
async def get_relationships(
    request: Request,
    chat_id: str = Query(..., alias="chatId", min_length=1),
    paper_id: Optional[str] = Query(None, alias="paperId"),
) -> Dict[str, Any]:
    store = _get_store(request.app)
    try:
        if paper_id is not None:
            key = normalize_id(paper_id)
            children = await store.get(chat_id, key)
            return {
                "paperId": key,
                "childPapers": [c.to_payload() for c in children],
            }

        entries = await store.load(chat_id)
    except CitationExplorerError as exc:
        raise _to_http(exc) from exc

    return {
        "chatId": chat_id,
        "relationships": {
            str(k): {"childPapers": [c.to_payload() for c in v]} for k, v in entries.items()
        },
    }


@app.post(
    "/relationships",
    summary="Merge children into a paper's stored relationship entry",
    dependencies=[Depends(api_key_auth), Depends(rate_limiter)],
)
async def store_relationships(payload: StoreChildrenRequest, request: Request) -> Dict[str, Any]:
    store = _get_store(request.app)
    key = normalize_id(payload.paper_id)
    incoming = [
        c if c.source_parent_id else c.model_copy(update={"source_parent_id": str(key)})
        for c in payload.child_papers
    ]

    try:
        before = await store.get(payload.chat_id, key)
        merged = await store.merge(payload.chat_id, key, incoming)
    except CitationExplorerError as exc:
        raise _to_http(exc) from exc

    return {
        "success": True,
        "totalChildren": len(merged),
        "storedKey": key,
        "added": len(merged) - len(before),
    }


@app.delete(
    "/relationships",
    summary="Delete every relationship of a chat",
    dependencies=[Depends(api_key_auth), Depends(rate_limiter)],
)
async def delete_relationships(
    request: Request,
    chat_id: str = Query(..., alias="chatId", min_length=1),
) -> Dict[str, Any]:
    store = _get_store(request.app)
    try:
        await store.delete_chat(chat_id)
    except CitationExplorerError as exc:
        raise _to_http(exc) from exc
    return {"success": True, "chatId": chat_id}


@app.post(
    "/layout",
    summary="Seed a tree from a citation network, restore stored expansions, and lay it out",
    dependencies=[Depends(api_key_auth), Depends(rate_limiter)],
)
async def layout_tree(payload: LayoutRequest, request: Request) -> Dict[str, Any]:
    try:
        graph = GraphModel.from_network(payload.network)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    hydrated: List[str] = []
    try:
        relationships: Dict[str, List[ChildDescriptor]] = {}
        if payload.chat_id:
            store = _get_store(request.app)
            relationships = await store.load(payload.chat_id)
        hydrated = graph.hydrate(relationships)
        for node_id in graph.open_papers(relationships, payload.opened):
            if node_id not in hydrated:
                hydrated.append(node_id)

        for raw_id, tags in payload.keywords.items():
            for node in graph.find_by_paper(raw_id):
                graph.set_keywords(node.node_id, tags)
        for raw_id, fields in payload.selected_fields.items():
            for node in graph.find_by_paper(raw_id):
                graph.set_selected_fields(node.node_id, fields)
        for raw_id in payload.collapsed:
            for node in graph.find_by_paper(raw_id):
                graph.collapse(node.node_id)
    except CitationExplorerError as exc:
        raise _to_http(exc) from exc

    result = layout_graph(graph, previous=payload.previous, tree_filter=payload.filter)
    body = result.to_payload()
    body["nodes"] = [_node_payload(graph, node_id) for node_id in result.positions]
    body["hydrated"] = hydrated
    return body
