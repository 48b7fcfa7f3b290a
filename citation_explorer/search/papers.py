# citation_explorer/search/papers.py

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from citation_explorer.errors import DataIntegrityError, SearchBackendError, ValidationError
from citation_explorer.models.identifiers import normalize_id
from citation_explorer.models.network import CitationNetworkRequest, CitationNetworkResponse
from citation_explorer.models.paper import Paper
from citation_explorer.search.client import BackendClient

logger = logging.getLogger("citation_explorer.search")


class SeedClient(BackendClient):
    """
    Fetches the one-hop citation network used to seed a tree, and single paper
    records for lazily loading a node's details.
    """

    async def fetch_citation_network(
        self,
        corpus_id: Optional[str] = None,
        paper_id: Optional[str] = None,
        depth: int = 1,
        chat_id: Optional[str] = None,
    ) -> CitationNetworkResponse:
        if not corpus_id and not paper_id:
            raise ValidationError("corpus_id or paper_id is required")

        request = CitationNetworkRequest(
            corpus_id=corpus_id,
            paper_id=paper_id,
            depth=depth,
            chat_id=chat_id,
        )
        resp = await self._send(
            "POST",
            "/citation-network",
            json=request.model_dump(by_alias=True, exclude_none=True),
        )
        data = self._json(resp)
        try:
            network = CitationNetworkResponse.model_validate(data)
        except PydanticValidationError as exc:
            raise SearchBackendError(f"Malformed citation network payload: {exc}") from exc

        if network.citation_network is None:
            raise SearchBackendError("Citation network payload has no citationNetwork")
        logger.info(
            "Fetched citation network for %s: %d nodes, %d edges",
            corpus_id or paper_id,
            len(network.citation_network.nodes),
            len(network.citation_network.edges),
        )
        return network

    async def fetch_paper(self, raw_id: Any) -> Paper:
        """
        Fetch one paper and verify it is the paper that was asked for.

        A response carrying another paper's id raises DataIntegrityError.
        """
        key = normalize_id(raw_id)
        resp = await self._send("GET", f"/papers/{key}")
        data = self._json(resp)
        if isinstance(data, dict) and isinstance(data.get("paper"), dict):
            data = data["paper"]

        try:
            paper = Paper.model_validate(data)
        except PydanticValidationError as exc:
            raise SearchBackendError(f"Malformed paper payload for {key}: {exc}") from exc

        if paper.key != key:
            raise DataIntegrityError(
                f"Requested paper {key} but received {paper.key}",
                expected_id=key,
                actual_id=paper.key,
            )
        return paper
