# citation_explorer/search/client.py

"""
Async client for the paper-search backend's job protocol:

    POST {base}/jobs/{jobType}   {phrases?, query?, ...filters}  -> {jobId}
    GET  {base}/jobs/{jobId}                                    -> {id, status, results?, error?}

A job is created once, then polled until it reaches a terminal status or the
polling budget runs out. Sleeping happens before every poll, so a job that is
already done is picked up after exactly one interval.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from citation_explorer.config.settings import PollingProfile, Settings, settings
from citation_explorer.errors import (
    JobFailed,
    SearchBackendError,
    SearchTimeout,
    ValidationError,
)
from citation_explorer.models.job import (
    MAX_PHRASES,
    MAX_QUERY_CHARS,
    MIN_PHRASES,
    MIN_QUERY_CHARS,
    JobFilters,
    JobStatus,
    JobType,
    SearchBody,
    SearchJob,
)
from citation_explorer.models.paper import Paper
from citation_explorer.search.phrases import dedupe_phrases, pad_phrases

logger = logging.getLogger("citation_explorer.search")

SleepFn = Callable[[float], Awaitable[Any]]


class BackendClient:
    """
    Shared plumbing for talking to the search backend over httpx.

    All transport failures and unexpected HTTP statuses are wrapped into
    SearchBackendError so callers only deal with the domain taxonomy.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or settings
        self.base_url = (base_url or self.config.SEARCH_API_URL).rstrip("/")

        if api_key is None and self.config.SEARCH_API_KEY is not None:
            api_key = self.config.SEARCH_API_KEY.get_secret_value()
        self._headers: Dict[str, str] = {"Accept": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.config.http_timeout)

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return await self.client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            # Connection errors, timeouts, DNS, etc.
            raise SearchBackendError(f"Error contacting search backend at {url}: {exc}") from exc

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            raise SearchBackendError(
                f"Search backend error {resp.status_code}: {resp.text[:200]}"
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise SearchBackendError(f"Search backend returned invalid JSON: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class JobClient(BackendClient):
    """Create, poll and await search jobs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        super().__init__(base_url=base_url, api_key=api_key, client=client, config=config)
        self._sleep = sleep or asyncio.sleep

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def prepare(
        job_type: Union[JobType, str],
        body: Union[SearchBody, Mapping[str, Any], None],
        filters: Union[JobFilters, Mapping[str, Any], None] = None,
        anchor: Optional[Paper] = None,
    ) -> Dict[str, Any]:
        """
        Validate a job request and return the JSON payload to send.

        Raises ValidationError without touching the network.
        """
        try:
            job_type = JobType(job_type)
        except ValueError:
            raise ValidationError(f"Unknown job type {job_type!r}") from None

        if body is None:
            body = SearchBody()
        elif not isinstance(body, SearchBody):
            try:
                body = SearchBody.model_validate(dict(body))
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid search body: {exc}") from exc

        payload: Dict[str, Any] = {}

        if job_type.needs_phrases:
            phrases = dedupe_phrases(body.phrases)
            if anchor is not None:
                phrases = pad_phrases(phrases, anchor)
            if len(phrases) < MIN_PHRASES:
                raise ValidationError(
                    f"{job_type.value} needs at least {MIN_PHRASES} phrase",
                    user_message="Add at least one keyword to search with.",
                )
            if len(phrases) > MAX_PHRASES:
                raise ValidationError(
                    f"{job_type.value} accepts at most {MAX_PHRASES} phrases, got {len(phrases)}",
                    user_message=f"Use at most {MAX_PHRASES} keywords.",
                )
            payload["phrases"] = phrases

        if job_type.needs_query:
            query = (body.query or "").strip()
            if not MIN_QUERY_CHARS <= len(query) <= MAX_QUERY_CHARS:
                raise ValidationError(
                    f"{job_type.value} needs a query of {MIN_QUERY_CHARS}-{MAX_QUERY_CHARS} "
                    f"characters, got {len(query)}",
                    user_message=f"The search query must be {MIN_QUERY_CHARS}-{MAX_QUERY_CHARS} characters.",
                )
            payload["query"] = query

        payload.update(JobFilters.parse(filters).to_payload())
        return payload

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    async def create(
        self,
        job_type: Union[JobType, str],
        body: Union[SearchBody, Mapping[str, Any], None],
        filters: Union[JobFilters, Mapping[str, Any], None] = None,
        anchor: Optional[Paper] = None,
    ) -> str:
        """Create a search job and return its id."""
        payload = self.prepare(job_type, body, filters, anchor)
        job_type = JobType(job_type)

        resp = await self._send("POST", f"/jobs/{job_type.value}", json=payload)
        if resp.status_code in (400, 422):
            raise ValidationError(
                f"Search backend rejected {job_type.value} job: {resp.text[:200]}"
            )
        data = self._json(resp)

        job_id = data.get("jobId") if isinstance(data, dict) else None
        if not job_id:
            raise SearchBackendError(f"Search backend returned no jobId: {str(data)[:200]}")

        logger.info("Created %s job %s", job_type.value, job_id)
        return str(job_id)

    async def poll(self, job_id: str) -> SearchJob:
        """Observe a job once."""
        resp = await self._send("GET", f"/jobs/{job_id}")
        data = self._json(resp)
        if not isinstance(data, dict):
            raise SearchBackendError(f"Unexpected job payload for {job_id}: {str(data)[:200]}")

        data.setdefault("id", job_id)
        try:
            return SearchJob.model_validate(data)
        except PydanticValidationError as exc:
            raise SearchBackendError(f"Malformed job payload for {job_id}: {exc}") from exc

    def profile_for(self, job_id: Optional[str] = None) -> PollingProfile:
        return self.config.polling_profile(job_id)

    async def await_completion(
        self,
        job_id: str,
        profile: Optional[PollingProfile] = None,
    ) -> List[Paper]:
        """
        Poll until success or error, up to the profile's attempt budget.

        Returns the job's results on success; raises JobFailed on error and
        SearchTimeout once the budget is exhausted.
        """
        profile = profile or self.profile_for(job_id)
        last_status: Optional[str] = None

        for attempt in range(1, profile.max_attempts + 1):
            await self._sleep(profile.interval)
            job = await self.poll(job_id)
            last_status = job.status.value
            logger.debug(
                "Job %s attempt %d/%d: %s",
                job_id,
                attempt,
                profile.max_attempts,
                last_status,
            )

            if job.status == JobStatus.SUCCESS:
                logger.info(
                    "Job %s finished with %d results after %d polls",
                    job_id,
                    len(job.results),
                    attempt,
                )
                return list(job.results)
            if job.status == JobStatus.ERROR:
                raise JobFailed(job_id, job.error)

        logger.warning(
            "Job %s still %s after %d polls (%s profile)",
            job_id,
            last_status,
            profile.max_attempts,
            profile.name,
        )
        raise SearchTimeout(job_id, profile.max_attempts, last_status)

    async def run(
        self,
        job_type: Union[JobType, str],
        body: Union[SearchBody, Mapping[str, Any], None],
        filters: Union[JobFilters, Mapping[str, Any], None] = None,
        anchor: Optional[Paper] = None,
    ) -> List[Paper]:
        """Create a job and wait for its results."""
        job_id = await self.create(job_type, body, filters, anchor)
        return await self.await_completion(job_id)
