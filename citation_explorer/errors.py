# citation_explorer/errors.py

"""
Error taxonomy shared by the search client, the relationship store and the
expansion controller.

Every error carries a short `user_message` that the web layer and the CLI can
show as-is; the exception text itself keeps the technical detail.
"""

from __future__ import annotations

from typing import Optional


class CitationExplorerError(Exception):
    """Base class for all domain errors."""

    user_message = "Something went wrong."

    def __init__(self, message: str = "", *, user_message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(CitationExplorerError):
    """
    Malformed search/expansion request (no phrases or query, counts out of
    range, bad filters). Fatal to the single request, never retried.
    """

    user_message = "Invalid search request."


class JobFailed(CitationExplorerError):
    """The search backend reported status=error for a job."""

    user_message = "The search failed. Please try again."

    def __init__(self, job_id: str, detail: Optional[str] = None) -> None:
        self.job_id = job_id
        self.detail = detail
        super().__init__(f"Search job {job_id} failed: {detail or 'no detail'}")


class SearchTimeout(CitationExplorerError):
    """
    The polling budget ran out while the job was still queued/processing.
    Not a job status: the job may still finish on the backend.
    """

    user_message = "The search is still processing. Please try again later."

    def __init__(self, job_id: Optional[str], attempts: int, last_status: Optional[str] = None) -> None:
        self.job_id = job_id
        self.attempts = attempts
        self.last_status = last_status
        super().__init__(
            f"Search job {job_id} did not finish after {attempts} poll attempts "
            f"(last status: {last_status or 'unknown'})"
        )


class SearchBackendError(CitationExplorerError):
    """
    Domain-specific error for anything that goes wrong talking to the search
    backend at the transport/HTTP level.
    """

    user_message = "Could not reach the search service."


class DataIntegrityError(CitationExplorerError):
    """
    A paper payload does not belong to the node/identifier it was fetched for,
    or a node has no paper data at all. Never absorbed by falling back to
    another paper's data.
    """

    user_message = "Paper data is unavailable for this node."

    def __init__(self, message: str, *, expected_id: Optional[str] = None, actual_id: Optional[str] = None) -> None:
        self.expected_id = expected_id
        self.actual_id = actual_id
        super().__init__(message)


class StorageError(CitationExplorerError):
    """
    The relationship store could not be read or written. Non-fatal for the
    in-memory effect of an expansion, but must be surfaced.
    """

    user_message = "The expansion was applied but could not be saved (storage issue)."


class ExpansionInProgress(CitationExplorerError):
    """A second expansion was requested for a node that is already expanding."""

    user_message = "A search is already in progress for this paper."

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node {node_id} is already expanding")


def user_message(exc: BaseException) -> str:
    """Return the user-facing message for any exception."""
    if isinstance(exc, CitationExplorerError):
        return exc.user_message
    return CitationExplorerError.user_message
