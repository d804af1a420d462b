"""Error kinds surfaced by the datastore pipeline.

Nothing in this package retries; collaborators (embedding functions,
vector-store backends) own their retry policy and this package only
translates their failures into the kinds below.
"""

from __future__ import annotations


class RetrievalDatastoreError(Exception):
    """Base class for every error raised by this package."""


class InvalidDocumentError(RetrievalDatastoreError, ValueError):
    """A document or query failed validation before chunking."""


class EmbeddingError(RetrievalDatastoreError):
    """The embedding collaborator failed to produce vectors."""


class EmbeddingUnavailable(EmbeddingError):
    """The embedding service could not be reached or misbehaved."""


class EmbeddingRateLimited(EmbeddingError):
    """The embedding service rejected the request because of rate limits."""


class BackendError(RetrievalDatastoreError):
    """The vector-store backend failed an insert, search or delete."""


class BackendUnavailable(BackendError):
    """The backend could not be reached."""


class BackendRejected(BackendError):
    """The backend refused the request (bad filter, bad payload, ...)."""


def is_rate_limit(exc: BaseException) -> bool:
    """Return ``True`` if *exc* looks like an HTTP 429 from a provider SDK."""
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status == 429
