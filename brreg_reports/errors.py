"""Exception types shared across scraping, retrieval, and persistence.

Absence of data is never an exception: strategies return empty lists and
extractors return ``None``. The classes below cover the failures that the
orchestrator must react to.
"""

from __future__ import annotations

__all__ = [
    "DocumentRetrievalError",
    "FetchTimeoutError",
    "MalformedResponseError",
    "NotAPdfError",
    "PersistenceError",
    "TransientFetchError",
    "TruncatedDocumentError",
]


class TransientFetchError(Exception):
    """Timeout, connection reset, 429 or 5xx from an upstream host."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class DocumentRetrievalError(Exception):
    """Base class for typed Document Retriever failures."""

    reason = "retrieval_failed"

    def __init__(self, message: str, url: str | None = None, byte_size: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.byte_size = byte_size


class NotAPdfError(DocumentRetrievalError):
    """Response carried no ``%PDF`` marker or the span is implausibly small."""

    reason = "not_a_pdf"


class TruncatedDocumentError(DocumentRetrievalError):
    """``%PDF`` start marker present but no ``%%EOF`` end marker."""

    reason = "truncated"


class MalformedResponseError(DocumentRetrievalError):
    """Redirect loop or undecodable body; retrying the same URL cannot help."""

    reason = "malformed_response"


class FetchTimeoutError(DocumentRetrievalError, TransientFetchError):
    """Document download exceeded its timeout."""

    reason = "fetch_timeout"


class PersistenceError(Exception):
    """Report store unreachable or rejected a write; fatal for one organization."""
