"""Data model shared by strategies, retrieval, extraction and persistence.

This module contains pure data structures with no I/O, so every layer can
import it without circular dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from brreg_reports.utils.urls import is_placeholder_url, normalize_document_url

__all__ = [
    "DocumentRef",
    "ExtractedDocument",
    "FinancialFigures",
    "PersistedReport",
    "ReportCandidate",
    "SourceTag",
]


class SourceTag(StrEnum):
    """Discovery mechanism that produced a candidate, strongest first."""

    API = "api"
    EMBEDDED_PAYLOAD = "embedded-payload"
    STATIC_DOM = "static-dom"
    RENDERED_DOM = "rendered-dom"
    BODY_TEXT = "body-text"

    @property
    def strength(self) -> int:
        """Higher is stronger; ``api`` outranks every scraped source."""
        members = list(SourceTag)
        return len(members) - members.index(self)


@dataclass(frozen=True)
class DocumentRef:
    """A downloadable document discovered for one report year.

    Attributes
    ----------
    title : str
        Link text or API title.
    url : str
        Absolute ``http(s)`` URL; never a placeholder.
    media_type : str | None
        Type hint from the source (``"pdf"``, ``"application/pdf"``, ...).
    size : int | None
        Size hint in bytes from the source.
    """

    title: str
    url: str
    media_type: str | None = None
    size: int | None = None

    def __post_init__(self) -> None:
        if is_placeholder_url(self.url) or not self.url.lower().startswith(("http://", "https://")):
            msg = f"DocumentRef requires an absolute URL, got {self.url!r}"
            raise ValueError(msg)

    @classmethod
    def from_href(
        cls,
        href: str | None,
        base_origin: str,
        title: str = "Innsendt årsregnskap",
        media_type: str | None = None,
        size: int | None = None,
    ) -> DocumentRef | None:
        """Resolve ``href`` against ``base_origin``; ``None`` for placeholders."""
        url = normalize_document_url(href, base_origin)
        if url is None:
            return None
        return cls(title=title.strip() or "Dokument", url=url, media_type=media_type, size=size)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the persisted ``documents[]`` entry shape."""
        return {"title": self.title, "url": self.url, "type": self.media_type, "size": self.size}


@dataclass
class FinancialFigures:
    """The three target figures; any may be missing."""

    net_result: int | None = None
    sales_revenue: int | None = None
    total_income: int | None = None

    @property
    def is_empty(self) -> bool:
        """True when no figure was recovered."""
        return self.net_result is None and self.sales_revenue is None and self.total_income is None

    def merged_with(self, other: FinancialFigures | None) -> FinancialFigures:
        """Return a copy where missing fields are filled from ``other``."""
        if other is None:
            return FinancialFigures(self.net_result, self.sales_revenue, self.total_income)
        return FinancialFigures(
            net_result=self.net_result if self.net_result is not None else other.net_result,
            sales_revenue=self.sales_revenue if self.sales_revenue is not None else other.sales_revenue,
            total_income=self.total_income if self.total_income is not None else other.total_income,
        )

    def to_payload(self) -> dict[str, int]:
        """CamelCase mapping with absent figures omitted."""
        payload: dict[str, int] = {}
        if self.net_result is not None:
            payload["netResult"] = self.net_result
        if self.sales_revenue is not None:
            payload["salesRevenue"] = self.sales_revenue
        if self.total_income is not None:
            payload["totalIncome"] = self.total_income
        return payload


@dataclass
class ReportCandidate:
    """A (year, documents) pair found by one strategy before any download.

    Attributes
    ----------
    year : int
        Fiscal year in ``[1990, current_year + 1]``.
    source : SourceTag
        Strategy that discovered the candidate.
    documents : list[DocumentRef]
        Ordered, de-duplicated by URL.
    raw : dict[str, Any]
        Verbatim source record (shape differs per source).
    summary : dict[str, Any]
        Source-specific key figures or labels shown next to the filing.
    figures : FinancialFigures | None
        Figures embedded directly in the source payload, if any.
    journal_id : str | None
        Per-filing identifier used to collapse API echoes.
    """

    year: int
    source: SourceTag
    documents: list[DocumentRef] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)
    summary: dict[str, Any] = field(default_factory=dict)
    figures: FinancialFigures | None = None
    journal_id: str | None = None

    def add_document(self, document: DocumentRef) -> bool:
        """Append ``document`` unless its URL is already listed."""
        if any(existing.url == document.url for existing in self.documents):
            return False
        self.documents.append(document)
        return True

    @property
    def has_embedded_figures(self) -> bool:
        """True when the source payload already carried figures."""
        return self.figures is not None and not self.figures.is_empty


@dataclass
class ExtractedDocument:
    """A retrieved and validated document with its text layer."""

    ref: DocumentRef
    text: str
    page_count: int
    byte_size: int
    metadata: dict[str, Any] = field(default_factory=dict)
    ocr_used: bool = False
    ocr_provider: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize with the text layer for audit."""
        payload = self.ref.to_payload()
        payload["pdfText"] = self.text
        payload["pdfPageCount"] = self.page_count
        if self.ocr_used:
            payload["ocr"] = self.ocr_provider or True
        return payload


@dataclass
class PersistedReport:
    """One row of the report store."""

    organization_id: str
    year: int
    payload: dict[str, Any]
    scraped_at: datetime
