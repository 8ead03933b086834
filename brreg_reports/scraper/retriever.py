"""Document retrieval: download, sniff, validate and read annual report PDFs.

Upstream responses are unreliable: HTML error pages served with status 200,
PDFs wrapped in a framing envelope, and downloads cut off mid-stream all
occur. The body is therefore never trusted by content type. Instead the
``%PDF`` start marker and the last ``%%EOF`` end marker are located by
content sniffing and only the span between them is parsed.

Retries are not performed here; the orchestrator wraps :meth:`retrieve` in
its retry policy.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from brreg_reports.config import setup_logging
from brreg_reports.errors import DocumentRetrievalError, NotAPdfError, TruncatedDocumentError
from brreg_reports.extractor.figures import extract_figures_from_payload
from brreg_reports.extractor.ocr_fallback import needs_ocr, recover_text
from brreg_reports.extractor.pdf_parser import read_text_layer
from brreg_reports.models import DocumentRef, ExtractedDocument, FinancialFigures

if TYPE_CHECKING:
    from pathlib import Path

    from brreg_reports.scraper.http import HttpClient

logger = setup_logging(__name__)

PDF_START = b"%PDF"
PDF_END = b"%%EOF"


def locate_pdf_span(data: bytes, min_bytes: int = 1000) -> bytes:
    """Cut the PDF out of a response body by its start and end markers.

    Parameters
    ----------
    data : bytes
        Raw response body, possibly with leading or trailing framing.
    min_bytes : int, optional
        Spans shorter than this are rejected as implausible.

    Returns
    -------
    bytes
        From ``%PDF`` through the last ``%%EOF`` (plus one trailing newline
        when present).

    Raises
    ------
    NotAPdfError
        If there is no start marker or the span is too small.
    TruncatedDocumentError
        If the start marker is present but no end marker follows it.
    """
    start = data.find(PDF_START)
    if start < 0:
        msg = f"No %PDF marker in {len(data)} bytes"
        raise NotAPdfError(msg, byte_size=len(data))

    eof = data.rfind(PDF_END)
    if eof < start:
        msg = f"%PDF at offset {start} but no %%EOF in {len(data)} bytes"
        raise TruncatedDocumentError(msg, byte_size=len(data))

    end = eof + len(PDF_END)
    if data[end : end + 2] == b"\r\n":
        end += 2
    elif data[end : end + 1] in (b"\n", b"\r"):
        end += 1

    span = data[start:end]
    if len(span) < min_bytes:
        msg = f"PDF span of {len(span)} bytes is below {min_bytes}"
        raise NotAPdfError(msg, byte_size=len(span))
    return span


@dataclass
class PageActionResult:
    """Outcome of a server-action request for one filing year."""

    figures: FinancialFigures | None = None
    document: ExtractedDocument | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def found_anything(self) -> bool:
        return self.document is not None or (self.figures is not None and not self.figures.is_empty)


class DocumentRetriever:
    """Fetch and validate report documents, returning their text layer.

    Parameters
    ----------
    http : HttpClient
        Shared rate-limited client.
    temp_dir : Path
        Run-scoped scratch directory; every temp file is removed after use.
    config : dict[str, Any]
        Full project configuration.
    """

    def __init__(self, http: HttpClient, temp_dir: Path, config: dict[str, Any]) -> None:
        self._http = http
        self._temp_dir = temp_dir
        self._config = config
        documents = config.get("documents", {})
        self._min_bytes = int(documents.get("min_pdf_bytes", 1000))
        ocr_config = config.get("ocr", {})
        self._ocr_min_chars = int(ocr_config.get("min_text_chars", 50))
        self._ocr_min_bytes = int(ocr_config.get("min_bytes_for_ocr", 10 * 1024))

    async def retrieve(self, ref: DocumentRef) -> ExtractedDocument:
        """Download ``ref`` and return its validated text layer.

        Raises
        ------
        NotAPdfError, TruncatedDocumentError
            When content sniffing rejects the body.
        FetchTimeoutError
            When the download exceeds the document timeout.
        MalformedResponseError
            On redirect loops or undecodable bodies.
        TransientFetchError
            On transport errors, 429 or 5xx.
        """
        data = await self._http.fetch_document(ref.url)
        return await self.process_bytes(ref, data)

    async def process_bytes(self, ref: DocumentRef, data: bytes) -> ExtractedDocument:
        """Validate an already-downloaded body and extract its text."""
        try:
            span = locate_pdf_span(data, self._min_bytes)
        except DocumentRetrievalError as e:
            e.url = ref.url
            logger.warning(
                "Rejected %s (%s): %s bytes, %%PDF=%s, %%%%EOF=%s",
                ref.url,
                e.reason,
                len(data),
                PDF_START in data,
                PDF_END in data,
            )
            raise
        return await asyncio.to_thread(self._extract_span, ref, span)

    def _extract_span(self, ref: DocumentRef, span: bytes) -> ExtractedDocument:
        self._temp_dir.mkdir(parents=True, exist_ok=True)
        pdf_path = self._temp_dir / f"doc_{uuid.uuid4().hex}.pdf"
        try:
            pdf_path.write_bytes(span)
            try:
                layer = read_text_layer(pdf_path)
            except Exception as e:
                msg = f"Unreadable PDF from {ref.url}: {e}"
                raise DocumentRetrievalError(msg, url=ref.url, byte_size=len(span)) from e

            document = ExtractedDocument(
                ref=ref,
                text=layer.text,
                page_count=layer.page_count,
                byte_size=len(span),
                metadata=layer.metadata,
            )

            if needs_ocr(layer.text, len(span), self._ocr_min_chars, self._ocr_min_bytes):
                logger.info("Text layer nearly empty for %s, running OCR", ref.url)
                result = recover_text(pdf_path, self._temp_dir, self._config)
                if result.success:
                    document.text = result.text
                    document.ocr_used = True
                    document.ocr_provider = result.provider
                else:
                    logger.warning("OCR failed for %s: %s", ref.url, result.error)

            return document
        finally:
            pdf_path.unlink(missing_ok=True)

    async def fetch_filing_via_page_action(self, org_id: str, year: int) -> PageActionResult:
        """Ask the entity page's server action for one year's filing.

        The action answers either with JSON (figures embedded) or with the
        filing PDF inside a framing envelope.

        Returns
        -------
        PageActionResult
            Empty when the action is disabled, unconfigured or answers with
            an error status.
        """
        source = self._config.get("sources", {}).get("virksomhet", {})
        action_id = source.get("next_action_id")
        if not source.get("use_page_action", True) or not action_id:
            return PageActionResult()

        page_url = f"{source['base_url'].rstrip('/')}/{org_id}"
        response = await self._http.request(
            "POST",
            page_url,
            kind="page_action",
            headers={
                "Accept": "application/json, text/x-component, */*",
                "Content-Type": "text/plain;charset=UTF-8",
                "Next-Action": action_id,
                "Origin": source.get("origin", "https://virksomhet.brreg.no"),
                "Referer": page_url,
            },
            content=json.dumps([org_id, str(year)]),
        )
        if response.status_code != 200:
            logger.debug("[%s] Page action for %s answered %s", org_id, year, response.status_code)
            return PageActionResult()

        body = response.content
        for record in _json_records(body):
            figures = _first_figures(record)
            if figures is not None:
                logger.info("[%s] Page action returned figures for %s", org_id, year)
                return PageActionResult(figures=figures, raw={"pageAction": record})

        if PDF_START not in body:
            return PageActionResult()

        ref = DocumentRef(
            title=f"Årsregnskap {year}",
            url=f"{page_url}#arsregnskap-{year}",
            media_type="application/pdf",
        )
        document = await self.process_bytes(ref, body)
        return PageActionResult(document=document)


def _json_records(body: bytes) -> list[Any]:
    """Decode a JSON body, or the JSON rows of a ``text/x-component`` stream."""
    if body.lstrip().startswith(PDF_START):
        return []
    text = body.decode("utf-8", errors="replace")
    try:
        return [json.loads(text)]
    except json.JSONDecodeError:
        pass

    records: list[Any] = []
    for line in text.splitlines():
        # Flight rows look like ``1:{...}``
        _, sep, payload = line.partition(":")
        if not sep or not payload.lstrip().startswith(("{", "[")):
            continue
        try:
            records.append(json.loads(payload))
        except json.JSONDecodeError:
            continue
    return records


def _first_figures(value: Any) -> FinancialFigures | None:
    stack = [value]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            figures = extract_figures_from_payload(current)
            if not figures.is_empty:
                return figures
            stack.extend(current.values())
        elif isinstance(current, list):
            stack.extend(current)
    return None
