"""Embedded-payload strategy: filings serialized into ``__NEXT_DATA__``.

The entity page is a Next.js app. When it is server-rendered, the page props
(including the list of filings) are embedded as JSON in
``<script id="__NEXT_DATA__">``. The exact path to the filings changes with
frontend releases, so the payload is walked for any object that has a
``documents`` array and a resolvable year instead of following a fixed path.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from brreg_reports.config import setup_logging
from brreg_reports.extractor.figures import extract_figures_from_payload
from brreg_reports.models import ReportCandidate, SourceTag
from brreg_reports.scraper.regnskap_api import record_documents
from brreg_reports.strategies.dom import parse_html
from brreg_reports.utils.parsing import is_valid_year, parse_year
from brreg_reports.utils.urls import is_likely_pdf_url

if TYPE_CHECKING:
    from bs4 import BeautifulSoup

    from brreg_reports.pipeline.context import WorkerContext

logger = setup_logging(__name__)

STATEMENT_YEAR_FIELDS = ("year", "år", "aar", "ar", "reportingYear", "statementYear", "arsregnskapAar")


def load_next_data(soup: BeautifulSoup) -> Any | None:
    """Return the parsed ``__NEXT_DATA__`` payload, or ``None``."""
    script = soup.find("script", id="__NEXT_DATA__")
    if script is None:
        return None
    raw = script.get_text().strip()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Could not parse __NEXT_DATA__: %s", e)
        return None


def statement_year(obj: dict[str, Any]) -> int | None:
    """Resolve the year of a statement object, looking into ``summary`` last."""
    for key in STATEMENT_YEAR_FIELDS:
        if key in obj:
            year = parse_year(obj[key])
            if year is not None and is_valid_year(year):
                return year
    summary = obj.get("summary")
    if isinstance(summary, dict):
        return statement_year(summary)
    return None


def find_statement_objects(payload: Any) -> list[dict[str, Any]]:
    """Walk ``payload`` iteratively and collect statement-shaped objects.

    A statement object has a ``documents`` list and a resolvable year. Its
    children are not searched further.
    """
    found: list[dict[str, Any]] = []
    stack: list[Any] = [payload]
    while stack:
        value = stack.pop()
        if isinstance(value, list):
            stack.extend(reversed(value))
        elif isinstance(value, dict):
            if isinstance(value.get("documents"), list) and statement_year(value) is not None:
                found.append(value)
                continue
            stack.extend(reversed(list(value.values())))
    return found


def candidates_from_next_data(
    soup: BeautifulSoup,
    base_origin: str,
    tag: SourceTag = SourceTag.EMBEDDED_PAYLOAD,
) -> list[ReportCandidate]:
    """Map embedded statement objects to candidates tagged ``tag``."""
    payload = load_next_data(soup)
    if payload is None:
        return []

    candidates: list[ReportCandidate] = []
    for statement in find_statement_objects(payload):
        year = statement_year(statement)
        documents = [ref for ref in record_documents(statement, base_origin) if is_likely_pdf_url(ref.url)]
        figures = extract_figures_from_payload(statement)
        if not documents and figures.is_empty:
            continue
        summary = statement.get("summary")
        candidates.append(
            ReportCandidate(
                year=year,  # type: ignore[arg-type]
                source=tag,
                documents=documents,
                raw=statement,
                summary=summary if isinstance(summary, dict) else {},
                figures=None if figures.is_empty else figures,
            )
        )
    return candidates


class EmbeddedPayloadStrategy:
    """Read filings from the JSON payload embedded in the served entity page."""

    tag = SourceTag.EMBEDDED_PAYLOAD

    async def discover(self, org_id: str, ctx: WorkerContext) -> list[ReportCandidate]:
        html = await ctx.entity_page(org_id)
        if not html:
            return []
        candidates = candidates_from_next_data(parse_html(html), ctx.base_origin, self.tag)
        logger.info("[%s] Embedded payload yielded %s filings", org_id, len(candidates))
        return candidates
