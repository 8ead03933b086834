"""Body-text strategy: last-resort heuristics over the whole served page.

Used when the page has no recognizable annual-report section. Three
heuristics run in order and the first one to claim a year keeps it:

1. PDF anchors whose text mentions (innsendt) årsregnskap; the year comes
   from the nearest surrounding text holding one, latest year wins.
2. Elements whose own text mentions "innsendt årsregnskap" and a year, with
   a PDF anchor inside them.
3. Year headings whose next sibling holds a submitted-report anchor.

Only ``.pdf`` targets are accepted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from bs4 import Tag

from brreg_reports.config import setup_logging
from brreg_reports.models import DocumentRef, ReportCandidate, SourceTag
from brreg_reports.strategies.dom import (
    collect_pdf_links,
    element_text,
    find_year_near,
    mentions_annual_report,
    mentions_submitted_report,
    parse_html,
    years_in_text,
)
from brreg_reports.utils.urls import is_likely_pdf_url

if TYPE_CHECKING:
    from bs4 import BeautifulSoup

    from brreg_reports.pipeline.context import WorkerContext

logger = setup_logging(__name__)

YEAR_HEADING_TAGS = ("h3", "h4", "strong", "b")


def _pdf_ref(anchor: Tag, base_origin: str) -> DocumentRef | None:
    href = anchor.get("href")
    if not isinstance(href, str) or not is_likely_pdf_url(href):
        return None
    return DocumentRef.from_href(href, base_origin)


def _from_link_text(soup: BeautifulSoup, base_origin: str, found: dict[int, DocumentRef]) -> None:
    for anchor, ref in collect_pdf_links(soup, base_origin):
        if not mentions_annual_report(element_text(anchor)):
            continue
        year = find_year_near(anchor, latest=True)
        if year is not None and year not in found:
            found[year] = ref


def _from_element_search(soup: BeautifulSoup, base_origin: str, found: dict[int, DocumentRef]) -> None:
    # Innermost elements first, so a page-wide wrapper never claims a year
    for element in reversed(soup.find_all(True)):
        if element.name in ("html", "body", "a"):
            continue
        text = element_text(element)
        if not mentions_submitted_report(text):
            continue
        years = years_in_text(text)
        if not years or years[0] in found:
            continue
        anchor = element.find("a", href=True)
        ref = _pdf_ref(anchor, base_origin) if anchor is not None else None
        if ref is not None:
            found[years[0]] = ref


def _from_heading_links(soup: BeautifulSoup, base_origin: str, found: dict[int, DocumentRef]) -> None:
    for heading in soup.find_all(YEAR_HEADING_TAGS):
        years = years_in_text(element_text(heading))
        if not years or years[0] in found:
            continue
        sibling = heading.find_next_sibling()
        if not isinstance(sibling, Tag):
            continue
        for anchor in sibling.find_all("a", href=True):
            if mentions_submitted_report(element_text(anchor)):
                ref = _pdf_ref(anchor, base_origin)
                if ref is not None:
                    found[years[0]] = ref
                break


def candidates_from_body_text(
    soup: BeautifulSoup,
    base_origin: str,
    tag: SourceTag = SourceTag.BODY_TEXT,
) -> list[ReportCandidate]:
    """Run the three heuristics and return one candidate per year, newest first."""
    found: dict[int, DocumentRef] = {}
    _from_link_text(soup, base_origin, found)
    _from_element_search(soup, base_origin, found)
    _from_heading_links(soup, base_origin, found)
    return [
        ReportCandidate(year=year, source=tag, documents=[ref], raw={"url": ref.url})
        for year, ref in sorted(found.items(), reverse=True)
    ]


class BodyTextStrategy:
    """Heuristic link and year search over the whole served page."""

    tag = SourceTag.BODY_TEXT

    async def discover(self, org_id: str, ctx: WorkerContext) -> list[ReportCandidate]:
        html = await ctx.entity_page(org_id)
        if not html:
            return []
        candidates = candidates_from_body_text(parse_html(html), ctx.base_origin, self.tag)
        logger.info("[%s] Body-text heuristics yielded %s filings", org_id, len(candidates))
        return candidates
