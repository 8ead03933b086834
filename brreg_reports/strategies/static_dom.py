"""Static DOM strategy: the annual-report section of the served markup.

Expected layout (simplified)::

    <section>
      <h2>Årsregnskap</h2>
      <h3>2023</h3>
      <dl><dt>Driftsinntekter</dt><dd>1 234 567</dd></dl>
      <a href="/.../2023.pdf">Innsendt årsregnskap</a>
      <h3>2022</h3>
      ...
    </section>

Each year header opens a block that runs until the next year header. The
block's ``dt``/``dd`` pairs and two-column table rows become the summary and
its submitted-report link becomes the document.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from bs4 import Tag

from brreg_reports.config import setup_logging
from brreg_reports.models import DocumentRef, ReportCandidate, SourceTag
from brreg_reports.strategies.dom import (
    element_text,
    mentions_annual_report,
    mentions_submitted_report,
    parse_html,
    years_in_text,
)
from brreg_reports.utils.urls import is_likely_pdf_url

if TYPE_CHECKING:
    from collections.abc import Iterator

    from bs4 import BeautifulSoup

    from brreg_reports.pipeline.context import WorkerContext

logger = setup_logging(__name__)

YEAR_HEADER_TAGS = ("h3", "h4", "strong")


def find_annual_report_section(soup: BeautifulSoup) -> Tag | None:
    """Locate the container whose heading mentions ``årsregnskap``."""
    for section in soup.find_all("section"):
        heading = section.find(["h2", "h3", "h4"])
        if heading is not None and mentions_annual_report(element_text(heading)):
            return section

    for heading in soup.find_all(["h2", "h3", "h4", "h5"]):
        if mentions_annual_report(element_text(heading)) and isinstance(heading.parent, Tag):
            return heading.parent
    return None


def _year_headers(section: Tag) -> list[tuple[Tag, int]]:
    headers: list[tuple[Tag, int]] = []
    for header in section.find_all(YEAR_HEADER_TAGS):
        years = years_in_text(element_text(header))
        if years:
            headers.append((header, years[0]))
    return headers


def _is_inside(element: Tag, ancestor: Tag) -> bool:
    return any(parent is ancestor for parent in element.parents)


def _block_elements(header: Tag, section: Tag, stops: set[int]) -> Iterator[Tag]:
    """Elements after ``header`` up to the next year header, inside ``section``."""
    for element in header.find_all_next(True):
        if id(element) in stops:
            return
        if not _is_inside(element, section):
            return
        if _is_inside(element, header):
            continue
        yield element


def _read_block(elements: list[Tag]) -> tuple[dict[str, Any], str | None]:
    summary: dict[str, Any] = {}
    link: str | None = None

    for element in elements:
        if element.name == "dt":
            key = element_text(element)
            dd = element.find_next_sibling("dd")
            if key and dd is not None:
                summary[key] = element_text(dd)
        elif element.name == "tr":
            cells = element.find_all(["th", "td"], recursive=False)
            if len(cells) >= 2:
                key = element_text(cells[0])
                if key:
                    summary[key] = element_text(cells[1])
        elif element.name == "a" and link is None:
            href = element.get("href")
            if isinstance(href, str) and (
                mentions_submitted_report(element_text(element)) or is_likely_pdf_url(href)
            ):
                link = href

    return summary, link


def candidates_from_sections(
    soup: BeautifulSoup,
    base_origin: str,
    tag: SourceTag = SourceTag.STATIC_DOM,
) -> list[ReportCandidate]:
    """Map the year blocks of the annual-report section to candidates."""
    section = find_annual_report_section(soup)
    if section is None:
        return []

    headers = _year_headers(section)
    stops = {id(header) for header, _ in headers}
    candidates: list[ReportCandidate] = []
    seen_years: set[int] = set()

    for header, year in headers:
        if year in seen_years:
            continue
        summary, link = _read_block(list(_block_elements(header, section, stops)))
        ref = DocumentRef.from_href(link, base_origin) if link else None
        if ref is None and not summary:
            continue
        seen_years.add(year)
        candidates.append(
            ReportCandidate(
                year=year,
                source=tag,
                documents=[ref] if ref else [],
                raw={"heading": element_text(header)},
                summary=summary,
            )
        )
    return candidates


class StaticDomStrategy:
    """Parse the annual-report section of the served entity page."""

    tag = SourceTag.STATIC_DOM

    async def discover(self, org_id: str, ctx: WorkerContext) -> list[ReportCandidate]:
        html = await ctx.entity_page(org_id)
        if not html:
            return []
        candidates = candidates_from_sections(parse_html(html), ctx.base_origin, self.tag)
        logger.info("[%s] Static DOM yielded %s filings", org_id, len(candidates))
        return candidates
