"""BeautifulSoup helpers shared by the HTML-based strategies."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from bs4 import BeautifulSoup, Tag

from brreg_reports.models import DocumentRef
from brreg_reports.utils.parsing import fold_diacritics, is_valid_year
from brreg_reports.utils.urls import is_likely_pdf_url

if TYPE_CHECKING:
    from collections.abc import Iterator

_YEAR_RE = re.compile(r"(?<!\d)(?:19|20)\d{2}(?!\d)")
_BARE_YEAR_RE = re.compile(r"\s*((?:19|20)\d{2})\s*")

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def years_in_text(text: str | None) -> list[int]:
    """Valid years in ``text``, in order of appearance."""
    if not text:
        return []
    return [year for year in (int(m.group(0)) for m in _YEAR_RE.finditer(text)) if is_valid_year(year)]


def bare_year(text: str | None) -> int | None:
    """Return the year when ``text`` is nothing but a year (a year toggle or header)."""
    if not text:
        return None
    match = _BARE_YEAR_RE.fullmatch(text)
    if match is None:
        return None
    year = int(match.group(1))
    return year if is_valid_year(year) else None


def mentions_annual_report(text: str | None) -> bool:
    """True for ``årsregnskap`` in any spelling (``arsregnskap``, ``aarsregnskap``)."""
    folded = fold_diacritics(text or "")
    return "arsregnskap" in folded or "aarsregnskap" in folded


def mentions_submitted_report(text: str | None) -> bool:
    folded = fold_diacritics(text or "")
    return "innsendt" in folded and mentions_annual_report(text)


def element_text(element: Tag) -> str:
    return element.get_text(" ", strip=True)


def collect_pdf_links(root: Tag, base_origin: str) -> list[tuple[Tag, DocumentRef]]:
    """Anchors under ``root`` whose href names a PDF.

    Returns
    -------
    list[tuple[Tag, DocumentRef]]
        Anchor and resolved reference, in document order, de-duplicated by
        URL.
    """
    found: list[tuple[Tag, DocumentRef]] = []
    seen: set[str] = set()
    for anchor in root.find_all("a", href=True):
        href = anchor.get("href")
        if not isinstance(href, str) or not is_likely_pdf_url(href):
            continue
        ref = DocumentRef.from_href(href, base_origin, title=element_text(anchor) or "Årsregnskap")
        if ref is None or ref.url in seen:
            continue
        seen.add(ref.url)
        found.append((anchor, ref))
    return found


def iter_context(element: Tag, max_depth: int = 5) -> Iterator[str]:
    """Yield texts around ``element``, nearest first.

    Order: the element itself, its previous siblings (closest first), then
    each ancestor up to ``max_depth`` levels with that ancestor's previous
    siblings.
    """
    yield element_text(element)
    current: Tag | None = element
    for _ in range(max_depth):
        if current is None:
            break
        for sibling in current.find_previous_siblings(limit=3):
            if isinstance(sibling, Tag):
                yield element_text(sibling)
        parent = current.parent
        if not isinstance(parent, Tag) or parent.name in ("body", "html", "[document]"):
            break
        yield element_text(parent)
        current = parent


def find_year_near(element: Tag, max_depth: int = 5, latest: bool = False) -> int | None:
    """Find the year nearest to ``element`` in its surrounding text.

    Parameters
    ----------
    element : Tag
        Usually a document anchor.
    max_depth : int, optional
        Ancestor levels to climb.
    latest : bool, optional
        When a scope holds several years, take the highest instead of the
        first one.

    Returns
    -------
    int | None
        First scope (nearest first) containing a valid year decides.
    """
    for text in iter_context(element, max_depth):
        years = years_in_text(text)
        if years:
            return max(years) if latest else years[0]
    return None
