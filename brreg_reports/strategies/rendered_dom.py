"""Rendered-DOM strategy: run the entity page in a headless browser.

Some filings only appear after client-side rendering, after a collapsed
"Årsregnskap" section is expanded, or after a year toggle is clicked. Others
are never rendered as anchors at all and are fetched by script; those are
caught by listening to network responses while the page runs.

The browser is checked out of the pool for the duration of one discovery
and is always returned, even when navigation fails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from brreg_reports.config import setup_logging
from brreg_reports.errors import TransientFetchError
from brreg_reports.models import DocumentRef, ReportCandidate, SourceTag
from brreg_reports.strategies.dom import bare_year, mentions_annual_report, parse_html, years_in_text
from brreg_reports.strategies.embedded import candidates_from_next_data
from brreg_reports.strategies.static_dom import candidates_from_sections
from brreg_reports.utils.urls import is_likely_pdf_url

if TYPE_CHECKING:
    from playwright.async_api import Page, Response

    from brreg_reports.pipeline.context import WorkerContext

logger = setup_logging(__name__)

ANCESTOR_DEPTH = 5

# Collects every anchor with the texts around it, nearest scope first
_ANCHOR_SCRIPT = """
(anchors, depth) => anchors.map((a) => {
  const context = [];
  let node = a;
  for (let level = 0; node && level < depth; level += 1) {
    let sibling = node.previousElementSibling;
    for (let i = 0; sibling && i < 3; i += 1) {
      context.push((sibling.innerText || sibling.textContent || '').slice(0, 300));
      sibling = sibling.previousElementSibling;
    }
    node = node.parentElement;
    if (node) {
      context.push((node.innerText || node.textContent || '').slice(0, 1000));
    }
  }
  return { href: a.href, text: (a.innerText || a.textContent || '').trim(), context };
})
"""


def is_pdf_response(url: str, content_type: str | None) -> bool:
    return is_likely_pdf_url(url) or "application/pdf" in (content_type or "").lower()


def candidates_from_anchors(
    anchors: list[dict[str, Any]],
    base_origin: str,
    tag: SourceTag = SourceTag.RENDERED_DOM,
) -> list[ReportCandidate]:
    """Map rendered anchors to candidates; the nearest scope with a year decides."""
    by_year: dict[int, ReportCandidate] = {}
    for anchor in anchors:
        href = anchor.get("href")
        if not isinstance(href, str) or not is_likely_pdf_url(href):
            continue
        text = anchor.get("text") or ""
        year = None
        for scope in [text, *anchor.get("context", [])]:
            years = years_in_text(scope)
            if years:
                year = years[0]
                break
        if year is None:
            continue
        ref = DocumentRef.from_href(href, base_origin, title=text or "Innsendt årsregnskap")
        if ref is None:
            continue
        candidate = by_year.setdefault(year, ReportCandidate(year=year, source=tag, raw={"anchors": []}))
        candidate.add_document(ref)
        candidate.raw["anchors"].append({"href": ref.url, "text": text})
    return list(by_year.values())


def candidates_from_intercepted(
    urls: list[str],
    base_origin: str,
    tag: SourceTag = SourceTag.RENDERED_DOM,
) -> list[ReportCandidate]:
    """Candidates for document URLs seen in flight whose URL names a year."""
    candidates: dict[int, ReportCandidate] = {}
    for url in urls:
        years = years_in_text(url)
        if not years:
            continue
        year = years[-1]
        ref = DocumentRef.from_href(url, base_origin, title=f"Årsregnskap {year}", media_type="application/pdf")
        if ref is None:
            continue
        candidate = candidates.setdefault(year, ReportCandidate(year=year, source=tag, raw={"intercepted": []}))
        candidate.add_document(ref)
        candidate.raw["intercepted"].append(url)
    return list(candidates.values())


async def _expand_sections(page: Page) -> None:
    """Click collapsed controls that mention årsregnskap or regnskap."""
    toggles = page.locator("button, summary, [role=button], [aria-expanded=false]")
    for index in range(await toggles.count()):
        toggle = toggles.nth(index)
        try:
            label = await toggle.inner_text(timeout=1000)
        except PlaywrightError:
            continue
        if mentions_annual_report(label) or "regnskap" in label.lower():
            try:
                await toggle.click(timeout=2000)
            except PlaywrightError as e:
                logger.debug("Could not expand %r: %s", label[:40], e)


async def _click_year_toggles(page: Page) -> None:
    """Click controls whose whole label is a year (per-year accordions)."""
    toggles = page.locator("button, summary, [role=button]")
    for index in range(await toggles.count()):
        toggle = toggles.nth(index)
        try:
            label = await toggle.inner_text(timeout=1000)
        except PlaywrightError:
            continue
        if bare_year(label) is not None:
            try:
                await toggle.click(timeout=2000)
            except PlaywrightError as e:
                logger.debug("Could not click year toggle %s: %s", label.strip(), e)


class RenderedDomStrategy:
    """Render the entity page and harvest document links and in-flight PDFs."""

    tag = SourceTag.RENDERED_DOM

    async def discover(self, org_id: str, ctx: WorkerContext) -> list[ReportCandidate]:
        if ctx.browser_pool is None:
            logger.debug("[%s] Browser disabled, skipping rendered DOM", org_id)
            return []

        browser_config = ctx.config.get("browser", {})
        navigation_timeout = int(browser_config.get("navigation_timeout_ms", 60000))
        settle_delay = int(browser_config.get("settle_delay_ms", 2000))
        url = ctx.entity_page_url(org_id)
        intercepted: list[str] = []

        def on_response(response: Response) -> None:
            if is_pdf_response(response.url, response.headers.get("content-type")):
                intercepted.append(response.url)

        try:
            async with ctx.browser_pool.acquire() as page:
                page.on("response", on_response)
                response = await page.goto(url, wait_until="networkidle", timeout=navigation_timeout)
                if response is not None and response.status == 404:
                    return []

                await _expand_sections(page)
                await _click_year_toggles(page)
                await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
                await page.wait_for_timeout(settle_delay)

                anchors = await page.eval_on_selector_all("a[href]", _ANCHOR_SCRIPT, ANCESTOR_DEPTH)
                html = await page.content()
        except PlaywrightTimeoutError as e:
            msg = f"Rendering timed out for {url}: {e}"
            raise TransientFetchError(msg, url=url) from e
        except PlaywrightError as e:
            logger.error("[%s] Browser failure on %s: %s", org_id, url, e)
            return []

        candidates = candidates_from_anchors(anchors, ctx.base_origin, self.tag)
        if not candidates:
            soup = parse_html(html)
            candidates = candidates_from_next_data(soup, ctx.base_origin, self.tag) or candidates_from_sections(
                soup, ctx.base_origin, self.tag
            )

        known = {doc.url for candidate in candidates for doc in candidate.documents}
        extra = candidates_from_intercepted([u for u in intercepted if u not in known], ctx.base_origin, self.tag)
        candidates.extend(extra)

        logger.info(
            "[%s] Rendered DOM yielded %s filings (%s intercepted PDFs)",
            org_id,
            len(candidates),
            len(intercepted),
        )
        return candidates
