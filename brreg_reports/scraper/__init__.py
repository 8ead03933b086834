"""Scraper module: HTTP access, browser pool, regnskap API and PDF retrieval.

- HttpClient: shared httpx connection pool with per-worker host rate limits
- BrowserPool: bounded Playwright browsers for the rendered-DOM strategy
- RegnskapApiClient: structured filings and year bounds
- DocumentRetriever: download, validate and read filed PDFs
"""

from brreg_reports.scraper.browser import BrowserPool, create_browser, create_browser_context
from brreg_reports.scraper.http import HostRateLimiter, HttpClient
from brreg_reports.scraper.regnskap_api import RegnskapApiClient
from brreg_reports.scraper.retriever import DocumentRetriever, PageActionResult, locate_pdf_span

__all__ = [
    "BrowserPool",
    "DocumentRetriever",
    "HostRateLimiter",
    "HttpClient",
    "PageActionResult",
    "RegnskapApiClient",
    "create_browser",
    "create_browser_context",
    "locate_pdf_span",
]
