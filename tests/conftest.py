"""Pytest configuration for brreg_reports tests.

This module provides:
- Settings with rate limits, retry delays and size floors relaxed for tests
- A PDF factory (PyMuPDF) for text-layer and scanned-looking documents
- A SQLite-backed report store under ``tmp_path``
- A factory for ``httpx.MockTransport`` routes keyed by URL path
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any

import fitz
import httpx
import pytest

from brreg_reports.config import load_settings
from brreg_reports.writer.report_store import ReportStore

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


@pytest.fixture
def settings() -> dict[str, Any]:
    """Project settings without delays; page action disabled unless a test enables it."""
    return load_settings({
        "http": {"min_request_interval_seconds": 0},
        "retry": {"max_attempts": 2, "base_delay_seconds": 0, "max_delay_seconds": 0},
        "documents": {"min_pdf_bytes": 100},
        "ocr": {
            "min_bytes_for_ocr": 0,
            "providers": ["tesseract"],
            "retry": {"max_attempts": 1, "base_delay_seconds": 0, "max_delay_seconds": 0},
        },
        "sources": {"virksomhet": {"use_page_action": False}},
        "pipeline": {"max_workers": 2},
    })


@pytest.fixture
def make_pdf() -> Callable[..., bytes]:
    """Return a factory for single-page PDFs, blank when ``text`` is empty."""

    def factory(text: str = "") -> bytes:
        with fitz.open() as doc:
            page = doc.new_page()
            if text:
                page.insert_text((72, 72), text, fontsize=12)
            return doc.tobytes()

    return factory


@pytest.fixture
def store(tmp_path: Path) -> Iterator[ReportStore]:
    """SQLite report store with its table created."""
    report_store = ReportStore(f"sqlite:///{tmp_path / 'reports.db'}")
    report_store.ensure_table()
    yield report_store
    report_store.dispose()


@pytest.fixture
def mock_transport() -> Callable[[dict[tuple[str, str], Any]], httpx.MockTransport]:
    """Return a factory for transports answering ``(method, url-without-query)`` routes.

    Route values are ``httpx.Response`` objects or callables taking the
    request. Unknown routes answer 404.
    """

    def build(routes: dict[tuple[str, str], Any]) -> httpx.MockTransport:
        return httpx.MockTransport(functools.partial(_route, routes))

    return build


def _route(routes: dict[tuple[str, str], Any], request: httpx.Request) -> httpx.Response:
    key = (request.method, f"{request.url.scheme}://{request.url.host}{request.url.path}")
    route = routes.get(key)
    if route is None:
        return httpx.Response(404)
    if callable(route):
        return route(request)
    # Fresh response per request; a route may be hit many times
    return httpx.Response(route.status_code, headers=route.headers, content=route.content)
