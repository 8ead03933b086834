"""Tests for the five discovery strategies.

Tests cover:
1. Regnskap API records (shapes, years, nested document links, echoes)
2. Embedded ``__NEXT_DATA__`` payloads
3. The static annual-report section
4. Body-text heuristics on pages without a section
5. Rendered-DOM anchor and network-capture mapping
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from brreg_reports.errors import TransientFetchError
from brreg_reports.models import SourceTag
from brreg_reports.pipeline.context import PipelineContext
from brreg_reports.scraper.regnskap_api import (
    candidate_records,
    record_documents,
    record_journal_id,
    record_year,
)
from brreg_reports.strategies import (
    BodyTextStrategy,
    EmbeddedPayloadStrategy,
    RenderedDomStrategy,
    StaticDomStrategy,
    StructuredApiStrategy,
)
from brreg_reports.strategies.body_text import candidates_from_body_text
from brreg_reports.strategies.dom import collect_pdf_links, find_year_near, parse_html
from brreg_reports.strategies.embedded import candidates_from_next_data
from brreg_reports.strategies.rendered_dom import (
    candidates_from_anchors,
    candidates_from_intercepted,
    is_pdf_response,
)
from brreg_reports.strategies.static_dom import candidates_from_sections

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

ORG_ID = "910000001"
BASE = "https://virksomhet.brreg.no"
ENTITY_PAGE = f"{BASE}/nb/oppslag/enheter/{ORG_ID}"
API_URL = f"https://data.brreg.no/regnskapsregisteret/regnskap/{ORG_ID}"
ENTITY_API_URL = f"https://data.brreg.no/enhetsregisteret/api/enheter/{ORG_ID}"

SECTION_PAGE = """
<html><body><main>
<section>
  <h2>Årsregnskap</h2>
  <h3>2023</h3>
  <dl><dt>Driftsinntekter</dt><dd>1 234 567</dd></dl>
  <a href="/regnskap/910000001/2023.pdf">Innsendt årsregnskap</a>
  <h3>2022</h3>
  <table><tr><td>Årsresultat</td><td>98 000</td></tr></table>
  <a href="#">Innsendt årsregnskap</a>
</section>
</main></body></html>
"""

BODY_TEXT_PAGE = """
<html><body>
<p>Regnskap for 2022: <a href="/filer/910000001-2022.pdf">Innsendt årsregnskap</a></p>
<h4>2021</h4>
<div><a href="/filer/910000001-2021.pdf">Innsendt årsregnskap</a></div>
<p>Kontakt oss på <a href="/kontakt">kontaktsiden</a></p>
</body></html>
"""


def _next_data_page(payload: dict[str, Any]) -> str:
    return (
        '<html><body><div id="__next"></div>'
        f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(payload)}</script>'
        "</body></html>"
    )


NEXT_DATA_PAGE = _next_data_page({
    "props": {
        "pageProps": {
            "enhet": {"navn": "Eksempel AS"},
            "regnskap": [
                {
                    "year": 2023,
                    "documents": [
                        {"title": "Årsregnskap 2023", "url": "/filer/2023.pdf"},
                        {"title": "Revisjonsberetning", "url": "/info/revisjon"},
                    ],
                    "summary": {"valuta": "NOK"},
                },
                {"år": "2022", "documents": [], "aarsresultat": 75000},
                {"år": "2021", "documents": []},
            ],
        }
    }
})


# =============================================================================
# Regnskap API
# =============================================================================


class TestRegnskapRecords:
    """Tests for API record normalization helpers."""

    def test_record_shapes(self) -> None:
        """Bare objects, lists and ``regnskap`` wrappers all flatten."""
        assert candidate_records({"id": 1}) == [{"id": 1}]
        assert candidate_records([{"id": 1}, {}, "x"]) == [{"id": 1}]
        assert candidate_records({"regnskap": [{"id": 2}]}) == [{"id": 2}]
        assert candidate_records(None) == []

    def test_record_year_precedence(self) -> None:
        """Explicit year keys beat the period; the requested year is last."""
        assert record_year({"regnskapsår": 2022, "regnskapsperiode": {"tilDato": "2023-12-31"}}) == 2022
        assert record_year({"regnskapsperiode": {"tilDato": "2023-12-31"}}) == 2023
        assert record_year({}, fallback_year=2020) == 2020
        assert record_journal_id({"journalnr": 2023123}) == "2023123"

    def test_nested_document_links(self) -> None:
        """Links nested under ``lenker`` are flattened and de-duplicated."""
        record = {
            "dokumenter": [
                {
                    "tittel": "Årsregnskap",
                    "lenker": [
                        {"href": "/regnskap/1.pdf", "type": "application/pdf", "storrelse": "12 345"},
                        {"href": "#"},
                    ],
                },
                {"url": "https://data.brreg.no/regnskap/1.pdf"},
            ]
        }
        documents = record_documents(record, "https://data.brreg.no")
        assert [doc.url for doc in documents] == ["https://data.brreg.no/regnskap/1.pdf"]
        assert documents[0].title == "Årsregnskap"
        assert documents[0].size == 12345


class TestStructuredApiStrategy:
    """Tests for StructuredApiStrategy.discover."""

    async def test_echoes_collapse_to_one_filing(
        self,
        settings: dict[str, Any],
        mock_transport: Callable[..., Any],
        tmp_path: Path,
    ) -> None:
        """The same filing echoed for every requested year is one candidate."""
        record = {
            "id": 12345,
            "valuta": "NOK",
            "regnskapsperiode": {"fraDato": "2023-01-01", "tilDato": "2023-12-31"},
            "resultatregnskapResultat": {"aarsresultat": 500000},
        }
        requested: list[str] = []

        def api(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, json=[record])

        transport = mock_transport({
            ("GET", ENTITY_API_URL): httpx.Response(200, json={"stiftelsesdato": "2021-03-01"}),
            ("GET", API_URL): api,
        })
        async with PipelineContext(settings, use_browser=False, transport=transport, temp_root=tmp_path) as ctx:
            candidates = await StructuredApiStrategy().discover(ORG_ID, ctx.worker())

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.year == 2023
        assert candidate.source is SourceTag.API
        assert candidate.journal_id == "12345"
        assert candidate.figures is not None
        assert candidate.figures.net_result == 500000
        assert candidate.summary["valuta"] == "NOK"
        assert len(requested) > 2

    async def test_unknown_organization(
        self,
        settings: dict[str, Any],
        mock_transport: Callable[..., Any],
        tmp_path: Path,
    ) -> None:
        """404 everywhere is absence: an empty list."""
        async with PipelineContext(
            settings, use_browser=False, transport=mock_transport({}), temp_root=tmp_path
        ) as ctx:
            assert await StructuredApiStrategy().discover(ORG_ID, ctx.worker()) == []

    async def test_all_queries_transient(
        self,
        settings: dict[str, Any],
        mock_transport: Callable[..., Any],
        tmp_path: Path,
    ) -> None:
        """When every query fails transiently the error reaches the retry policy."""
        transport = mock_transport({
            ("GET", ENTITY_API_URL): httpx.Response(503),
            ("GET", API_URL): httpx.Response(503),
        })
        async with PipelineContext(settings, use_browser=False, transport=transport, temp_root=tmp_path) as ctx:
            with pytest.raises(TransientFetchError):
                await StructuredApiStrategy().discover(ORG_ID, ctx.worker())


# =============================================================================
# Served-page strategies
# =============================================================================


class TestEmbeddedPayload:
    """Tests for the ``__NEXT_DATA__`` strategy."""

    def test_statements_mapped(self) -> None:
        """Statement objects with PDFs or figures become candidates."""
        candidates = candidates_from_next_data(parse_html(NEXT_DATA_PAGE), BASE)
        by_year = {candidate.year: candidate for candidate in candidates}

        assert set(by_year) == {2023, 2022}
        assert [doc.url for doc in by_year[2023].documents] == [f"{BASE}/filer/2023.pdf"]
        assert by_year[2023].summary == {"valuta": "NOK"}
        assert by_year[2022].documents == []
        assert by_year[2022].figures is not None
        assert by_year[2022].figures.net_result == 75000
        assert all(candidate.source is SourceTag.EMBEDDED_PAYLOAD for candidate in candidates)

    def test_missing_or_broken_payload(self) -> None:
        """No script, or invalid JSON, yields nothing."""
        assert candidates_from_next_data(parse_html(SECTION_PAGE), BASE) == []
        broken = '<script id="__NEXT_DATA__">{not json</script>'
        assert candidates_from_next_data(parse_html(broken), BASE) == []


class TestStaticDom:
    """Tests for the annual-report section strategy."""

    def test_year_blocks(self) -> None:
        """Each year header opens a block with its own summary and link."""
        candidates = candidates_from_sections(parse_html(SECTION_PAGE), BASE)
        by_year = {candidate.year: candidate for candidate in candidates}

        assert set(by_year) == {2023, 2022}
        assert [doc.url for doc in by_year[2023].documents] == [f"{BASE}/regnskap/910000001/2023.pdf"]
        assert by_year[2023].summary == {"Driftsinntekter": "1 234 567"}
        assert by_year[2022].documents == []
        assert by_year[2022].summary == {"Årsresultat": "98 000"}

    def test_page_without_section(self) -> None:
        """Pages without an annual-report heading have no section."""
        assert candidates_from_sections(parse_html(BODY_TEXT_PAGE), BASE) == []


class TestBodyText:
    """Tests for the whole-page heuristics."""

    def test_heuristics_find_both_years(self) -> None:
        """Link text and year headings both resolve, newest first."""
        candidates = candidates_from_body_text(parse_html(BODY_TEXT_PAGE), BASE)
        assert [(c.year, c.documents[0].url) for c in candidates] == [
            (2022, f"{BASE}/filer/910000001-2022.pdf"),
            (2021, f"{BASE}/filer/910000001-2021.pdf"),
        ]
        assert all(candidate.source is SourceTag.BODY_TEXT for candidate in candidates)

    def test_non_pdf_links_ignored(self) -> None:
        """Information pages are never accepted as documents."""
        html = '<p>Årsregnskap 2020 <a href="/info/arsregnskap">Innsendt årsregnskap</a></p>'
        assert candidates_from_body_text(parse_html(html), BASE) == []

    def test_link_year_from_nearest_scope(self) -> None:
        """A year in the link text beats an older heading further out."""
        html = (
            '<div><h4>2020</h4><div><a href="/filer/2020.pdf">Innsendt årsregnskap</a></div>'
            '<div><a href="/filer/2021.pdf">Årsregnskap 2021</a></div></div>'
        )
        candidates = candidates_from_body_text(parse_html(html), BASE)
        assert [(c.year, c.documents[0].url) for c in candidates] == [
            (2021, f"{BASE}/filer/2021.pdf"),
            (2020, f"{BASE}/filer/2020.pdf"),
        ]

    def test_find_year_near_prefers_nearest_scope(self) -> None:
        """The anchor's own block wins over outer text."""
        soup = parse_html("<div>2019 <section><p>2021</p><a href='/x.pdf'>PDF</a></section></div>")
        anchor = soup.find("a")
        assert find_year_near(anchor) == 2021

    def test_collect_pdf_links(self) -> None:
        """PDF anchors resolve against the origin, once per URL, in page order."""
        links = collect_pdf_links(parse_html(BODY_TEXT_PAGE + '<a href="/filer/910000001-2022.pdf">igjen</a>'), BASE)
        assert [ref.url for _, ref in links] == [
            f"{BASE}/filer/910000001-2022.pdf",
            f"{BASE}/filer/910000001-2021.pdf",
        ]
        assert links[0][1].title == "Innsendt årsregnskap"


class TestServedPageStrategies:
    """Tests for the strategies that read the cached entity page."""

    async def test_entity_page_fetched_once(
        self,
        settings: dict[str, Any],
        mock_transport: Callable[..., Any],
        tmp_path: Path,
    ) -> None:
        """Three strategies share one download of the entity page."""
        hits: list[int] = []

        def page(request: httpx.Request) -> httpx.Response:
            hits.append(1)
            return httpx.Response(200, text=SECTION_PAGE)

        transport = mock_transport({("GET", ENTITY_PAGE): page})
        async with PipelineContext(settings, use_browser=False, transport=transport, temp_root=tmp_path) as ctx:
            worker = ctx.worker()
            embedded = await EmbeddedPayloadStrategy().discover(ORG_ID, worker)
            static = await StaticDomStrategy().discover(ORG_ID, worker)
            body = await BodyTextStrategy().discover(ORG_ID, worker)

        assert embedded == []
        assert {candidate.year for candidate in static} == {2023, 2022}
        assert all(candidate.source is SourceTag.STATIC_DOM for candidate in static)
        assert body
        assert hits == [1]

    async def test_missing_entity_page(
        self,
        settings: dict[str, Any],
        mock_transport: Callable[..., Any],
        tmp_path: Path,
    ) -> None:
        """A 404 entity page means no candidates."""
        async with PipelineContext(
            settings, use_browser=False, transport=mock_transport({}), temp_root=tmp_path
        ) as ctx:
            assert await StaticDomStrategy().discover(ORG_ID, ctx.worker()) == []


# =============================================================================
# Rendered DOM
# =============================================================================


class TestRenderedDom:
    """Tests for the pure parts of the rendered-DOM strategy."""

    def test_anchor_context_resolves_year(self) -> None:
        """The nearest context string with a year decides."""
        anchors = [
            {"href": f"{BASE}/filer/a.pdf", "text": "Innsendt årsregnskap", "context": ["2023", "2022 2023"]},
            {"href": f"{BASE}/filer/b.pdf", "text": "Årsregnskap 2021", "context": ["2023"]},
            {"href": f"{BASE}/info", "text": "Om 2020", "context": []},
            {"href": f"{BASE}/filer/c.pdf", "text": "Uten år", "context": ["ingen"]},
        ]
        candidates = candidates_from_anchors(anchors, BASE)
        by_year = {candidate.year: candidate for candidate in candidates}

        assert set(by_year) == {2023, 2021}
        assert by_year[2023].documents[0].url == f"{BASE}/filer/a.pdf"
        assert by_year[2021].documents[0].url == f"{BASE}/filer/b.pdf"
        assert by_year[2023].source is SourceTag.RENDERED_DOM

    def test_intercepted_documents(self) -> None:
        """PDFs seen in flight are kept when their URL names a year."""
        candidates = candidates_from_intercepted(
            [f"{BASE}/api/dokument/910000001/2022/arsregnskap.pdf", f"{BASE}/api/dokument/blob.pdf"],
            BASE,
        )
        assert [candidate.year for candidate in candidates] == [2022]
        assert candidates[0].documents[0].media_type == "application/pdf"

    def test_pdf_response_detection(self) -> None:
        """Responses count as PDFs by URL or content type."""
        assert is_pdf_response(f"{BASE}/x.pdf", None)
        assert is_pdf_response(f"{BASE}/download?id=1", "application/pdf; charset=binary")
        assert not is_pdf_response(f"{BASE}/page", "text/html")

    async def test_disabled_browser(self, settings: dict[str, Any], tmp_path: Path) -> None:
        """Without a browser pool the strategy yields nothing."""
        async with PipelineContext(settings, use_browser=False, temp_root=tmp_path) as ctx:
            assert await RenderedDomStrategy().discover(ORG_ID, ctx.worker()) == []
