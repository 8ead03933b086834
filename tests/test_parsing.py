"""Tests for number, year, id and URL helpers and the shared data model.

Tests cover:
1. Norwegian-locale numeral parsing (grouping, parentheses, signs)
2. Year parsing and the valid-year window
3. Organization id normalization and diacritic folding
4. Document URL resolution and placeholder rejection
5. Data model invariants (source strength, document de-duplication)
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

import pytest

from brreg_reports.models import (
    DocumentRef,
    ExtractedDocument,
    FinancialFigures,
    ReportCandidate,
    SourceTag,
)
from brreg_reports.utils.parsing import (
    fold_diacritics,
    is_valid_year,
    label_regex,
    normalize_organization_id,
    parse_localized_number,
    parse_year,
)
from brreg_reports.utils.urls import (
    is_likely_pdf_url,
    is_placeholder_url,
    normalize_document_url,
    origin_of,
)

BASE = "https://virksomhet.brreg.no"

# =============================================================================
# Numbers
# =============================================================================


class TestParseLocalizedNumber:
    """Tests for parse_localized_number."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("348 197", 348197),
            ("(348 197)", -348197),
            ("1.234.567", 1234567),
            ("348,197", 348197),
            ("-62 982", -62982),
            ("−5 000", -5000),
            ("348\u00a0197", 348197),
            ("12\u202f500", 12500),
            ("0", 0),
        ],
    )
    def test_grouped_numerals(self, raw: str, expected: int) -> None:
        """Grouping separators are dropped and the sign is honoured."""
        assert parse_localized_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", None, "abc", "12a", "( )", "-"])
    def test_unparseable_returns_none(self, raw: str | None) -> None:
        """Anything without a clean digit run is absent, never an error."""
        assert parse_localized_number(raw) is None

    def test_implausible_magnitude_rejected(self) -> None:
        """More than fifteen significant digits is not an amount."""
        assert parse_localized_number("1" * 16) is None
        assert parse_localized_number("1" * 15) == int("1" * 15)


# =============================================================================
# Years and ids
# =============================================================================


class TestYears:
    """Tests for parse_year and is_valid_year."""

    def test_parse_year_from_int_and_dates(self) -> None:
        """Integers pass through; dates yield their year."""
        assert parse_year(2023) == 2023
        assert parse_year(2023.0) == 2023
        assert parse_year("2023-12-31") == 2023
        assert parse_year("Regnskap for 2021") == 2021

    def test_parse_year_rejects_non_years(self) -> None:
        """Booleans and year-free text give None."""
        assert parse_year(True) is None
        assert parse_year("ingen år") is None
        assert parse_year(None) is None

    def test_valid_year_window(self) -> None:
        """Years run from 1990 through next year."""
        now = datetime(2024, 6, 1, tzinfo=UTC)
        assert not is_valid_year(1989, now)
        assert is_valid_year(1990, now)
        assert is_valid_year(2025, now)
        assert not is_valid_year(2026, now)
        assert not is_valid_year(None, now)


class TestOrganizationIds:
    """Tests for normalize_organization_id and fold_diacritics."""

    def test_strips_spacing(self) -> None:
        """Formatted organization numbers collapse to digits."""
        assert normalize_organization_id("910 000 001") == "910000001"
        assert normalize_organization_id(910000001) == "910000001"

    def test_rejects_digitless_input(self) -> None:
        """An id without digits cannot be processed."""
        with pytest.raises(ValueError, match="no digits"):
            normalize_organization_id("abc")

    def test_fold_diacritics(self) -> None:
        """Norwegian letters fold to their ASCII spelling."""
        assert fold_diacritics("Årsregnskap") == "arsregnskap"
        assert fold_diacritics("Ærlig Øl") == "aerlig ol"

    def test_label_regex_tolerates_spelling(self) -> None:
        """Labels match with or without diacritics and with extra spaces."""
        pattern = re.compile(label_regex("årsresultat"), re.IGNORECASE)
        assert pattern.fullmatch("Årsresultat")
        assert pattern.fullmatch("Aarsresultat")
        assert pattern.fullmatch("arsresultat")
        assert re.fullmatch(label_regex("sum driftsinntekter"), "sum  driftsinntekter")


# =============================================================================
# URLs
# =============================================================================


class TestUrls:
    """Tests for document URL helpers."""

    @pytest.mark.parametrize("href", [None, "", "  ", "#", "#arsregnskap", "javascript:void(0)", "about:blank"])
    def test_placeholders(self, href: str | None) -> None:
        """Empty, fragment, javascript and about hrefs are placeholders."""
        assert is_placeholder_url(href)
        assert normalize_document_url(href, BASE) is None

    def test_relative_href_resolved_against_origin(self) -> None:
        """Relative hrefs resolve against the page origin."""
        assert normalize_document_url("/filer/2023.pdf", BASE) == f"{BASE}/filer/2023.pdf"
        assert normalize_document_url("filer/2023.pdf", BASE) == f"{BASE}/filer/2023.pdf"

    def test_protocol_relative_and_absolute(self) -> None:
        """Protocol-relative hrefs get https; absolute hrefs are kept."""
        assert normalize_document_url("//cdn.example.test/a.pdf", BASE) == "https://cdn.example.test/a.pdf"
        assert normalize_document_url("https://other.test/a.pdf", BASE) == "https://other.test/a.pdf"

    def test_non_web_scheme_rejected(self) -> None:
        """mailto and similar schemes are not documents."""
        assert normalize_document_url("mailto:post@example.test", BASE) is None

    def test_pdf_detection_and_origin(self) -> None:
        """PDF detection is case-insensitive; origin drops path and query."""
        assert is_likely_pdf_url("https://x.test/Arsregnskap.PDF")
        assert not is_likely_pdf_url("https://x.test/info")
        assert origin_of("https://data.brreg.no/a/b?c=1") == "https://data.brreg.no"


# =============================================================================
# Data model
# =============================================================================


class TestModels:
    """Tests for the shared data model."""

    def test_source_strength_follows_priority(self) -> None:
        """Each source outranks every later one."""
        strengths = [tag.strength for tag in SourceTag]
        assert strengths == sorted(strengths, reverse=True)
        assert SourceTag.API.strength > SourceTag.BODY_TEXT.strength

    def test_document_ref_requires_absolute_url(self) -> None:
        """Placeholders and relative URLs never become DocumentRefs."""
        with pytest.raises(ValueError, match="absolute URL"):
            DocumentRef(title="x", url="#")
        with pytest.raises(ValueError, match="absolute URL"):
            DocumentRef(title="x", url="/relative.pdf")
        assert DocumentRef.from_href("#", BASE) is None

    def test_document_ref_payload(self) -> None:
        """Payload carries title, url, type and size."""
        ref = DocumentRef.from_href("/a.pdf", BASE, title="  Årsregnskap 2023 ", media_type="pdf", size=2048)
        assert ref is not None
        assert ref.to_payload() == {
            "title": "Årsregnskap 2023",
            "url": f"{BASE}/a.pdf",
            "type": "pdf",
            "size": 2048,
        }

    def test_candidate_deduplicates_documents(self) -> None:
        """A URL is listed once per candidate."""
        candidate = ReportCandidate(year=2023, source=SourceTag.STATIC_DOM)
        ref = DocumentRef(title="a", url=f"{BASE}/a.pdf")
        assert candidate.add_document(ref)
        assert not candidate.add_document(DocumentRef(title="again", url=f"{BASE}/a.pdf"))
        assert len(candidate.documents) == 1

    def test_embedded_figures_flag(self) -> None:
        """Empty figures do not count as embedded."""
        candidate = ReportCandidate(year=2023, source=SourceTag.API, figures=FinancialFigures())
        assert not candidate.has_embedded_figures
        candidate.figures = FinancialFigures(net_result=500000)
        assert candidate.has_embedded_figures

    def test_figures_merge_and_payload(self) -> None:
        """Merging fills gaps only; payload omits absent figures."""
        merged = FinancialFigures(net_result=1).merged_with(FinancialFigures(net_result=2, total_income=3))
        assert merged == FinancialFigures(net_result=1, total_income=3)
        assert merged.to_payload() == {"netResult": 1, "totalIncome": 3}
        assert FinancialFigures().is_empty

    def test_extracted_document_payload(self) -> None:
        """Extracted documents add the text layer and OCR provider."""
        document = ExtractedDocument(
            ref=DocumentRef(title="a", url=f"{BASE}/a.pdf"),
            text="Årsresultat 120 000",
            page_count=1,
            byte_size=20000,
            ocr_used=True,
            ocr_provider="tesseract",
        )
        payload = document.to_payload()
        assert payload["pdfText"] == "Årsresultat 120 000"
        assert payload["pdfPageCount"] == 1
        assert payload["ocr"] == "tesseract"
