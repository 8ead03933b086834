"""Utility helpers for numbers, years, organization ids and document URLs."""

from brreg_reports.utils.parsing import (
    normalize_organization_id,
    parse_localized_number,
    parse_year,
)
from brreg_reports.utils.urls import is_likely_pdf_url, is_placeholder_url, normalize_document_url

__all__ = [
    "is_likely_pdf_url",
    "is_placeholder_url",
    "normalize_document_url",
    "normalize_organization_id",
    "parse_localized_number",
    "parse_year",
]
