"""Label-anchored extraction of financial figures from free text.

The text comes from a PDF text layer or OCR output, so table columns are
flattened into lines and numbers use Norwegian digit grouping. Three passes
run in order of decreasing confidence:

1. Whole-text patterns: label, optional colon, then a numeral run.
2. Line scan: the label line first, then up to N following lines. Lines
   before the label are never consulted (they belong to the previous table
   section).
3. Proximity: any large numeral shortly after a label occurrence.

A miss returns ``None``; it is an expected outcome, not an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from brreg_reports.config import setup_logging
from brreg_reports.models import FinancialFigures
from brreg_reports.utils.parsing import label_regex, parse_localized_number

logger = setup_logging(__name__)

__all__ = [
    "DEFAULT_THRESHOLDS",
    "FIGURE_LABELS",
    "ExtractionRules",
    "Figure",
    "extract_figure",
    "extract_figures",
    "extract_figures_from_payload",
]


class Figure(StrEnum):
    """Target figure names."""

    NET_RESULT = "net_result"
    SALES_REVENUE = "sales_revenue"
    TOTAL_INCOME = "total_income"


# Ordered: more specific labels first
FIGURE_LABELS: dict[Figure, tuple[str, ...]] = {
    Figure.NET_RESULT: (
        "årsresultat",
        "årsresultatet er",
        "resultat for året",
        "årets resultat",
        "nettoresultat",
    ),
    Figure.SALES_REVENUE: (
        "salgsinntekter totalt",
        "salgsinntekter",
        "salgsinntekt",
    ),
    Figure.TOTAL_INCOME: (
        "sum driftsinntekter",
        "driftsinntekter totalt",
        "sum inntekter",
        "totale inntekter",
    ),
}

DEFAULT_THRESHOLDS: dict[Figure, int] = {
    Figure.NET_RESULT: 100,
    Figure.SALES_REVENUE: 1000,
    Figure.TOTAL_INCOME: 1000,
}

# Paths into structured API / server-action records
_PAYLOAD_PATHS: dict[Figure, tuple[tuple[str, ...], ...]] = {
    Figure.NET_RESULT: (
        ("resultatregnskapResultat", "aarsresultat"),
        ("aarsresultat",),
        ("resultat", "aarsresultat"),
        ("regnskap", "resultat", "aarsresultat"),
        ("figures", "netResult"),
    ),
    Figure.SALES_REVENUE: (
        ("resultatregnskapResultat", "driftsresultat", "driftsinntekter", "salgsinntekter"),
        ("resultatregnskapResultat", "driftsresultat", "driftsinntekter", "salgsinntekt"),
        ("salgsinntekter",),
        ("figures", "salesRevenue"),
    ),
    Figure.TOTAL_INCOME: (
        ("resultatregnskapResultat", "driftsresultat", "driftsinntekter", "sumDriftsinntekter"),
        ("sumDriftsinntekter",),
        ("figures", "totalIncome"),
    ),
}

_GROUP_SEP = r"[ \u00a0\u202f.,]"
NUMERAL_PATTERN = (
    r"(?:\(\s*\d{1,3}(?:" + _GROUP_SEP + r"\d{3})*\s*\)"
    r"|\(\s*\d+\s*\)"
    r"|[-−]?\d{1,3}(?:" + _GROUP_SEP + r"\d{3})+(?!\d)"
    r"|[-−]?\d+)"
)
_NUMERAL_RE = re.compile(NUMERAL_PATTERN)
_BARE_YEAR_RE = re.compile(r"(?:19|20)\d{2}")


@dataclass
class ExtractionRules:
    """Thresholds and search windows for figure extraction.

    Attributes
    ----------
    thresholds : dict[Figure, int]
        Minimum absolute value accepted per figure in passes 1 and 2.
    following_lines : int
        Lines after a label line searched in pass 2.
    proximity_threshold : int
        Minimum absolute value accepted in pass 3.
    proximity_window : int
        Characters after a label searched in pass 3.
    """

    thresholds: dict[Figure, int] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    following_lines: int = 4
    proximity_threshold: int = 100_000
    proximity_window: int = 200

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ExtractionRules:
        """Build rules from the ``extraction`` section of ``config.json``."""
        section = config.get("extraction", {})
        thresholds = dict(DEFAULT_THRESHOLDS)
        for name, value in section.get("thresholds", {}).items():
            thresholds[Figure(name)] = int(value)
        return cls(
            thresholds=thresholds,
            following_lines=int(section.get("following_lines", 4)),
            proximity_threshold=int(section.get("proximity_threshold", 100_000)),
            proximity_window=int(section.get("proximity_window_chars", 200)),
        )


def _label_re(figure: Figure) -> list[re.Pattern[str]]:
    return [
        re.compile(r"(?<!\w)" + label_regex(label) + r"(?!\w)", re.IGNORECASE)
        for label in FIGURE_LABELS[figure]
    ]


_LABEL_RES: dict[Figure, list[re.Pattern[str]]] = {figure: _label_re(figure) for figure in Figure}
_ANCHORED_RES: dict[Figure, list[re.Pattern[str]]] = {
    figure: [
        re.compile(
            r"(?<!\w)" + label_regex(label) + r"[ \t]*:?[ \t]*\n?[ \t]*(" + NUMERAL_PATTERN + r")",
            re.IGNORECASE,
        )
        for label in FIGURE_LABELS[figure]
    ]
    for figure in Figure
}


def _is_year_token(token: str) -> bool:
    """Bare four-digit years next to labels are column headers, not amounts."""
    stripped = token.strip()
    return bool(_BARE_YEAR_RE.fullmatch(stripped)) and 1990 <= int(stripped) <= 2100


def _first_plausible(text: str, threshold: int) -> int | None:
    for match in _NUMERAL_RE.finditer(text):
        token = match.group(0)
        if _is_year_token(token):
            continue
        value = parse_localized_number(token)
        if value is not None and abs(value) > threshold:
            return value
    return None


def _anchored_pass(text: str, figure: Figure, threshold: int) -> int | None:
    for pattern in _ANCHORED_RES[figure]:
        for match in pattern.finditer(text):
            token = match.group(1)
            if _is_year_token(token):
                continue
            value = parse_localized_number(token)
            if value is not None and abs(value) > threshold:
                return value
    return None


def _line_scan_pass(text: str, figure: Figure, threshold: int, following_lines: int) -> int | None:
    lines = text.splitlines()
    for index, line in enumerate(lines):
        label_match = None
        for pattern in _LABEL_RES[figure]:
            label_match = pattern.search(line)
            if label_match:
                break
        if label_match is None:
            continue

        # Label line first (only after the label), then the following lines
        value = _first_plausible(line[label_match.end():], threshold)
        if value is not None:
            return value
        for follower in lines[index + 1 : index + 1 + following_lines]:
            value = _first_plausible(follower, threshold)
            if value is not None:
                return value
    return None


def _proximity_pass(text: str, figure: Figure, threshold: int, window: int) -> int | None:
    for pattern in _LABEL_RES[figure]:
        for match in pattern.finditer(text):
            value = _first_plausible(text[match.end() : match.end() + window], threshold)
            if value is not None:
                return value
    return None


def extract_figure(
    text: str | None,
    figure: Figure | str,
    rules: ExtractionRules | None = None,
) -> int | None:
    """Find one named figure in free text.

    Parameters
    ----------
    text : str | None
        Full document text (text layer or OCR output).
    figure : Figure | str
        ``net_result``, ``sales_revenue`` or ``total_income``.
    rules : ExtractionRules | None, optional
        Thresholds and windows; defaults apply when omitted.

    Returns
    -------
    int | None
        The figure, or ``None`` when no pass produced a plausible value.
    """
    if not text:
        return None
    figure = Figure(figure)
    rules = rules or ExtractionRules()
    threshold = rules.thresholds.get(figure, DEFAULT_THRESHOLDS[figure])

    value = _anchored_pass(text, figure, threshold)
    if value is not None:
        logger.debug("%s matched label pattern: %s", figure, value)
        return value

    value = _line_scan_pass(text, figure, threshold, rules.following_lines)
    if value is not None:
        logger.debug("%s matched line scan: %s", figure, value)
        return value

    value = _proximity_pass(text, figure, rules.proximity_threshold, rules.proximity_window)
    if value is not None:
        logger.debug("%s matched proximity pass (low confidence): %s", figure, value)
    return value


def extract_figures(text: str | None, rules: ExtractionRules | None = None) -> FinancialFigures:
    """Run :func:`extract_figure` for all three figures."""
    return FinancialFigures(
        net_result=extract_figure(text, Figure.NET_RESULT, rules),
        sales_revenue=extract_figure(text, Figure.SALES_REVENUE, rules),
        total_income=extract_figure(text, Figure.TOTAL_INCOME, rules),
    )


def _coerce_amount(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return round(value)
    if isinstance(value, str):
        return parse_localized_number(value)
    return None


def _lookup(record: dict[str, Any], path: tuple[str, ...]) -> Any:
    value: Any = record
    for key in path:
        if not isinstance(value, dict) or key not in value:
            return None
        value = value[key]
    return value


def extract_figures_from_payload(record: dict[str, Any] | None) -> FinancialFigures:
    """Read figures embedded in a structured API or server-action record.

    Parameters
    ----------
    record : dict[str, Any] | None
        One filing as returned by Regnskapsregisteret.

    Returns
    -------
    FinancialFigures
        Figures found at the known paths; empty when none are present.
    """
    figures = FinancialFigures()
    if not isinstance(record, dict):
        return figures

    found: dict[Figure, int | None] = {}
    for figure, paths in _PAYLOAD_PATHS.items():
        found[figure] = None
        for path in paths:
            amount = _coerce_amount(_lookup(record, path))
            if amount is not None:
                found[figure] = amount
                break

    figures.net_result = found[Figure.NET_RESULT]
    figures.sales_revenue = found[Figure.SALES_REVENUE]
    figures.total_income = found[Figure.TOTAL_INCOME]
    return figures
