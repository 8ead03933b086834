"""Shared parsing utilities for Norwegian-locale numbers, years, and labels.

Norwegian annual reports group digits with spaces (``348 197``), though
periods and commas also appear (``1.234.567``, ``348,197``). Negative
amounts are usually written in parentheses (``(348 197)``).
"""

from __future__ import annotations

import logging
import re
import unicodedata
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

MIN_YEAR = 1990
MAX_DIGITS = 15

# Whitespace variants seen in PDF text layers: regular, NBSP, narrow NBSP, thin space
_GROUP_SEPARATORS = re.compile(r"[\s.,\u00a0\u202f\u2009]")
_DIGIT_RUN = re.compile(r"[0-9]+")
_YEAR_IN_TEXT = re.compile(r"(?<!\d)(?:19|20)\d{2}(?!\d)")
_NEGATIVE_SIGNS = ("-", "−", "–")

_FOLD_MAP = str.maketrans({"å": "a", "æ": "ae", "ø": "o"})


def parse_localized_number(value_str: str | None) -> int | None:
    """Parse a grouped numeral substring into a signed integer.

    Examples
    --------
    - "348 197" -> 348197
    - "(348 197)" -> -348197
    - "1.234.567" -> 1234567
    - "-62 982" -> -62982
    - "" -> None
    - "abc" -> None

    Parameters
    ----------
    value_str
        Substring believed to contain a signed magnitude.

    Returns
    -------
    int | None
        Parsed value, or ``None`` when no plausible digit run is present.
        Never raises.
    """
    if not value_str:
        return None

    cleaned = value_str.strip()
    is_negative = False

    # Parenthesised amounts are negative in Norwegian statements
    if len(cleaned) >= 2 and cleaned.startswith("(") and cleaned.endswith(")"):
        is_negative = True
        cleaned = cleaned[1:-1]
    elif cleaned.startswith(_NEGATIVE_SIGNS):
        is_negative = True
        cleaned = cleaned[1:]

    digits = _GROUP_SEPARATORS.sub("", cleaned)
    if not digits or not _DIGIT_RUN.fullmatch(digits):
        return None

    if len(digits.lstrip("0")) > MAX_DIGITS:
        logger.debug("Rejecting implausible magnitude: %s", value_str)
        return None

    result = int(digits)
    return -result if is_negative else result


def parse_year(value: object) -> int | None:
    """Pull a four-digit year out of an int or a date-like string.

    Parameters
    ----------
    value
        Integer year, ISO date (``"2023-12-31"``), or free text.

    Returns
    -------
    int | None
        The year, or ``None`` when nothing year-like is present.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        match = _YEAR_IN_TEXT.search(value)
        if match:
            return int(match.group(0))
    return None


def is_valid_year(year: int | None, now: datetime | None = None) -> bool:
    """Return True when ``year`` lies in ``[1990, current_year + 1]``."""
    if year is None:
        return False
    current_year = (now or datetime.now(UTC)).year
    return MIN_YEAR <= year <= current_year + 1


def normalize_organization_id(value: str | int) -> str:
    """Strip everything but digits from an organization number.

    Raises
    ------
    ValueError
        If no digits remain.
    """
    digits = re.sub(r"\D+", "", str(value))
    if not digits:
        msg = f"Organization id has no digits: {value!r}"
        raise ValueError(msg)
    return digits


def fold_diacritics(text: str) -> str:
    """Lowercase and fold Norwegian letters for tolerant substring checks.

    ``"Årsregnskap"`` and ``"arsregnskap"`` fold to the same string.
    """
    lowered = text.lower().translate(_FOLD_MAP)
    decomposed = unicodedata.normalize("NFKD", lowered)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def label_regex(label: str) -> str:
    """Build a diacritic-tolerant regex fragment for a Norwegian label.

    Examples
    --------
    - "årsresultat" matches "Årsresultat", "arsresultat", "aarsresultat"
    - "sum driftsinntekter" matches "Sum  driftsinntekter"
    """
    parts: list[str] = []
    for ch in label.lower():
        if ch == "å":
            parts.append("(?:å|aa|a)")
        elif ch == "ø":
            parts.append("(?:ø|oe|o)")
        elif ch == "æ":
            parts.append("(?:æ|ae)")
        elif ch.isspace():
            parts.append(r"\s+")
        else:
            parts.append(re.escape(ch))
    return "".join(parts)
