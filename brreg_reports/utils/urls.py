"""Helpers for validating and resolving document hrefs."""

from __future__ import annotations

from urllib.parse import urljoin, urlsplit

_PLACEHOLDER_PREFIXES = ("#", "javascript:", "about:")


def is_placeholder_url(url: str | None) -> bool:
    """Return True for empty, ``#``, ``javascript:`` and ``about:`` hrefs."""
    if not url:
        return True
    normalized = url.strip().lower()
    return not normalized or normalized.startswith(_PLACEHOLDER_PREFIXES)


def normalize_document_url(raw_url: str | None, base_origin: str) -> str | None:
    """Resolve ``raw_url`` against ``base_origin``.

    Parameters
    ----------
    raw_url
        Href as found in markup or a JSON payload.
    base_origin
        Scheme + host used for relative hrefs (e.g. ``https://example.test``).

    Returns
    -------
    str | None
        Absolute ``http(s)`` URL, or ``None`` for placeholders and
        non-web schemes.
    """
    if is_placeholder_url(raw_url):
        return None

    trimmed = raw_url.strip()  # type: ignore[union-attr]
    if trimmed.startswith("//"):
        resolved = f"https:{trimmed}"
    else:
        resolved = urljoin(base_origin.rstrip("/") + "/", trimmed)

    if urlsplit(resolved).scheme not in ("http", "https"):
        return None
    return resolved


def is_likely_pdf_url(url: str | None) -> bool:
    """Return True when the href names a PDF rather than an information page."""
    if is_placeholder_url(url):
        return False
    return ".pdf" in url.strip().lower()  # type: ignore[union-attr]


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for ``url``."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"
