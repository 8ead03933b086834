"""PDF text-layer extraction using pdfplumber."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pdfplumber

from brreg_reports.config import setup_logging

if TYPE_CHECKING:
    from pathlib import Path

logger = setup_logging(__name__)


@dataclass
class PdfTextLayer:
    """Text layer, page count and document metadata of one PDF."""

    text: str
    page_count: int
    metadata: dict[str, Any] = field(default_factory=dict)


def read_text_layer(file_path: Path) -> PdfTextLayer:
    """Read the full text layer plus page count and metadata.

    Parameters
    ----------
    file_path : Path
        Validated PDF span written to a temp file.

    Returns
    -------
    PdfTextLayer
        Page texts joined with newlines; ``text`` is empty for scanned PDFs.

    Raises
    ------
    FileNotFoundError
        If ``file_path`` does not exist.
    """
    if not file_path.exists():
        msg = f"PDF file not found: {file_path}"
        raise FileNotFoundError(msg)

    with pdfplumber.open(file_path) as pdf:
        page_texts = [page.extract_text() or "" for page in pdf.pages]
        metadata = {key: _plain(value) for key, value in (pdf.metadata or {}).items()}
        layer = PdfTextLayer(
            text="\n".join(page_texts),
            page_count=len(pdf.pages),
            metadata=metadata,
        )

    logger.info("Extracted %s characters from %s pages", len(layer.text), layer.page_count)
    return layer


def _plain(value: Any) -> Any:
    """Make pdfplumber metadata values JSON-serializable."""
    if isinstance(value, bytes):
        return value.decode("latin-1", errors="replace")
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
