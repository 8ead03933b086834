"""Extractor module: PDF text layer, OCR fallback and figure extraction.

Key exports:
    extract_figures: Locate net result, sales revenue and total income in text
    extract_figures_from_payload: Read the same figures from structured records
    read_text_layer: pdfplumber text layer with page count and metadata
    recover_text: Rasterize page one and OCR it (Tesseract, then Mistral)
"""

from brreg_reports.extractor.figures import (
    ExtractionRules,
    Figure,
    extract_figure,
    extract_figures,
    extract_figures_from_payload,
)
from brreg_reports.extractor.ocr_fallback import OcrResult, needs_ocr, recover_text
from brreg_reports.extractor.ocr_mistral import ocr_with_mistral
from brreg_reports.extractor.pdf_parser import PdfTextLayer, read_text_layer

__all__ = [
    "ExtractionRules",
    "Figure",
    # OCR
    "OcrResult",
    # PDF
    "PdfTextLayer",
    "extract_figure",
    # Figures
    "extract_figures",
    "extract_figures_from_payload",
    "needs_ocr",
    "ocr_with_mistral",
    "read_text_layer",
    "recover_text",
]
