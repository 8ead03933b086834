"""OCR fallback for scanned (image-only) annual reports.

A PDF whose text layer is nearly empty while the file itself is large is
almost certainly a scan. Page 1 is rasterized with PyMuPDF and sent through
a provider chain: local Tesseract first, then Mistral OCR when an API key is
configured. Each provider is retried with exponential backoff. OCR failure
is never fatal; the caller simply ends up without figures for that document.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import fitz
import pytesseract
from PIL import Image

from brreg_reports.config import get_config, setup_logging, validate_api_keys
from brreg_reports.extractor.ocr_mistral import ocr_with_mistral

logger = setup_logging(__name__)

__all__ = ["OcrResult", "needs_ocr", "ocr_with_tesseract", "rasterize_first_page", "recover_text"]


@dataclass
class OcrResult:
    """Outcome of the OCR provider chain."""

    success: bool
    text: str = ""
    provider: str | None = None
    error: str | None = None
    attempts: list[dict[str, Any]] = field(default_factory=list)


def needs_ocr(
    text: str | None,
    byte_size: int,
    min_text_chars: int = 50,
    min_bytes: int = 10 * 1024,
) -> bool:
    """Return True when a PDF looks scanned.

    Parameters
    ----------
    text : str | None
        Extracted text layer.
    byte_size : int
        Size of the validated PDF span.
    min_text_chars : int, optional
        Stripped text shorter than this counts as missing.
    min_bytes : int, optional
        Files at or below this size are too small to be worth rasterizing.

    Returns
    -------
    bool
        ``True`` if the text layer is nearly empty and the file is large.
    """
    return len((text or "").strip()) < min_text_chars and byte_size > min_bytes


def rasterize_first_page(pdf_path: Path, output_dir: Path, dpi: int = 300) -> Path:
    """Render page 1 of ``pdf_path`` to a PNG inside ``output_dir``.

    Raises
    ------
    ValueError
        If the document has no pages.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    image_path = output_dir / f"{pdf_path.stem}_p1_{uuid.uuid4().hex[:8]}.png"

    with fitz.open(pdf_path) as doc:
        if doc.page_count == 0:
            msg = f"PDF has no pages: {pdf_path}"
            raise ValueError(msg)
        pixmap = doc[0].get_pixmap(dpi=dpi, alpha=False)
        try:
            pixmap.save(str(image_path))
        except Exception:
            image_path.unlink(missing_ok=True)
            raise

    logger.debug("Rasterized %s at %s DPI -> %s", pdf_path.name, dpi, image_path.name)
    return image_path


def ocr_with_tesseract(image_path: Path, language: str = "nor") -> dict[str, Any]:
    """Run local Tesseract on a page image.

    Falls back to ``eng`` when the requested language pack is not installed.
    """
    with Image.open(image_path) as image:
        prepared = image if image.mode in {"RGB", "L"} else image.convert("RGB")
        try:
            text = pytesseract.image_to_string(prepared, lang=language)
        except pytesseract.TesseractError as e:
            if language == "eng":
                raise
            logger.warning("Tesseract language '%s' unavailable (%s), falling back to eng", language, e)
            text = pytesseract.image_to_string(prepared, lang="eng")

    if not text.strip():
        return {"success": False, "provider": "tesseract", "error": "Empty OCR output"}
    return {"success": True, "provider": "tesseract", "content": text}


def _attempt_single_ocr(provider: str, image_path: Path, language: str) -> dict[str, Any]:
    """Execute a single OCR attempt for a specific provider."""
    if provider == "tesseract":
        return ocr_with_tesseract(image_path, language)
    if provider == "mistral":
        return ocr_with_mistral(image_path)
    msg = f"Unknown OCR provider: {provider}"
    raise ValueError(msg)


def _run_with_retries(
    provider: str,
    image_path: Path,
    language: str,
    retry_config: dict[str, Any],
    all_attempts: list[dict[str, Any]],
) -> dict[str, Any] | None:
    """Run OCR attempts with exponential backoff retry logic."""
    max_attempts = int(retry_config.get("max_attempts", 2))
    base_delay = float(retry_config.get("base_delay_seconds", 1.0))
    max_delay = float(retry_config.get("max_delay_seconds", 4.0))

    for attempt in range(max_attempts):
        logger.info("OCR attempt %s/%s with %s", attempt + 1, max_attempts, provider)

        try:
            result = _attempt_single_ocr(provider, image_path, language)
            all_attempts.append({key: value for key, value in result.items() if key != "content"})
            if result.get("success"):
                return result
            logger.warning("OCR failed: %s", result.get("error", "Unknown error"))

        except Exception as e:
            logger.warning("OCR exception from %s: %s", provider, e)
            all_attempts.append({
                "success": False,
                "provider": provider,
                "error": str(e),
                "attempt": attempt + 1,
            })

        if attempt < max_attempts - 1:
            delay = min(base_delay * (2**attempt), max_delay)
            logger.debug("Waiting %ss before retry...", delay)
            time.sleep(delay)

    logger.warning("All %s attempts failed for %s", max_attempts, provider)
    return None


def recover_text(
    pdf_path: Path,
    temp_dir: Path,
    config: dict[str, Any] | None = None,
) -> OcrResult:
    """Recover text from a scanned PDF through the provider chain.

    Parameters
    ----------
    pdf_path : Path
        Validated PDF on disk.
    temp_dir : Path
        Scratch directory for the raster image; the image is always removed.
    config : dict[str, Any] | None, optional
        Full project configuration; ``get_config()`` when omitted.

    Returns
    -------
    OcrResult
        ``success=False`` with an ``error`` when every provider failed.
    """
    ocr_config = (config or get_config()).get("ocr", {})
    retry_config = ocr_config.get("retry", {})
    language = ocr_config.get("language", "nor")

    keys = validate_api_keys()
    providers = [
        provider
        for provider in ocr_config.get("providers", ["tesseract", "mistral"])
        if provider != "mistral" or keys["mistral"]
    ]

    all_attempts: list[dict[str, Any]] = []
    image_path: Path | None = None
    try:
        image_path = rasterize_first_page(pdf_path, temp_dir, dpi=int(ocr_config.get("dpi", 300)))

        for provider in providers:
            result = _run_with_retries(provider, image_path, language, retry_config, all_attempts)
            if result:
                logger.info("OCR recovered %s characters via %s", len(result["content"]), provider)
                return OcrResult(
                    success=True,
                    text=result["content"],
                    provider=provider,
                    attempts=all_attempts,
                )

    except Exception as e:
        logger.warning("OCR rasterization failed for %s: %s", pdf_path.name, e)
        return OcrResult(success=False, error=str(e), attempts=all_attempts)

    finally:
        if image_path is not None:
            image_path.unlink(missing_ok=True)

    logger.error("All OCR providers failed for %s", pdf_path.name)
    return OcrResult(
        success=False,
        error="All OCR providers failed after maximum retries",
        attempts=all_attempts,
    )
