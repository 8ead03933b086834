"""Mistral OCR provider for rasterized report pages.

Scanned annual reports are rasterized to PNG before they reach this module,
so only image inputs are supported. The call goes through the synchronous
Mistral SDK and returns a plain result dict so the fallback chain can treat
every provider alike.
"""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

from brreg_reports.config import get_mistral_client, setup_logging

logger = setup_logging(__name__)

OCR_MODEL = "mistral-ocr-latest"

DEFAULT_PROMPT = """Extract all text from this page of a Norwegian annual report.
Keep each table row on its own line with the label first and the amounts after it.
Include all numbers exactly as shown, including spaces and parentheses."""

_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


def ocr_with_mistral(image_path: Path, prompt: str | None = None) -> dict[str, Any]:
    """Extract text from a page image using the Mistral OCR model.

    Parameters
    ----------
    image_path
        PNG or JPEG produced by the rasterizer.
    prompt
        Custom instruction replacing :data:`DEFAULT_PROMPT`.

    Returns
    -------
    dict[str, Any]
        ``success`` flag, ``content`` string and provider metadata, or an
        ``error`` string when the call failed.

    Raises
    ------
    ValueError
        If ``MISTRAL_API_KEY`` is not configured.
    """
    client = get_mistral_client()
    content = _prepare_image_content(image_path)

    messages = [
        {
            "role": "user",
            "content": [
                content,
                {"type": "text", "text": prompt or DEFAULT_PROMPT},
            ],
        },
    ]

    logger.info("Calling Mistral OCR for: %s", image_path.name)

    try:
        response = client.chat.complete(model=OCR_MODEL, messages=messages)
        result: dict[str, Any] = {
            "success": True,
            "provider": "mistral",
            "model": OCR_MODEL,
            "content": response.choices[0].message.content or "",
        }
        if response.usage is not None:
            logger.debug(
                "Tokens used: %s + %s",
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )
    except Exception as e:
        logger.warning("Mistral OCR failed: %s", e)
        result = {
            "success": False,
            "provider": "mistral",
            "model": OCR_MODEL,
            "error": str(e),
        }

    return result


def _prepare_image_content(image_path: Path, default_mime: str = "image/png") -> dict[str, Any]:
    """Encode an image file as the ``image_url`` entry of a chat message."""
    mime_type = _MIME_TYPES.get(Path(image_path).suffix.lower(), default_mime)
    with Path(image_path).open("rb") as f:
        encoded = base64.standard_b64encode(f.read()).decode("utf-8")
    return {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}}
