"""Environment validation tests for brreg-reports."""

import sys

import pytest


def test_python_version() -> None:
    """Verify Python version is 3.12 or higher."""
    assert sys.version_info >= (3, 12), f"Python 3.12+ required, got {sys.version}"


def test_core_imports() -> None:
    """Verify core packages can be imported."""
    import bs4  # noqa: F401
    import fitz  # noqa: F401
    import httpx  # noqa: F401
    import lxml  # noqa: F401
    import pdfplumber  # noqa: F401
    import sqlalchemy  # noqa: F401


def test_ocr_imports() -> None:
    """Verify OCR packages can be imported."""
    import pytesseract  # noqa: F401
    from mistralai import Mistral  # noqa: F401
    from PIL import Image  # noqa: F401


def test_playwright_import() -> None:
    """Verify Playwright can be imported."""
    from playwright.async_api import async_playwright  # noqa: F401


def test_project_structure() -> None:
    """Verify project module structure."""
    from brreg_reports import __version__
    from brreg_reports.config import PROJECT_ROOT

    assert __version__ == "0.1.0"
    assert PROJECT_ROOT.exists()


def test_config_loads() -> None:
    """Verify config.json can be loaded."""
    from brreg_reports.config import get_config

    config = get_config()
    assert "sources" in config
    assert "ocr" in config
    assert "extraction" in config


def test_directories_exist() -> None:
    """Verify log and temp directories exist."""
    from brreg_reports.config import LOGS_DIR, TEMP_DIR

    assert LOGS_DIR.exists()
    assert TEMP_DIR.exists()


@pytest.mark.skipif(
    not __import__("os").getenv("MISTRAL_API_KEY"),
    reason="MISTRAL_API_KEY not set",
)
def test_mistral_client_creation() -> None:
    """Verify Mistral client can be created (requires API key)."""
    from brreg_reports.config import get_mistral_client

    client = get_mistral_client()
    assert client is not None
