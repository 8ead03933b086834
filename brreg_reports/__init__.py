"""brreg-reports: annual report figures from Brønnøysundregistrene.

The package discovers filed annual reports for Norwegian organizations,
downloads and validates the PDFs, recovers text by OCR when a PDF has no
text layer, extracts net result, sales revenue and total income, and
upserts one row per organization and year.

Architecture
------------
* ``strategies``: Five discovery sources in priority order (regnskap API,
  embedded ``__NEXT_DATA__`` payload, static DOM, Playwright-rendered DOM,
  free body text).
* ``scraper``: httpx client with per-host rate limiting, Playwright browser
  pool, regnskap API client and the PDF document retriever.
* ``extractor``: pdfplumber text layer, Tesseract/Mistral OCR fallback and
  the localized figure extractor.
* ``pipeline``: Run context, retry policy, candidate merge and orchestrator.
* ``writer``: SQLAlchemy report store (Postgres via psycopg, SQLite in tests).

Configuration and credentials
-----------------------------
Settings live in ``config/config.json``. ``DATABASE_URL`` selects the report
store; ``MISTRAL_API_KEY`` enables the Mistral OCR provider. ``LOGS_DIR`` and
``TEMP_DIR`` override the default directories.

Examples
--------
Scrape two organizations:

    >>> python -m brreg_reports.main scrape 923609016 914778271

Drop rows without a usable document:

    >>> python -m brreg_reports.main cleanup
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
