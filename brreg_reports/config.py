"""Configuration management for brreg-reports.

This module centralizes file-system paths, environment variables, and the
JSON configuration used by the discovery and extraction pipeline.

Configuration file
------------------
* ``config/config.json``: upstream source URLs, HTTP timeouts and rate
  limits, retry policy, year bounds, document limits, extraction thresholds,
  OCR settings, browser pool sizing, worker count and table names.

Environment variables
---------------------
``LOGS_DIR`` and ``TEMP_DIR`` override default directories. ``DATABASE_URL``
names the report store (Postgres in production, SQLite in tests) and
``MISTRAL_API_KEY`` enables the secondary OCR provider. Directories are
created eagerly on import so downstream callers can rely on their existence.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
LOGS_DIR = Path(os.getenv("LOGS_DIR", PROJECT_ROOT / "logs"))
TEMP_DIR = Path(os.getenv("TEMP_DIR", PROJECT_ROOT / "temp"))

# Ensure directories exist
LOGS_DIR.mkdir(parents=True, exist_ok=True)
TEMP_DIR.mkdir(parents=True, exist_ok=True)

# Credentials
DATABASE_URL = os.getenv("DATABASE_URL", "")
MISTRAL_API_KEY = os.getenv("MISTRAL_API_KEY", "")


def get_config() -> dict[str, Any]:
    """Load the primary project configuration.

    Returns
    -------
    dict[str, Any]
        Parsed contents of ``config/config.json``.

    Raises
    ------
    FileNotFoundError
        If ``config/config.json`` is missing.
    json.JSONDecodeError
        If the file exists but is not valid JSON.
    """
    config_path = CONFIG_DIR / "config.json"
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with Path(config_path).open(encoding="utf-8") as f:
        return json.load(f)  # type: ignore[no-any-return]


def load_settings(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return the project configuration with optional overrides applied.

    Parameters
    ----------
    overrides : dict[str, Any] | None, optional
        Nested mapping merged over ``config.json`` (e.g. from CLI flags or
        tests). Only the keys present are replaced.

    Returns
    -------
    dict[str, Any]
        Effective settings for a pipeline run.
    """
    config = get_config()
    if overrides:
        config = _deep_merge(config, overrides)
    return config


def setup_logging(name: str = "brreg_reports") -> logging.Logger:
    """Configure a console+file logger if not already present.

    Parameters
    ----------
    name : str, optional
        Logger namespace; reused to avoid duplicate handlers.

    Returns
    -------
    logging.Logger
        Logger with INFO-level console handler and DEBUG-level daily file
        handler under ``LOGS_DIR``.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_format = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
        console_handler.setFormatter(console_format)
        logger.addHandler(console_handler)

        # File handler
        log_filename = f"{datetime.now(UTC).strftime('%Y-%m-%d')}_run.log"
        file_handler = logging.FileHandler(LOGS_DIR / log_filename, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


def validate_api_keys() -> dict[str, bool]:
    """Report availability of optional credentials.

    Returns
    -------
    dict[str, bool]
        Flags for ``database`` and ``mistral`` indicating whether the
        corresponding environment variables are set.
    """
    return {
        "database": bool(DATABASE_URL),
        "mistral": bool(MISTRAL_API_KEY),
    }


def get_mistral_client() -> Any:
    """Instantiate the synchronous Mistral SDK client.

    Returns
    -------
    mistralai.Mistral
        Client configured with ``MISTRAL_API_KEY``.

    Raises
    ------
    ValueError
        If ``MISTRAL_API_KEY`` is absent.
    """
    if not MISTRAL_API_KEY:
        msg = "MISTRAL_API_KEY is not set"
        raise ValueError(msg)

    from mistralai import Mistral

    return Mistral(api_key=MISTRAL_API_KEY)


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries, allowing overrides in ``overlay``.

    Parameters
    ----------
    base : dict[str, Any]
        Original mapping.
    overlay : dict[str, Any]
        Values that override or extend ``base``.

    Returns
    -------
    dict[str, Any]
        New merged mapping.
    """
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
