"""Client for Regnskapsregisteret and the Enhetsregisteret entity lookup.

Regnskapsregisteret usually answers with the most recent filing only, and
echoes that same filing back for several requested years. The client
therefore exposes the raw per-year, no-year and per-journal queries and
leaves de-duplication by ``(year, journal_id)`` to the API strategy.

Record shapes vary: a bare object, a list of objects, or an object with a
``regnskap`` list. Document entries may nest their links under ``lenker``,
``links``, ``vedlegg`` or ``vedleggLenker``. The helpers at the bottom of
this module flatten all of these into :class:`DocumentRef` objects.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from brreg_reports.config import setup_logging
from brreg_reports.errors import TransientFetchError
from brreg_reports.models import DocumentRef
from brreg_reports.utils.parsing import MIN_YEAR, parse_localized_number, parse_year

if TYPE_CHECKING:
    from brreg_reports.scraper.http import HttpClient

logger = setup_logging(__name__)

FOUNDING_KEYS = ("stiftelsesdato", "stiftelsesdatoEnhetsregisteret", "registreringsdatoEnhetsregisteret")
LATEST_FILING_KEYS = (
    "sistInnsendtAarsregnskap",
    "sistInnsendtÅrsregnskap",
    "sistInnsendtArsregnskap",
    "sistInnsendtAarsregnskapEtterÅrstall",
    "sisteInnsendteÅr",
)
RECORD_YEAR_KEYS = ("regnskapsår", "regnskapsar", "regnskapsYear", "regnskapsAar", "år", "ar")
JOURNAL_KEYS = ("journalnr", "journalnummer", "id")

DOCUMENT_LIST_KEYS = ("dokumenter", "documents")
NESTED_LINK_KEYS = ("lenker", "links", "vedlegg", "vedleggLenker")
URL_KEYS = ("downloadUrl", "url", "href", "lenke", "link", "adresse")
TITLE_KEYS = ("tittel", "title", "navn", "name", "dokumentType", "documentType")
TYPE_KEYS = ("dokumentType", "documentType", "type", "format")
SIZE_KEYS = ("storrelse", "størrelse", "size", "filstorrelse", "fileSize")


class RegnskapApiClient:
    """Thin query layer over the two registry APIs.

    Parameters
    ----------
    http : HttpClient
        Worker-scoped HTTP client.
    config : dict[str, Any]
        Full project configuration (``sources`` and ``years`` sections).
    """

    def __init__(self, http: HttpClient, config: dict[str, Any]) -> None:
        self._http = http
        sources = config.get("sources", {})
        api = sources.get("regnskap_api", {})
        self.base_url = api.get("base_url", "https://data.brreg.no/regnskapsregisteret/regnskap").rstrip("/")
        self.year_params: list[str] = list(api.get("year_params", ["år", "ar"]))
        self.journal_path = api.get("journal_path", "journal").strip("/")
        self.entity_url = (
            sources.get("enhetsregisteret", {})
            .get("base_url", "https://data.brreg.no/enhetsregisteret/api/enheter")
            .rstrip("/")
        )
        years = config.get("years", {})
        self.min_year = int(years.get("min_year", MIN_YEAR))
        self.default_lookback = int(years.get("default_lookback_years", 10))
        self.max_lookback = int(years.get("max_lookback_years", 35))

    async def fetch_company_metadata(self, org_id: str) -> dict[str, Any]:
        """Return the Enhetsregisteret record, or ``{}`` when unknown."""
        data = await self._http.get_json(f"{self.entity_url}/{org_id}", kind="metadata")
        return data if isinstance(data, dict) else {}

    async def derive_year_bounds(self, org_id: str, now: datetime | None = None) -> tuple[int, int]:
        """Bound the per-year lookback window for one organization.

        The lower bound is the founding year (never before 1990); the upper
        bound is the latest filing year from the entity metadata, or the
        current year. Without usable metadata the last
        ``default_lookback_years`` are searched. The window never spans more
        than ``max_lookback_years``.

        Returns
        -------
        tuple[int, int]
            ``(min_year, max_year)``, inclusive.
        """
        current_year = (now or datetime.now(UTC)).year
        min_year = max(self.min_year, current_year - self.default_lookback)
        max_year = current_year

        try:
            metadata = await self.fetch_company_metadata(org_id)
        except TransientFetchError as e:
            logger.warning("[%s] Could not fetch entity metadata for year bounds: %s", org_id, e)
            metadata = {}

        for key in FOUNDING_KEYS:
            founded = parse_year(metadata.get(key))
            if founded:
                min_year = max(founded, self.min_year)
                break

        for key in LATEST_FILING_KEYS:
            latest = parse_year(metadata.get(key))
            if latest:
                max_year = min(max(latest, min_year), current_year + 1)
                break

        if min_year > max_year:
            min_year = max(self.min_year, max_year - self.default_lookback)
        min_year = max(min_year, max_year - self.max_lookback)

        logger.debug("[%s] Year bounds %s-%s", org_id, min_year, max_year)
        return min_year, max_year

    async def fetch_for_year(self, org_id: str, year: int) -> list[dict[str, Any]]:
        """Query one year, trying each year parameter spelling in turn."""
        for param in self.year_params:
            data = await self._http.get_json(f"{self.base_url}/{org_id}", params={param: year})
            records = candidate_records(data)
            if records:
                return records
        return []

    async def fetch_latest(self, org_id: str) -> list[dict[str, Any]]:
        """Query without a year; usually returns the most recent filing."""
        return candidate_records(await self._http.get_json(f"{self.base_url}/{org_id}"))

    async def fetch_by_journal(self, journal_id: str) -> list[dict[str, Any]]:
        """Query one filing by its journal identifier."""
        url = f"{self.base_url}/{self.journal_path}/{journal_id}"
        return candidate_records(await self._http.get_json(url))


# =============================================================================
# Record normalization
# =============================================================================


def candidate_records(data: Any) -> list[dict[str, Any]]:
    """Flatten an API response into a list of filing records."""
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict) and item]
    if isinstance(data, dict) and data:
        nested = data.get("regnskap")
        if isinstance(nested, list):
            return [item for item in nested if isinstance(item, dict) and item]
        return [data]
    return []


def record_year(record: dict[str, Any], fallback_year: int | None = None) -> int | None:
    """Read the fiscal year of a filing record.

    Explicit year keys win, then ``regnskapsperiode.tilDato`` /
    ``fraDato``, then ``fallback_year`` (the year that was requested).
    """
    for key in RECORD_YEAR_KEYS:
        year = parse_year(record.get(key))
        if year:
            return year

    period = record.get("regnskapsperiode")
    if isinstance(period, dict):
        year = parse_year(period.get("tilDato") or period.get("fraDato") or "")
        if year:
            return year

    return fallback_year


def record_journal_id(record: dict[str, Any]) -> str | None:
    for key in JOURNAL_KEYS:
        value = record.get(key)
        if value is not None and not isinstance(value, (dict, list, bool)) and str(value).strip():
            return str(value).strip()
    return None


def _first_string(entry: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_size(entry: dict[str, Any]) -> int | None:
    for key in SIZE_KEYS:
        value = entry.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            size = parse_localized_number(value)
            if size is not None:
                return size
    return None


def _flatten_document_entries(entries: list[Any]) -> list[dict[str, Any]]:
    """Expand entries whose links are nested one or more levels down."""
    flattened: list[dict[str, Any]] = []
    stack = list(reversed(entries))
    while stack:
        entry = stack.pop()
        if not isinstance(entry, dict):
            continue
        flattened.append(entry)
        for key in NESTED_LINK_KEYS:
            nested = entry.get(key)
            if isinstance(nested, list):
                # Nested links inherit the parent's title when they lack one
                children = [
                    {"tittel": _first_string(entry, TITLE_KEYS), **child}
                    for child in nested
                    if isinstance(child, dict)
                ]
                stack.extend(reversed(children))
            elif isinstance(nested, dict):
                stack.append({"tittel": _first_string(entry, TITLE_KEYS), **nested})
    return flattened


def record_documents(record: dict[str, Any], base_origin: str) -> list[DocumentRef]:
    """Map the document entries of a filing record to DocumentRefs.

    Entries without a usable URL (missing, placeholder, or non-web scheme)
    are dropped. The result is de-duplicated by URL, first occurrence wins.
    """
    entries: list[Any] = []
    for key in DOCUMENT_LIST_KEYS:
        value = record.get(key)
        if isinstance(value, list):
            entries.extend(value)

    documents: list[DocumentRef] = []
    seen: set[str] = set()
    for entry in _flatten_document_entries(entries):
        ref = DocumentRef.from_href(
            _first_string(entry, URL_KEYS),
            base_origin,
            title=_first_string(entry, TITLE_KEYS) or "Årsregnskap",
            media_type=_first_string(entry, TYPE_KEYS),
            size=_first_size(entry),
        )
        if ref is None or ref.url in seen:
            continue
        seen.add(ref.url)
        documents.append(ref)
    return documents


def record_summary(record: dict[str, Any]) -> dict[str, Any]:
    """Pick the scalar descriptive fields shown alongside a filing."""
    summary: dict[str, Any] = {}
    for key in ("regnskapstype", "valuta", "oppstillingsplan", "avviklingsregnskap"):
        value = record.get(key)
        if value is not None and not isinstance(value, (dict, list)):
            summary[key] = value
    period = record.get("regnskapsperiode")
    if isinstance(period, dict):
        summary["regnskapsperiode"] = {k: v for k, v in period.items() if isinstance(v, str)}
    return summary
