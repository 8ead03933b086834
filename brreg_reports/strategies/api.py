"""Structured API strategy over Regnskapsregisteret."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from brreg_reports.config import setup_logging
from brreg_reports.errors import TransientFetchError
from brreg_reports.extractor.figures import extract_figures_from_payload
from brreg_reports.models import DocumentRef, ReportCandidate, SourceTag
from brreg_reports.scraper.regnskap_api import (
    RegnskapApiClient,
    record_documents,
    record_journal_id,
    record_summary,
    record_year,
)
from brreg_reports.utils.parsing import is_valid_year
from brreg_reports.utils.urls import origin_of

if TYPE_CHECKING:
    from brreg_reports.pipeline.context import WorkerContext

logger = setup_logging(__name__)


class StructuredApiStrategy:
    """Query the financial-statement API for every year in the lookback window.

    The no-year query runs first, then one query per year from newest to
    oldest. Filings echoed back for several requested years collapse on
    ``(year, journal_id)``. Filings that carry neither documents nor figures
    are re-read through the journal endpoint.
    """

    tag = SourceTag.API

    async def discover(self, org_id: str, ctx: WorkerContext) -> list[ReportCandidate]:
        api = RegnskapApiClient(ctx.http, ctx.config)
        base_origin = origin_of(api.base_url)
        min_year, max_year = await api.derive_year_bounds(org_id)

        collected: dict[tuple[int, str | None], ReportCandidate] = {}
        seen_journals: set[str] = set()
        failures: list[TransientFetchError] = []
        attempts = 0

        def absorb(records: list[dict[str, Any]], requested_year: int | None) -> None:
            for record in records:
                journal_id = record_journal_id(record)
                own_year = record_year(record)
                # An echo without its own year would otherwise land on the requested year
                if own_year is None and journal_id is not None and journal_id in seen_journals:
                    continue
                year = own_year or requested_year
                if not is_valid_year(year):
                    continue
                key = (year, journal_id)
                if key in collected:
                    continue
                if journal_id is not None:
                    seen_journals.add(journal_id)
                collected[key] = self._to_candidate(record, year, base_origin)  # type: ignore[arg-type]

        queries: list[int | None] = [None, *range(max_year, min_year - 1, -1)]
        for year in queries:
            attempts += 1
            try:
                records = await (api.fetch_latest(org_id) if year is None else api.fetch_for_year(org_id, year))
            except TransientFetchError as e:
                logger.warning("[%s] API query for %s failed: %s", org_id, year or "latest", e)
                failures.append(e)
                continue
            absorb(records, year)

        # Every query failed transiently: let the retry policy decide
        if failures and len(failures) == attempts and not collected:
            raise failures[-1]

        for (year, journal_id), candidate in list(collected.items()):
            if journal_id is None or candidate.documents or candidate.has_embedded_figures:
                continue
            try:
                records = await api.fetch_by_journal(journal_id)
            except TransientFetchError as e:
                logger.warning("[%s] Journal lookup %s failed: %s", org_id, journal_id, e)
                continue
            for record in records:
                enriched = self._to_candidate(record, record_year(record, year) or year, base_origin)
                if enriched.year != year:
                    continue
                for document in enriched.documents:
                    candidate.add_document(document)
                if not candidate.has_embedded_figures and enriched.has_embedded_figures:
                    candidate.figures = enriched.figures

        candidates = list(collected.values())
        if ctx.config.get("sources", {}).get("regnskap_api", {}).get("probe_pdf_urls", False):
            await self._probe_documents(org_id, candidates, ctx)

        logger.info("[%s] API returned %s filings (%s-%s)", org_id, len(candidates), min_year, max_year)
        return candidates

    def _to_candidate(self, record: dict[str, Any], year: int, base_origin: str) -> ReportCandidate:
        figures = extract_figures_from_payload(record)
        return ReportCandidate(
            year=year,
            source=self.tag,
            documents=record_documents(record, base_origin),
            raw=record,
            summary=record_summary(record),
            figures=None if figures.is_empty else figures,
            journal_id=record_journal_id(record),
        )

    async def _probe_documents(self, org_id: str, candidates: list[ReportCandidate], ctx: WorkerContext) -> None:
        """HEAD-probe conventional PDF locations for filings without documents."""
        templates = ctx.config.get("sources", {}).get("regnskap_api", {}).get("probe_url_templates", [])
        for candidate in candidates:
            if candidate.documents:
                continue
            for template in templates:
                url = template.format(orgnr=org_id, year=candidate.year)
                try:
                    if await ctx.http.head_ok(url):
                        candidate.add_document(
                            DocumentRef(title=f"Årsregnskap {candidate.year}", url=url, media_type="pdf")
                        )
                        break
                except TransientFetchError as e:
                    logger.debug("[%s] Probe %s failed: %s", org_id, url, e)
