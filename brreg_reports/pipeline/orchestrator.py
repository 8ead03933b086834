"""Pipeline orchestrator: strategies -> retrieval -> OCR -> extraction -> store.

Per organization the stages run strictly in sequence; across organizations
work runs concurrently, bounded by ``pipeline.max_workers``.

Discovery
---------
Strategies are tried in priority order and the first non-empty result wins.
The structured API is the exception: its filings rarely carry document
links, so when it wins the document-discovery strategies still run (in
order, until one yields candidates) and their candidates are merged in.

Per year
--------
1. Filing has embedded figures and no documents: skip retrieval.
2. Otherwise try each document (retry-wrapped); the first validated one is
   used. OCR runs inside the retriever when the text layer is empty.
3. No usable document: ask the entity page's server action for the year.
4. Extract all three figures and fill gaps from the embedded ones.
5. Persist, even when nothing was found (``failureReason`` says why).
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from brreg_reports.config import setup_logging
from brreg_reports.errors import DocumentRetrievalError, PersistenceError, TransientFetchError
from brreg_reports.extractor.figures import ExtractionRules, extract_figures
from brreg_reports.models import FinancialFigures, SourceTag
from brreg_reports.pipeline.merge import merge_candidates
from brreg_reports.pipeline.retry import RetryPolicy, retry_async
from brreg_reports.strategies.api import StructuredApiStrategy
from brreg_reports.strategies.body_text import BodyTextStrategy
from brreg_reports.strategies.embedded import EmbeddedPayloadStrategy
from brreg_reports.strategies.rendered_dom import RenderedDomStrategy
from brreg_reports.strategies.static_dom import StaticDomStrategy
from brreg_reports.utils.parsing import normalize_organization_id

if TYPE_CHECKING:
    from collections.abc import Iterable

    from brreg_reports.models import ExtractedDocument, ReportCandidate
    from brreg_reports.pipeline.context import PipelineContext, WorkerContext
    from brreg_reports.strategies.base import SourceStrategy

logger = setup_logging(__name__)


class OutcomeStatus(StrEnum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class YearOutcome:
    """What was stored for one year."""

    year: int
    source: SourceTag
    figures: FinancialFigures
    failure_reason: str | None = None
    document_url: str | None = None


@dataclass
class OrganizationOutcome:
    """Result of processing one organization.

    Attributes
    ----------
    organization_id : str
        Normalized id.
    status : OutcomeStatus
        ``succeeded`` when every stored year has a figure, ``partial`` when
        rows were stored but some years lack figures, ``failed`` when no
        candidates were found or a fatal error stopped processing.
    years : list[YearOutcome]
        Stored years, newest first.
    winning_source : SourceTag | None
        Strategy whose candidates won discovery.
    error : str | None
        Reason for ``failed``.
    """

    organization_id: str
    status: OutcomeStatus
    years: list[YearOutcome] = field(default_factory=list)
    winning_source: SourceTag | None = None
    error: str | None = None
    fatal: bool = False


@dataclass
class RunSummary:
    """Counters for a batch run plus the fatal errors surfaced to the caller."""

    processed: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    fatal_errors: dict[str, str] = field(default_factory=dict)
    outcomes: list[OrganizationOutcome] = field(default_factory=list)

    def record(self, outcome: OrganizationOutcome) -> None:
        self.processed += 1
        self.outcomes.append(outcome)
        if outcome.status is OutcomeStatus.SUCCEEDED:
            self.succeeded += 1
        elif outcome.status is OutcomeStatus.PARTIAL:
            self.partial += 1
        else:
            self.failed += 1
        if outcome.fatal:
            self.fatal_errors[outcome.organization_id] = outcome.error or "fatal error"


def default_strategies() -> list[SourceStrategy]:
    """All five strategies in descending priority."""
    return [
        StructuredApiStrategy(),
        EmbeddedPayloadStrategy(),
        StaticDomStrategy(),
        RenderedDomStrategy(),
        BodyTextStrategy(),
    ]


def build_payload(
    candidate: ReportCandidate,
    documents: list[dict[str, Any]],
    figures: FinancialFigures,
    failure_reason: str | None,
    extra_raw: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Assemble the stored JSON payload for one year.

    ``extra_raw`` carries records picked up after discovery (the page
    action's answer) next to the candidate's own raw record.
    """
    payload: dict[str, Any] = {
        "sourceTag": candidate.source.value,
        "summary": candidate.summary,
        "documents": documents,
        "raw": {**candidate.raw, **(extra_raw or {}), "figures": figures.to_payload()},
    }
    if candidate.journal_id is not None:
        payload["journalId"] = candidate.journal_id
    if failure_reason is not None:
        payload["failureReason"] = failure_reason
    return payload


class ReportPipeline:
    """Drive discovery, retrieval, extraction and persistence.

    Parameters
    ----------
    context : PipelineContext
        Entered run context; must carry a report store.
    strategies : list[SourceStrategy] | None, optional
        Ordered strategies; :func:`default_strategies` when omitted.
    """

    def __init__(
        self,
        context: PipelineContext,
        strategies: list[SourceStrategy] | None = None,
    ) -> None:
        if context.store is None:
            msg = "ReportPipeline requires a PipelineContext with a report store"
            raise ValueError(msg)
        self.context = context
        self.store = context.store
        self.strategies = strategies if strategies is not None else default_strategies()
        self.rules = ExtractionRules.from_config(context.config)
        self.retry_policy = RetryPolicy.from_config(context.config)
        pipeline_config = context.config.get("pipeline", {})
        self.max_workers = max(1, int(pipeline_config.get("max_workers", 4)))
        self.supplement_api = bool(pipeline_config.get("supplement_api_with_documents", True))

    async def run(self, organization_ids: Iterable[str]) -> RunSummary:
        """Process organizations concurrently; one failure never stops the batch."""
        semaphore = asyncio.Semaphore(self.max_workers)

        async def bounded(org_id: str) -> OrganizationOutcome:
            async with semaphore:
                try:
                    return await self.process_organization(org_id)
                except Exception as e:
                    logger.exception("[%s] Unexpected failure", org_id)
                    return OrganizationOutcome(str(org_id), OutcomeStatus.FAILED, error=str(e))

        outcomes = await asyncio.gather(*(bounded(org_id) for org_id in organization_ids))

        summary = RunSummary()
        for outcome in outcomes:
            summary.record(outcome)
        logger.info(
            "Run finished: %s processed, %s succeeded, %s partial, %s failed",
            summary.processed,
            summary.succeeded,
            summary.partial,
            summary.failed,
        )
        return summary

    async def process_organization(self, organization_id: str) -> OrganizationOutcome:
        """Discover, retrieve, extract and persist all years of one organization."""
        try:
            org_id = normalize_organization_id(organization_id)
        except ValueError as e:
            return OrganizationOutcome(str(organization_id), OutcomeStatus.FAILED, error=str(e))

        worker = self.context.worker()
        candidates, winner = await self.discover(org_id, worker)
        if not candidates:
            logger.info("[%s] No candidates from any strategy", org_id)
            return OrganizationOutcome(org_id, OutcomeStatus.FAILED, error="no_candidates")

        outcome = OrganizationOutcome(org_id, OutcomeStatus.SUCCEEDED, winning_source=winner)
        for candidate in candidates:
            year_outcome, payload = await self._process_year(org_id, candidate, worker)
            try:
                await asyncio.to_thread(self.store.upsert_report, org_id, candidate.year, payload)
            except PersistenceError as e:
                logger.error("[%s] Persistence failed, abandoning organization: %s", org_id, e)
                outcome.status = OutcomeStatus.FAILED
                outcome.error = str(e)
                outcome.fatal = True
                return outcome
            outcome.years.append(year_outcome)

        if any(year.figures.is_empty for year in outcome.years):
            outcome.status = OutcomeStatus.PARTIAL
        logger.info(
            "[%s] %s: %s years stored via %s",
            org_id,
            outcome.status,
            len(outcome.years),
            winner,
        )
        return outcome

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover(self, org_id: str, worker: WorkerContext) -> tuple[list[ReportCandidate], SourceTag | None]:
        """Run strategies in order and merge their candidates per year.

        Returns
        -------
        tuple[list[ReportCandidate], SourceTag | None]
            Merged candidates (newest first) and the winning strategy's tag.
        """
        found: list[ReportCandidate] = []
        winner: SourceTag | None = None

        for strategy in self.strategies:
            if winner is SourceTag.API and not self.supplement_api:
                break
            result = await self._run_strategy(strategy, org_id, worker)
            if not result:
                continue
            found.extend(result)
            if winner is None:
                winner = strategy.tag
                logger.info("[%s] %s yielded %s candidates", org_id, strategy.tag, len(result))
                if strategy.tag is not SourceTag.API:
                    break
            else:
                logger.info("[%s] %s supplemented API with %s candidates", org_id, strategy.tag, len(result))
                break

        return merge_candidates(found), winner

    async def _run_strategy(
        self,
        strategy: SourceStrategy,
        org_id: str,
        worker: WorkerContext,
    ) -> list[ReportCandidate]:
        try:
            return await retry_async(
                functools.partial(strategy.discover, org_id, worker),
                self.retry_policy,
                f"[{org_id}] {strategy.tag}",
            )
        except TransientFetchError as e:
            logger.warning("[%s] Abandoning %s: %s", org_id, strategy.tag, e)
            return []

    # =========================================================================
    # Per-year stages
    # =========================================================================

    async def _retrieve_first(
        self,
        org_id: str,
        candidate: ReportCandidate,
        worker: WorkerContext,
    ) -> tuple[ExtractedDocument | None, str | None]:
        """Try the candidate's documents in order; return the first valid one."""
        last_reason: str | None = None
        for ref in candidate.documents:
            try:
                document = await retry_async(
                    functools.partial(worker.retriever.retrieve, ref),
                    self.retry_policy,
                    f"[{org_id}] {candidate.year} download",
                )
            except DocumentRetrievalError as e:
                last_reason = e.reason
                logger.warning("[%s] %s: %s rejected (%s)", org_id, candidate.year, ref.url, e.reason)
                continue
            except TransientFetchError as e:
                last_reason = "fetch_failed"
                logger.warning("[%s] %s: %s unreachable: %s", org_id, candidate.year, ref.url, e)
                continue
            return document, None
        return None, last_reason

    async def _process_year(
        self,
        org_id: str,
        candidate: ReportCandidate,
        worker: WorkerContext,
    ) -> tuple[YearOutcome, dict[str, Any]]:
        embedded = candidate.figures or FinancialFigures()
        documents = [ref.to_payload() for ref in candidate.documents]
        document: ExtractedDocument | None = None
        failure_reason: str | None = None
        extra_raw: dict[str, Any] = {}

        if candidate.has_embedded_figures and not candidate.documents:
            logger.debug("[%s] %s: figures embedded in source, skipping retrieval", org_id, candidate.year)
        else:
            document, failure_reason = await self._retrieve_first(org_id, candidate, worker)
            if document is None and not candidate.has_embedded_figures:
                embedded, document, extra_raw = await self._try_page_action(org_id, candidate.year, worker, embedded)
                if document is not None:
                    documents.append(document.to_payload())

        if document is not None:
            documents = [
                document.to_payload() if entry.get("url") == document.ref.url else entry for entry in documents
            ]
            figures = embedded.merged_with(extract_figures(document.text, self.rules))
        else:
            figures = embedded

        if figures.is_empty:
            if failure_reason is None:
                failure_reason = "figures_not_found" if document is not None else "no_document"
            logger.info("[%s] %s: no figures (%s)", org_id, candidate.year, failure_reason)
        else:
            failure_reason = None

        payload = build_payload(candidate, documents, figures, failure_reason, extra_raw)
        return (
            YearOutcome(
                year=candidate.year,
                source=candidate.source,
                figures=figures,
                failure_reason=failure_reason,
                document_url=document.ref.url if document is not None else None,
            ),
            payload,
        )

    async def _try_page_action(
        self,
        org_id: str,
        year: int,
        worker: WorkerContext,
        embedded: FinancialFigures,
    ) -> tuple[FinancialFigures, ExtractedDocument | None, dict[str, Any]]:
        try:
            result = await retry_async(
                functools.partial(worker.retriever.fetch_filing_via_page_action, org_id, year),
                self.retry_policy,
                f"[{org_id}] {year} page action",
            )
        except (DocumentRetrievalError, TransientFetchError) as e:
            logger.debug("[%s] %s: page action gave nothing usable: %s", org_id, year, e)
            return embedded, None, {}

        if result.figures is not None:
            embedded = embedded.merged_with(result.figures)
        return embedded, result.document, result.raw
