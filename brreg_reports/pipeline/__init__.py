"""Pipeline module: run context, retry, candidate merge and orchestration."""

from brreg_reports.pipeline.context import PipelineContext, WorkerContext
from brreg_reports.pipeline.merge import merge_candidates
from brreg_reports.pipeline.orchestrator import (
    OrganizationOutcome,
    OutcomeStatus,
    ReportPipeline,
    RunSummary,
    default_strategies,
)
from brreg_reports.pipeline.retry import RetryPolicy, retry_async

__all__ = [
    "OrganizationOutcome",
    "OutcomeStatus",
    "PipelineContext",
    "ReportPipeline",
    "RetryPolicy",
    "RunSummary",
    "WorkerContext",
    "default_strategies",
    "merge_candidates",
    "retry_async",
]
