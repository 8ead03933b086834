"""The capability every discovery strategy satisfies."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from brreg_reports.models import ReportCandidate, SourceTag
    from brreg_reports.pipeline.context import WorkerContext


@runtime_checkable
class SourceStrategy(Protocol):
    """Discover report candidates for one organization.

    Implementations return ``[]`` on absence (404, empty page, missing
    section) and raise ``TransientFetchError`` only for failures worth
    retrying. Each maps its native record shape into ``ReportCandidate``
    and keeps the native record in ``raw``.
    """

    tag: SourceTag

    async def discover(self, org_id: str, ctx: WorkerContext) -> list[ReportCandidate]: ...
