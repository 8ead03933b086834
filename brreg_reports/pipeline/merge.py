"""Collapse candidates from several strategies into one per year."""

from __future__ import annotations

from typing import TYPE_CHECKING

from brreg_reports.models import ReportCandidate

if TYPE_CHECKING:
    from collections.abc import Iterable


def _copy(candidate: ReportCandidate) -> ReportCandidate:
    return ReportCandidate(
        year=candidate.year,
        source=candidate.source,
        documents=list(candidate.documents),
        raw=dict(candidate.raw),
        summary=dict(candidate.summary),
        figures=candidate.figures,
        journal_id=candidate.journal_id,
    )


def merge_candidates(candidates: Iterable[ReportCandidate]) -> list[ReportCandidate]:
    """Merge candidates so exactly one survives per year.

    Notes
    -----
    - The stronger source tag is kept; a weaker one never replaces it.
    - Document lists are unioned by URL. The stronger candidate's documents
      come first.
    - ``raw``, ``summary``, ``figures`` and ``journal_id`` are only filled
      when the surviving candidate has none.

    Returns
    -------
    list[ReportCandidate]
        Newest year first. Inputs are not mutated.
    """
    merged: dict[int, ReportCandidate] = {}
    for candidate in candidates:
        existing = merged.get(candidate.year)
        if existing is None:
            merged[candidate.year] = _copy(candidate)
            continue

        if candidate.source.strength > existing.source.strength:
            stronger, weaker = _copy(candidate), existing
        else:
            stronger, weaker = existing, candidate

        for document in weaker.documents:
            stronger.add_document(document)
        if not stronger.raw:
            stronger.raw = dict(weaker.raw)
        if not stronger.summary:
            stronger.summary = dict(weaker.summary)
        if not stronger.has_embedded_figures and weaker.has_embedded_figures:
            stronger.figures = weaker.figures
        elif stronger.figures is not None and weaker.figures is not None:
            stronger.figures = stronger.figures.merged_with(weaker.figures)
        if stronger.journal_id is None:
            stronger.journal_id = weaker.journal_id

        merged[candidate.year] = stronger

    return [merged[year] for year in sorted(merged, reverse=True)]
