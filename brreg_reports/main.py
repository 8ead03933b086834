#!/usr/bin/env python3
"""Annual report scraper CLI - discover, extract and store filed figures.

For each organization number the pipeline:
1. Discovers filings (API, embedded payload, static DOM, rendered DOM, body text)
2. Downloads each filing's PDF and validates it
3. Falls back to OCR when the PDF has no text layer
4. Extracts net result, sales revenue and total income
5. Upserts one row per (organization, year)

Usage (from project root):
    python -m brreg_reports.main scrape 923609016 914778271
    python -m brreg_reports.main scrape --limit 50 --workers 8
    python -m brreg_reports.main scrape 923609016 --no-browser
    python -m brreg_reports.main list 923609016
    python -m brreg_reports.main cleanup

Without organization numbers, ``scrape`` reads them from the companies table
configured under ``storage.companies_table``.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

from brreg_reports.config import DATABASE_URL, load_settings, setup_logging
from brreg_reports.errors import PersistenceError
from brreg_reports.pipeline.context import PipelineContext
from brreg_reports.pipeline.orchestrator import ReportPipeline, RunSummary
from brreg_reports.writer.report_store import ReportStore

logger = setup_logging(__name__)


# =============================================================================
# Commands
# =============================================================================


async def run_scrape(
    organization_ids: list[str],
    store: ReportStore,
    config: dict[str, Any],
    use_browser: bool = True,
) -> RunSummary:
    """Run the pipeline for ``organization_ids`` inside one run context."""
    async with PipelineContext(config, store=store, use_browser=use_browser) as ctx:
        return await ReportPipeline(ctx).run(organization_ids)


def print_summary(summary: RunSummary) -> None:
    """Print a per-organization table and the batch counters."""
    print(f"\n{'=' * 60}")
    print(f"{'Organization':<14} {'Status':<10} {'Source':<16} Years")
    print(f"{'-' * 60}")
    for outcome in summary.outcomes:
        years = ", ".join(str(year.year) for year in outcome.years) or outcome.error or "-"
        source = outcome.winning_source.value if outcome.winning_source else "-"
        print(f"{outcome.organization_id:<14} {outcome.status.value:<10} {source:<16} {years}")
    print(f"{'-' * 60}")
    print(
        f"Processed {summary.processed}: {summary.succeeded} succeeded, "
        f"{summary.partial} partial, {summary.failed} failed"
    )
    for org_id, error in summary.fatal_errors.items():
        print(f"  FATAL {org_id}: {error}")


def cmd_scrape(args: argparse.Namespace, store: ReportStore, config: dict[str, Any]) -> int:
    organization_ids = args.orgnr or store.fetch_organization_ids(limit=args.limit)
    if args.orgnr and args.limit:
        organization_ids = organization_ids[: args.limit]
    if not organization_ids:
        logger.warning("No organizations to process")
        return 0

    logger.info("Processing %s organizations", len(organization_ids))
    summary = asyncio.run(run_scrape(organization_ids, store, config, use_browser=not args.no_browser))
    print_summary(summary)
    return 0 if not summary.fatal_errors else 1


def cmd_list(args: argparse.Namespace, store: ReportStore, config: dict[str, Any]) -> int:
    reports = store.fetch_reports(args.orgnr)
    for report in reports:
        figures = (report.payload.get("raw") or {}).get("figures") or {}
        print(
            f"{report.organization_id} {report.year} "
            f"{report.payload.get('sourceTag', '-'):<14} "
            f"net={figures.get('netResult')} sales={figures.get('salesRevenue')} "
            f"total={figures.get('totalIncome')} "
            f"scraped={report.scraped_at:%Y-%m-%d %H:%M}"
        )
    print(f"{len(reports)} rows")
    return 0


def cmd_cleanup(args: argparse.Namespace, store: ReportStore, config: dict[str, Any]) -> int:
    deleted = store.delete_invalid_reports()
    print(f"Deleted {deleted} invalid rows")
    return 0


# =============================================================================
# CLI
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scrape annual report figures from Brønnøysundregistrene.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m brreg_reports.main scrape 923609016              # One organization
  python -m brreg_reports.main scrape --limit 100 -w 8       # From companies table
  python -m brreg_reports.main list 923609016                # Stored rows
  python -m brreg_reports.main cleanup                       # Drop invalid rows
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scrape = subparsers.add_parser("scrape", help="Discover, extract and store annual reports")
    scrape.add_argument("orgnr", nargs="*", help="Organization numbers (default: companies table)")
    scrape.add_argument("--limit", "-n", type=int, default=None, help="Maximum organizations to process")
    scrape.add_argument("--workers", "-w", type=int, default=None, help="Concurrent organizations")
    scrape.add_argument("--no-browser", action="store_true", help="Skip the rendered-DOM strategy")
    scrape.add_argument("--no-headless", action="store_true", help="Show browser windows")
    scrape.set_defaults(handler=cmd_scrape)

    listing = subparsers.add_parser("list", help="Print stored reports")
    listing.add_argument("orgnr", nargs="?", default=None, help="Restrict to one organization")
    listing.set_defaults(handler=cmd_list)

    cleanup = subparsers.add_parser("cleanup", help="Delete rows without a usable document or figures")
    cleanup.set_defaults(handler=cmd_cleanup)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse CLI flags and dispatch to the selected command.

    Returns
    -------
    int
        ``0`` on success; ``1`` when the store is unusable or any
        organization hit a fatal persistence error.
    """
    args = build_parser().parse_args(argv)

    overrides: dict[str, Any] = {}
    if getattr(args, "workers", None):
        overrides["pipeline"] = {"max_workers": args.workers}
    if getattr(args, "no_headless", False):
        overrides["browser"] = {"headless": False}
    config = load_settings(overrides)

    try:
        store = ReportStore.from_config(DATABASE_URL, config)
        store.ensure_table()
    except PersistenceError as e:
        logger.error("Report store unavailable: %s", e)
        return 1

    try:
        return args.handler(args, store, config)
    except PersistenceError as e:
        logger.error("Database error: %s", e)
        return 1
    finally:
        store.dispose()


if __name__ == "__main__":
    sys.exit(main())
