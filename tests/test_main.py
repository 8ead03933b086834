"""Tests for the command-line entry point.

Tests cover:
1. Argument parsing for the three subcommands
2. Store setup failures returning a non-zero exit code
3. ``list`` and ``cleanup`` against a SQLite store
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from brreg_reports import main as cli
from brreg_reports.pipeline.orchestrator import OrganizationOutcome, OutcomeStatus, RunSummary

if TYPE_CHECKING:
    from pathlib import Path

    from brreg_reports.writer.report_store import ReportStore


@pytest.fixture
def sqlite_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(cli, "DATABASE_URL", url)
    return url


class TestParser:
    """Tests for build_parser."""

    def test_scrape_arguments(self) -> None:
        args = cli.build_parser().parse_args(["scrape", "923609016", "914778271", "-w", "8", "--no-browser"])
        assert args.orgnr == ["923609016", "914778271"]
        assert args.workers == 8
        assert args.no_browser
        assert args.handler is cli.cmd_scrape

    def test_scrape_defaults(self) -> None:
        args = cli.build_parser().parse_args(["scrape"])
        assert args.orgnr == []
        assert args.limit is None
        assert not args.no_headless

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    """Tests for main()."""

    def test_missing_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without a store the CLI exits with 1."""
        monkeypatch.setattr(cli, "DATABASE_URL", "")
        assert cli.main(["list"]) == 1

    def test_list_and_cleanup(self, sqlite_url: str, capsys: pytest.CaptureFixture[str]) -> None:
        """Stored rows are printed; invalid rows are deleted."""
        from brreg_reports.writer.report_store import ReportStore

        store = ReportStore(sqlite_url)
        store.ensure_table()
        store.upsert_report(
            "910000001",
            2023,
            {"sourceTag": "api", "documents": [], "raw": {"figures": {"netResult": 500000}}},
        )
        store.upsert_report("910000001", 2022, {"sourceTag": "body-text", "documents": [{"url": "#"}], "raw": {}})
        store.dispose()

        assert cli.main(["list", "910000001"]) == 0
        listing = capsys.readouterr().out
        assert "net=500000" in listing
        assert "2 rows" in listing

        assert cli.main(["cleanup"]) == 0
        assert "Deleted 1 invalid rows" in capsys.readouterr().out

    def test_scrape_exit_code_reflects_fatal_errors(
        self,
        sqlite_url: str,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A fatal persistence error in the batch makes the run exit with 1."""
        seen: dict[str, object] = {}

        async def fake_run_scrape(
            organization_ids: list[str], store: ReportStore, config: dict, use_browser: bool = True
        ) -> RunSummary:
            seen["ids"] = organization_ids
            seen["use_browser"] = use_browser
            seen["workers"] = config["pipeline"]["max_workers"]
            summary = RunSummary()
            summary.record(
                OrganizationOutcome("910000001", OutcomeStatus.FAILED, error="connection lost", fatal=True)
            )
            return summary

        monkeypatch.setattr(cli, "run_scrape", fake_run_scrape)

        assert cli.main(["scrape", "910000001", "--no-browser", "--workers", "3"]) == 1
        assert seen == {"ids": ["910000001"], "use_browser": False, "workers": 3}
        assert "FATAL 910000001: connection lost" in capsys.readouterr().out
