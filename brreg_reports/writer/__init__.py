"""Writer module: annual report persistence."""

from brreg_reports.writer.report_store import ReportStore, is_invalid_payload

__all__ = ["ReportStore", "is_invalid_payload"]
