"""Report persistence using SQLAlchemy Core.

One row per ``(organization_id, year)``; writes are key-based upserts, so a
re-run of the same organization overwrites its rows and advances
``scraped_at`` instead of duplicating them. Postgres (psycopg 3) is the
production target and stores the payload as JSONB; SQLite is used in tests.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    column,
    create_engine,
    delete,
    select,
    table,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError

from brreg_reports.config import setup_logging
from brreg_reports.errors import PersistenceError
from brreg_reports.models import PersistedReport
from brreg_reports.utils.urls import is_likely_pdf_url, is_placeholder_url

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

logger = setup_logging(__name__)

__all__ = ["ReportStore", "is_invalid_payload"]


def _ensure_psycopg_driver(dsn: str) -> str:
    if dsn.startswith("postgresql://") and "+psycopg" not in dsn:
        return dsn.replace("postgresql://", "postgresql+psycopg://", 1)
    if dsn.startswith("postgres://") and "+psycopg" not in dsn:
        return dsn.replace("postgres://", "postgresql+psycopg://", 1)
    return dsn


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def is_invalid_payload(payload: dict[str, Any]) -> bool:
    """True for rows a cleanup pass should remove.

    A row is invalid when its first document URL is missing, a placeholder
    or neither named nor typed as a PDF, or when it has no documents and no figures at all.
    """
    documents = payload.get("documents") or []
    figures = (payload.get("raw") or {}).get("figures") or {}
    if not documents:
        return not figures
    first = documents[0] if isinstance(documents[0], dict) else {}
    url = first.get("url")
    if is_placeholder_url(url):
        return True
    return not (is_likely_pdf_url(url) or first.get("type") == "application/pdf")


class ReportStore:
    """Upsert sink and query helpers for the annual report table.

    Parameters
    ----------
    dsn : str
        SQLAlchemy URL; ``postgresql://`` URLs are switched to psycopg 3.
    table_name : str, optional
        Report table name.
    companies_table : str, optional
        External table listing organizations to process.
    companies_id_column : str, optional
        Organization id column of ``companies_table``.
    """

    def __init__(
        self,
        dsn: str,
        table_name: str = "annual_reports",
        companies_table: str = "brreg_companies",
        companies_id_column: str = "organisasjonsnummer",
    ) -> None:
        if not dsn:
            msg = "DATABASE_URL is not set"
            raise PersistenceError(msg)
        self.engine: Engine = create_engine(_ensure_psycopg_driver(dsn), future=True, pool_pre_ping=True)
        self.metadata = MetaData()
        self.reports = Table(
            table_name,
            self.metadata,
            Column("organization_id", String(32), primary_key=True),
            Column("year", Integer, primary_key=True),
            Column("payload", JSON().with_variant(JSONB(), "postgresql"), nullable=False),
            Column("scraped_at", DateTime(timezone=True), nullable=False),
        )
        self._companies = table(companies_table, column(companies_id_column))
        self._companies_id = self._companies.c[companies_id_column]

    @classmethod
    def from_config(cls, dsn: str, config: dict[str, Any]) -> ReportStore:
        storage = config.get("storage", {})
        return cls(
            dsn,
            table_name=storage.get("reports_table", "annual_reports"),
            companies_table=storage.get("companies_table", "brreg_companies"),
            companies_id_column=storage.get("companies_id_column", "organisasjonsnummer"),
        )

    def dispose(self) -> None:
        self.engine.dispose()

    def ensure_table(self) -> None:
        """Create the report table if it does not exist."""
        try:
            self.metadata.create_all(self.engine, tables=[self.reports])
        except SQLAlchemyError as e:
            msg = f"Could not create table {self.reports.name}: {e}"
            raise PersistenceError(msg) from e

    def _insert(self) -> Any:
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(self.reports)
        if dialect == "sqlite":
            return sqlite.insert(self.reports)
        msg = f"Unsupported database dialect for upsert: {dialect}"
        raise PersistenceError(msg)

    def upsert_report(
        self,
        organization_id: str,
        year: int,
        payload: dict[str, Any],
        scraped_at: datetime | None = None,
    ) -> PersistedReport:
        """Insert or replace the row for ``(organization_id, year)``.

        Raises
        ------
        PersistenceError
            If the database is unreachable or rejects the write.
        """
        stamp = scraped_at or datetime.now(UTC)
        stmt = self._insert().values(
            organization_id=organization_id,
            year=year,
            payload=payload,
            scraped_at=stamp,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[self.reports.c.organization_id, self.reports.c.year],
            set_={"payload": stmt.excluded.payload, "scraped_at": stmt.excluded.scraped_at},
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            msg = f"Upsert failed for {organization_id}/{year}: {e}"
            raise PersistenceError(msg) from e

        logger.debug("[%s] Stored %s", organization_id, year)
        return PersistedReport(organization_id, year, payload, _as_utc(stamp))

    def fetch_reports(self, organization_id: str | None = None) -> list[PersistedReport]:
        """Return stored rows, newest year first within each organization."""
        query = select(self.reports).order_by(self.reports.c.organization_id, self.reports.c.year.desc())
        if organization_id is not None:
            query = query.where(self.reports.c.organization_id == organization_id)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            msg = f"Could not read {self.reports.name}: {e}"
            raise PersistenceError(msg) from e

        return [
            PersistedReport(
                organization_id=row["organization_id"],
                year=row["year"],
                payload=row["payload"],
                scraped_at=_as_utc(row["scraped_at"]),
            )
            for row in rows
        ]

    def fetch_organization_ids(self, limit: int | None = None) -> list[str]:
        """Read organization ids from the external companies table."""
        query = select(self._companies_id).order_by(self._companies_id)
        if limit is not None:
            query = query.limit(limit)
        try:
            with self.engine.connect() as conn:
                return [str(value) for value in conn.execute(query).scalars() if value]
        except SQLAlchemyError as e:
            msg = f"Could not read organization ids: {e}"
            raise PersistenceError(msg) from e

    def delete_invalid_reports(self) -> int:
        """Delete rows judged invalid by :func:`is_invalid_payload`.

        Returns
        -------
        int
            Number of deleted rows.
        """
        invalid = [
            (report.organization_id, report.year)
            for report in self.fetch_reports()
            if is_invalid_payload(report.payload or {})
        ]
        if not invalid:
            return 0

        try:
            with self.engine.begin() as conn:
                for organization_id, year in invalid:
                    conn.execute(
                        delete(self.reports).where(
                            self.reports.c.organization_id == organization_id,
                            self.reports.c.year == year,
                        )
                    )
        except SQLAlchemyError as e:
            msg = f"Cleanup failed: {e}"
            raise PersistenceError(msg) from e

        logger.info("Deleted %s invalid report rows", len(invalid))
        return len(invalid)
