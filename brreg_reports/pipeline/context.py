"""Run-scoped and worker-scoped resources for the pipeline.

``PipelineContext`` owns everything that must be torn down deterministically:
the shared HTTP connection pool, the browser pool, the run temp directory and
the report store. Each organization task gets a ``WorkerContext`` with its
own host rate limiter and an entity-page cache, so the three strategies that
read the same server-rendered page download it only once.
"""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from brreg_reports.config import TEMP_DIR, setup_logging
from brreg_reports.scraper.browser import BrowserPool
from brreg_reports.scraper.http import HttpClient
from brreg_reports.scraper.retriever import DocumentRetriever

if TYPE_CHECKING:
    from types import TracebackType

    import httpx

    from brreg_reports.writer.report_store import ReportStore

logger = setup_logging(__name__)


@dataclass
class WorkerContext:
    """Resources handed to strategies and stages for one organization.

    Attributes
    ----------
    config : dict[str, Any]
        Effective settings.
    http : HttpClient
        Client with a limiter private to this worker.
    retriever : DocumentRetriever
        Retriever bound to ``http`` and the run temp directory.
    temp_dir : Path
        Run temp directory.
    browser_pool : BrowserPool | None
        ``None`` when browser rendering is disabled.
    """

    config: dict[str, Any]
    http: HttpClient
    retriever: DocumentRetriever
    temp_dir: Path
    browser_pool: BrowserPool | None = None
    page_cache: dict[str, str | None] = field(default_factory=dict)

    @property
    def base_origin(self) -> str:
        """Origin used to resolve relative document hrefs."""
        return self.config.get("sources", {}).get("virksomhet", {}).get("origin", "https://virksomhet.brreg.no")

    def entity_page_url(self, org_id: str) -> str:
        base = self.config.get("sources", {}).get("virksomhet", {}).get(
            "base_url", "https://virksomhet.brreg.no/nb/oppslag/enheter"
        )
        return f"{base.rstrip('/')}/{org_id}"

    async def entity_page(self, org_id: str) -> str | None:
        """Fetch the served entity page once per organization."""
        if org_id not in self.page_cache:
            self.page_cache[org_id] = await self.http.get_text(self.entity_page_url(org_id))
        return self.page_cache[org_id]


class PipelineContext:
    """Own the resources of one pipeline run.

    Parameters
    ----------
    config : dict[str, Any]
        Effective settings (``load_settings()``).
    store : ReportStore | None, optional
        Persistence sink; required by ``ReportPipeline`` for writes.
    use_browser : bool, optional
        Create a browser pool for the rendered-DOM strategy.
    transport : httpx.AsyncBaseTransport | None, optional
        Injected HTTP transport for tests.
    temp_root : Path | None, optional
        Parent directory for the run temp directory; ``TEMP_DIR`` by default.

    Examples
    --------
    >>> async with PipelineContext(load_settings(), store) as ctx:  # doctest: +SKIP
    ...     summary = await ReportPipeline(ctx).run(["910000001"])
    """

    def __init__(
        self,
        config: dict[str, Any],
        store: ReportStore | None = None,
        use_browser: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
        temp_root: Path | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.use_browser = use_browser
        self._transport = transport
        self._temp_root = temp_root or TEMP_DIR
        self.temp_dir: Path | None = None
        self.http: HttpClient | None = None
        self.browser_pool: BrowserPool | None = None

    async def __aenter__(self) -> PipelineContext:
        self._temp_root.mkdir(parents=True, exist_ok=True)
        self.temp_dir = Path(tempfile.mkdtemp(prefix="run_", dir=self._temp_root))
        self.http = HttpClient(self.config, transport=self._transport)
        if self.use_browser:
            browser_config = self.config.get("browser", {})
            self.browser_pool = BrowserPool(
                size=int(browser_config.get("pool_size", 2)),
                headless=bool(browser_config.get("headless", True)),
            )
        logger.debug("Pipeline context opened (temp dir %s)", self.temp_dir)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if self.browser_pool is not None:
                await self.browser_pool.close()
            if self.http is not None:
                await self.http.aclose()
        finally:
            if self.temp_dir is not None:
                shutil.rmtree(self.temp_dir, ignore_errors=True)
                self.temp_dir = None
            logger.debug("Pipeline context closed")

    def worker(self) -> WorkerContext:
        """Create the per-organization view of this run's resources."""
        if self.http is None or self.temp_dir is None:
            msg = "PipelineContext must be entered with 'async with' before use"
            raise RuntimeError(msg)
        http = self.http.worker_view()
        return WorkerContext(
            config=self.config,
            http=http,
            retriever=DocumentRetriever(http, self.temp_dir, self.config),
            temp_dir=self.temp_dir,
            browser_pool=self.browser_pool,
        )
