"""Scan lifecycle orchestration.

A scan moves pending -> in_progress -> completed | failed | cancelled. The
orchestrator is the only writer of a running job: it discovers URLs, probes
them in bounded batches, persists progress after each batch, reconciles the
aggregated cookies into the inventory and records the final findings.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from ..audit.aggregation import FindingsSink, compute_stats, has_significant_changes
from ..audit.capture.page_probe import PageProbe
from ..audit.capture.retry import RetryPolicy, retry_with_backoff
from ..audit.cookies.classification import CookieClassifier
from ..audit.crawler import UrlFrontier
from ..audit.models.scan import FindingsChanges, ScanConfig, ScanError, ScanStatus, utcnow
from ..config import EngineSettings
from ..errors import ConfigurationError, ProbeError
from ..inventory.reconciler import Reconciler
from ..persistence.dao import ScanDAO
from ..persistence.database import DatabaseConfig
from ..persistence.models import DetectionMethod
from ..scheduling.models import DomainScanConfig
from .context import ScanContext, ScanOutcome
from .notifications import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)


def partition(items: List[str], size: int) -> List[List[str]]:
    """Split items into consecutive batches of at most size."""
    size = max(size, 1)
    return [items[i:i + size] for i in range(0, len(items), size)]


class ScanOrchestrator:
    """Runs one scan job end to end."""

    def __init__(
        self,
        db: DatabaseConfig,
        settings: EngineSettings,
        browser_factory,
        classifier: CookieClassifier,
        reconciler: Reconciler,
        notifier: Optional[Notifier] = None,
        frontier_factory: Optional[Callable[[Any], UrlFrontier]] = None,
        probe_factory: Optional[Callable[[Any], PageProbe]] = None,
        sleep=None
    ):
        """Initialize the orchestrator.

        Args:
            db: Database used for job state
            settings: Concurrency, timeout and retry settings
            browser_factory: Object whose ``launch()`` yields a browser session
            classifier: Classifier shared by every probe
            reconciler: Inventory reconciler
            notifier: Receives significant-change notifications
            frontier_factory: Builds a frontier for a browser session
            probe_factory: Builds a probe for a browser session
            sleep: Backoff sleep, defaults to asyncio.sleep
        """
        self.db = db
        self.settings = settings
        self.browser_factory = browser_factory
        self.classifier = classifier
        self.reconciler = reconciler
        self.notifier = notifier or LoggingNotifier()
        self.frontier_factory = frontier_factory or self._default_frontier
        self.probe_factory = probe_factory or self._default_probe
        self.retry_policy = RetryPolicy(
            max_attempts=settings.max_retries,
            initial_delay_ms=settings.retry_delay_ms
        )
        self._sleep = sleep

    def _default_frontier(self, browser) -> UrlFrontier:
        return UrlFrontier(browser, navigation_timeout_ms=self.settings.scan_timeout_ms)

    def _default_probe(self, browser) -> PageProbe:
        return PageProbe(browser, self.classifier, navigation_timeout_ms=self.settings.scan_timeout_ms)

    async def run(self, scan_id: str) -> ScanOutcome:
        """Execute a pending scan job.

        Page-level failures are recorded in the findings and never fail the
        scan; any other exception marks the job failed. A run cancelled from
        outside records the job as cancelled before the cancellation
        propagates, so the domain is free for the next scan.

        Raises:
            ConfigurationError: If the job or its domain does not exist
        """
        started = utcnow()
        try:
            return await self._run(scan_id, started)
        except asyncio.CancelledError:
            logger.warning(f"Scan {scan_id} interrupted")
            await asyncio.shield(
                self._record_end(scan_id, ScanStatus.CANCELLED, "Scan interrupted", started)
            )
            raise

    async def _run(self, scan_id: str, started) -> ScanOutcome:
        async with self.db.session() as session:
            dao = ScanDAO(session)
            job = await dao.get_scan_job(scan_id)
            if job is None:
                raise ConfigurationError(f"Unknown scan: {scan_id}")
            if job.scan_status != ScanStatus.PENDING:
                logger.warning(f"Scan {scan_id} is {job.status}, not pending; not running it")
                return ScanOutcome(scan_id=scan_id, status=job.scan_status)

            domain = await dao.get_domain(job.domain_id)
            if domain is not None:
                config = ScanConfig.model_validate(job.scan_config or {})
                domain_config = DomainScanConfig.from_document(domain.scan_config)

                await dao.update_scan_job(
                    scan_id,
                    status=ScanStatus.IN_PROGRESS,
                    progress={'start_time': started.isoformat(), 'total_urls': 0, 'scanned_urls': 0}
                )
                domain_id, hostname = domain.id, domain.domain

        if domain is None:
            error = ConfigurationError(f"Domain {job.domain_id} of scan {scan_id} does not exist")
            await self._fail(scan_id, error, started)
            raise error

        logger.info(f"Scan {scan_id} started for {hostname} ({config.scan_type.value})")

        try:
            async with self.browser_factory.launch() as browser:
                ctx = ScanContext(
                    scan_id=scan_id,
                    domain_id=domain_id,
                    domain=hostname,
                    config=config,
                    cleanup_action=domain_config.cookie_cleanup_action,
                    notify_on_completion=domain_config.notify_on_completion,
                    browser=browser,
                    started_at=started,
                )
                ctx.progress.start_time = started
                ctx.findings = ctx.findings.model_copy(update={'start_time': started})
                return await self._execute(ctx)
        except Exception as e:
            logger.error(f"Scan {scan_id} failed: {e}", exc_info=True)
            await self._fail(scan_id, e, started)
            return ScanOutcome(
                scan_id=scan_id,
                status=ScanStatus.FAILED,
                error=str(e),
                duration=(utcnow() - started).total_seconds()
            )

    async def _execute(self, ctx: ScanContext) -> ScanOutcome:
        frontier = self.frontier_factory(ctx.browser)
        urls = await frontier.discover(
            ctx.seed_url,
            max_urls=ctx.config.max_urls,
            include_subdomains=ctx.config.include_subdomains,
            max_depth=ctx.config.depth
        )
        ctx.progress.total_urls = len(urls)
        await self._save_progress(ctx)

        probe = self.probe_factory(ctx.browser)
        for batch in partition(urls, self.settings.max_concurrent_scans):
            if await self._is_cancelled(ctx.scan_id):
                return await self._finish_cancelled(ctx)

            await asyncio.gather(*(self._probe_url(ctx, probe, url) for url in batch))

            ctx.findings = ctx.aggregator.merge(ctx.findings, ctx.sink.drain(), urls_scanned=len(batch))
            ctx.progress.scanned_urls += len(batch)
            ctx.progress.current_url = batch[-1]
            await self._save_progress(ctx)

        if await self._is_cancelled(ctx.scan_id):
            return await self._finish_cancelled(ctx)

        result = await self.reconciler.reconcile(
            ctx.domain_id,
            ctx.findings.cookies,
            method=DetectionMethod.SCAN,
            pattern=f"SCAN:{ctx.config.scan_type.value}",
            cleanup_action=ctx.cleanup_action if ctx.is_full_scan else None,
            scan_id=ctx.scan_id
        )

        return await self._complete(ctx, result.changes)

    async def _probe_url(self, ctx: ScanContext, probe: PageProbe, url: str) -> None:
        """Probe one URL with retries; exhausted or unexpected failures become page errors.

        Each attempt collects into its own sink. Only the successful attempt's
        observations reach the scan, so a page that never loaded contributes
        nothing but its error.
        """
        async def attempt() -> FindingsSink:
            attempt_sink = FindingsSink()
            await probe.probe(url, attempt_sink)
            return attempt_sink

        try:
            attempt_sink = await retry_with_backoff(
                attempt,
                self.retry_policy,
                retry_on=(ProbeError,),
                description=f"probe {url}",
                sleep=self._sleep
            )
        except ProbeError as e:
            ctx.sink.add(ScanError(message=str(e), url=url, phase="probe"))
        except Exception as e:
            logger.warning(f"Unexpected probe failure for {url}: {e}")
            ctx.sink.add(ScanError(message=f"Unexpected error: {e}", url=url, phase="probe"))
        else:
            ctx.sink.extend(attempt_sink.drain())

    async def _is_cancelled(self, scan_id: str) -> bool:
        async with self.db.session() as session:
            status = await ScanDAO(session).get_scan_status(scan_id)
        return status == ScanStatus.CANCELLED

    async def _save_progress(self, ctx: ScanContext) -> None:
        async with self.db.session() as session:
            dao = ScanDAO(session)
            await dao.update_scan_job(
                ctx.scan_id,
                progress=ctx.progress.model_dump(mode="json"),
                findings=ctx.findings.model_dump(mode="json")
            )
            new_errors = ctx.findings.errors[ctx.errors_persisted:]
            if new_errors:
                await dao.append_scan_errors(ctx.scan_id, new_errors)
                ctx.errors_persisted += len(new_errors)

    def _stamp_end(self, ctx: ScanContext) -> None:
        ended = utcnow()
        duration = (ended - ctx.started_at).total_seconds()
        ctx.progress.end_time = ended
        ctx.progress.duration = duration
        ctx.findings = ctx.findings.model_copy(update={'end_time': ended, 'duration': duration})

    async def _finish_cancelled(self, ctx: ScanContext) -> ScanOutcome:
        self._stamp_end(ctx)
        await self._save_progress(ctx)
        logger.info(f"Scan {ctx.scan_id} cancelled after {ctx.progress.scanned_urls} URL(s)")
        return ScanOutcome(
            scan_id=ctx.scan_id,
            status=ScanStatus.CANCELLED,
            findings=ctx.findings,
            duration=ctx.progress.duration
        )

    async def _complete(self, ctx: ScanContext, changes: FindingsChanges) -> ScanOutcome:
        ctx.findings = ctx.findings.model_copy(update={'changes': changes})
        self._stamp_end(ctx)
        stats = compute_stats(ctx.findings)

        await self._save_progress(ctx)
        async with self.db.session() as session:
            job = await ScanDAO(session).update_scan_job(
                ctx.scan_id,
                status=ScanStatus.COMPLETED,
                stats=stats.model_dump(mode="json")
            )

        logger.info(
            f"Scan {ctx.scan_id} completed: {stats.overview.total_cookies} cookies, "
            f"{stats.overview.total_scripts} scripts, {stats.changes.total} changes"
        )

        if ctx.notify_on_completion and has_significant_changes(changes):
            try:
                await self.notifier.notify_changes(job)
            except Exception as e:
                logger.error(f"Change notification failed for scan {ctx.scan_id}: {e}")

        return ScanOutcome(
            scan_id=ctx.scan_id,
            status=ScanStatus.COMPLETED,
            findings=ctx.findings,
            stats=stats,
            duration=ctx.progress.duration
        )

    async def _fail(self, scan_id: str, error: Exception, started) -> None:
        await self._record_end(scan_id, ScanStatus.FAILED, str(error) or type(error).__name__, started)

    async def _record_end(self, scan_id: str, status: ScanStatus, message: str, started) -> None:
        """Move a still-active job to a terminal status with an end time and a scan error."""
        ended = utcnow()
        try:
            async with self.db.session() as session:
                dao = ScanDAO(session)
                job = await dao.get_scan_job(scan_id)
                if job is None or job.is_complete:
                    return
                progress = dict(job.progress or {})
                progress.update({
                    'end_time': ended.isoformat(),
                    'duration': (ended - started).total_seconds(),
                })
                await dao.update_scan_job(scan_id, status=status, progress=progress)
                await dao.append_scan_errors(
                    scan_id,
                    [ScanError(message=message, phase="scan", timestamp=ended)]
                )
        except Exception as e:
            logger.error(f"Could not record {status.value} scan {scan_id}: {e}", exc_info=True)
