"""Tests for end-to-end scan orchestration with fake browser components."""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from cookie_sentinel.audit.cookies.set_cookie import ParsedCookie
from cookie_sentinel.audit.models.scan import CookieSource, ScanStatus
from cookie_sentinel.errors import ConfigurationError, ProbeError
from cookie_sentinel.inventory import Reconciler
from cookie_sentinel.persistence import CookieRecordStatus, ScanDAO
from cookie_sentinel.scanning import ScanOrchestrator, ScanService, partition
from cookie_sentinel.scheduling import AutomaticScanScheduler
from cookie_sentinel.scheduling.scheduler import run_key

SITE = [
    "https://example.com",
    "https://example.com/about",
    "https://example.com/pricing",
    "https://example.com/contact",
    "https://example.com/blog",
]


class FakeBrowserFactory:
    """Stands in for BrowserFactory; counts launched and released sessions."""

    def __init__(self):
        self.launched = 0
        self.closed = 0

    @asynccontextmanager
    async def launch(self):
        self.launched += 1
        try:
            yield MagicMock()
        finally:
            self.closed += 1


class FakeFrontier:

    def __init__(self, urls, error=None):
        self.urls = list(urls)
        self.error = error
        self.calls = []

    async def discover(self, seed_url, max_urls=100, include_subdomains=False, max_depth=None):
        self.calls.append((seed_url, max_urls, include_subdomains, max_depth))
        if self.error:
            raise self.error
        return self.urls[:max_urls]


class FakeProbe:
    """Records calls and in-flight concurrency; delegates to an async handler."""

    def __init__(self, handler=None):
        self.handler = handler
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def probe(self, url, sink):
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.handler:
                await self.handler(url, sink)
        finally:
            self.in_flight -= 1


def google_tags(classifier):
    """Handler emitting a 2-year _ga cookie and the GTM loader on every page."""
    async def handler(url, sink):
        sink.add(classifier.classify_cookie(
            ParsedCookie(name="_ga", value="GA1.2.3", domain=".example.com", max_age=63072000),
            source=CookieSource.SET_COOKIE,
            page_url=url
        ))
        sink.add(classifier.classify_script(
            "https://www.googletagmanager.com/gtm.js?id=GTM-X",
            page_url=url
        ))
    return handler


class ScanHarness:
    """Wires a real database, reconciler and service around fake browser parts."""

    def __init__(self, db, settings, classifier, urls=SITE, frontier_error=None):
        self.db = db
        self.factory = FakeBrowserFactory()
        self.frontier = FakeFrontier(urls, error=frontier_error)
        self.probe = FakeProbe()
        self.notifier = MagicMock()
        self.notifier.notify_changes = AsyncMock(return_value=True)
        self.sleep = AsyncMock()
        self.orchestrator = ScanOrchestrator(
            db,
            settings,
            self.factory,
            classifier,
            Reconciler(db),
            notifier=self.notifier,
            frontier_factory=lambda browser: self.frontier,
            probe_factory=lambda browser: self.probe,
            sleep=self.sleep,
        )
        self.service = ScanService(db, settings, orchestrator=self.orchestrator)

    async def job(self, scan_id):
        async with self.db.session() as session:
            return await ScanDAO(session).get_scan_job(scan_id)

    async def records(self, domain_id):
        async with self.db.session() as session:
            return {r.name: r for r in await ScanDAO(session).list_cookie_records(domain_id)}


@pytest.fixture
def harness(test_db_config, settings, classifier):
    return ScanHarness(test_db_config, settings, classifier)


class TestPartition:

    def test_batches(self):
        assert partition(SITE, 2) == [SITE[0:2], SITE[2:4], SITE[4:5]]
        assert partition([], 3) == []
        assert partition(["a"], 0) == [["a"]]


class TestScanOrchestrator:

    @pytest.mark.asyncio
    async def test_full_scan_records_findings_and_inventory(self, harness, classifier):
        harness.frontier.urls = SITE[:2]
        harness.probe.handler = google_tags(classifier)
        domain = await harness.service.register_domain("example.com")

        outcome = await harness.service.scan(domain.id)

        assert outcome.status == ScanStatus.COMPLETED
        assert harness.frontier.calls == [("https://example.com", 10, False, 3)]
        assert harness.factory.launched == harness.factory.closed == 1

        job = await harness.job(outcome.scan_id)
        assert job.status == ScanStatus.COMPLETED.value
        assert job.progress['total_urls'] == 2
        assert job.progress['scanned_urls'] == 2
        assert job.progress['end_time'] is not None
        assert [c['name'] for c in job.findings['cookies']] == ["_ga"]
        assert job.findings['cookies'][0]['duration'] == "long_term"
        assert job.findings['scripts'][0]['category'] == "tag_manager"
        assert job.findings['urls_scanned'] == 2
        assert job.stats['overview']['total_cookies'] == 1
        assert job.stats['overview']['total_scripts'] == 1
        assert job.stats['changes']['new'] == 1
        assert job.errors == []

        ga = (await harness.records(domain.id))["_ga"]
        assert ga.status == CookieRecordStatus.ACTIVE.value
        assert ga.provider == "Google Analytics"
        assert ga.detection['pattern'] == "SCAN:full"

        harness.notifier.notify_changes.assert_awaited_once()
        assert harness.notifier.notify_changes.await_args.args[0].id == outcome.scan_id

    @pytest.mark.asyncio
    async def test_second_full_scan_deactivates_unseen_cookies(self, harness, classifier):
        harness.frontier.urls = SITE[:2]
        harness.probe.handler = google_tags(classifier)
        domain = await harness.service.register_domain("example.com")
        await harness.service.scan(domain.id)

        harness.probe.handler = None
        outcome = await harness.service.scan(domain.id)

        assert outcome.status == ScanStatus.COMPLETED
        assert outcome.stats.changes.removed == 1
        ga = (await harness.records(domain.id))["_ga"]
        assert ga.status == CookieRecordStatus.INACTIVE.value
        assert ga.record_metadata['deactivated_by'] == outcome.scan_id
        # Removals alone are not significant
        assert harness.notifier.notify_changes.await_count == 1

    @pytest.mark.asyncio
    async def test_quick_scan_never_cleans_up(self, harness, classifier):
        harness.probe.handler = google_tags(classifier)
        domain = await harness.service.register_domain("example.com")
        await harness.service.scan(domain.id)

        harness.probe.handler = None
        outcome = await harness.service.scan(domain.id, scan_type="quick")

        assert outcome.status == ScanStatus.COMPLETED
        assert outcome.stats.changes.removed == 0
        assert (await harness.records(domain.id))["_ga"].status == CookieRecordStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_probe_concurrency_is_bounded(self, harness):
        domain = await harness.service.register_domain("example.com")

        outcome = await harness.service.scan(domain.id)

        assert outcome.status == ScanStatus.COMPLETED
        assert sorted(harness.probe.calls) == sorted(SITE)
        assert harness.probe.max_in_flight == 2
        job = await harness.job(outcome.scan_id)
        assert job.progress['scanned_urls'] == len(SITE)
        assert job.progress['current_url'] == SITE[-1]

    @pytest.mark.asyncio
    async def test_failing_page_is_retried_then_recorded(self, harness):
        broken = SITE[1]

        async def handler(url, sink):
            if url == broken:
                raise ProbeError(f"Navigation failed for {url}", url=url)

        harness.probe.handler = handler
        domain = await harness.service.register_domain("example.com")

        outcome = await harness.service.scan(domain.id)

        assert outcome.status == ScanStatus.COMPLETED
        assert harness.probe.calls.count(broken) == 3
        assert harness.sleep.await_count == 2
        job = await harness.job(outcome.scan_id)
        assert len(job.errors) == 1
        assert job.errors[0]['url'] == broken
        assert job.errors[0]['phase'] == "probe"
        assert len(job.findings['errors']) == 1

    @pytest.mark.asyncio
    async def test_flaky_page_recovers_within_budget(self, harness):
        failures = {SITE[0]: 2}

        async def handler(url, sink):
            if failures.get(url):
                failures[url] -= 1
                raise ProbeError("reset", url=url)

        harness.probe.handler = handler
        domain = await harness.service.register_domain("example.com")

        outcome = await harness.service.scan(domain.id)

        assert outcome.findings.errors == []
        assert harness.probe.calls.count(SITE[0]) == 3

    @pytest.mark.asyncio
    async def test_unexpected_probe_error_is_not_retried(self, harness):
        async def handler(url, sink):
            if url == SITE[0]:
                raise ValueError("bad snapshot")

        harness.probe.handler = handler
        domain = await harness.service.register_domain("example.com")

        outcome = await harness.service.scan(domain.id)

        assert outcome.status == ScanStatus.COMPLETED
        assert harness.probe.calls.count(SITE[0]) == 1
        assert "bad snapshot" in outcome.findings.errors[0].message

    @pytest.mark.asyncio
    async def test_cancellation_stops_at_batch_boundary(self, harness, classifier):
        tags = google_tags(classifier)

        async def handler(url, sink):
            await tags(url, sink)
            if url == SITE[0]:
                await harness.service.cancel_scan(scan_id)

        harness.probe.handler = handler
        domain = await harness.service.register_domain("example.com")
        scan_id = (await harness.service.start_scan(domain.id)).id

        outcome = await harness.service.run_scan(scan_id)

        assert outcome.status == ScanStatus.CANCELLED
        assert sorted(harness.probe.calls) == sorted(SITE[:2])
        job = await harness.job(scan_id)
        assert job.status == ScanStatus.CANCELLED.value
        assert job.progress['scanned_urls'] == 2
        assert await harness.records(domain.id) == {}
        harness.notifier.notify_changes.assert_not_awaited()
        assert harness.factory.closed == 1

    @pytest.mark.asyncio
    async def test_scan_level_failure_marks_job_failed(self, test_db_config, settings, classifier):
        harness = ScanHarness(test_db_config, settings, classifier, frontier_error=RuntimeError("browser crashed"))
        domain = await harness.service.register_domain("example.com")

        outcome = await harness.service.scan(domain.id)

        assert outcome.status == ScanStatus.FAILED
        assert outcome.error == "browser crashed"
        job = await harness.job(outcome.scan_id)
        assert job.status == ScanStatus.FAILED.value
        assert job.errors[-1]['phase'] == "scan"
        assert job.errors[-1]['message'] == "browser crashed"
        assert 'duration' in job.progress
        assert harness.factory.closed == 1

        # A failed scan frees the domain for the next one
        await harness.service.start_scan(domain.id)

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_scan(self, harness, classifier):
        harness.probe.handler = google_tags(classifier)
        harness.notifier.notify_changes = AsyncMock(side_effect=RuntimeError("smtp down"))
        domain = await harness.service.register_domain("example.com")

        outcome = await harness.service.scan(domain.id)

        assert outcome.status == ScanStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_notifications_can_be_disabled(self, harness, classifier):
        harness.probe.handler = google_tags(classifier)
        domain = await harness.service.register_domain("example.com", {'notify_on_completion': False})

        await harness.service.scan(domain.id)

        harness.notifier.notify_changes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_only_pending_scans_run(self, harness):
        domain = await harness.service.register_domain("example.com")
        job = await harness.service.start_scan(domain.id)
        await harness.service.cancel_scan(job.id)

        outcome = await harness.orchestrator.run(job.id)

        assert outcome.status == ScanStatus.CANCELLED
        assert harness.factory.launched == 0

        with pytest.raises(ConfigurationError):
            await harness.orchestrator.run("missing")

    @pytest.mark.asyncio
    async def test_failed_attempts_contribute_nothing(self, harness, classifier):
        broken, flaky = SITE[0], SITE[1]
        failures = {flaky: 2}

        async def handler(url, sink):
            sink.add(classifier.classify_request(
                "https://www.facebook.com/tr/?id=1", "image", {}, page_url=url
            ))
            if url == broken:
                sink.add(classifier.classify_cookie(
                    ParsedCookie(name="_fbp", value="fb.1.1", domain=".example.com", max_age=7776000),
                    source=CookieSource.SET_COOKIE,
                    page_url=url
                ))
                raise ProbeError("Navigation timed out", url=url)
            if failures.get(url):
                failures[url] -= 1
                raise ProbeError("reset", url=url)

        harness.frontier.urls = [broken, flaky]
        harness.probe.handler = handler
        domain = await harness.service.register_domain("example.com")

        outcome = await harness.service.scan(domain.id)

        assert outcome.status == ScanStatus.COMPLETED
        assert harness.probe.calls.count(broken) == 3
        assert harness.probe.calls.count(flaky) == 3
        assert [e.url for e in outcome.findings.errors] == [broken]
        assert [t.page_url for t in outcome.findings.trackers] == [flaky]
        assert outcome.findings.cookies == []
        assert await harness.records(domain.id) == {}

    @pytest.mark.asyncio
    async def test_interrupted_run_releases_domain(self, harness):
        entered = asyncio.Event()

        async def handler(url, sink):
            entered.set()
            await asyncio.Event().wait()

        harness.probe.handler = handler
        domain = await harness.service.register_domain("example.com")
        scan_id = (await harness.service.start_scan(domain.id)).id

        run = asyncio.create_task(harness.service.run_scan(scan_id))
        await asyncio.wait_for(entered.wait(), timeout=5)
        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run

        job = await harness.job(scan_id)
        assert job.status == ScanStatus.CANCELLED.value
        assert job.progress['end_time'] is not None
        assert job.errors[-1]['message'] == "Scan interrupted"
        assert harness.factory.closed == 1

        await harness.service.start_scan(domain.id)

    @pytest.mark.asyncio
    async def test_scheduler_stop_cancels_running_scan(self, harness):
        entered = asyncio.Event()

        async def handler(url, sink):
            entered.set()
            await asyncio.Event().wait()

        async def park(seconds):
            await asyncio.Event().wait()

        harness.probe.handler = handler
        domain = await harness.service.register_domain("example.com", {'auto_scan_enabled': True})
        scheduler = AutomaticScanScheduler(harness.service, retry_delay_minutes=0, sleep=park)
        await scheduler.start()

        scheduler._supervisor.spawn(run_key(domain.id), lambda: scheduler.trigger_now(domain.id))
        await asyncio.wait_for(entered.wait(), timeout=5)
        await scheduler.stop()

        [job] = await harness.service.list_scans(domain_id=domain.id)
        assert job.status == ScanStatus.CANCELLED.value

        await harness.service.start_scan(domain.id)

    @pytest.mark.asyncio
    async def test_missing_domain_fails_job(self, harness, monkeypatch):
        domain = await harness.service.register_domain("example.com")
        scan_id = (await harness.service.start_scan(domain.id)).id
        monkeypatch.setattr(ScanDAO, "get_domain", AsyncMock(return_value=None))

        with pytest.raises(ConfigurationError, match="does not exist"):
            await harness.orchestrator.run(scan_id)

        job = await harness.job(scan_id)
        assert job.status == ScanStatus.FAILED.value
        assert "does not exist" in job.errors[-1]['message']
        assert harness.factory.launched == 0
