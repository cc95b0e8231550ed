"""Trigger boundary of the scan engine.

``ScanService`` is what callers (the CLI, the scheduler, an API layer)
use to register domains, create, run and cancel scans, and configure
automatic scanning. Invalid input is rejected here with
``ConfigurationError``.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..audit.capture.browser_factory import BrowserConfig, BrowserFactory
from ..audit.cookies.classification import CookieClassifier
from ..audit.cookies.providers import KnownProviderDirectory
from ..audit.models.scan import ScanConfig, ScanStatus, ScanType, utcnow
from ..audit.utils.url_normalizer import URLNormalizationError, get_hostname, normalize
from ..config import EngineSettings
from ..errors import ConfigurationError
from ..inventory.reconciler import Reconciler
from ..persistence.dao import ScanDAO
from ..persistence.database import DatabaseConfig
from ..persistence.models import Domain, ScanJob
from ..scheduling.cron import CronValidationError, validate_cron_expression
from ..scheduling.models import SETTINGS_FIELDS, DomainScanConfig, Recurrence
from .context import ScanOutcome
from .notifications import Notifier, build_notifier
from .orchestrator import ScanOrchestrator

logger = logging.getLogger(__name__)


def normalize_domain(domain: str) -> str:
    """Hostname of a domain given bare or as a URL."""
    value = (domain or '').strip()
    if not value:
        raise ConfigurationError("Domain must not be empty")
    if '://' not in value:
        value = f"https://{value}"
    try:
        return get_hostname(normalize(value))
    except URLNormalizationError as e:
        raise ConfigurationError(f"Invalid domain '{domain}': {e}") from e


class ScanService:
    """Creates, runs, cancels and configures scans."""

    def __init__(
        self,
        db: DatabaseConfig,
        settings: Optional[EngineSettings] = None,
        orchestrator: Optional[ScanOrchestrator] = None,
        browser_factory: Optional[BrowserFactory] = None,
        classifier: Optional[CookieClassifier] = None,
        notifier: Optional[Notifier] = None
    ):
        self.db = db
        self.settings = settings or EngineSettings()
        self.classifier = classifier or CookieClassifier(KnownProviderDirectory())
        self.reconciler = Reconciler(db)
        self.orchestrator = orchestrator or ScanOrchestrator(
            db,
            self.settings,
            browser_factory or BrowserFactory(BrowserConfig.from_settings(self.settings)),
            self.classifier,
            self.reconciler,
            notifier=notifier or build_notifier(self.settings),
        )

    # ============= Domains =============

    async def register_domain(
        self,
        domain: str,
        config: Optional[Union[DomainScanConfig, Dict[str, Any]]] = None
    ) -> Domain:
        """Register a domain with an optional automatic scan configuration.

        Raises:
            ConfigurationError: If the domain is invalid or already registered
        """
        hostname = normalize_domain(domain)
        scan_config = self._validate_config(config or {})

        async with self.db.session() as session:
            dao = ScanDAO(session)
            if await dao.get_domain_by_name(hostname):
                raise ConfigurationError(f"Domain already registered: {hostname}")
            row = await dao.create_domain(hostname, scan_config.model_dump(mode="json"))

        logger.info(f"Registered domain {hostname} ({row.id})")
        return row

    async def get_domain(self, domain_id: str) -> Optional[Domain]:
        async with self.db.session() as session:
            return await ScanDAO(session).get_domain(domain_id)

    async def find_domain(self, domain: str) -> Optional[Domain]:
        """Look a domain up by id or hostname."""
        async with self.db.session() as session:
            dao = ScanDAO(session)
            row = await dao.get_domain(domain)
            if row is None:
                row = await dao.get_domain_by_name(normalize_domain(domain))
            return row

    # ============= Scans =============

    async def start_scan(
        self,
        domain_id: str,
        scan_type: Optional[Union[ScanType, str]] = None,
        priority: str = "normal",
        triggered_by: Optional[str] = None
    ) -> ScanJob:
        """Create a pending scan job for a domain.

        Args:
            domain_id: Domain to scan
            scan_type: quick, full or smart; defaults to the domain's setting
            priority: Free-form priority label stored with the job
            triggered_by: User id, "scheduler" or another caller label

        Raises:
            ConfigurationError: If the domain is unknown, the scan type is
                invalid or the domain already has an active scan
        """
        try:
            requested = ScanType(scan_type) if scan_type else None
        except ValueError:
            raise ConfigurationError(f"Invalid scan type: {scan_type}")

        async with self.db.session() as session:
            dao = ScanDAO(session)
            domain = await dao.get_domain(domain_id)
            if domain is None:
                raise ConfigurationError(f"Unknown domain: {domain_id}")

            domain_config = DomainScanConfig.from_document(domain.scan_config)
            effective_type = requested or domain_config.scan_type
            config = ScanConfig(
                scan_type=effective_type,
                priority=priority,
                max_urls=self.settings.max_urls_for(effective_type.value),
                include_subdomains=domain_config.include_subdomains,
                depth=domain_config.max_depth,
                triggered_by=triggered_by,
            )
            job = await dao.create_scan_job(domain_id, config)

        logger.info(f"Created {effective_type.value} scan {job.id} for domain {domain.domain}")
        return job

    async def run_scan(self, scan_id: str) -> ScanOutcome:
        """Run a pending scan to a terminal state."""
        return await self.orchestrator.run(scan_id)

    async def scan(self, domain_id: str, **kwargs: Any) -> ScanOutcome:
        """Create a scan and run it immediately."""
        job = await self.start_scan(domain_id, **kwargs)
        return await self.run_scan(job.id)

    async def cancel_scan(self, scan_id: str) -> ScanJob:
        """Request cancellation of a pending or in-progress scan.

        A running scan stops at its next batch boundary.

        Raises:
            ConfigurationError: If the scan is unknown or already finished
        """
        async with self.db.session() as session:
            dao = ScanDAO(session)
            job = await dao.get_scan_job(scan_id)
            if job is None:
                raise ConfigurationError(f"Unknown scan: {scan_id}")
            if job.is_complete:
                raise ConfigurationError(f"Scan {scan_id} is already {job.status}")

            progress = dict(job.progress or {})
            progress.setdefault('end_time', utcnow().isoformat())
            job = await dao.update_scan_job(scan_id, status=ScanStatus.CANCELLED, progress=progress)

        logger.info(f"Cancellation requested for scan {scan_id}")
        return job

    async def get_scan(self, scan_id: str) -> Optional[ScanJob]:
        async with self.db.session() as session:
            return await ScanDAO(session).get_scan_job(scan_id)

    async def list_scans(self, domain_id: Optional[str] = None, limit: int = 20) -> List[ScanJob]:
        async with self.db.session() as session:
            return await ScanDAO(session).list_scan_jobs(domain_id=domain_id, limit=limit)

    # ============= Automatic scanning =============

    def _validate_config(self, config: Union[DomainScanConfig, Dict[str, Any]]) -> DomainScanConfig:
        try:
            if isinstance(config, DomainScanConfig):
                validated = DomainScanConfig.model_validate(config.model_dump())
            else:
                validated = DomainScanConfig.model_validate(config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid scan configuration: {e}") from e

        if validated.scan_interval == Recurrence.CUSTOM:
            try:
                validate_cron_expression(validated.cron_expression)
            except CronValidationError as e:
                raise ConfigurationError(str(e)) from e
        return validated

    async def configure_auto_scan(
        self,
        domain_id: str,
        config: Union[DomainScanConfig, Dict[str, Any]]
    ) -> DomainScanConfig:
        """Replace a domain's automatic scan settings, keeping scheduler state.

        Raises:
            ConfigurationError: If the domain is unknown or the settings are invalid
        """
        requested = self._validate_config(config)

        async with self.db.session() as session:
            dao = ScanDAO(session)
            domain = await dao.get_domain(domain_id)
            if domain is None:
                raise ConfigurationError(f"Unknown domain: {domain_id}")

            stored = DomainScanConfig.from_document(domain.scan_config)
            merged = stored.model_copy(update={name: getattr(requested, name) for name in SETTINGS_FIELDS})
            await dao.replace_domain_scan_config(domain_id, merged.model_dump(mode="json"))

        logger.info(
            f"Configured automatic scans for domain {domain_id}: "
            f"enabled={merged.auto_scan_enabled}, interval={merged.scan_interval.value}"
        )
        return merged
