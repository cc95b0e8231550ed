"""Automatic scan scheduler.

Keeps one recurring trigger per domain with automatic scans enabled. A
trigger sleeps until the next cron fire time in the domain's timezone, then
starts and runs a scan through ``ScanService``. A failed scheduled scan gets
one delayed retry per failure while the domain's retry budget lasts.

Scheduled and retry fires re-read the stored settings first, so a change
made by another process (for example the command line) disarms or re-arms
the domain at its next fire.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from ..audit.models.scan import ScanStatus, utcnow
from ..errors import ActiveScanConflictError, ConfigurationError, SchedulerError
from ..persistence.dao import ScanDAO
from .cron import CronEvaluationError, next_fire_time, resolve_cron
from .models import DomainScanConfig, DomainScanStatus, LastError
from .tasks import DelayedTask, TaskSupervisor

logger = logging.getLogger(__name__)


SCHEDULER_TRIGGER = "scheduler"

MANUAL_FIRE = "manual"
SCHEDULED_FIRE = "scheduled"
RETRY_FIRE = "retry"


def trigger_key(domain_id: str) -> str:
    return f"trigger:{domain_id}"


def retry_key(domain_id: str) -> str:
    return f"retry:{domain_id}"


def run_key(domain_id: str) -> str:
    return f"run:{domain_id}"


class AutomaticScanScheduler:
    """Per-domain recurring scan triggers with supervised retries."""

    def __init__(
        self,
        scan_service,
        retry_delay_minutes: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        """Initialize the scheduler.

        Args:
            scan_service: ScanService used to create, run and configure scans
            retry_delay_minutes: Delay before retrying a failed scheduled scan
            sleep: Awaitable sleep used by triggers (asyncio.sleep by default)
        """
        self.scan_service = scan_service
        self.db = scan_service.db
        if retry_delay_minutes is None:
            retry_delay_minutes = scan_service.settings.scheduler_retry_delay_minutes
        self.retry_delay = timedelta(minutes=retry_delay_minutes)
        self._sleep = sleep or asyncio.sleep

        self._supervisor = TaskSupervisor()
        self._configs: Dict[str, DomainScanConfig] = {}
        self._retry_budget: Dict[str, int] = {}
        self._next_fire: Dict[str, datetime] = {}
        self._retries: Dict[str, DelayedTask] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> int:
        """Arm triggers for every domain with automatic scans enabled.

        Returns:
            Number of domains armed
        """
        if self._running:
            logger.warning("Automatic scan scheduler is already running")
            return len(self._configs)

        self._running = True
        async with self.db.session() as session:
            domains = await ScanDAO(session).list_auto_scan_domains()

        armed = 0
        for domain in domains:
            try:
                config = DomainScanConfig.model_validate(domain.scan_config or {})
            except ValidationError as e:
                logger.warning(f"Skipping domain {domain.id} with invalid scan configuration: {e}")
                continue
            await self._arm(domain.id, config)
            armed += 1

        logger.info(f"Automatic scan scheduler started with {armed} domain(s)")
        return armed

    async def stop(self) -> None:
        """Cancel every trigger, retry and scheduled run."""
        if not self._running:
            return

        self._running = False
        await self._supervisor.shutdown()
        self._configs.clear()
        self._retry_budget.clear()
        self._next_fire.clear()
        self._retries.clear()
        logger.info("Automatic scan scheduler stopped")

    async def configure(
        self,
        domain_id: str,
        config: Union[DomainScanConfig, Dict[str, Any]]
    ) -> DomainScanConfig:
        """Store new settings and replace the domain's trigger and pending retry.

        Raises:
            ConfigurationError: If the configuration is invalid or the domain is unknown
        """
        stored = await self.scan_service.configure_auto_scan(domain_id, config)
        self._disarm(domain_id)

        if stored.auto_scan_enabled:
            await self._arm(domain_id, stored)
        else:
            await self._update_state(domain_id, next_scheduled_scan=None)
            logger.info(f"Automatic scans disabled for domain {domain_id}")

        return stored

    async def enable(self, domain_id: str) -> DomainScanConfig:
        config = await self._load_config(domain_id)
        return await self.configure(domain_id, config.model_copy(update={'auto_scan_enabled': True}))

    async def disable(self, domain_id: str) -> DomainScanConfig:
        """Cancel the trigger and any retry; scan history is left untouched."""
        config = await self._load_config(domain_id)
        return await self.configure(domain_id, config.model_copy(update={'auto_scan_enabled': False}))

    def status(self) -> List[Dict[str, Any]]:
        """Scheduler view of each armed domain."""
        return [
            {
                'domain_id': domain_id,
                'scan_interval': config.scan_interval.value,
                'cron_expression': resolve_cron(config),
                'timezone': config.timezone,
                'next_fire': self._next_fire.get(domain_id),
                'trigger_active': self._supervisor.has(trigger_key(domain_id)),
                'retry_pending': self._supervisor.has(retry_key(domain_id)),
                'retry_at': self._retry_at(domain_id),
                'retries_remaining': self._retry_budget.get(domain_id, config.retry_attempts),
            }
            for domain_id, config in sorted(self._configs.items())
        ]

    def _retry_at(self, domain_id: str) -> Optional[datetime]:
        delayed = self._retries.get(domain_id)
        if delayed is None or not self._supervisor.has(retry_key(domain_id)):
            return None
        return delayed.due_at

    async def trigger_now(self, domain_id: str):
        """Run one scheduled scan immediately, outside the recurrence."""
        return await self._fire(domain_id)

    # ============= Triggers =============

    async def _arm(self, domain_id: str, config: DomainScanConfig) -> None:
        cron_expr = resolve_cron(config)
        try:
            next_run = next_fire_time(cron_expr, config.timezone)
        except CronEvaluationError as e:
            raise SchedulerError(f"Cannot schedule domain {domain_id}: {e}") from e

        self._configs[domain_id] = config
        self._retry_budget[domain_id] = config.retry_attempts
        self._next_fire[domain_id] = next_run
        self._supervisor.spawn(
            trigger_key(domain_id),
            lambda: self._trigger_loop(domain_id, cron_expr, config.timezone)
        )
        await self._update_state(domain_id, next_scheduled_scan=next_run)
        logger.info(f"Armed automatic scans for domain {domain_id} ({cron_expr} {config.timezone}), next at {next_run}")

    def _disarm(self, domain_id: str) -> None:
        self._supervisor.cancel(trigger_key(domain_id))
        self._supervisor.cancel(retry_key(domain_id))
        self._configs.pop(domain_id, None)
        self._retry_budget.pop(domain_id, None)
        self._next_fire.pop(domain_id, None)
        self._retries.pop(domain_id, None)

    async def _trigger_loop(self, domain_id: str, cron_expr: str, timezone_str: str) -> None:
        while True:
            now = utcnow()
            next_run = next_fire_time(cron_expr, timezone_str, now)
            self._next_fire[domain_id] = next_run
            await self._sleep((next_run - now).total_seconds())

            if self._supervisor.has(run_key(domain_id)):
                logger.warning(f"Previous scheduled scan for domain {domain_id} still running; skipping fire")
                continue
            self._supervisor.spawn(run_key(domain_id), lambda: self._fire(domain_id, reason=SCHEDULED_FIRE))

    # ============= Firing =============

    async def _fire(self, domain_id: str, reason: str = MANUAL_FIRE):
        config = await self._load_config(domain_id)

        if reason != MANUAL_FIRE:
            if not config.auto_scan_enabled:
                logger.info(f"Automatic scans for domain {domain_id} were disabled; dropping {reason} fire")
                self._disarm(domain_id)
                await self._update_state(domain_id, next_scheduled_scan=None)
                return None
            if self._schedule_changed(domain_id, config):
                await self._rearm(domain_id, config)

        try:
            job = await self.scan_service.start_scan(
                domain_id,
                scan_type=config.scan_type,
                triggered_by=SCHEDULER_TRIGGER
            )
        except ActiveScanConflictError as e:
            logger.warning(f"Skipping {reason} scan for domain {domain_id}: {e}")
            return None

        started = utcnow()
        try:
            await self._update_state(
                domain_id,
                last_scheduled_scan=started,
                scan_status=DomainScanStatus.SCANNING
            )
            logger.info(f"Started {reason} scan {job.id} for domain {domain_id}")
            outcome = await self.scan_service.run_scan(job.id)
        except asyncio.CancelledError:
            await asyncio.shield(self._release_pending(job.id))
            raise
        except Exception as e:
            await self._release_pending(job.id)
            await self._on_failure(domain_id, str(e))
            return None

        if outcome.status == ScanStatus.COMPLETED:
            await self._on_success(domain_id, outcome, started)
        elif outcome.status == ScanStatus.CANCELLED:
            logger.info(f"Scheduled scan {job.id} for domain {domain_id} was cancelled")
            await self._update_state(domain_id, scan_status=DomainScanStatus.IDLE)
        else:
            await self._on_failure(domain_id, outcome.error or f"Scan {job.id} failed")

        return outcome

    async def _on_success(self, domain_id: str, outcome, started: datetime) -> None:
        # Settings may have changed while the scan ran
        config = await self._load_config(domain_id)
        finished = utcnow()
        self._retry_budget[domain_id] = config.retry_attempts
        await self._update_state(
            domain_id,
            scan_status=DomainScanStatus.COMPLETED,
            last_scan_result=outcome.summary(),
            last_scan_duration=(finished - started).total_seconds(),
            next_scheduled_scan=self._next_after(domain_id, config, finished),
            last_error=None
        )
        logger.info(f"Scheduled scan {outcome.scan_id} for domain {domain_id} completed")

    async def _on_failure(self, domain_id: str, message: str) -> None:
        logger.error(f"Scheduled scan for domain {domain_id} failed: {message}")
        await self._update_state(
            domain_id,
            scan_status=DomainScanStatus.ERROR,
            last_error=LastError(message=message, timestamp=utcnow())
        )

        config = await self._load_config(domain_id)
        if not config.auto_scan_enabled:
            logger.info(f"Automatic scans for domain {domain_id} are disabled; not retrying")
            return

        remaining = self._retry_budget.get(domain_id, config.retry_attempts)
        if remaining <= 0:
            logger.warning(f"No retries left for domain {domain_id}")
            return

        self._retry_budget[domain_id] = remaining - 1
        self._retries[domain_id] = self._supervisor.schedule_once(
            retry_key(domain_id),
            self.retry_delay.total_seconds(),
            lambda: self._fire(domain_id, reason=RETRY_FIRE)
        )
        logger.info(
            f"Retry for domain {domain_id} in {self.retry_delay} "
            f"({remaining - 1} retr{'y' if remaining - 1 == 1 else 'ies'} left after this one)"
        )

    def _schedule_changed(self, domain_id: str, config: DomainScanConfig) -> bool:
        """Whether an armed domain's stored recurrence differs from its running trigger."""
        armed = self._configs.get(domain_id)
        if armed is None:
            return False
        return (resolve_cron(armed), armed.timezone) != (resolve_cron(config), config.timezone)

    async def _rearm(self, domain_id: str, config: DomainScanConfig) -> None:
        remaining = self._retry_budget.get(domain_id)
        logger.info(f"Schedule for domain {domain_id} changed in the store; re-arming")
        await self._arm(domain_id, config)
        if remaining is not None:
            self._retry_budget[domain_id] = remaining

    async def _release_pending(self, scan_id: str) -> None:
        """Cancel a job that was created but never picked up by the orchestrator."""
        try:
            async with self.db.session() as session:
                dao = ScanDAO(session)
                if await dao.get_scan_status(scan_id) == ScanStatus.PENDING:
                    await dao.update_scan_job(scan_id, status=ScanStatus.CANCELLED)
        except Exception as e:
            logger.error(f"Could not release pending scan {scan_id}: {e}", exc_info=True)

    def _next_after(self, domain_id: str, config: DomainScanConfig, after: datetime) -> Optional[datetime]:
        if not config.auto_scan_enabled:
            return None
        try:
            return next_fire_time(resolve_cron(config), config.timezone, after)
        except CronEvaluationError as e:
            logger.warning(f"Cannot compute next fire time for domain {domain_id}: {e}")
            return None

    # ============= Persistence =============

    async def _load_config(self, domain_id: str) -> DomainScanConfig:
        async with self.db.session() as session:
            domain = await ScanDAO(session).get_domain(domain_id)
        if domain is None:
            raise ConfigurationError(f"Unknown domain: {domain_id}")
        try:
            return DomainScanConfig.model_validate(domain.scan_config or {})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid scan configuration for domain {domain_id}: {e}") from e

    async def _update_state(self, domain_id: str, **fields: Any) -> None:
        """Write scheduler state fields into the domain's configuration document."""
        async with self.db.session() as session:
            dao = ScanDAO(session)
            domain = await dao.get_domain(domain_id)
            if domain is None:
                logger.warning(f"Domain {domain_id} disappeared; state not saved")
                return
            current = DomainScanConfig.from_document(domain.scan_config)
            updated = current.model_copy(update=fields)
            await dao.replace_domain_scan_config(domain_id, updated.model_dump(mode="json"))
