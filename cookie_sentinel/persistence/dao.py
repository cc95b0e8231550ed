"""Data Access Objects for the Cookie Sentinel durable store.

The DAO works on a caller-provided session; transaction boundaries belong
to the caller (``DatabaseConfig.session()``). Every JSON column update
assigns a fresh value so SQLAlchemy records the change.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit.models.scan import ACTIVE_SCAN_STATUSES, ScanConfig, ScanError, ScanStatus
from ..errors import ActiveScanConflictError
from .models import CookieRecord, CookieRecordStatus, Domain, ScanJob

logger = logging.getLogger(__name__)


class ScanDAO:
    """Data Access Object for domains, scan jobs and cookie records."""

    def __init__(self, session: AsyncSession):
        """Initialize DAO with database session."""
        self.session = session

    # ============= Domain Operations =============

    async def create_domain(
        self,
        domain: str,
        scan_config: Optional[Dict[str, Any]] = None,
        domain_id: Optional[str] = None
    ) -> Domain:
        """Register a domain."""
        row = Domain(domain=domain.lower(), scan_config=scan_config or {})
        if domain_id:
            row.id = domain_id
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_domain(self, domain_id: str) -> Optional[Domain]:
        """Get domain by ID."""
        return await self.session.get(Domain, domain_id)

    async def get_domain_by_name(self, domain: str) -> Optional[Domain]:
        """Get domain by hostname."""
        result = await self.session.execute(
            select(Domain).where(Domain.domain == domain.lower())
        )
        return result.scalar_one_or_none()

    async def list_domains(self) -> List[Domain]:
        result = await self.session.execute(select(Domain).order_by(Domain.domain))
        return list(result.scalars().all())

    async def list_auto_scan_domains(self) -> List[Domain]:
        """Domains whose scan configuration enables automatic scans."""
        domains = await self.list_domains()
        return [d for d in domains if (d.scan_config or {}).get('auto_scan_enabled')]

    async def update_domain_scan_config(self, domain_id: str, **fields: Any) -> Optional[Domain]:
        """Merge fields into a domain's scan configuration document."""
        domain = await self.get_domain(domain_id)
        if domain is None:
            return None

        config = dict(domain.scan_config or {})
        config.update(fields)
        domain.scan_config = config
        await self.session.flush()
        return domain

    async def replace_domain_scan_config(self, domain_id: str, scan_config: Dict[str, Any]) -> Optional[Domain]:
        """Replace a domain's scan configuration document."""
        domain = await self.get_domain(domain_id)
        if domain is None:
            return None

        domain.scan_config = dict(scan_config)
        await self.session.flush()
        return domain

    # ============= Scan Job Operations =============

    async def get_active_scan(self, domain_id: str) -> Optional[ScanJob]:
        """The pending or in-progress scan of a domain, if any."""
        result = await self.session.execute(
            select(ScanJob).where(
                ScanJob.domain_id == domain_id,
                ScanJob.status.in_([s.value for s in ACTIVE_SCAN_STATUSES])
            )
        )
        return result.scalars().first()

    async def create_scan_job(self, domain_id: str, scan_config: ScanConfig) -> ScanJob:
        """Create a pending scan job.

        The active-scan check and the insert run in the caller's
        transaction; the partial unique index rejects a concurrent insert
        that slipped past the check.

        Raises:
            ActiveScanConflictError: If the domain already has an active scan
        """
        active = await self.get_active_scan(domain_id)
        if active is not None:
            raise ActiveScanConflictError(domain_id, active.id)

        job = ScanJob(
            domain_id=domain_id,
            status=ScanStatus.PENDING.value,
            scan_config=scan_config.model_dump(mode="json"),
            progress={},
            errors=[],
        )
        try:
            async with self.session.begin_nested():
                self.session.add(job)
                await self.session.flush()
        except IntegrityError as e:
            logger.warning(f"Concurrent scan creation rejected for domain {domain_id}: {e}")
            raise ActiveScanConflictError(domain_id) from e

        return job

    async def get_scan_job(self, scan_id: str) -> Optional[ScanJob]:
        """Get scan job by ID."""
        return await self.session.get(ScanJob, scan_id)

    async def get_scan_status(self, scan_id: str) -> Optional[ScanStatus]:
        """Read the current status straight from the database."""
        result = await self.session.execute(
            select(ScanJob.status).where(ScanJob.id == scan_id)
        )
        status = result.scalar_one_or_none()
        return ScanStatus(status) if status else None

    async def list_scan_jobs(
        self,
        domain_id: Optional[str] = None,
        status: Optional[ScanStatus] = None,
        limit: int = 50
    ) -> List[ScanJob]:
        """List scan jobs, newest first."""
        query = select(ScanJob)
        if domain_id:
            query = query.where(ScanJob.domain_id == domain_id)
        if status:
            query = query.where(ScanJob.status == status.value)
        query = query.order_by(desc(ScanJob.created_at)).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update_scan_job(self, scan_id: str, **fields: Any) -> Optional[ScanJob]:
        """Set columns of a scan job.

        Status values may be passed as ScanStatus members.
        """
        job = await self.get_scan_job(scan_id)
        if job is None:
            return None

        for name, value in fields.items():
            if isinstance(value, ScanStatus):
                value = value.value
            setattr(job, name, value)
        await self.session.flush()
        return job

    async def append_scan_errors(self, scan_id: str, errors: Sequence[ScanError]) -> Optional[ScanJob]:
        """Append entries to a scan job's error log."""
        job = await self.get_scan_job(scan_id)
        if job is None:
            return None

        job.errors = list(job.errors or []) + [e.model_dump(mode="json") for e in errors]
        await self.session.flush()
        return job

    # ============= Cookie Record Operations =============

    async def list_cookie_records(
        self,
        domain_id: str,
        status: Optional[CookieRecordStatus] = None
    ) -> List[CookieRecord]:
        """Cookie records of a domain, optionally filtered by status."""
        query = select(CookieRecord).where(CookieRecord.domain_id == domain_id)
        if status:
            query = query.where(CookieRecord.status == status.value)
        query = query.order_by(CookieRecord.name, CookieRecord.path)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_cookie_record(self, domain_id: str, name: str, path: str = "/") -> Optional[CookieRecord]:
        result = await self.session.execute(
            select(CookieRecord).where(
                CookieRecord.domain_id == domain_id,
                CookieRecord.name == name,
                CookieRecord.path == path
            )
        )
        return result.scalar_one_or_none()

    async def add_cookie_record(self, record: CookieRecord) -> CookieRecord:
        self.session.add(record)
        await self.session.flush()
        return record

    async def delete_cookie_records(self, record_ids: Sequence[int]) -> int:
        """Hard-delete cookie records by ID."""
        if not record_ids:
            return 0
        result = await self.session.execute(
            delete(CookieRecord).where(CookieRecord.id.in_(list(record_ids)))
        )
        return result.rowcount or 0
