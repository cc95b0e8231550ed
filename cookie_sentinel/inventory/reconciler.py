"""Reconciliation of observed cookies against the durable inventory.

The reconciler is the only writer of ``CookieRecord`` rows. One pass is a
full outer join on (name, path) between the domain's records and the
observed cookies:

* observed only: a new active record is created
* both: detection metadata is bumped and corrected values are applied
* known only: the record is handled by the cleanup policy

Each pass runs in a single transaction so a failed write never leaves a
partially reconciled inventory behind.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..audit.models.scan import (
    UNKNOWN_PROVIDER,
    CookieChange,
    CookieObservation,
    FindingsChanges,
    PropertyChange,
    utcnow,
)
from ..errors import ReconciliationError
from ..persistence.dao import ScanDAO
from ..persistence.database import DatabaseConfig
from ..persistence.models import CookieRecord, CookieRecordStatus, DetectionMethod
from ..scheduling.models import CleanupAction
from .descriptions import describe_cookie, describe_purpose

logger = logging.getLogger(__name__)


CookieKey = Tuple[str, str]

PATTERN_SEPARATOR = ";"

DEACTIVATION_REASON = "not_found_in_scan"

# Attribute fields compared against the stored record on reobservation
TRACKED_ATTRIBUTES = ('domain', 'secure', 'http_only', 'same_site', 'duration')


@dataclass
class ReconciliationResult:
    """Buckets of one reconciliation pass, keyed by (name, path)."""
    added: List[CookieKey] = field(default_factory=list)
    updated: List[CookieKey] = field(default_factory=list)
    deactivated: List[CookieKey] = field(default_factory=list)
    deleted: List[CookieKey] = field(default_factory=list)
    ignored: List[CookieKey] = field(default_factory=list)
    changes: FindingsChanges = field(default_factory=FindingsChanges)

    @property
    def removed(self) -> List[CookieKey]:
        return self.deactivated + self.deleted + self.ignored

    def summary(self) -> Dict[str, int]:
        return {
            'added': len(self.added),
            'updated': len(self.updated),
            'deactivated': len(self.deactivated),
            'deleted': len(self.deleted),
            'ignored': len(self.ignored),
        }


def is_informative(value: Optional[str]) -> bool:
    """Observed provider/category values that may overwrite stored ones."""
    return bool(value) and value not in (UNKNOWN_PROVIDER, 'unknown')


def append_pattern(existing: Optional[str], tag: Optional[str]) -> Optional[str]:
    """Add a detection tag to a ';'-joined pattern string unless present."""
    if not tag:
        return existing
    tags = [t for t in (existing or '').split(PATTERN_SEPARATOR) if t]
    if tag in tags:
        return existing
    return PATTERN_SEPARATOR.join(tags + [tag])


def collapse_observations(observed: Iterable[CookieObservation]) -> Dict[CookieKey, CookieObservation]:
    """Index observations by inventory key, preferring ones that carry a domain."""
    by_key: Dict[CookieKey, CookieObservation] = {}
    for cookie in observed:
        existing = by_key.get(cookie.key)
        if existing is None or (existing.domain is None and cookie.domain):
            by_key[cookie.key] = cookie
    return by_key


def observation_attributes(cookie: CookieObservation) -> Dict[str, Any]:
    return {
        'domain': cookie.domain,
        'secure': cookie.secure,
        'http_only': cookie.http_only,
        'same_site': cookie.same_site,
        'duration': cookie.duration.value,
        'expires': cookie.expires.isoformat() if cookie.expires else None,
        'size': cookie.size,
        'first_party': cookie.first_party,
        'source': cookie.source.value,
    }


class Reconciler:
    """Applies observed cookies to a domain's durable inventory."""

    def __init__(self, db: DatabaseConfig):
        self.db = db

    async def reconcile(
        self,
        domain_id: str,
        observed: Iterable[CookieObservation],
        method: DetectionMethod = DetectionMethod.SCAN,
        pattern: Optional[str] = None,
        cleanup_action: Optional[CleanupAction] = CleanupAction.MARK_INACTIVE,
        scan_id: Optional[str] = None
    ) -> ReconciliationResult:
        """Reconcile one pass of observations.

        Args:
            domain_id: Domain whose inventory is reconciled
            observed: Cookies observed by this pass
            method: Detection channel recorded on new records
            pattern: Detection tag appended to every touched record
            cleanup_action: Policy for records this pass did not see; only
                applied to scan passes
            scan_id: Scan that produced the observations, if any

        Returns:
            ReconciliationResult with buckets and the change report

        Raises:
            ReconciliationError: If the inventory cannot be read or written
        """
        observed_by_key = collapse_observations(observed)
        now = utcnow()
        result = ReconciliationResult()

        try:
            async with self.db.session() as session:
                dao = ScanDAO(session)
                records = {
                    record.key: record
                    for record in await dao.list_cookie_records(domain_id)
                }

                for key, cookie in observed_by_key.items():
                    record = records.get(key)
                    if record is None:
                        await dao.add_cookie_record(
                            self._new_record(domain_id, cookie, method, pattern, scan_id, now)
                        )
                        result.added.append(key)
                        result.changes.new_cookies.append(cookie)
                    else:
                        change = self._update_record(record, cookie, pattern, now)
                        result.updated.append(key)
                        if change is not None:
                            result.changes.modified_cookies.append(change)

                if method == DetectionMethod.SCAN and cleanup_action is not None:
                    missing = [
                        record for key, record in records.items()
                        if key not in observed_by_key and record.is_active
                    ]
                    await self._cleanup(dao, missing, cleanup_action, result, scan_id, now)

                await session.flush()
        except SQLAlchemyError as e:
            raise ReconciliationError(f"Failed to reconcile cookies for domain {domain_id}: {e}") from e

        logger.info(f"Reconciled domain {domain_id} via {method.value}: {result.summary()}")
        return result

    def _new_record(
        self,
        domain_id: str,
        cookie: CookieObservation,
        method: DetectionMethod,
        pattern: Optional[str],
        scan_id: Optional[str],
        now: datetime
    ) -> CookieRecord:
        category = cookie.category.value
        return CookieRecord(
            domain_id=domain_id,
            name=cookie.name,
            path=cookie.path or "/",
            cookie_domain=cookie.domain,
            provider=cookie.provider or UNKNOWN_PROVIDER,
            category=category,
            description=describe_cookie(cookie.name, cookie.provider, category),
            purpose=describe_purpose(category, cookie.provider),
            attributes=observation_attributes(cookie),
            detection={
                'method': method.value,
                'first_detected': now.isoformat(),
                'last_seen': now.isoformat(),
                'frequency': 1,
                'pattern': append_pattern(None, pattern),
            },
            status=CookieRecordStatus.ACTIVE.value,
            record_metadata={
                'created_by': method.value,
                'scan_id': scan_id,
                'source_url': cookie.page_url,
            },
        )

    def _update_record(
        self,
        record: CookieRecord,
        cookie: CookieObservation,
        pattern: Optional[str],
        now: datetime
    ) -> Optional[CookieChange]:
        """Apply a reobservation; return the change report entry if anything differs."""
        previous = record.snapshot()
        changes: List[PropertyChange] = []

        provider = cookie.provider
        if is_informative(provider) and provider != record.provider:
            changes.append(PropertyChange(property='provider', old=record.provider, new=provider))
            record.provider = provider

        category = cookie.category.value
        if is_informative(category) and category != record.category:
            changes.append(PropertyChange(property='category', old=record.category, new=category))
            record.category = category

        attributes = observation_attributes(cookie)
        stored = record.attributes or {}
        for name in TRACKED_ATTRIBUTES:
            if stored.get(name) != attributes[name]:
                changes.append(PropertyChange(property=name, old=stored.get(name), new=attributes[name]))
        record.attributes = {**stored, **attributes}
        if cookie.domain:
            record.cookie_domain = cookie.domain

        if not record.is_active:
            changes.append(PropertyChange(
                property='status',
                old=record.status,
                new=CookieRecordStatus.ACTIVE.value
            ))
            record.status = CookieRecordStatus.ACTIVE.value
            metadata = dict(record.record_metadata or {})
            metadata['reactivated_at'] = now.isoformat()
            record.record_metadata = metadata

        detection = dict(record.detection or {})
        detection['last_seen'] = now.isoformat()
        detection['frequency'] = int(detection.get('frequency') or 0) + 1
        detection['pattern'] = append_pattern(detection.get('pattern'), pattern)
        record.detection = detection

        if not changes:
            return None
        return CookieChange(previous=previous, current=cookie, changes=changes)

    async def _cleanup(
        self,
        dao: ScanDAO,
        missing: List[CookieRecord],
        action: CleanupAction,
        result: ReconciliationResult,
        scan_id: Optional[str],
        now: datetime
    ) -> None:
        for record in missing:
            result.changes.removed_cookies.append(record.snapshot())

        if action == CleanupAction.MARK_INACTIVE:
            for record in missing:
                record.status = CookieRecordStatus.INACTIVE.value
                metadata = dict(record.record_metadata or {})
                metadata.update({
                    'deactivated_by': scan_id or 'reconciler',
                    'deactivated_at': now.isoformat(),
                    'deactivation_reason': DEACTIVATION_REASON,
                })
                record.record_metadata = metadata
                result.deactivated.append(record.key)
        elif action == CleanupAction.DELETE:
            await dao.delete_cookie_records([record.id for record in missing])
            result.deleted.extend(record.key for record in missing)
        else:
            result.ignored.extend(record.key for record in missing)
            if missing:
                logger.info(f"Cleanup policy 'ignore': leaving {len(missing)} unseen cookie(s) untouched")
