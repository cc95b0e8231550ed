"""Data models for per-domain automatic scan configuration.

``DomainScanConfig`` is the document embedded in each domain row. It holds
both the operator-facing settings (recurrence, scan type, cleanup policy)
and the state fields the scheduler writes after every run.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import zoneinfo
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..audit.models.scan import ScanType

logger = logging.getLogger(__name__)


class Recurrence(str, Enum):
    """Named scan intervals. ``custom`` uses an explicit cron expression."""
    HOURLY = "hourly"
    EVERY_2_HOURS = "every-2-hours"
    EVERY_6_HOURS = "every-6-hours"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class CleanupAction(str, Enum):
    """What happens to inventory records a full scan no longer sees."""
    MARK_INACTIVE = "mark_inactive"
    DELETE = "delete"
    IGNORE = "ignore"


class DomainScanStatus(str, Enum):
    """Scheduler-facing state of a domain."""
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETED = "completed"
    ERROR = "error"


class LastError(BaseModel):
    """Most recent scheduled scan failure."""
    message: str
    timestamp: datetime


class DomainScanConfig(BaseModel):
    """Automatic scan settings and scheduler state for one domain."""

    auto_scan_enabled: bool = Field(
        default=False,
        description="Whether the scheduler keeps a recurring trigger for the domain"
    )

    scan_interval: Recurrence = Field(
        default=Recurrence.DAILY,
        description="Named recurrence, or custom to use cron_expression"
    )

    cron_expression: Optional[str] = Field(
        default=None,
        description="5-field cron expression, used only for custom recurrence"
    )

    timezone: str = Field(
        default="UTC",
        description="IANA timezone used to evaluate the recurrence"
    )

    scan_type: ScanType = Field(default=ScanType.FULL)

    max_depth: int = Field(default=3, ge=0, le=20)

    include_subdomains: bool = Field(default=False)

    retry_attempts: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Delayed retries allowed after a failed scheduled scan"
    )

    cookie_cleanup_action: CleanupAction = Field(default=CleanupAction.MARK_INACTIVE)

    notify_on_completion: bool = Field(default=True)

    # Scheduler state
    scan_status: DomainScanStatus = Field(default=DomainScanStatus.IDLE)
    last_scheduled_scan: Optional[datetime] = None
    last_scan_result: Optional[Dict[str, Any]] = None
    last_scan_duration: Optional[float] = Field(default=None, description="Seconds")
    next_scheduled_scan: Optional[datetime] = None
    last_error: Optional[LastError] = None

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v):
        """Validate IANA timezone identifier."""
        try:
            zoneinfo.ZoneInfo(v)
            return v
        except (zoneinfo.ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Invalid timezone '{v}'")

    @field_validator('cron_expression')
    @classmethod
    def strip_cron_expression(cls, v):
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode='after')
    def require_cron_for_custom(self):
        """Custom recurrence needs an expression to evaluate."""
        if self.scan_interval == Recurrence.CUSTOM and not self.cron_expression:
            raise ValueError("cron_expression is required for custom scan_interval")
        return self

    @classmethod
    def from_document(cls, document: Optional[Dict[str, Any]]) -> "DomainScanConfig":
        """Load a stored document, falling back to defaults when it is invalid."""
        try:
            return cls.model_validate(document or {})
        except ValidationError as e:
            logger.warning(f"Invalid stored scan configuration, using defaults: {e}")
            return cls()


SETTINGS_FIELDS = (
    'auto_scan_enabled', 'scan_interval', 'cron_expression', 'timezone',
    'scan_type', 'max_depth', 'include_subdomains', 'retry_attempts',
    'cookie_cleanup_action', 'notify_on_completion',
)
