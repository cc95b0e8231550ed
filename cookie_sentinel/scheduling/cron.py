"""Timezone-aware recurrence evaluation.

Named recurrences map to fixed cron expressions; only ``custom`` uses an
operator-supplied expression. Next fire times are computed with croniter in
the domain's IANA timezone.
"""

import logging
import zoneinfo
from datetime import datetime
from typing import Dict, Optional

from croniter import croniter
from croniter.croniter import CroniterError

from .models import DomainScanConfig, Recurrence

logger = logging.getLogger(__name__)


DEFAULT_CRON = "0 2 * * *"

RECURRENCE_CRON: Dict[Recurrence, str] = {
    Recurrence.HOURLY: "0 * * * *",
    Recurrence.EVERY_2_HOURS: "0 */2 * * *",
    Recurrence.EVERY_6_HOURS: "0 */6 * * *",
    Recurrence.DAILY: "0 2 * * *",
    Recurrence.WEEKLY: "0 2 * * 1",
    Recurrence.MONTHLY: "0 2 1 * *",
}


class CronValidationError(Exception):
    """Exception raised when cron expression validation fails."""
    pass


class CronEvaluationError(Exception):
    """Exception raised when cron evaluation fails."""
    pass


def validate_cron_expression(cron_expr: str) -> None:
    """Validate a standard 5-field cron expression.

    Args:
        cron_expr: Cron expression to validate

    Raises:
        CronValidationError: If expression is invalid
    """
    fields = (cron_expr or "").split()
    if len(fields) != 5:
        raise CronValidationError(f"Cron expression must have 5 fields, got {len(fields)}")

    if not croniter.is_valid(" ".join(fields)):
        raise CronValidationError(f"Invalid cron expression '{cron_expr}'")


def resolve_cron(config: DomainScanConfig) -> str:
    """Cron expression for a domain's recurrence.

    An invalid custom expression falls back to the daily default.
    """
    if config.scan_interval != Recurrence.CUSTOM:
        return RECURRENCE_CRON[config.scan_interval]

    try:
        validate_cron_expression(config.cron_expression)
    except CronValidationError as e:
        logger.warning(f"{e}; falling back to '{DEFAULT_CRON}'")
        return DEFAULT_CRON

    return " ".join(config.cron_expression.split())


def next_fire_time(
    cron_expr: str,
    timezone_str: str = 'UTC',
    from_time: Optional[datetime] = None
) -> datetime:
    """Calculate the next fire time strictly after from_time.

    Args:
        cron_expr: Cron expression
        timezone_str: IANA timezone identifier
        from_time: Calculate from this time (default: now in timezone)

    Returns:
        Next fire time in the specified timezone

    Raises:
        CronEvaluationError: If evaluation fails
    """
    try:
        tz = zoneinfo.ZoneInfo(timezone_str)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        raise CronEvaluationError(f"Invalid timezone: {timezone_str}")

    if from_time is None:
        from_time = datetime.now(tz)
    elif from_time.tzinfo is None:
        from_time = from_time.replace(tzinfo=tz)
    else:
        from_time = from_time.astimezone(tz)

    try:
        next_run = croniter(cron_expr, from_time).get_next(datetime)
    except (CroniterError, ValueError) as e:
        raise CronEvaluationError(f"Failed to evaluate cron expression '{cron_expr}': {e}")

    if next_run.tzinfo is None:
        return next_run.replace(tzinfo=tz)
    return next_run.astimezone(tz)
