"""Automatic scan scheduling for Cookie Sentinel.

Recurring per-domain triggers evaluated with croniter in each domain's
timezone, with supervised one-shot retries after failures.
"""

from .cron import (
    DEFAULT_CRON,
    RECURRENCE_CRON,
    CronEvaluationError,
    CronValidationError,
    next_fire_time,
    resolve_cron,
    validate_cron_expression,
)
from .models import (
    SETTINGS_FIELDS,
    CleanupAction,
    DomainScanConfig,
    DomainScanStatus,
    LastError,
    Recurrence,
)
from .scheduler import AutomaticScanScheduler
from .tasks import DelayedTask, TaskSupervisor

__all__ = [
    # Cron
    'DEFAULT_CRON',
    'RECURRENCE_CRON',
    'CronEvaluationError',
    'CronValidationError',
    'next_fire_time',
    'resolve_cron',
    'validate_cron_expression',

    # Models
    'SETTINGS_FIELDS',
    'CleanupAction',
    'DomainScanConfig',
    'DomainScanStatus',
    'LastError',
    'Recurrence',

    # Runtime
    'AutomaticScanScheduler',
    'DelayedTask',
    'TaskSupervisor',
]
