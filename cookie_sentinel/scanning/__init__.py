"""Scan lifecycle: orchestration, trigger boundary and notifications."""

from .context import ScanContext, ScanOutcome
from .notifications import CompositeNotifier, LoggingNotifier, Notifier, WebhookNotifier, build_notifier
from .orchestrator import ScanOrchestrator, partition
from .service import ScanService, normalize_domain

__all__ = [
    'CompositeNotifier',
    'LoggingNotifier',
    'Notifier',
    'ScanContext',
    'ScanOrchestrator',
    'ScanOutcome',
    'ScanService',
    'WebhookNotifier',
    'build_notifier',
    'normalize_domain',
    'partition',
]
