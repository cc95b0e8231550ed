"""Exception taxonomy for the scan engine.

Page-level failures (DiscoveryError, ProbeError) are absorbed into a scan's
error log. Scan-level failures (ReconciliationError) fail the whole scan.
SchedulerError is recorded against the domain and retried within budget.
ConfigurationError is raised synchronously at the trigger boundary.
"""

from typing import Optional


class ScanEngineError(Exception):
    """Base class for all scan engine errors."""
    pass


class DiscoveryError(ScanEngineError):
    """Raised when a page cannot be visited during URL discovery."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ProbeError(ScanEngineError):
    """Raised when navigating or evaluating a page fails."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ReconciliationError(ScanEngineError):
    """Raised when the cookie inventory cannot be written."""
    pass


class SchedulerError(ScanEngineError):
    """Raised when a scheduled trigger fails to fire."""
    pass


class ConfigurationError(ScanEngineError):
    """Raised for invalid configuration rejected at the trigger boundary."""
    pass


class ActiveScanConflictError(ConfigurationError):
    """Raised when a domain already has a pending or in-progress scan."""

    def __init__(self, domain_id: str, active_scan_id: Optional[str] = None):
        message = f"Domain {domain_id} already has an active scan"
        if active_scan_id:
            message += f" ({active_scan_id})"
        super().__init__(message)
        self.domain_id = domain_id
        self.active_scan_id = active_scan_id
