"""Per-scan state threaded through every pipeline stage."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..audit.aggregation import FindingsAggregator, FindingsSink
from ..audit.models.scan import Findings, ScanConfig, ScanProgress, ScanStats, ScanStatus, ScanType
from ..scheduling.models import CleanupAction


@dataclass
class ScanContext:
    """Everything one scan run owns.

    A context is created per run and never shared, so concurrent scans of
    different domains have no mutable state in common.
    """
    scan_id: str
    domain_id: str
    domain: str
    config: ScanConfig
    cleanup_action: Optional[CleanupAction]
    notify_on_completion: bool
    browser: Any
    started_at: datetime
    sink: FindingsSink = field(default_factory=FindingsSink)
    aggregator: FindingsAggregator = field(default_factory=FindingsAggregator)
    findings: Findings = field(default_factory=Findings)
    progress: ScanProgress = field(default_factory=ScanProgress)
    errors_persisted: int = 0

    @property
    def seed_url(self) -> str:
        if self.domain.startswith(("http://", "https://")):
            return self.domain
        return f"https://{self.domain}"

    @property
    def is_full_scan(self) -> bool:
        """Smart scans cover the same ground as full scans."""
        return self.config.scan_type in (ScanType.FULL, ScanType.SMART)


@dataclass
class ScanOutcome:
    """Result of one orchestrator run."""
    scan_id: str
    status: ScanStatus
    findings: Optional[Findings] = None
    stats: Optional[ScanStats] = None
    error: Optional[str] = None
    duration: Optional[float] = None

    def summary(self) -> Dict[str, Any]:
        """Compact result stored on the domain after scheduled runs."""
        summary: Dict[str, Any] = {
            'scan_id': self.scan_id,
            'status': self.status.value,
            'duration': self.duration,
        }
        if self.findings is not None:
            summary['urls_scanned'] = self.findings.urls_scanned
            summary['errors'] = len(self.findings.errors)
        if self.stats is not None:
            summary['overview'] = self.stats.overview.model_dump()
            summary['changes'] = self.stats.changes.model_dump()
        if self.error:
            summary['error'] = self.error
        return summary
