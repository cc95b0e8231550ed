"""Data models for scan observations, findings and statistics.

Observations produced by probes are frozen so they can be appended to the
shared findings sink from concurrent page visits and merged later without
defensive copies.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class ScanStatus(str, Enum):
    """Lifecycle states of a scan job."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED, ScanStatus.CANCELLED)


ACTIVE_SCAN_STATUSES = (ScanStatus.PENDING, ScanStatus.IN_PROGRESS)


class ScanType(str, Enum):
    """Scan depth presets."""
    QUICK = "quick"
    FULL = "full"
    SMART = "smart"


class CookieCategory(str, Enum):
    """Consent categories assigned by the classifier."""
    NECESSARY = "necessary"
    FUNCTIONALITY = "functionality"
    ANALYTICS = "analytics"
    MARKETING = "marketing"
    ADVERTISING = "advertising"
    UNKNOWN = "unknown"


class DurationBucket(str, Enum):
    """Cookie lifetime buckets."""
    SESSION = "session"
    SHORT_TERM = "short_term"
    MEDIUM_TERM = "medium_term"
    LONG_TERM = "long_term"


class TrackerType(str, Enum):
    """URL pattern families used to flag tracking requests."""
    PIXELS = "pixels"
    BEACONS = "beacons"
    TRACKING = "tracking"


class ScriptCategory(str, Enum):
    """Script categories assigned by the classifier."""
    ANALYTICS = "analytics"
    ADVERTISING = "advertising"
    MARKETING = "marketing"
    TAG_MANAGER = "tag_manager"
    UNKNOWN = "unknown"


class CookieSource(str, Enum):
    """Where a cookie observation came from."""
    SET_COOKIE = "set_cookie"
    BROWSER = "browser"
    EMBED = "embed"


UNKNOWN_PROVIDER = "Unknown"


class ScanConfig(BaseModel):
    """Per-scan configuration captured when the job is created."""

    scan_type: ScanType = Field(default=ScanType.FULL)
    priority: str = Field(default="normal")
    max_urls: int = Field(default=100, ge=1)
    include_subdomains: bool = Field(default=False)
    depth: int = Field(default=3, ge=0)
    triggered_by: Optional[str] = Field(
        default=None,
        description="User id, 'scheduler' or another caller label"
    )


class ScanProgress(BaseModel):
    """Externally observable progress of a running scan."""

    total_urls: int = 0
    scanned_urls: int = 0
    current_url: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, description="Seconds")


class ScanError(BaseModel):
    """One entry in a scan's append-only error log."""

    model_config = ConfigDict(frozen=True)

    message: str
    url: Optional[str] = None
    phase: str = Field(default="probe", description="discovery, probe, reconcile or scan")
    timestamp: datetime = Field(default_factory=utcnow)


class CookieObservation(BaseModel):
    """A cookie seen during a page visit, with derived classification."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: Optional[str] = None
    domain: Optional[str] = None
    path: str = "/"
    expires: Optional[datetime] = None
    max_age: Optional[int] = None
    secure: bool = False
    http_only: bool = False
    same_site: Optional[str] = None

    category: CookieCategory = CookieCategory.UNKNOWN
    provider: str = UNKNOWN_PROVIDER
    duration: DurationBucket = DurationBucket.SESSION
    first_party: bool = True
    size: int = 0
    source: CookieSource = CookieSource.BROWSER
    page_url: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        """Inventory identity of the cookie."""
        return (self.name, self.path or "/")


class ScriptRecord(BaseModel):
    """A script loaded or embedded by a page."""

    model_config = ConfigDict(frozen=True)

    url: Optional[str] = None
    content_type: str = "text/javascript"
    category: ScriptCategory = ScriptCategory.UNKNOWN
    provider: str = UNKNOWN_PROVIDER
    load_type: str = Field(default="sync", description="sync, async or defer")
    inline: bool = False
    page_url: Optional[str] = None


class TrackerRecord(BaseModel):
    """A network request matching a tracker URL family."""

    model_config = ConfigDict(frozen=True)

    url: str
    resource_type: str = "other"
    tracker_type: TrackerType
    category: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    page_url: Optional[str] = None


class StorageSnapshot(BaseModel):
    """localStorage and sessionStorage contents of one page."""

    model_config = ConfigDict(frozen=True)

    page_url: str
    local_storage: Dict[str, Optional[str]] = Field(default_factory=dict)
    session_storage: Dict[str, Optional[str]] = Field(default_factory=dict)


class IframeInfo(BaseModel):
    """Attributes of an iframe element."""

    model_config = ConfigDict(frozen=True)

    page_url: str
    src: Optional[str] = None
    title: Optional[str] = None
    name: Optional[str] = None
    id: Optional[str] = None
    width: Optional[str] = None
    height: Optional[str] = None
    sandbox: Optional[str] = None
    allow: Optional[str] = None
    loading: Optional[str] = None


class FormInput(BaseModel):
    """Metadata of one form input."""

    model_config = ConfigDict(frozen=True)

    type: Optional[str] = None
    name: Optional[str] = None
    id: Optional[str] = None
    required: bool = False
    autocomplete: Optional[str] = None
    pattern: Optional[str] = None


class FormInfo(BaseModel):
    """A form element and its inputs."""

    model_config = ConfigDict(frozen=True)

    page_url: str
    action: Optional[str] = None
    method: Optional[str] = None
    inputs: List[FormInput] = Field(default_factory=list)


class PropertyChange(BaseModel):
    """One changed attribute of a reobserved cookie."""

    property: str
    old: Any = None
    new: Any = None


class CookieChange(BaseModel):
    """A known cookie whose observed attributes differ from the inventory."""

    previous: Dict[str, Any]
    current: CookieObservation
    changes: List[PropertyChange] = Field(default_factory=list)

    def touches(self, *properties: str) -> bool:
        return any(change.property in properties for change in self.changes)


class FindingsChanges(BaseModel):
    """Diff between a scan's cookies and the durable inventory."""

    new_cookies: List[CookieObservation] = Field(default_factory=list)
    modified_cookies: List[CookieChange] = Field(default_factory=list)
    removed_cookies: List[Dict[str, Any]] = Field(default_factory=list)


class Findings(BaseModel):
    """Scan-scoped aggregate of all observations."""

    cookies: List[CookieObservation] = Field(default_factory=list)
    scripts: List[ScriptRecord] = Field(default_factory=list)
    trackers: List[TrackerRecord] = Field(default_factory=list)
    storage: List[StorageSnapshot] = Field(default_factory=list)
    iframes: List[IframeInfo] = Field(default_factory=list)
    forms: List[FormInfo] = Field(default_factory=list)
    errors: List[ScanError] = Field(default_factory=list)
    changes: FindingsChanges = Field(default_factory=FindingsChanges)
    urls_scanned: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None

    @computed_field
    @property
    def vendors(self) -> List[str]:
        """Distinct known providers across cookies and scripts."""
        names = {c.provider for c in self.cookies} | {s.provider for s in self.scripts}
        names.discard(UNKNOWN_PROVIDER)
        return sorted(names)


class StatsOverview(BaseModel):
    total_cookies: int = 0
    total_scripts: int = 0
    total_trackers: int = 0
    total_vendors: int = 0


class CookieStats(BaseModel):
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_provider: Dict[str, int] = Field(default_factory=dict)
    by_duration: Dict[str, int] = Field(default_factory=dict)


class ScriptStats(BaseModel):
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_provider: Dict[str, int] = Field(default_factory=dict)


class TrackerStats(BaseModel):
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_domain: Dict[str, int] = Field(default_factory=dict)


class ChangeStats(BaseModel):
    total: int = 0
    new: int = 0
    modified: int = 0
    removed: int = 0


class ScanStats(BaseModel):
    """Summary statistics computed from a scan's findings."""

    overview: StatsOverview = Field(default_factory=StatsOverview)
    cookies: CookieStats = Field(default_factory=CookieStats)
    scripts: ScriptStats = Field(default_factory=ScriptStats)
    trackers: TrackerStats = Field(default_factory=TrackerStats)
    changes: ChangeStats = Field(default_factory=ChangeStats)
