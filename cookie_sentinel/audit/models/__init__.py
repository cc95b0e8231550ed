"""Scan data models package."""

from .scan import (
    ScanStatus,
    ScanType,
    CookieCategory,
    DurationBucket,
    TrackerType,
    ScriptCategory,
    CookieSource,
    ScanConfig,
    ScanProgress,
    ScanError,
    CookieObservation,
    ScriptRecord,
    TrackerRecord,
    StorageSnapshot,
    IframeInfo,
    FormInput,
    FormInfo,
    PropertyChange,
    CookieChange,
    FindingsChanges,
    Findings,
    ScanStats,
    ACTIVE_SCAN_STATUSES,
    UNKNOWN_PROVIDER,
    utcnow,
)

__all__ = [
    # Enums
    'ScanStatus',
    'ScanType',
    'CookieCategory',
    'DurationBucket',
    'TrackerType',
    'ScriptCategory',
    'CookieSource',

    # Scan job parts
    'ScanConfig',
    'ScanProgress',
    'ScanError',

    # Observations
    'CookieObservation',
    'ScriptRecord',
    'TrackerRecord',
    'StorageSnapshot',
    'IframeInfo',
    'FormInput',
    'FormInfo',

    # Findings
    'PropertyChange',
    'CookieChange',
    'FindingsChanges',
    'Findings',
    'ScanStats',

    'ACTIVE_SCAN_STATUSES',
    'UNKNOWN_PROVIDER',
    'utcnow',
]
