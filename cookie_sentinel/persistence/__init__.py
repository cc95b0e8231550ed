"""Durable store for domains, cookie inventories and scan jobs."""

from .dao import ScanDAO
from .database import Base, DatabaseConfig
from .models import (
    ACTIVE_SCAN_CONDITION,
    CookieRecord,
    CookieRecordStatus,
    DetectionMethod,
    Domain,
    ScanJob,
)

__all__ = [
    'ACTIVE_SCAN_CONDITION',
    'Base',
    'CookieRecord',
    'CookieRecordStatus',
    'DatabaseConfig',
    'DetectionMethod',
    'Domain',
    'ScanDAO',
    'ScanJob',
]
