"""Findings accumulation, merging and statistics.

Probes running concurrently append frozen observations to a
``FindingsSink``. The orchestrator drains the sink once per batch and folds
the drained items into an immutable ``Findings`` document through
``FindingsAggregator.merge``, which returns a new document each time.
"""

import asyncio
import logging
from collections import Counter
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, Union

from .models.scan import (
    ChangeStats,
    CookieObservation,
    CookieStats,
    Findings,
    FindingsChanges,
    FormInfo,
    IframeInfo,
    ScanError,
    ScanStats,
    ScriptRecord,
    ScriptStats,
    StatsOverview,
    StorageSnapshot,
    TrackerRecord,
    TrackerStats,
)
from .utils.url_normalizer import extract_base_domain, get_hostname

logger = logging.getLogger(__name__)


Observation = Union[
    CookieObservation, ScriptRecord, TrackerRecord,
    StorageSnapshot, IframeInfo, FormInfo, ScanError,
]

DEFAULT_BUCKET = "unknown"


class FindingsSink:
    """Append-only, concurrency-safe collection point for observations."""

    def __init__(self):
        self._queue: "asyncio.Queue[Observation]" = asyncio.Queue()
        self.total_added = 0

    def add(self, item: Observation) -> None:
        """Append one observation without blocking."""
        self._queue.put_nowait(item)
        self.total_added += 1

    def extend(self, items: Iterable[Observation]) -> None:
        for item in items:
            self.add(item)

    def drain(self) -> List[Observation]:
        """Remove and return everything appended so far."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return items

    def __len__(self) -> int:
        return self._queue.qsize()


def cookie_identity(cookie: CookieObservation) -> Tuple[str, str, str]:
    """Scan-level dedup key: name, registrable domain and path."""
    domain = cookie.domain or get_hostname(cookie.page_url or '')
    return (cookie.name, extract_base_domain(domain) if domain else '', cookie.path or '/')


class FindingsAggregator:
    """Merges drained observations into immutable findings documents."""

    def merge(
        self,
        findings: Findings,
        items: Iterable[Observation],
        urls_scanned: int = 0
    ) -> Findings:
        """Return a new Findings with the items folded in.

        Cookies are deduplicated by ``cookie_identity``; an observation that
        carries a domain replaces an earlier one without. External scripts
        are deduplicated by URL.
        """
        cookies: Dict[Tuple[str, str, str], CookieObservation] = {
            cookie_identity(c): c for c in findings.cookies
        }
        scripts = list(findings.scripts)
        script_urls = {s.url for s in scripts if s.url}
        trackers = list(findings.trackers)
        storage = list(findings.storage)
        iframes = list(findings.iframes)
        forms = list(findings.forms)
        errors = list(findings.errors)

        for item in items:
            if isinstance(item, CookieObservation):
                key = cookie_identity(item)
                existing = cookies.get(key)
                if existing is None or (existing.domain is None and item.domain):
                    cookies[key] = item
            elif isinstance(item, ScriptRecord):
                if item.url:
                    if item.url in script_urls:
                        continue
                    script_urls.add(item.url)
                scripts.append(item)
            elif isinstance(item, TrackerRecord):
                trackers.append(item)
            elif isinstance(item, StorageSnapshot):
                storage.append(item)
            elif isinstance(item, IframeInfo):
                iframes.append(item)
            elif isinstance(item, FormInfo):
                forms.append(item)
            elif isinstance(item, ScanError):
                errors.append(item)
            else:
                logger.warning(f"Ignoring unsupported observation type: {type(item).__name__}")

        return findings.model_copy(update={
            'cookies': list(cookies.values()),
            'scripts': scripts,
            'trackers': trackers,
            'storage': storage,
            'iframes': iframes,
            'forms': forms,
            'errors': errors,
            'urls_scanned': findings.urls_scanned + urls_scanned,
        })


def count_by(
    items: Iterable[Any],
    key: Union[str, Callable[[Any], Optional[Hashable]]],
    default: str = DEFAULT_BUCKET
) -> Dict[str, int]:
    """Count items grouped by an attribute name or key function.

    Empty or missing keys fall into the default bucket. Enum values are
    counted by their value.
    """
    counter: Counter = Counter()
    for item in items:
        if callable(key):
            value = key(item)
        else:
            value = getattr(item, key, None)
        value = getattr(value, 'value', value)
        counter[str(value) if value not in (None, '') else default] += 1
    return dict(counter)


def _tracker_domain(tracker: TrackerRecord) -> Optional[str]:
    return get_hostname(tracker.url) or None


def compute_stats(findings: Findings) -> ScanStats:
    """Summary statistics for a findings document."""
    changes = findings.changes
    new = len(changes.new_cookies)
    modified = len(changes.modified_cookies)
    removed = len(changes.removed_cookies)

    return ScanStats(
        overview=StatsOverview(
            total_cookies=len(findings.cookies),
            total_scripts=len(findings.scripts),
            total_trackers=len(findings.trackers),
            total_vendors=len(findings.vendors),
        ),
        cookies=CookieStats(
            by_category=count_by(findings.cookies, 'category'),
            by_provider=count_by(findings.cookies, 'provider'),
            by_duration=count_by(findings.cookies, 'duration'),
        ),
        scripts=ScriptStats(
            by_type=count_by(findings.scripts, 'category'),
            by_provider=count_by(findings.scripts, 'provider'),
        ),
        trackers=TrackerStats(
            by_type=count_by(findings.trackers, 'tracker_type'),
            by_domain=count_by(findings.trackers, _tracker_domain),
        ),
        changes=ChangeStats(
            total=new + modified + removed,
            new=new,
            modified=modified,
            removed=removed,
        ),
    )


def has_significant_changes(changes: FindingsChanges) -> bool:
    """A new cookie, or a modified cookie whose category or provider changed."""
    if changes.new_cookies:
        return True
    return any(change.touches('category', 'provider') for change in changes.modified_cookies)
