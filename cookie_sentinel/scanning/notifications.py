"""Significant-change notifications for completed scans."""

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from ..audit.models.scan import utcnow
from ..config import EngineSettings
from ..persistence.models import ScanJob

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature-SHA256"


class Notifier(ABC):
    """Abstract base class for change notification channels."""

    def __init__(self, name: str, enabled: bool = True):
        """Initialize notifier.

        Args:
            name: Channel name
            enabled: Whether the channel is enabled
        """
        self.name = name
        self.enabled = enabled

    @abstractmethod
    async def notify_changes(self, scan_job: ScanJob) -> bool:
        """Send a notification for a scan with significant changes.

        Args:
            scan_job: Completed scan job with findings and stats

        Returns:
            True if successful
        """
        pass


class LoggingNotifier(Notifier):
    """Notifier that logs a change summary."""

    def __init__(self, name: str = "logging", log_level: str = "INFO"):
        super().__init__(name)
        self.log_level = getattr(logging, log_level.upper(), logging.INFO)

    async def notify_changes(self, scan_job: ScanJob) -> bool:
        changes = (scan_job.stats or {}).get('changes', {})
        logger.log(
            self.log_level,
            f"Cookie changes on domain {scan_job.domain_id} (scan {scan_job.id}): "
            f"{changes.get('new', 0)} new, {changes.get('modified', 0)} modified, "
            f"{changes.get('removed', 0)} removed"
        )
        return True


class CompositeNotifier(Notifier):
    """Fans a notification out to several channels; one failing channel does not stop the rest."""

    def __init__(self, notifiers: List[Notifier], name: str = "composite"):
        super().__init__(name)
        self.notifiers = notifiers

    async def notify_changes(self, scan_job: ScanJob) -> bool:
        delivered = True
        for notifier in self.notifiers:
            if not notifier.enabled:
                continue
            try:
                delivered = await notifier.notify_changes(scan_job) and delivered
            except Exception as e:
                logger.error(f"Error sending change notification via {notifier.name}: {e}")
                delivered = False
        return delivered


class ChangePayload(BaseModel):
    """Body posted to a change webhook."""

    event_type: str = Field(default="cookies.changed")
    timestamp: datetime = Field(default_factory=utcnow)
    source: str = Field(default="cookie-sentinel")
    scan_id: str
    domain_id: str
    changes: Dict[str, Any] = Field(default_factory=dict)
    new_cookies: List[Dict[str, Any]] = Field(default_factory=list)
    modified_cookies: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_scan_job(cls, scan_job: ScanJob) -> "ChangePayload":
        changes = (scan_job.findings or {}).get('changes', {})
        return cls(
            scan_id=scan_job.id,
            domain_id=scan_job.domain_id,
            changes=(scan_job.stats or {}).get('changes', {}),
            new_cookies=changes.get('new_cookies', []),
            modified_cookies=changes.get('modified_cookies', []),
        )


class WebhookNotifier(Notifier):
    """Posts a JSON change summary to an HTTP endpoint, optionally HMAC-signed."""

    def __init__(
        self,
        url: str,
        secret: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        name: str = "webhook"
    ):
        super().__init__(name)
        self.url = url
        self.secret = secret
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    def _sign(self, body: bytes) -> str:
        return hmac.new(self.secret.encode('utf-8'), body, hashlib.sha256).hexdigest()

    async def notify_changes(self, scan_job: ScanJob) -> bool:
        body = ChangePayload.from_scan_job(scan_job).model_dump_json().encode('utf-8')
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "cookie-sentinel-webhook/1.0",
        }
        if self.secret:
            headers[SIGNATURE_HEADER] = f"sha256={self._sign(body)}"

        try:
            response = await self.client.post(self.url, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Webhook {self.url} rejected scan {scan_job.id}: HTTP {e.response.status_code}")
            return False
        except httpx.RequestError as e:
            logger.error(f"Webhook {self.url} unreachable for scan {scan_job.id}: {e}")
            return False

        logger.debug(f"Change notification for scan {scan_job.id} delivered to {self.url}")
        return True

    async def aclose(self) -> None:
        await self.client.aclose()


def build_notifier(settings: EngineSettings) -> Notifier:
    """Logging notifier, plus a webhook when one is configured."""
    if not settings.webhook_url:
        return LoggingNotifier()
    return CompositeNotifier([
        LoggingNotifier(),
        WebhookNotifier(
            settings.webhook_url,
            secret=settings.webhook_secret,
            timeout_seconds=settings.webhook_timeout_seconds
        ),
    ])
