"""Embed detection channel.

Cookies reported by the detector script embedded on customer pages are
classified like scan observations and fed through the same reconciler,
tagged with ``detection.method = "embed"``. Embed reports only ever add or
refresh records; they never trigger cleanup of unseen cookies.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..audit.cookies.classification import CookieClassifier
from ..audit.cookies.set_cookie import ParsedCookie
from ..audit.models.scan import UNKNOWN_PROVIDER, CookieObservation, CookieSource
from ..persistence.models import DetectionMethod
from .reconciler import ReconciliationResult, Reconciler

logger = logging.getLogger(__name__)


def embed_pattern(source: str, method: str) -> str:
    return f"EMBED:{source}:{method}"


class EmbedDetectionService:
    """Registers cookies reported by the embedded detector."""

    def __init__(self, reconciler: Reconciler, classifier: CookieClassifier):
        self.reconciler = reconciler
        self.classifier = classifier

    def _observe(self, payload: Dict[str, Any], page_url: Optional[str]) -> Optional[CookieObservation]:
        name = (payload.get('name') or '').strip()
        if not name:
            logger.debug(f"Skipping embed report without a cookie name: {payload}")
            return None

        observation = self.classifier.classify_cookie(
            ParsedCookie.from_playwright({**payload, 'name': name}),
            source=CookieSource.EMBED,
            page_url=payload.get('url') or page_url,
        )

        # The detector may already know the vendor
        vendor = payload.get('vendor')
        if observation.provider == UNKNOWN_PROVIDER and vendor:
            observation = observation.model_copy(update={'provider': vendor})
        return observation

    async def register(
        self,
        domain_id: str,
        cookies: Iterable[Dict[str, Any]],
        source: str = "embed",
        method: str = "document.cookie",
        page_url: Optional[str] = None
    ) -> ReconciliationResult:
        """Reconcile one embed report into the domain's inventory.

        Args:
            domain_id: Domain the report belongs to
            cookies: Cookie payloads in browser cookie shape (name, value,
                domain, path, expires, secure, httpOnly, sameSite) with an
                optional ``vendor`` hint
            source: Detector source label, such as "embed" or "gtm"
            method: How the detector saw the cookies
            page_url: Page the report came from

        Raises:
            ReconciliationError: If the inventory cannot be written
        """
        observed: List[CookieObservation] = [
            obs for obs in (self._observe(payload, page_url) for payload in cookies)
            if obs is not None
        ]

        result = await self.reconciler.reconcile(
            domain_id,
            observed,
            method=DetectionMethod.EMBED,
            pattern=embed_pattern(source, method),
            cleanup_action=None,
        )
        logger.info(f"Embed report for domain {domain_id} ({source}/{method}): {result.summary()}")
        return result
