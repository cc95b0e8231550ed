"""Parsing of Set-Cookie headers and Playwright cookie objects."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedCookie:
    """Raw cookie attributes before classification."""

    name: str
    value: str = ""
    domain: Optional[str] = None
    path: str = "/"
    expires: Optional[datetime] = None
    max_age: Optional[int] = None
    secure: bool = False
    http_only: bool = False
    same_site: Optional[str] = None

    @classmethod
    def from_playwright(cls, cookie: Dict[str, Any]) -> "ParsedCookie":
        """Build from an entry of ``BrowserContext.cookies()``.

        Playwright reports session cookies with ``expires == -1``.
        """
        expires = None
        raw_expires = cookie.get('expires', -1)
        if raw_expires is not None and raw_expires != -1:
            try:
                expires = datetime.fromtimestamp(float(raw_expires), tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                expires = None

        return cls(
            name=cookie.get('name', ''),
            value=cookie.get('value', ''),
            domain=cookie.get('domain') or None,
            path=cookie.get('path') or '/',
            expires=expires,
            secure=bool(cookie.get('secure', False)),
            http_only=bool(cookie.get('httpOnly', False)),
            same_site=cookie.get('sameSite'),
        )


def _parse_expires(value: str) -> Optional[datetime]:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_set_cookie_line(line: str) -> Optional[ParsedCookie]:
    """Parse one Set-Cookie value.

    Returns:
        ParsedCookie, or None when the line has no cookie name
    """
    name_value, *directives = line.split(';')
    if '=' not in name_value:
        return None

    name, value = name_value.split('=', 1)
    name = name.strip()
    if not name:
        return None

    attributes: Dict[str, Any] = {'name': name, 'value': value.strip()}

    for directive in directives:
        key, _, raw = directive.partition('=')
        key = key.strip().lower()
        raw = raw.strip()

        if key == 'expires':
            attributes['expires'] = _parse_expires(raw)
        elif key == 'max-age':
            try:
                attributes['max_age'] = int(raw)
            except ValueError:
                logger.debug(f"Ignoring invalid Max-Age '{raw}' for cookie {name}")
        elif key == 'domain':
            attributes['domain'] = raw or None
        elif key == 'path':
            attributes['path'] = raw or '/'
        elif key == 'secure':
            attributes['secure'] = True
        elif key == 'httponly':
            attributes['http_only'] = True
        elif key == 'samesite':
            attributes['same_site'] = raw or None

    return ParsedCookie(**attributes)


def parse_set_cookie(header_values: Union[str, Iterable[str]]) -> List[ParsedCookie]:
    """Parse one or more Set-Cookie header values.

    Playwright joins repeated headers with newlines in ``response.headers``
    and keeps them separate in ``headers_array()``; both shapes are accepted.

    Args:
        header_values: A header value or an iterable of header values

    Returns:
        Parsed cookies in header order, malformed entries skipped
    """
    if isinstance(header_values, str):
        header_values = [header_values]

    cookies = []
    for header_value in header_values:
        for line in header_value.split('\n'):
            line = line.strip()
            if not line:
                continue
            cookie = parse_set_cookie_line(line)
            if cookie is not None:
                cookies.append(cookie)
    return cookies
