"""Publish-date extraction for pages that follow no particular schema.

Each strategy is a plain function ``text -> Optional[datetime]``. The
strategies are tried in order and the first hit wins; none of them invents a
date, so a page without a recognisable date yields ``None`` rather than "now".
"""

from __future__ import annotations

import logging
import re
import warnings
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from dateutil import parser as dtparse

LOGGER = logging.getLogger(__name__)

DateStrategy = Callable[[str], Optional[datetime]]

MIN_YEAR = 2000
MAX_YEAR = 2100
# 2000-01-01T00:00:00Z and 2100-01-01T00:00:00Z
MIN_UNIX_SECONDS = 946684800
MAX_UNIX_SECONDS = 4102444800

DATE_LAYOUTS: Sequence[str] = (
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%B %d, %Y %I:%M %p",
    "%b %d, %Y, %I:%M %p",
    "%d %b %Y %H:%M",
)

_RFC1123_RE = re.compile(r"^[A-Z][a-z]{2}, \d{2} [A-Z][a-z]{2} \d{4} \d{2}:\d{2}:\d{2} [A-Z]{1,5}$")
_RFC1123_ZONES = {
    "UTC": 0,
    "GMT": 0,
    "EST": -5 * 3600,
    "EDT": -4 * 3600,
    "CST": -6 * 3600,
    "CDT": -5 * 3600,
    "MST": -7 * 3600,
    "MDT": -6 * 3600,
    "PST": -8 * 3600,
    "PDT": -7 * 3600,
}
_LONG_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _in_range(value: datetime) -> bool:
    return MIN_YEAR <= value.year <= MAX_YEAR


def normalize_date(value: str) -> Optional[datetime]:
    """Parse ``value`` against the known layouts; ``None`` when nothing fits."""

    text = _LONG_FRACTION_RE.sub(r"\1", value.strip())
    if not text:
        return None

    for layout in DATE_LAYOUTS:
        try:
            parsed = datetime.strptime(text, layout)
        except ValueError:
            continue
        if _in_range(parsed):
            return _to_utc(parsed)

    if _RFC1123_RE.match(text):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", dtparse.UnknownTimezoneWarning)
            try:
                parsed = dtparse.parse(text, tzinfos=_RFC1123_ZONES)
            except (ValueError, OverflowError):
                return None
        if _in_range(parsed):
            return _to_utc(parsed)
    return None


def _first_normalized(patterns: Iterable[re.Pattern[str]], content: str) -> Optional[datetime]:
    for pattern in patterns:
        for match in pattern.finditer(content):
            parsed = normalize_date(match.group(1))
            if parsed is not None:
                return parsed
    return None


def _meta_patterns(keys: Iterable[str]) -> List[re.Pattern[str]]:
    patterns: List[re.Pattern[str]] = []
    for key in keys:
        attr = rf"""(?:property|name|itemprop)\s*=\s*["']{re.escape(key)}["']"""
        content = r"""content\s*=\s*["']([^"']+)["']"""
        patterns.append(re.compile(rf"<meta\b[^>]*?{attr}[^>]*?\b{content}", re.IGNORECASE))
        patterns.append(re.compile(rf"<meta\b[^>]*?\b{content}[^>]*?{attr}", re.IGNORECASE))
    return patterns


_META_PATTERNS = _meta_patterns(
    (
        "article:published_time",
        "og:published_time",
        "date",
        "publishdate",
        "pubdate",
        "datePublished",
    )
)

_TIME_PATTERNS = (
    re.compile(r"""<time\b[^>]*?\bdatetime\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r"<time[^>]*>([^<]+)</time>", re.IGNORECASE),
)

_MONTH = (
    r"(?:January|February|March|April|May|June|July|August|September|October|November|December"
    r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Oct|Nov|Dec)"
)
_COMMON_PATTERNS = (
    re.compile(r"(?i)(?:published|posted|released|updated)[:\s]+([A-Za-z]+\s+\d{1,2},?\s+\d{4})"),
    re.compile(r"(?i)(?:published|posted|released|updated)[:\s]+(\d{1,2}\s+[A-Za-z]+\s+\d{4})"),
    re.compile(r"\b(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?)"),
    re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
    re.compile(rf"\b({_MONTH}\s+\d{{1,2}},?\s+\d{{4}})\b"),
    re.compile(rf"\b(\d{{1,2}}\s+{_MONTH}\s+\d{{4}})\b"),
    re.compile(r"\b(\d{1,2}/\d{1,2}/\d{4})\b"),
)

_ISO_PATTERNS = (
    re.compile(r"\b(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?)"),
    re.compile(r"\b(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"),
    re.compile(r"\b(\d{4}-\d{2}-\d{2})"),
)

_UNIX_RE = re.compile(r"\b(1\d{9}|1\d{12})\b")

_RELATIVE_PATTERNS = (
    (re.compile(r"\b(\d+)\s+hours?\s+ago\b", re.IGNORECASE), timedelta(hours=1)),
    (re.compile(r"\b(\d+)\s+days?\s+ago\b", re.IGNORECASE), timedelta(days=1)),
    (re.compile(r"\b(\d+)\s+weeks?\s+ago\b", re.IGNORECASE), timedelta(weeks=1)),
    (re.compile(r"\b(\d+)\s+months?\s+ago\b", re.IGNORECASE), timedelta(days=30)),
)


def extract_from_meta_tags(content: str) -> Optional[datetime]:
    return _first_normalized(_META_PATTERNS, content)


def extract_from_time_tags(content: str) -> Optional[datetime]:
    return _first_normalized(_TIME_PATTERNS, content)


def extract_from_common_patterns(content: str) -> Optional[datetime]:
    return _first_normalized(_COMMON_PATTERNS, content)


def extract_from_iso8601(content: str) -> Optional[datetime]:
    return _first_normalized(_ISO_PATTERNS, content)


def extract_from_unix_timestamp(content: str) -> Optional[datetime]:
    """Accept 10-digit seconds or 13-digit milliseconds between 2000 and 2100."""

    for match in _UNIX_RE.finditer(content):
        stamp = int(match.group(1))
        if stamp > 10**12:
            stamp //= 1000
        if MIN_UNIX_SECONDS < stamp < MAX_UNIX_SECONDS:
            return datetime.fromtimestamp(stamp, tz=timezone.utc)
    return None


def extract_from_relative_dates(content: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Resolve "N hours/days/weeks/months ago"; a month counts as 30 days."""

    reference = now or datetime.now(timezone.utc)
    for pattern, unit in _RELATIVE_PATTERNS:
        match = pattern.search(content)
        if match:
            try:
                return _to_utc(reference - unit * int(match.group(1)))
            except OverflowError:
                continue
    return None


DEFAULT_STRATEGIES: Sequence[DateStrategy] = (
    extract_from_meta_tags,
    extract_from_time_tags,
    extract_from_common_patterns,
    extract_from_iso8601,
    extract_from_unix_timestamp,
    extract_from_relative_dates,
)


def parse_share_date(
    raw: str,
    strategies: Sequence[DateStrategy] = DEFAULT_STRATEGIES,
) -> Optional[datetime]:
    for strategy in strategies:
        found = strategy(raw)
        if found is not None:
            LOGGER.debug("Extracted share date %s via %s", found.isoformat(), strategy.__name__)
            return found
    LOGGER.debug("No share date found in content")
    return None


__all__ = [
    "DATE_LAYOUTS",
    "DEFAULT_STRATEGIES",
    "DateStrategy",
    "normalize_date",
    "parse_share_date",
]
