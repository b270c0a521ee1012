"""Turn a fetched page into a titled, cleaned, categorised candidate."""

from __future__ import annotations

import logging
import re
from typing import Dict, Optional, Tuple

from .dates import parse_share_date
from .models import ScrapedCandidate

LOGGER = logging.getLogger(__name__)

MIN_CONTENT_BYTES = 100
MAX_TITLE_CHARS = 200
DERIVED_TITLE_CHARS = 100
MAX_CONTENT_CHARS = 5000
ELLIPSIS = "..."
PLACEHOLDER_TITLE = "Content from Source"
UNCATEGORIZED = "Uncategorized"

_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
_H1_RE = re.compile(r"<h1[^>]*>([^<]+)</h1>", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
# Tags that only appear after entities such as "&lt;b&gt;" are decoded.
_REVEALED_TAG_RE = re.compile(r"</?[A-Za-z!][^<>]*>")
_WHITESPACE_RE = re.compile(r"\s+")

_ENTITIES = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)

# Declaration order doubles as the tie-break: the first category reaching the
# top score wins.
CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "Malware Analysis": (
        "malware", "trojan", "virus", "worm", "ransomware", "spyware",
        "backdoor", "rootkit", "infection", "payload",
    ),
    "Data Breach": (
        "breach", "leak", "stolen data", "data exposure", "database dump",
        "credentials leaked", "password dump", "personal information",
    ),
    "Vulnerability Disclosure": (
        "vulnerability", "cve-", "exploit", "zero-day", "security flaw",
        "bug", "weakness", "patch", "update required",
    ),
    "Cyber Attack": (
        "attack", "hack", "compromised", "intrusion", "unauthorized access",
        "infiltration", "incident", "incursion",
    ),
    "Exploit Development": (
        "exploit code", "proof of concept", "poc", "exploit development",
        "metasploit", "payload generator",
    ),
    "Network Security": (
        "network", "firewall", "ddos", "dos attack", "traffic",
        "packet", "router", "switch", "infrastructure",
    ),
    "Security Research": (
        "research", "analysis", "study", "findings", "paper",
        "whitepaper", "report",
    ),
}

CATEGORY_BASE_SCORES: Dict[str, int] = {
    "Malware Analysis": 70,
    "Data Breach": 85,
    "Vulnerability Disclosure": 80,
    "Threat Intelligence": 65,
    "Security Research": 50,
    "Cyber Attack": 90,
    "Exploit Development": 75,
    "Network Security": 60,
    UNCATEGORIZED: 40,
}
DEFAULT_BASE_SCORE = 50

HIGH_PRIORITY_KEYWORDS: Tuple[str, ...] = (
    "critical", "urgent", "immediate", "severe", "high risk",
    "zero-day", "active exploit", "live attack", "breach confirmed",
    "data leaked", "credentials exposed", "massive breach",
)
LOW_PRIORITY_KEYWORDS: Tuple[str, ...] = (
    "discussion", "forum", "general", "informational", "news",
    "analysis only", "historical", "old",
)
HIGH_PRIORITY_BONUS = 5
LOW_PRIORITY_PENALTY = 3


def _truncate_at_space(text: str, limit: int, min_cut: int) -> str:
    truncated = text[:limit]
    last_space = truncated.rfind(" ")
    if last_space > min_cut:
        truncated = truncated[:last_space]
    return truncated + ELLIPSIS


def clean_content(raw: str) -> str:
    """Strip markup from ``raw`` and return at most ~5000 characters of text."""

    cleaned = _SCRIPT_RE.sub(" ", raw)
    cleaned = _STYLE_RE.sub(" ", cleaned)
    cleaned = _COMMENT_RE.sub(" ", cleaned)
    cleaned = _TAG_RE.sub(" ", cleaned)
    for entity, replacement in _ENTITIES:
        cleaned = cleaned.replace(entity, replacement)
    cleaned = _REVEALED_TAG_RE.sub(" ", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    cleaned = "".join(ch for ch in cleaned if ch.isprintable() or ch in " \n\t")
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()

    if len(cleaned) > MAX_CONTENT_CHARS:
        cleaned = _truncate_at_space(cleaned, MAX_CONTENT_CHARS, MAX_CONTENT_CHARS - 500)
    return cleaned


def extract_title(raw: str) -> str:
    """Pick a title from ``<title>``, then ``<h1>``, then the start of the text."""

    for pattern in (_TITLE_RE, _H1_RE):
        match = pattern.search(raw)
        if match:
            title = match.group(1).strip()
            if 0 < len(title) <= MAX_TITLE_CHARS:
                return title

    cleaned = clean_content(raw)
    if not cleaned:
        return PLACEHOLDER_TITLE
    if len(cleaned) > DERIVED_TITLE_CHARS:
        return _truncate_at_space(cleaned, DERIVED_TITLE_CHARS, DERIVED_TITLE_CHARS // 2)
    return cleaned


def detect_category(content: str, title: str) -> str:
    """Return the category whose keywords appear most often, or ``Uncategorized``.

    Each category scores one point per distinct keyword found. Equal scores are
    not disambiguated beyond declaration order.
    """

    haystack = f"{content} {title}".lower()
    best_category = UNCATEGORIZED
    best_score = 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        score = sum(1 for keyword in keywords if keyword in haystack)
        if score > best_score:
            best_category = category
            best_score = score
    return best_category


def calculate_criticality(content: str, title: str, category: str) -> int:
    haystack = f"{content} {title}".lower()
    score = CATEGORY_BASE_SCORES.get(category, DEFAULT_BASE_SCORE)
    score += HIGH_PRIORITY_BONUS * sum(1 for kw in HIGH_PRIORITY_KEYWORDS if kw in haystack)
    score -= LOW_PRIORITY_PENALTY * sum(1 for kw in LOW_PRIORITY_KEYWORDS if kw in haystack)
    return max(0, min(100, score))


def build_candidate(raw: str) -> Optional[ScrapedCandidate]:
    """Run the whole pipeline once; pages of 100 bytes or less yield nothing."""

    size = len(raw.encode("utf-8"))
    if size <= MIN_CONTENT_BYTES:
        LOGGER.info("Content too short (%d bytes), skipping entry creation", size)
        return None

    title = extract_title(raw)
    cleaned = clean_content(raw)
    category = detect_category(cleaned, title)
    candidate = ScrapedCandidate(
        title=title,
        cleaned_content=cleaned,
        share_date=parse_share_date(raw),
        criticality_score=calculate_criticality(cleaned, title, category),
        category=category,
    )
    LOGGER.debug(
        "Built candidate %r (category=%s, criticality=%d, content=%d chars)",
        title,
        category,
        candidate.criticality_score,
        len(cleaned),
    )
    return candidate


__all__ = [
    "CATEGORY_BASE_SCORES",
    "CATEGORY_KEYWORDS",
    "build_candidate",
    "calculate_criticality",
    "clean_content",
    "detect_category",
    "extract_title",
]
