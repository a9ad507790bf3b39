"""Utility functions for text, slugs and dates."""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse


def slugify(text: str, max_length: Optional[int] = None) -> str:
    """Lower-case ASCII slug with runs of other characters collapsed to ``-``."""
    normalized = unicodedata.normalize("NFKD", text or "")
    ascii_text = normalized.encode("ascii", "ignore").decode("ascii").lower()
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text).strip("-")
    if max_length:
        slug = slug[:max_length].rstrip("-")
    return slug or "article"


def count_words(text: str) -> int:
    """Whitespace-delimited word count."""
    return len((text or "").split())


def reading_time(word_count: int, words_per_minute: int) -> int:
    """Minutes needed to read ``word_count`` words, rounded up, at least 1."""
    return max(1, math.ceil(word_count / words_per_minute))


def extract_title(markdown: str) -> str:
    """First H1 heading of a Markdown document, or ``"Untitled"``."""
    match = re.search(r"^#\s+(.+)$", markdown or "", re.MULTILINE)
    return match.group(1).strip() if match else "Untitled"


def extract_section(markdown: str, *headings: str) -> str:
    """Text under the first matching ``##`` heading, up to the next ``##``."""
    for heading in headings:
        pattern = rf"^##\s+{re.escape(heading)}\s*$\n(.*?)(?=^##\s|\Z)"
        match = re.search(pattern, markdown or "", re.MULTILINE | re.DOTALL)
        if match:
            return match.group(1).strip()
    return ""


def parse_datetime(value) -> Optional[datetime]:
    """Parse ISO-ish timestamps into aware datetimes; ``None`` if unreadable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.strptime(text[:10], "%Y-%m-%d")
            except ValueError:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def hours_since(moment: datetime, now: datetime) -> float:
    """Elapsed hours between ``moment`` and ``now``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - moment).total_seconds() / 3600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def source_name_from_url(url: str) -> str:
    """Readable publisher name taken from a URL's domain."""
    if not url:
        return ""
    domain = urlparse(url).netloc.lower()
    domain = re.sub(r"^(www\.|m\.)", "", domain)
    main = domain.split(".")[0] if domain else ""
    return main.replace("-", " ").title()


def head_tail(text: str, size: int = 200) -> str:
    """First and last ``size`` characters of a text, for diagnostics."""
    text = text or ""
    if len(text) <= size * 2:
        return text
    return f"{text[:size]} … {text[-size:]}"
