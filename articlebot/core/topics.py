"""Topic validation and duplicate filtering."""

import logging
import re
import unicodedata
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from articlebot.core.errors import NoUniqueTopicsError
from articlebot.core.utils import hours_since, parse_datetime, source_name_from_url, utcnow
from articlebot.models.content import Source, Topic

logger = logging.getLogger(__name__)

# Raw topics arrive with the French keys used in the prompts; English keys
# are accepted too.
FIELD_ALIASES = {
    "title": ("title", "titre"),
    "summary": ("summary", "resume", "résumé"),
    "impact": ("impact",),
    "category": ("category", "categorie", "catégorie"),
    "sources": ("sources",),
    "publish_date": ("publish_date", "publishDate", "date"),
}

SOURCE_ALIASES = {
    "title": ("title", "titre", "name", "nom"),
    "url": ("url", "link", "lien"),
    "date": ("date", "date_fr", "publishDate"),
    "source_type": ("source_type", "typeSource", "type"),
}

REQUIRED_FIELDS = ("title", "summary", "impact", "category")

_KNOWN_KEYS = {alias for aliases in FIELD_ALIASES.values() for alias in aliases}


def _pick(raw: Dict[str, Any], aliases) -> Any:
    for key in aliases:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_source(raw: Any) -> Optional[Source]:
    """Build a Source from a dict or a bare URL; ``None`` if it has no URL."""
    if isinstance(raw, Source):
        return raw
    if isinstance(raw, str):
        url = raw.strip()
        return Source(title=source_name_from_url(url) or url, url=url) if url else None
    if not isinstance(raw, dict):
        return None

    url = _text(_pick(raw, SOURCE_ALIASES["url"]))
    if not url:
        return None
    title = _text(_pick(raw, SOURCE_ALIASES["title"])) or source_name_from_url(url) or url
    date = _pick(raw, SOURCE_ALIASES["date"])
    source_type = _pick(raw, SOURCE_ALIASES["source_type"])
    return Source(
        title=title,
        url=url,
        date=str(date) if date is not None else None,
        source_type=str(source_type) if source_type is not None else None,
    )


class TopicValidator:
    """Filters raw discovered topics against the editorial rules."""

    def __init__(self, categories: List[str], default_category: str, freshness_window_hours: int):
        if default_category not in categories:
            raise ValueError(f"default category '{default_category}' is not in the category set")
        self.categories = list(categories)
        self.default_category = default_category
        self.freshness_window_hours = freshness_window_hours

    @classmethod
    def from_settings(cls, settings) -> "TopicValidator":
        return cls(
            settings.category_list,
            settings.default_category,
            settings.freshness_window_hours,
        )

    def validate(self, raw_topics: Iterable[Any], now: Optional[datetime] = None) -> List[Topic]:
        """Keep the topics that satisfy every rule.

        A topic is dropped when a required field is empty, when it is older
        than the freshness window (or its date is unreadable), or when it
        has no usable source. Unknown categories are remapped, never dropped.
        """
        now = now or utcnow()
        valid = []
        for raw in raw_topics or []:
            topic = self._validate_one(raw, now)
            if topic is not None:
                valid.append(topic)
        logger.info(f"✅ {len(valid)} topic(s) passed validation")
        return valid

    def _validate_one(self, raw: Any, now: datetime) -> Optional[Topic]:
        if isinstance(raw, Topic):
            raw = raw.model_dump()
        if not isinstance(raw, dict):
            logger.warning(f"Skipping malformed topic entry: {type(raw).__name__}")
            return None

        fields = {name: _text(_pick(raw, FIELD_ALIASES[name])) for name in REQUIRED_FIELDS}
        missing = [name for name, value in fields.items() if not value]
        if missing:
            logger.warning(f"Topic missing required fields {missing}, skipping: {fields['title'] or '?'}")
            return None

        category = fields["category"]
        if category not in self.categories:
            logger.warning(f"Invalid category '{category}' for '{fields['title']}', using '{self.default_category}'")
            category = self.default_category

        raw_date = _pick(raw, FIELD_ALIASES["publish_date"])
        publish_date = parse_datetime(raw_date)
        if raw_date is not None and publish_date is None:
            logger.warning(f"Unreadable publish date '{raw_date}', skipping: {fields['title']}")
            return None
        if publish_date and hours_since(publish_date, now) > self.freshness_window_hours:
            logger.warning(f"Topic too old (>{self.freshness_window_hours}h): {fields['title']}")
            return None

        raw_sources = raw.get("sources") or []
        if not isinstance(raw_sources, list):
            raw_sources = [raw_sources]
        sources = [s for s in (parse_source(item) for item in raw_sources) if s is not None]
        if not sources:
            logger.warning(f"Topic has no sources: {fields['title']}")
            return None

        extras = {k: v for k, v in raw.items() if k not in _KNOWN_KEYS and v not in (None, "", [], {})}
        enrichment = dict(raw.get("enrichment") or {})
        for key, value in extras.items():
            if key not in Topic.model_fields:
                enrichment.setdefault(key, value)

        return Topic(
            title=fields["title"],
            summary=fields["summary"],
            impact=fields["impact"],
            category=category,
            sources=sources,
            publish_date=publish_date,
            discovered_at=now,
            source_count=len(sources),
            enrichment=enrichment,
        )


def _fold(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return normalized.encode("ascii", "ignore").decode("ascii").lower()


def title_tokens(title: str, min_length: int = 4) -> List[str]:
    """Distinct lower-case, accent-folded words of at least ``min_length`` characters."""
    seen: List[str] = []
    for word in re.split(r"[^a-z0-9]+", _fold(title)):
        if len(word) >= min_length and word not in seen:
            seen.append(word)
    return seen


def normalize_past_title(entry: str) -> str:
    """Turn ``2024-05-01-some-slug.md`` (or a plain title) into comparable text."""
    text = re.sub(r"^\d{4}-\d{2}-\d{2}-", "", entry.strip())
    text = re.sub(r"\.md$", "", text)
    return re.sub(r"[^a-z0-9]+", " ", _fold(text)).strip()


class Deduplicator:
    """Lexical overlap check against previously produced titles."""

    def __init__(self, min_token_length: int = 4, overlap_threshold: int = 3):
        self.min_token_length = min_token_length
        self.overlap_threshold = overlap_threshold

    @classmethod
    def from_settings(cls, settings) -> "Deduplicator":
        return cls(settings.dedup_min_token_length, settings.dedup_overlap_threshold)

    def overlap(self, title: str, past_title: str) -> int:
        past_words: Set[str] = set(normalize_past_title(past_title).split())
        return sum(1 for token in title_tokens(title, self.min_token_length) if token in past_words)

    def is_duplicate(self, topic: Topic, corpus: Iterable[str]) -> bool:
        for past in corpus:
            shared = self.overlap(topic.title, past)
            if shared >= self.overlap_threshold:
                logger.warning(f"Duplicate detected: '{topic.title}' similar to '{past}' ({shared} shared words)")
                return True
        return False

    def deduplicate(self, topics: List[Topic], corpus: Iterable[str]) -> List[Topic]:
        """Drop topics too close to a past title.

        Raises:
            NoUniqueTopicsError: Topics were given but none survived
        """
        corpus = list(corpus or [])
        unique = [topic for topic in topics if not self.is_duplicate(topic, corpus)]
        if len(unique) < len(topics):
            logger.info(f"Filtered out {len(topics) - len(unique)} duplicate topic(s)")
        if topics and not unique:
            raise NoUniqueTopicsError("No unique topics found after filtering duplicates")
        return unique
