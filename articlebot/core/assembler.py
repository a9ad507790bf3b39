"""Article drafting with structural validation and corrective retries."""

import asyncio
import logging
import re
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from articlebot.clients.errors import PortError
from articlebot.clients.interfaces import TextPort
from articlebot.core.errors import AssemblyError
from articlebot.core.prompts import draft_prompt, expansion_instructions
from articlebot.core.topics import title_tokens
from articlebot.core.utils import extract_section, extract_title, reading_time, slugify
from articlebot.models.content import Article, Source, Topic, ValidationReport
from articlebot.quality_checks import validate_article

logger = logging.getLogger(__name__)

ELLIPSIS = "…"
SENTENCE_CUT_RATIO = 0.6


def truncate_excerpt(text: str, cap: int, ellipsis: str = ELLIPSIS) -> str:
    """Shorten ``text`` to at most ``cap`` characters.

    Texts that already fit are returned unchanged. Otherwise the cut falls on
    the last sentence end located at or after 60% of the cap, else on the
    last whitespace, else exactly at the cap; the ellipsis is always
    appended and counted in the cap.
    """
    if len(text) <= cap:
        return text
    if cap <= len(ellipsis):
        return ellipsis[:cap]

    limit = cap - len(ellipsis)
    window = text[:limit]

    sentence_end = -1
    for match in re.finditer(r"[.!?]", window):
        following = text[match.end() : match.end() + 1]
        if not following or following.isspace():
            sentence_end = match.end()

    if sentence_end >= cap * SENTENCE_CUT_RATIO:
        cut = sentence_end
    else:
        whitespace = max(window.rfind(" "), window.rfind("\n"))
        cut = whitespace if whitespace > 0 else limit

    return window[:cut].rstrip() + ellipsis


def format_references(sources: List[Source]) -> str:
    lines = []
    for index, source in enumerate(sources, 1):
        line = f"{index}. [{source.title}]({source.url})"
        if source.date:
            line += f" ({source.date})"
        lines.append(line)
    return "## Sources\n\n" + "\n".join(lines) + "\n"


def add_references(body: str, sources: List[Source]) -> str:
    """Replace or append the ``## Sources`` section."""
    if not sources:
        return body
    section = format_references(sources)
    pattern = re.compile(r"^##\s+Sources\s*$.*?(?=^##\s|\Z)", re.MULTILINE | re.DOTALL)
    if pattern.search(body):
        return pattern.sub(lambda _: section + "\n", body, count=1).rstrip() + "\n"
    return body.rstrip() + "\n\n" + section


class ArticleAssembler:
    """Drives the drafting port until the draft satisfies the structure rules.

    Only a draft whose sole problem is being too short is sent back, with an
    instruction quoting its measured length. Any other outcome, or running out
    of attempts, finalises the best draft obtained so far; its validation
    report keeps the remaining violations.

    A failed port call uses up an attempt; the next one waits
    ``retry_base_delay * retry_backoff_multiplier ** (n - 1)`` seconds after
    the n-th consecutive failure.
    """

    def __init__(
        self,
        draft_port: TextPort,
        min_words: int = 1000,
        max_words: int = 1600,
        min_sections: int = 5,
        max_attempts: int = 3,
        words_per_minute: int = 200,
        excerpt_max_chars: int = 3000,
        filename_max_length: int = 60,
        temperature: float = 0.7,
        max_tokens: int = 6000,
        retry_base_delay: float = 2.0,
        retry_backoff_multiplier: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.draft_port = draft_port
        self.min_words = min_words
        self.max_words = max_words
        self.min_sections = min_sections
        self.max_attempts = max_attempts
        self.words_per_minute = words_per_minute
        self.excerpt_max_chars = excerpt_max_chars
        self.filename_max_length = filename_max_length
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.retry_base_delay = retry_base_delay
        self.retry_backoff_multiplier = retry_backoff_multiplier
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings, draft_port: TextPort, sleep=asyncio.sleep) -> "ArticleAssembler":
        return cls(
            draft_port,
            min_words=settings.min_word_count,
            max_words=settings.max_word_count,
            min_sections=settings.min_major_sections,
            max_attempts=settings.draft_max_attempts,
            words_per_minute=settings.words_per_minute,
            excerpt_max_chars=settings.excerpt_max_chars,
            filename_max_length=settings.filename_max_length,
            retry_base_delay=settings.retry_base_delay,
            retry_backoff_multiplier=settings.retry_backoff_multiplier,
            sleep=sleep,
        )

    def validate(self, text: str) -> ValidationReport:
        return validate_article(text, self.min_words, self.max_words, self.min_sections)

    @staticmethod
    def _preference(report: ValidationReport) -> Tuple[bool, int, int]:
        return (report.passed, -len(report.codes), report.stats.get("word_count", 0))

    async def assemble(
        self,
        topic: Topic,
        today: Optional[date] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Article:
        """Draft, validate and finalise an article for ``topic``.

        A set ``cancel_event`` stops the loop before the next attempt and the
        best draft so far is finalised.

        Raises:
            AssemblyError: No attempt returned any text
        """
        base_prompt = draft_prompt(topic, self.min_words, self.max_words, self.min_sections)
        prompt = base_prompt
        best: Optional[Tuple[str, ValidationReport]] = None
        last_error: Optional[PortError] = None
        failures = 0
        attempts = 0

        for attempt in range(1, self.max_attempts + 1):
            if failures:
                delay = self.retry_base_delay * self.retry_backoff_multiplier ** (failures - 1)
                if delay:
                    logger.info(f"Waiting {delay:.1f}s before drafting attempt {attempt}")
                    await self.sleep(delay)
            if attempt > 1 and cancel_event is not None and cancel_event.is_set():
                logger.warning(f"⏹️ Drafting cancelled after {attempts} attempt(s)")
                break

            attempts = attempt
            logger.info(f"✍️ Drafting attempt {attempt}/{self.max_attempts}")
            try:
                response = await self.draft_port.generate(
                    prompt, temperature=self.temperature, max_tokens=self.max_tokens
                )
            except PortError as e:
                logger.warning(f"Drafting call failed: {e}")
                last_error = e
                failures += 1
                continue
            failures = 0

            text = response.text.strip()
            report = self.validate(text)
            if best is None or self._preference(report) > self._preference(best[1]):
                best = (text, report)

            if report.passed:
                logger.info(f"✅ Draft valid: {report.stats['word_count']} words")
                break
            if not report.only_too_short:
                logger.warning(f"⚠️ Draft accepted with violations: {report.violations}")
                break

            logger.warning(
                f"Draft too short ({report.stats['word_count']} words), requesting expansion"
            )
            prompt = base_prompt + expansion_instructions(
                report.stats["word_count"], self.min_words, report.violations
            )

        if best is None:
            raise AssemblyError(f"No draft produced after {attempts} attempt(s): {last_error}")

        text, report = best
        if not report.passed:
            logger.warning(f"⚠️ Final draft flagged: {'; '.join(report.violations)}")
        return self.finalize(topic, text, report, attempts, today or date.today())

    def finalize(
        self,
        topic: Topic,
        text: str,
        report: ValidationReport,
        attempts: int,
        today: date,
    ) -> Article:
        """Derive excerpt, references, filename and front-matter from a draft."""
        title = extract_title(text)
        slug_source = topic.title if title == "Untitled" else title
        slug = slugify(slug_source)

        summary = extract_section(text, "Résumé", "Resume", "Summary") or topic.summary
        excerpt = truncate_excerpt(summary.strip(), self.excerpt_max_chars)
        word_count = report.stats.get("word_count", 0)
        minutes = reading_time(word_count, self.words_per_minute)
        filename = f"{today.isoformat()}-{slugify(slug_source, self.filename_max_length)}.md"

        return Article(
            title=title,
            slug=slug,
            category=topic.category,
            excerpt=excerpt,
            body=add_references(text, topic.sources),
            word_count=word_count,
            section_count=report.stats.get("h2_count", 0),
            reading_time=minutes,
            references=list(topic.sources),
            filename=filename,
            front_matter=self.front_matter(topic, title, slug, excerpt, minutes, today),
            validation=report,
            attempts=attempts,
        )

    def front_matter(
        self, topic: Topic, title: str, slug: str, excerpt: str, minutes: int, today: date
    ) -> Dict[str, Any]:
        keywords = topic.enrichment.get("keywords")
        if not isinstance(keywords, list) or not keywords:
            keywords = title_tokens(title if title != "Untitled" else topic.title, 5)[:6]
        description = truncate_excerpt(excerpt, 160)
        return {
            "title": title,
            "slug": slug,
            "category": topic.category,
            "date": today.isoformat(),
            "excerpt": excerpt,
            "reading_time": minutes,
            "seo": {
                "title": truncate_excerpt(title, 60),
                "description": description,
                "keywords": [str(k) for k in keywords],
            },
            "sources": [
                {"title": s.title, "url": s.url, "date": s.date} for s in topic.sources
            ],
        }
