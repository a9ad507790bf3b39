"""Research stage: enrich the selected topic with an editorial dossier."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from articlebot.clients.errors import TRANSIENT_ERRORS, PortError
from articlebot.clients.interfaces import PortResponse, TextPort
from articlebot.core.errors import ExtractionError
from articlebot.core.extractor import DOSSIER_SHAPE, extract_with_delegate
from articlebot.core.prompts import research_prompt
from articlebot.core.topics import parse_source
from articlebot.models.content import Source, Topic

logger = logging.getLogger(__name__)


def merge_sources(original: List[Source], extra: List[Any]) -> List[Source]:
    """Append complementary sources whose URL is not already cited."""
    merged = list(original)
    seen = {s.url for s in original}
    for raw in extra or []:
        source = parse_source(raw)
        if source and source.url not in seen:
            merged.append(source)
            seen.add(source.url)
    return merged


class ResearchEnricher:
    """Calls the research port and merges its dossier into a topic.

    Rate limits, timeouts and unavailable services are retried up to
    ``max_attempts`` calls, waiting ``base_delay * backoff_multiplier ** (n - 1)``
    seconds after the n-th failure. The merge never overwrites what the topic
    already carries. Any failure leaves the topic as it was, with
    ``enriched=False`` and the reason in ``enrichment_error``.
    """

    def __init__(
        self,
        research_port: TextPort,
        delegate: Optional[TextPort] = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        max_attempts: int = 2,
        base_delay: float = 2.0,
        backoff_multiplier: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.research_port = research_port
        self.delegate = delegate
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_multiplier = backoff_multiplier
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls, settings, research_port: TextPort, delegate: Optional[TextPort] = None, sleep=asyncio.sleep
    ) -> "ResearchEnricher":
        return cls(
            research_port,
            delegate=delegate,
            max_attempts=settings.research_max_attempts,
            base_delay=settings.retry_base_delay,
            backoff_multiplier=settings.retry_backoff_multiplier,
            sleep=sleep,
        )

    async def _call(self, prompt: str, cancel_event: Optional[asyncio.Event]) -> PortResponse:
        """Call the research port, retrying transient failures."""
        attempt = 1
        while True:
            try:
                return await self.research_port.generate(
                    prompt,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    response_format="json",
                )
            except TRANSIENT_ERRORS as e:
                if attempt >= self.max_attempts:
                    raise
                delay = self.base_delay * self.backoff_multiplier ** (attempt - 1)
                logger.warning(f"🔄 Research call failed ({e}), retrying in {delay:.1f}s")
                if delay:
                    await self.sleep(delay)
                if cancel_event is not None and cancel_event.is_set():
                    raise
                attempt += 1

    async def enrich(self, topic: Topic, cancel_event: Optional[asyncio.Event] = None) -> Topic:
        logger.info(f"🔬 Researching: {topic.title}")
        try:
            response = await self._call(research_prompt(topic), cancel_event)
            extraction = await extract_with_delegate(response.text, DOSSIER_SHAPE, self.delegate)
        except PortError as e:
            return self._degrade(topic, f"research port failed: {e}")
        except ExtractionError as e:
            return self._degrade(topic, f"dossier unreadable: {e.reason}")

        dossier = extraction.value.get("dossierEditorial", extraction.value)
        if not isinstance(dossier, dict) or not dossier:
            return self._degrade(topic, "dossier is empty")

        enriched = self.merge(topic, dossier)
        enriched.research_tokens = response.total_tokens
        logger.info(
            f"✅ Research added {len(dossier)} fields and "
            f"{len(enriched.sources) - len(topic.sources)} sources"
        )
        return enriched

    @staticmethod
    def merge(topic: Topic, dossier: Dict[str, Any]) -> Topic:
        """Additive merge of ``dossier`` into a copy of ``topic``."""
        enrichment = dict(dossier)
        enrichment.update(topic.enrichment)
        sources = merge_sources(topic.sources, dossier.get("sourcesComplementaires") or [])
        return topic.model_copy(
            update={
                "enrichment": enrichment,
                "sources": sources,
                "source_count": len(sources),
                "enriched": True,
                "enrichment_error": None,
            }
        )

    @staticmethod
    def _degrade(topic: Topic, reason: str) -> Topic:
        logger.warning(f"⚠️ Research skipped, drafting from the original topic: {reason}")
        return topic.model_copy(update={"enriched": False, "enrichment_error": reason})
