"""
Pipeline orchestration.

One run walks a fixed sequence of stages:

    DISCOVER -> VALIDATE -> SCORE -> RESEARCH -> DRAFT -> ILLUSTRATE -> PUBLISH

Each stage handler returns a :class:`Transition`. ``TRANSITIONS`` lists the
stages a handler may move to; VALIDATE is the only one allowed to go back
(to DISCOVER) when nothing unique survived. Whatever happens, ``run``
returns a single :class:`PipelineReport`.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from articlebot.clients.errors import PortError
from articlebot.clients.interfaces import ImagePort, PersistenceGateway, PublishGateway, TextPort
from articlebot.core.assembler import ArticleAssembler
from articlebot.core.errors import AssemblyError, ExtractionError, NoUniqueTopicsError
from articlebot.core.extractor import TOPICS_SHAPE, extract
from articlebot.core.prompts import discovery_prompt
from articlebot.core.research import ResearchEnricher
from articlebot.core.scorer import TopicScorer
from articlebot.core.storage import SnapshotStore
from articlebot.core.thumbnail import ThumbnailGenerator
from articlebot.core.topics import Deduplicator, TopicValidator
from articlebot.core.utils import utcnow
from articlebot.models.content import (
    Article,
    PipelineReport,
    ScoredTopic,
    Stage,
    StageStatus,
    StageSummary,
    Topic,
)

logger = logging.getLogger(__name__)

NO_TOPICS_REASON = "No topics discovered by scout after retries"
NO_PASSING_REASON = "No topics passed threshold"
CANCELLED_REASON = "cancelled"

TRANSITIONS: Dict[Stage, Tuple[Stage, ...]] = {
    Stage.DISCOVER: (Stage.DISCOVER, Stage.VALIDATE),
    Stage.VALIDATE: (Stage.DISCOVER, Stage.SCORE),
    Stage.SCORE: (Stage.RESEARCH,),
    Stage.RESEARCH: (Stage.DRAFT,),
    Stage.DRAFT: (Stage.ILLUSTRATE,),
    Stage.ILLUSTRATE: (Stage.PUBLISH,),
    Stage.PUBLISH: (),
}


@dataclass
class Transition:
    """Where a stage handler wants the run to go next."""

    next_stage: Optional[Stage] = None
    failure: Optional[str] = None
    fatal: bool = False


@dataclass
class RunState:
    """Mutable data carried between stages of one run."""

    query: str
    publish: bool
    discover_attempts: int = 0
    past_titles: List[str] = field(default_factory=list)
    raw_topics: List[object] = field(default_factory=list)
    topics: List[Topic] = field(default_factory=list)
    ranked: List[ScoredTopic] = field(default_factory=list)
    selected: Optional[Topic] = None
    article: Optional[Article] = None
    storage_error: Optional[str] = None
    cancel_event: Optional[asyncio.Event] = None
    report: PipelineReport = field(default_factory=lambda: PipelineReport(success=False))


class PipelineOrchestrator:
    """Runs discovery through publication with injected collaborators."""

    def __init__(
        self,
        settings,
        discover_port: TextPort,
        research_port: TextPort,
        draft_port: TextPort,
        image_port: Optional[ImagePort] = None,
        delegate_port: Optional[TextPort] = None,
        persistence: Optional[PersistenceGateway] = None,
        publisher: Optional[PublishGateway] = None,
        snapshots: Optional[SnapshotStore] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        timer: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.discover_port = discover_port
        self.persistence = persistence
        self.publisher = publisher
        self.snapshots = snapshots
        self.sleep = sleep
        self.clock = clock
        self.timer = timer

        self.validator = TopicValidator.from_settings(settings)
        self.deduplicator = Deduplicator.from_settings(settings)
        self.scorer = TopicScorer.from_settings(settings, clock=clock)
        self.enricher = ResearchEnricher.from_settings(
            settings, research_port, delegate=delegate_port, sleep=sleep
        )
        self.assembler = ArticleAssembler.from_settings(settings, draft_port, sleep=sleep)
        self.thumbnails = (
            ThumbnailGenerator.from_settings(settings, image_port, sleep=sleep)
            if image_port is not None
            else None
        )

        self._handlers = {
            Stage.DISCOVER: self._discover,
            Stage.VALIDATE: self._validate,
            Stage.SCORE: self._score,
            Stage.RESEARCH: self._research,
            Stage.DRAFT: self._draft,
            Stage.ILLUSTRATE: self._illustrate,
            Stage.PUBLISH: self._publish,
        }

    @classmethod
    def from_settings(cls, settings) -> "PipelineOrchestrator":
        """Wire the production HTTP clients and local stores."""
        from articlebot.clients.chat_completions import ChatCompletionsClient
        from articlebot.clients.gemini import GeminiClient
        from articlebot.clients.reve import ReveClient
        from articlebot.clients.webflow import WebflowPublisher
        from articlebot.core.storage import ArticleStore

        return cls(
            settings,
            discover_port=ChatCompletionsClient.for_perplexity(settings),
            research_port=ChatCompletionsClient.for_openai(settings, model=settings.openai_research_model),
            draft_port=ChatCompletionsClient.for_openai(settings),
            image_port=ReveClient(settings.reve_api_key, settings),
            delegate_port=GeminiClient.from_settings(settings),
            persistence=ArticleStore.from_settings(settings),
            publisher=WebflowPublisher.from_settings(settings),
            snapshots=SnapshotStore.from_settings(settings),
        )

    async def run(
        self,
        publish: bool = True,
        query: Optional[str] = None,
        stop_after: Optional[Stage] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PipelineReport:
        """Run the pipeline and return its terminal report.

        Args:
            publish: Send the article to the publish gateway when configured
            query: Overrides the configured discovery query
            stop_after: Finish successfully once this stage completes
            cancel_event: Checked before every stage and retry
        """
        started = self.timer()
        state = RunState(
            query=query or self.settings.discovery_query,
            publish=publish,
            cancel_event=cancel_event,
        )
        report = state.report
        stage: Optional[Stage] = Stage.DISCOVER

        logger.info("🚀 Starting article pipeline")
        while stage is not None:
            if self._cancel_requested(state):
                transition = self._cancel(state, f"before {stage.value}")
            else:
                try:
                    transition = await self._handlers[stage](state)
                except Exception as e:
                    logger.error(f"❌ Unexpected error in {stage.value}: {e}", exc_info=True)
                    self._record(state, stage, StageStatus.FAILED, detail=str(e))
                    transition = Transition(failure=f"{stage.value} failed: {e}", fatal=True)

            if transition.failure:
                report.failure_reason = transition.failure
                report.fatal = transition.fatal
                break

            if transition.next_stage is not None and transition.next_stage not in TRANSITIONS[stage]:
                raise RuntimeError(f"Illegal transition {stage.value} -> {transition.next_stage.value}")
            if stop_after is not None and stage == stop_after and transition.next_stage != Stage.DISCOVER:
                break
            stage = transition.next_stage

        report.topics = state.topics
        report.article = state.article
        report.success = report.failure_reason is None
        report.elapsed_seconds = round(self.timer() - started, 3)
        self._log_outcome(report)
        return report

    def _record(self, state: RunState, stage: Stage, status: StageStatus, **kwargs) -> StageSummary:
        summary = StageSummary(stage=stage, status=status, **kwargs)
        state.report.stages.append(summary)
        return summary

    @staticmethod
    def _cancel_requested(state: RunState) -> bool:
        return state.cancel_event is not None and state.cancel_event.is_set()

    @staticmethod
    def _cancel(state: RunState, where: str) -> Transition:
        logger.warning(f"⏹️ Run cancelled {where}")
        state.report.cancelled = True
        return Transition(failure=CANCELLED_REASON)

    def _retry_delay(self, attempt: int) -> float:
        return self.settings.retry_base_delay * self.settings.retry_backoff_multiplier ** (attempt - 1)

    async def _retry_discovery(self, state: RunState, reason: str, exhausted: str) -> Transition:
        """Go back to DISCOVER while the attempt budget lasts."""
        if state.discover_attempts >= self.settings.max_retry_attempts:
            logger.error(f"❌ {exhausted}")
            return Transition(failure=exhausted, fatal=True)
        delay = self._retry_delay(state.discover_attempts)
        logger.warning(f"🔄 {reason}, retrying discovery in {delay:.1f}s")
        if delay:
            await self.sleep(delay)
        return Transition(Stage.DISCOVER)

    async def _discover(self, state: RunState) -> Transition:
        state.discover_attempts += 1
        attempt = state.discover_attempts
        if attempt == 1 and self.persistence is not None:
            state.past_titles = self.persistence.list_past_titles()

        logger.info(f"🔍 Discovering topics (attempt {attempt}/{self.settings.max_retry_attempts})")
        prompt = discovery_prompt(
            state.query,
            self.settings.category_list,
            self.settings.freshness_window_hours,
            self.clock(),
            state.past_titles,
        )

        raw_topics: List[object] = []
        detail = ""
        try:
            response = await self.discover_port.generate(prompt, temperature=0.2, response_format="json")
            extraction = extract(response.text, TOPICS_SHAPE)
            topics = extraction.value.get("topics")
            raw_topics = topics if isinstance(topics, list) else []
            detail = f"tier {extraction.tier.name.lower()}"
        except PortError as e:
            detail = str(e)
            logger.warning(f"⚠️ Discovery port failed: {e}")
        except ExtractionError as e:
            detail = f"extraction failed: {e.reason}"
            logger.warning(f"⚠️ Discovery response unreadable: {e.reason}")

        if not raw_topics:
            self._record(state, Stage.DISCOVER, StageStatus.FAILED, attempts=attempt, detail=detail or "no topics")
            return await self._retry_discovery(state, "No topics returned", NO_TOPICS_REASON)

        state.raw_topics = raw_topics
        self._record(
            state, Stage.DISCOVER, StageStatus.OK, attempts=attempt,
            detail=detail, data={"raw_topics": len(raw_topics)},
        )
        logger.info(f"✅ Discovered {len(raw_topics)} raw topics")
        return Transition(Stage.VALIDATE)

    async def _validate(self, state: RunState) -> Transition:
        valid = self.validator.validate(state.raw_topics, now=self.clock())
        try:
            unique = self.deduplicator.deduplicate(valid, state.past_titles)
        except NoUniqueTopicsError:
            unique = []

        if not unique:
            self._record(
                state, Stage.VALIDATE, StageStatus.FAILED, attempts=state.discover_attempts,
                detail="no unique topics", data={"valid": len(valid)},
            )
            return await self._retry_discovery(
                state,
                "No unique topics",
                f"no unique topics after {state.discover_attempts} attempts",
            )

        state.topics = unique
        self._record(
            state, Stage.VALIDATE, StageStatus.OK,
            data={"raw": len(state.raw_topics), "valid": len(valid), "unique": len(unique)},
        )
        if self.snapshots is not None:
            self.snapshots.save_discovered(unique)
        return Transition(Stage.SCORE)

    async def _score(self, state: RunState) -> Transition:
        ranked = TopicScorer.rank(self.scorer.score_all(state.topics, now=self.clock()))
        scoring = self.scorer.report(ranked)
        state.ranked = ranked
        state.report.scoring = scoring
        if self.snapshots is not None:
            self.snapshots.save_ranked(ranked, scoring)

        passing = TopicScorer.passing(ranked)
        if not passing:
            self._record(state, Stage.SCORE, StageStatus.FAILED, detail=NO_PASSING_REASON)
            logger.warning(f"⚠️ {NO_PASSING_REASON} ({scoring.threshold})")
            return Transition(failure=NO_PASSING_REASON, fatal=False)

        best = passing[0]
        state.selected = best.topic
        self._record(
            state, Stage.SCORE, StageStatus.OK,
            detail=best.topic.title,
            data={"passing": len(passing), "top_score": best.score.total},
        )
        logger.info(f"🏆 Selected: {best.topic.title} ({best.score.total:g}/{best.score.max_possible:g})")
        return Transition(Stage.RESEARCH)

    async def _research(self, state: RunState) -> Transition:
        try:
            topic = await self.enricher.enrich(state.selected, cancel_event=state.cancel_event)
        except Exception as e:
            logger.warning(f"⚠️ Research crashed: {e}")
            topic = state.selected.model_copy(update={"enriched": False, "enrichment_error": str(e)})

        state.selected = topic
        if topic.enriched:
            self._record(state, Stage.RESEARCH, StageStatus.OK, data={"sources": len(topic.sources)})
        else:
            self._record(state, Stage.RESEARCH, StageStatus.DEGRADED, detail=topic.enrichment_error or "")
        return Transition(Stage.DRAFT)

    async def _draft(self, state: RunState) -> Transition:
        try:
            article = await self.assembler.assemble(
                state.selected, today=self.clock().date(), cancel_event=state.cancel_event
            )
        except AssemblyError:
            if self._cancel_requested(state):
                self._record(state, Stage.DRAFT, StageStatus.FAILED, detail=CANCELLED_REASON)
                return self._cancel(state, "during draft")
            raise
        state.article = article
        status = StageStatus.OK if article.validation.passed else StageStatus.DEGRADED
        self._record(
            state, Stage.DRAFT, status,
            attempts=article.attempts,
            detail="; ".join(article.validation.violations),
            data={"word_count": article.word_count, "filename": article.filename},
        )
        return Transition(Stage.ILLUSTRATE)

    async def _illustrate(self, state: RunState) -> Transition:
        if self.thumbnails is None or not self.thumbnails.is_configured():
            self._record(state, Stage.ILLUSTRATE, StageStatus.SKIPPED, detail="image port not configured")
            return Transition(Stage.PUBLISH)

        try:
            path = await self.thumbnails.generate(
                state.article, today=self.clock().date(), cancel_event=state.cancel_event
            )
        except Exception as e:
            logger.warning(f"⚠️ Thumbnail generation crashed: {e}")
            path = None

        if path:
            state.article.thumbnail_path = path
            state.article.front_matter["thumbnail"] = path
            self._record(state, Stage.ILLUSTRATE, StageStatus.OK, detail=path)
        else:
            self._record(state, Stage.ILLUSTRATE, StageStatus.DEGRADED, detail="no thumbnail")
        return Transition(Stage.PUBLISH)

    def _persist(self, state: RunState):
        """Write the article file and database row; failures only degrade PUBLISH."""
        article = state.article
        try:
            if self.snapshots is not None:
                self.snapshots.write_article(article)
            if self.persistence is not None:
                state.report.saved = self.persistence.save(article)
        except Exception as e:
            logger.warning(f"⚠️ Could not store article locally: {e}")
            state.storage_error = f"local storage failed: {e}"

    def _record_publish(self, state: RunState, status: StageStatus, detail: str = ""):
        if state.storage_error:
            detail = f"{detail}; {state.storage_error}" if detail else state.storage_error
        self._record(state, Stage.PUBLISH, status, detail=detail)

    async def _publish(self, state: RunState) -> Transition:
        self._persist(state)

        if not state.publish:
            self._record_publish(state, StageStatus.SKIPPED, "publishing disabled")
            return Transition()
        if self.publisher is None or not self.publisher.is_configured():
            logger.info("Publish gateway not configured, keeping the article local")
            self._record_publish(state, StageStatus.SKIPPED, "publish gateway not configured")
            return Transition()

        try:
            result = await self.publisher.publish(state.article)
        except Exception as e:
            logger.warning(f"⚠️ Publishing crashed: {e}")
            self._record_publish(state, StageStatus.FAILED, str(e))
            return Transition()

        state.report.publish_result = result
        state.report.published = result.success
        if result.success:
            self._record_publish(state, StageStatus.OK, result.url or "")
        else:
            self._record_publish(state, StageStatus.FAILED, result.error or "")
        return Transition()

    @staticmethod
    def _log_outcome(report: PipelineReport):
        if report.success:
            logger.info(f"🎉 Pipeline finished in {report.elapsed_seconds:.1f}s")
        elif report.fatal:
            logger.error(f"❌ Pipeline failed: {report.failure_reason}")
        else:
            logger.warning(f"⚠️ Pipeline stopped: {report.failure_reason}")
