"""Tests for the pipeline orchestrator state machine."""

import asyncio
import json
import re
import sqlite3
from unittest.mock import patch

import pytest

from articlebot.clients.errors import ContentViolationError, PortUnavailableError
from articlebot.clients.interfaces import PersistenceGateway, PublishGateway
from articlebot.core.pipeline import TRANSITIONS, PipelineOrchestrator
from articlebot.core.storage import ArticleStore, SnapshotStore
from articlebot.models.content import PublishResult, SaveResult, Stage, StageStatus

DOSSIER = json.dumps(
    {
        "dossierEditorial": {
            "angleEditorial": "Ce que cela change pour les PME",
            "sourcesComplementaires": [{"titre": "Rapport", "url": "https://rapport.example.com"}],
        }
    }
)


class StubPublisher(PublishGateway):
    def __init__(self, configured=False, result=None):
        self.configured = configured
        self.result = result or PublishResult(success=True, external_id="item-1", url="https://blog/x")
        self.published = []

    def is_configured(self):
        return self.configured

    async def publish(self, article):
        self.published.append(article)
        return self.result


class MemoryStore(PersistenceGateway):
    def __init__(self, past_titles=None):
        self.past_titles = list(past_titles or [])
        self.saved = []

    def save(self, article):
        self.saved.append(article)
        return SaveResult(id=len(self.saved), slug=article.slug)

    def exists(self, slug):
        return any(a.slug == slug for a in self.saved)

    def list_past_titles(self):
        return list(self.past_titles)


@pytest.fixture
def ports(stub_text_port, fresh_topics_json, well_formed_article):
    return {
        "discover": stub_text_port([fresh_topics_json], name="perplexity"),
        "research": stub_text_port([DOSSIER], name="openai-research"),
        "draft": stub_text_port([well_formed_article], name="openai"),
    }


@pytest.fixture
def build(settings, ports, recording_sleep, fixed_now):
    def _build(**overrides):
        kwargs = {
            "discover_port": ports["discover"],
            "research_port": ports["research"],
            "draft_port": ports["draft"],
            "persistence": MemoryStore(),
            "publisher": StubPublisher(configured=False),
            "sleep": recording_sleep,
            "clock": lambda: fixed_now,
        }
        kwargs.update(overrides)
        return PipelineOrchestrator(settings, **kwargs)

    return _build


@pytest.mark.asyncio
async def test_happy_path_without_publisher(build, ports):
    report = await build().run()

    assert report.success is True
    assert report.published is False
    assert report.article is not None
    assert report.article.validation.passed
    assert report.failure_reason is None
    assert len(ports["discover"].calls) == 1
    assert len(ports["research"].calls) == 1
    assert len(ports["draft"].calls) == 1
    assert report.stage(Stage.PUBLISH).status == StageStatus.SKIPPED.value
    assert report.stage(Stage.RESEARCH).status == StageStatus.OK.value
    assert report.scoring.passing_topics == 5
    assert len(report.topics) == 5
    assert report.saved.id == 1


@pytest.mark.asyncio
async def test_stages_run_in_order(build):
    report = await build().run()
    order = [s.stage for s in report.stages]
    assert order == ["discover", "validate", "score", "research", "draft", "illustrate", "publish"]


@pytest.mark.asyncio
async def test_research_enrichment_reaches_draft(build, ports):
    report = await build().run()
    assert "Ce que cela change pour les PME" in ports["draft"].calls[0]["prompt"]
    assert any(s.url == "https://rapport.example.com" for s in report.article.references)


@pytest.mark.asyncio
async def test_empty_discovery_is_fatal_after_three_attempts(build, stub_text_port, recording_sleep):
    discover = stub_text_port(['{"topics": []}'])
    report = await build(discover_port=discover).run()

    assert report.success is False
    assert report.fatal is True
    assert re.search("no topics", report.failure_reason, re.IGNORECASE)
    assert len(discover.calls) == 3
    assert recording_sleep.delays == [2.0, 2.0]


@pytest.mark.asyncio
async def test_discovery_port_errors_are_retried(build, stub_text_port, fresh_topics_json):
    discover = stub_text_port([PortUnavailableError("perplexity", "HTTP 503"), fresh_topics_json])
    report = await build(discover_port=discover).run()

    assert report.success
    assert len(discover.calls) == 2
    assert report.stages[0].status == StageStatus.FAILED.value


@pytest.mark.asyncio
async def test_no_unique_topics_is_fatal(build, ports, fresh_titles):
    store = MemoryStore(past_titles=fresh_titles)
    report = await build(persistence=store).run()

    assert report.success is False
    assert report.fatal is True
    assert report.failure_reason == "no unique topics after 3 attempts"
    assert len(ports["discover"].calls) == 3
    assert ports["draft"].calls == []


@pytest.mark.asyncio
async def test_past_titles_are_sent_to_discovery(build, ports):
    store = MemoryStore(past_titles=["2026-10-01-un-ancien-sujet.md"])
    await build(persistence=store).run()
    assert "2026-10-01-un-ancien-sujet.md" in ports["discover"].calls[0]["prompt"]


@pytest.mark.asyncio
async def test_threshold_gate_is_non_fatal(build, ports, settings):
    settings.min_score_threshold = 35
    report = await build().run()

    assert report.success is False
    assert report.fatal is False
    assert report.failure_reason == "No topics passed threshold"
    assert ports["research"].calls == []
    assert report.scoring.passing_topics == 0


@pytest.mark.asyncio
async def test_research_failure_degrades(build, stub_text_port, recording_sleep):
    research = stub_text_port([PortUnavailableError("openai", "HTTP 500")])
    report = await build(research_port=research).run()

    assert report.success is True
    assert report.stage(Stage.RESEARCH).status == StageStatus.DEGRADED.value
    assert "research port failed" in report.stage(Stage.RESEARCH).detail
    assert len(research.calls) == 2
    assert recording_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_transient_research_error_is_retried(build, stub_text_port, recording_sleep):
    research = stub_text_port([PortUnavailableError("openai", "HTTP 503"), DOSSIER])
    report = await build(research_port=research).run()

    assert report.stage(Stage.RESEARCH).status == StageStatus.OK.value
    assert len(research.calls) == 2
    assert recording_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_draft_failure_is_fatal(build, stub_text_port, recording_sleep):
    draft = stub_text_port([PortUnavailableError("openai", "HTTP 500")])
    report = await build(draft_port=draft).run()

    assert report.success is False
    assert report.fatal is True
    assert report.failure_reason.startswith("draft failed")
    assert report.article is None
    assert len(draft.calls) == 3
    assert recording_sleep.delays == [2.0, 2.0]


@pytest.mark.asyncio
async def test_unexpected_score_error_is_fatal(build):
    orchestrator = build()
    with patch.object(orchestrator.scorer, "score_all", side_effect=RuntimeError("boom")):
        report = await orchestrator.run()

    assert report.success is False
    assert report.fatal is True
    assert report.failure_reason == "score failed: boom"
    assert report.stage(Stage.SCORE).status == StageStatus.FAILED.value


@pytest.mark.asyncio
async def test_flagged_draft_still_succeeds(build, stub_text_port, article_factory):
    draft = stub_text_port([article_factory(500)])
    report = await build(draft_port=draft).run()

    assert report.success is True
    assert report.stage(Stage.DRAFT).status == StageStatus.DEGRADED.value
    assert report.article.validation.codes == ["too_short"]


@pytest.mark.asyncio
async def test_thumbnail_is_attached(build, stub_image_port, settings):
    report = await build(image_port=stub_image_port()).run()

    assert report.stage(Stage.ILLUSTRATE).status == StageStatus.OK.value
    assert report.article.thumbnail_path.endswith(f"2026-10-19-{report.article.slug}.png")


@pytest.mark.asyncio
async def test_thumbnail_failure_is_non_fatal(build, stub_image_port, recording_sleep):
    image = stub_image_port([PortUnavailableError("reve", "HTTP 502")])
    report = await build(image_port=image).run()

    assert report.success is True
    assert report.stage(Stage.ILLUSTRATE).status == StageStatus.DEGRADED.value
    assert report.article.thumbnail_path is None
    assert recording_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_publish_success(build):
    publisher = StubPublisher(configured=True)
    report = await build(publisher=publisher).run()

    assert report.success is True
    assert report.published is True
    assert report.publish_result.url == "https://blog/x"
    assert len(publisher.published) == 1


@pytest.mark.asyncio
async def test_publish_failure_is_non_fatal(build):
    publisher = StubPublisher(configured=True, result=PublishResult(success=False, error="HTTP 400"))
    report = await build(publisher=publisher).run()

    assert report.success is True
    assert report.published is False
    assert report.stage(Stage.PUBLISH).status == StageStatus.FAILED.value


@pytest.mark.asyncio
async def test_publish_disabled(build):
    publisher = StubPublisher(configured=True)
    report = await build(publisher=publisher).run(publish=False)

    assert report.success is True
    assert publisher.published == []
    assert report.stage(Stage.PUBLISH).detail == "publishing disabled"


@pytest.mark.asyncio
async def test_cancel_before_start(build, ports):
    event = asyncio.Event()
    event.set()
    report = await build().run(cancel_event=event)

    assert report.cancelled is True
    assert report.success is False
    assert report.fatal is False
    assert report.failure_reason == "cancelled"
    assert ports["discover"].calls == []


@pytest.mark.asyncio
async def test_cancel_during_discovery_retry(build, stub_text_port):
    event = asyncio.Event()

    async def cancelling_sleep(delay):
        event.set()

    discover = stub_text_port(['{"topics": []}'])
    report = await build(discover_port=discover, sleep=cancelling_sleep).run(cancel_event=event)

    assert report.cancelled is True
    assert len(discover.calls) == 1


@pytest.mark.asyncio
async def test_stop_after_validation(build, ports):
    report = await build().run(stop_after=Stage.VALIDATE)

    assert report.success is True
    assert len(report.topics) == 5
    assert ports["research"].calls == []
    assert report.article is None


@pytest.mark.asyncio
async def test_elapsed_time_uses_timer(build):
    ticks = iter([100.0, 102.5])
    report = await build(timer=lambda: next(ticks)).run(stop_after=Stage.DISCOVER)
    assert report.elapsed_seconds == 2.5


@pytest.mark.asyncio
async def test_local_stores_are_written(build, settings):
    snapshots = SnapshotStore.from_settings(settings)
    store = ArticleStore.from_settings(settings)
    report = await build(persistence=store, snapshots=snapshots).run()

    assert snapshots.has_snapshot("discovered", report.article.created_at.date())
    assert len(snapshots.list_article_files()) == 1
    assert store.exists(report.article.slug)
    assert report.article.title in store.list_past_titles()


def test_only_validation_may_go_back():
    backwards = [stage for stage, targets in TRANSITIONS.items() if Stage.DISCOVER in targets]
    assert backwards == [Stage.DISCOVER, Stage.VALIDATE]


@pytest.mark.asyncio
async def test_content_violation_thumbnail_skips_wait(build, stub_image_port, recording_sleep):
    image = stub_image_port([ContentViolationError("reve", "flagged"), b"png"])
    report = await build(image_port=image).run()

    assert report.stage(Stage.ILLUSTRATE).status == StageStatus.OK.value
    assert recording_sleep.delays == []


class LockedStore(MemoryStore):
    def save(self, article):
        raise sqlite3.OperationalError("database is locked")


@pytest.mark.asyncio
async def test_storage_failure_does_not_fail_the_run(build):
    report = await build(persistence=LockedStore()).run()

    assert report.success is True
    assert report.fatal is False
    assert report.article is not None
    assert report.saved is None
    publish = report.stage(Stage.PUBLISH)
    assert publish.status == StageStatus.SKIPPED.value
    assert publish.detail == "publish gateway not configured; local storage failed: database is locked"


@pytest.mark.asyncio
async def test_storage_failure_still_publishes(build):
    publisher = StubPublisher(configured=True)
    report = await build(persistence=LockedStore(), publisher=publisher).run()

    assert report.published is True
    assert len(publisher.published) == 1
    assert "database is locked" in report.stage(Stage.PUBLISH).detail


@pytest.mark.asyncio
async def test_cancel_during_draft_stops_corrective_retries(build, stub_text_port, article_factory):
    event = asyncio.Event()

    def short_draft_then_cancel(prompt):
        event.set()
        return article_factory(500)

    draft = stub_text_port([short_draft_then_cancel])
    report = await build(draft_port=draft).run(cancel_event=event)

    assert len(draft.calls) == 1
    assert report.cancelled is True
    assert report.fatal is False
    assert report.failure_reason == "cancelled"
    assert report.article.word_count == 500
    assert report.stage(Stage.DRAFT).attempts == 1


@pytest.mark.asyncio
async def test_cancel_during_draft_backoff(build, stub_text_port):
    event = asyncio.Event()

    async def cancelling_sleep(delay):
        event.set()

    draft = stub_text_port([PortUnavailableError("openai", "HTTP 500")])
    report = await build(draft_port=draft, sleep=cancelling_sleep).run(cancel_event=event)

    assert len(draft.calls) == 1
    assert report.cancelled is True
    assert report.fatal is False
    assert report.article is None
    assert report.stage(Stage.DRAFT).detail == "cancelled"


@pytest.mark.asyncio
async def test_cancel_during_thumbnail_retries(build, stub_image_port):
    event = asyncio.Event()

    async def cancelling_sleep(delay):
        event.set()

    image = stub_image_port([PortUnavailableError("reve", "HTTP 502")])
    orchestrator = build(image_port=image, sleep=cancelling_sleep)
    report = await orchestrator.run(cancel_event=event)

    assert len(image.prompts) == 1
    assert report.cancelled is True
    assert report.stage(Stage.ILLUSTRATE).status == StageStatus.DEGRADED.value
    assert report.stage(Stage.PUBLISH) is None
