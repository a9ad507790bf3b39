"""Tests for article assembly, corrective retries and excerpts."""

import asyncio
from datetime import date

import pytest

from articlebot.clients.errors import PortTimeoutError
from articlebot.core.assembler import ArticleAssembler, add_references, truncate_excerpt
from articlebot.core.errors import AssemblyError

TODAY = date(2026, 10, 19)


@pytest.fixture
def assembler_for(stub_text_port, recording_sleep):
    def _make(responses, max_attempts=3, **kwargs):
        port = stub_text_port(responses, name="openai")
        return ArticleAssembler(port, max_attempts=max_attempts, sleep=recording_sleep, **kwargs), port

    return _make


@pytest.mark.asyncio
async def test_short_draft_exhausts_attempts_and_is_flagged(assembler_for, article_factory, make_topic):
    assembler, port = assembler_for([article_factory(500)])
    article = await assembler.assemble(make_topic(), today=TODAY)

    assert len(port.calls) == 3
    assert article.attempts == 3
    assert article.validation.passed is False
    assert article.validation.codes == ["too_short"]
    assert article.word_count == 500


@pytest.mark.asyncio
async def test_retry_instruction_quotes_measured_length(assembler_for, article_factory, make_topic):
    assembler, port = assembler_for([article_factory(500)], max_attempts=2)
    await assembler.assemble(make_topic(), today=TODAY)

    assert "CORRECTION" not in port.calls[0]["prompt"]
    assert "ne faisait que 500 mots" in port.calls[1]["prompt"]


@pytest.mark.asyncio
async def test_valid_draft_needs_one_call(assembler_for, well_formed_article, make_topic):
    assembler, port = assembler_for([well_formed_article])
    article = await assembler.assemble(make_topic(), today=TODAY)

    assert len(port.calls) == 1
    assert article.validation.passed
    assert article.word_count == 1300
    assert article.reading_time == 7


@pytest.mark.asyncio
async def test_corrective_retry_recovers(assembler_for, article_factory, make_topic):
    assembler, port = assembler_for([article_factory(600), article_factory(1200)])
    article = await assembler.assemble(make_topic(), today=TODAY)

    assert len(port.calls) == 2
    assert article.validation.passed
    assert article.attempts == 2


@pytest.mark.asyncio
async def test_best_draft_is_kept(assembler_for, article_factory, make_topic):
    assembler, _ = assembler_for([article_factory(700), article_factory(400), article_factory(300)])
    article = await assembler.assemble(make_topic(), today=TODAY)
    assert article.word_count == 700


@pytest.mark.asyncio
async def test_structural_violation_is_not_retried(assembler_for, article_factory, make_topic):
    assembler, port = assembler_for([article_factory(1200, include_faq=False)])
    article = await assembler.assemble(make_topic(), today=TODAY)

    assert len(port.calls) == 1
    assert "missing_faq" in article.validation.codes


@pytest.mark.asyncio
async def test_over_length_is_flagged_not_retried(assembler_for, article_factory, make_topic):
    assembler, port = assembler_for([article_factory(1800)])
    article = await assembler.assemble(make_topic(), today=TODAY)

    assert len(port.calls) == 1
    assert article.validation.codes == ["too_long"]
    assert "1800 words" in article.validation.violations[0]


@pytest.mark.asyncio
async def test_port_failures_raise_assembly_error(assembler_for, make_topic):
    assembler, port = assembler_for([PortTimeoutError("openai", "timed out")])
    with pytest.raises(AssemblyError):
        await assembler.assemble(make_topic(), today=TODAY)
    assert len(port.calls) == 3


@pytest.mark.asyncio
async def test_port_failure_then_success(assembler_for, well_formed_article, make_topic, recording_sleep):
    assembler, _ = assembler_for([PortTimeoutError("openai", "timed out"), well_formed_article])
    article = await assembler.assemble(make_topic(), today=TODAY)
    assert article.validation.passed
    assert article.attempts == 2
    assert recording_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_port_failures_back_off(assembler_for, make_topic, recording_sleep):
    assembler, port = assembler_for(
        [PortTimeoutError("openai", "timed out")],
        max_attempts=4,
        retry_base_delay=1.0,
        retry_backoff_multiplier=2.0,
    )
    with pytest.raises(AssemblyError):
        await assembler.assemble(make_topic(), today=TODAY)

    assert len(port.calls) == 4
    assert recording_sleep.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_corrective_retries_do_not_wait(assembler_for, article_factory, make_topic, recording_sleep):
    assembler, port = assembler_for([article_factory(500)])
    await assembler.assemble(make_topic(), today=TODAY)

    assert len(port.calls) == 3
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_cancel_keeps_best_draft(assembler_for, article_factory, make_topic):
    event = asyncio.Event()
    event.set()
    assembler, port = assembler_for([article_factory(500)])
    article = await assembler.assemble(make_topic(), today=TODAY, cancel_event=event)

    assert len(port.calls) == 1
    assert article.attempts == 1
    assert article.validation.codes == ["too_short"]


@pytest.mark.asyncio
async def test_cancel_without_any_draft_raises(assembler_for, make_topic):
    event = asyncio.Event()
    event.set()
    assembler, port = assembler_for([PortTimeoutError("openai", "timed out")])
    with pytest.raises(AssemblyError):
        await assembler.assemble(make_topic(), today=TODAY, cancel_event=event)
    assert len(port.calls) == 1


@pytest.mark.asyncio
async def test_missing_title_falls_back_to_untitled(assembler_for, make_topic):
    assembler, _ = assembler_for(["Juste un paragraphe sans structure."])
    article = await assembler.assemble(make_topic("Mistral lève des fonds"), today=TODAY)

    assert article.title == "Untitled"
    assert article.slug == "mistral-leve-des-fonds"
    assert article.excerpt == "Un résumé."


@pytest.mark.asyncio
async def test_derived_fields(assembler_for, well_formed_article, make_topic):
    assembler, _ = assembler_for([well_formed_article])
    article = await assembler.assemble(make_topic(), today=TODAY)

    assert article.title.startswith("Les PME françaises")
    assert article.filename.startswith("2026-10-19-les-pme-francaises")
    assert len(article.filename) <= len("2026-10-19-") + 60 + len(".md")
    assert article.excerpt.startswith("Les PME françaises multiplient")
    assert article.section_count == 7
    assert "## Sources" in article.body
    assert "1. [Source 1](https://news1.example.com/1) (2026-10-19)" in article.body

    seo = article.front_matter["seo"]
    assert len(seo["title"]) <= 60
    assert len(seo["description"]) <= 160
    assert seo["keywords"]
    assert article.front_matter["date"] == "2026-10-19"
    assert article.front_matter["sources"][0]["url"] == "https://news1.example.com/1"


def test_existing_sources_section_is_replaced(make_topic):
    body = "# T\n\n## Sources\n\n- ancienne source\n\n## Annexe\n\nTexte"
    result = add_references(body, make_topic(sources=1).sources)

    assert "ancienne source" not in result
    assert result.count("## Sources") == 1
    assert "## Annexe" in result


def test_no_sources_leaves_body_untouched():
    assert add_references("# T\n\nCorps", []) == "# T\n\nCorps"


@pytest.mark.parametrize("length", [0, 1, 49, 50])
def test_short_excerpt_is_unchanged(length):
    text = ("abcde " * 20)[:length]
    assert truncate_excerpt(text, 50) == text


@pytest.mark.parametrize("length", [51, 60, 120, 500])
@pytest.mark.parametrize("cap", [20, 50, 160])
def test_long_excerpt_respects_cap(length, cap):
    text = ("Une phrase courte. Puis une autre phrase un peu plus longue! " * 20)[:length]
    if len(text) <= cap:
        return
    excerpt = truncate_excerpt(text, cap)
    assert len(excerpt) <= cap
    assert excerpt.endswith("…")


def test_excerpt_prefers_sentence_end():
    text = "A" * 35 + ". " + "B" * 30
    assert truncate_excerpt(text, 50) == "A" * 35 + ".…"


def test_excerpt_falls_back_to_whitespace():
    text = "mot " * 30
    assert truncate_excerpt(text, 50) == ("mot " * 12).strip() + "…"


def test_excerpt_hard_cut():
    assert truncate_excerpt("x" * 100, 50) == "x" * 49 + "…"


def test_from_settings(settings, stub_text_port):
    assembler = ArticleAssembler.from_settings(settings, stub_text_port())
    assert assembler.min_words == 1000
    assert assembler.max_words == 1600
    assert assembler.max_attempts == 3
    assert assembler.retry_base_delay == 2.0
    assert assembler.retry_backoff_multiplier == 1.0
