"""Command line interface for the article bot."""

import asyncio
import logging
import signal
import sys

import click

# Heavy modules are imported inside the commands so that ``cli`` stays cheap
# to import, e.g. when only checking command registration.

logger = logging.getLogger(__name__)


def _load_settings(ctx: click.Context):
    from articlebot.models.settings import Settings

    return Settings(debug=ctx.obj.get("debug", False))


def _exit_on_error(ctx: click.Context, error: Exception, label: str) -> None:
    logger.error(f"❌ {label}: {error}")
    if ctx.obj.get("debug"):
        raise error
    sys.exit(1)


def _run(ctx: click.Context, coro, label: str):
    """Run ``coro`` and turn unexpected failures into exit code 1."""
    try:
        return asyncio.run(coro)
    except (ImportError, ModuleNotFoundError) as e:
        _exit_on_error(ctx, e, "Missing required dependencies")
    except (KeyError, AttributeError, ValueError, TypeError) as e:
        _exit_on_error(ctx, e, "Configuration or data error")
    except (FileNotFoundError, PermissionError) as e:
        _exit_on_error(ctx, e, "File system error")
    except Exception as e:
        _exit_on_error(ctx, e, f"Unexpected {label} error")


def _echo_report(report) -> None:
    click.echo("\n📋 Pipeline report")
    for summary in report.stages:
        line = f"  {summary.stage:<10} {summary.status:<9}"
        if summary.attempts > 1:
            line += f" (attempt {summary.attempts})"
        if summary.detail:
            line += f" {summary.detail}"
        click.echo(line)

    if report.article:
        article = report.article
        click.echo(f"\n📝 {article.title}")
        click.echo(f"   File: {article.filename}")
        click.echo(f"   Words: {article.word_count}, reading time {article.reading_time} min")
        for violation in article.validation.violations:
            click.echo(f"   ⚠️ {violation}")
    click.echo(f"\nPublished: {'yes' if report.published else 'no'}")
    if report.publish_result and report.publish_result.url:
        click.echo(f"URL: {report.publish_result.url}")
    click.echo(f"Elapsed: {report.elapsed_seconds:.1f}s")

    if report.success:
        click.echo("✅ Pipeline completed")
    elif report.fatal:
        click.echo(f"❌ Pipeline failed: {report.failure_reason}")
    else:
        click.echo(f"⚠️ Pipeline stopped: {report.failure_reason}")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Trending-topic article bot.

    Discovers fresh topics, ranks them, researches the best one and drafts
    a publication-ready article.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=log_level, force=True)
    logger.debug("Debug mode enabled")


@cli.command()
@click.option("--query", default=None, help="Override the configured discovery query")
@click.pass_context
def discover(ctx: click.Context, query: str) -> None:
    """Discover, validate and deduplicate topics, then save a snapshot."""

    async def _discover():
        from articlebot.core.pipeline import PipelineOrchestrator
        from articlebot.models.content import Stage

        settings = _load_settings(ctx)
        orchestrator = PipelineOrchestrator.from_settings(settings)
        return await orchestrator.run(publish=False, query=query, stop_after=Stage.VALIDATE)

    report = _run(ctx, _discover(), "discovery")
    if not report.success:
        click.echo(f"❌ Discovery failed: {report.failure_reason}")
        sys.exit(1 if report.fatal else 0)

    click.echo(f"\n🔍 {len(report.topics)} unique topics\n")
    for i, topic in enumerate(report.topics, 1):
        click.echo(f"  {i}. [{topic.category}] {topic.title} ({topic.source_count} sources)")


@cli.command()
@click.pass_context
def score(ctx: click.Context) -> None:
    """Score and rank the latest discovered topics."""
    try:
        from articlebot.core.scorer import TopicScorer
        from articlebot.core.storage import SnapshotStore

        settings = _load_settings(ctx)
        snapshots = SnapshotStore.from_settings(settings)
        topics = snapshots.load_latest_discovered()
        if not topics:
            click.echo("❌ No discovered topics found, run 'discover' first")
            sys.exit(1)

        scorer = TopicScorer.from_settings(settings)
        ranked = TopicScorer.rank(scorer.score_all(topics))
        report = scorer.report(ranked)
        snapshots.save_ranked(ranked, report)
    except (KeyError, AttributeError, ValueError, TypeError) as e:
        _exit_on_error(ctx, e, "Configuration or data error")
        return

    click.echo("\n📊 Scoring report")
    click.echo(f"  Topics: {report.total_topics}")
    click.echo(f"  Passing (>= {report.threshold:g}): {report.passing_topics}")
    click.echo(f"  Average score: {report.average_score}")
    click.echo(f"  Distribution: {report.score_distribution}")

    click.echo("\n🏆 Top topics")
    for i, scored in enumerate(ranked[:5], 1):
        mark = "✅" if scored.score.passes_threshold else "❌"
        click.echo(f"  {i}. {mark} {scored.score.total:g} - {scored.topic.title}")

    if not report.passing_topics:
        click.echo("⚠️ No topics passed threshold")


@cli.command()
@click.pass_context
def draft(ctx: click.Context) -> None:
    """Research and draft an article from the best ranked topic."""

    async def _draft():
        from articlebot.clients.chat_completions import ChatCompletionsClient
        from articlebot.clients.gemini import GeminiClient
        from articlebot.core.assembler import ArticleAssembler
        from articlebot.core.research import ResearchEnricher
        from articlebot.core.scorer import TopicScorer
        from articlebot.core.storage import ArticleStore, SnapshotStore

        settings = _load_settings(ctx)
        snapshots = SnapshotStore.from_settings(settings)
        ranked, _ = snapshots.load_latest_ranked()
        if not ranked:
            click.echo("❌ No ranking found, run 'score' first")
            sys.exit(1)
        passing = TopicScorer.passing(ranked)
        if not passing:
            click.echo("⚠️ No topics passed threshold, nothing to draft")
            return None

        topic = passing[0].topic
        click.echo(f"✍️ Drafting: {topic.title}")
        enricher = ResearchEnricher.from_settings(
            settings,
            ChatCompletionsClient.for_openai(settings, model=settings.openai_research_model),
            delegate=GeminiClient.from_settings(settings),
        )
        topic = await enricher.enrich(topic)

        assembler = ArticleAssembler.from_settings(settings, ChatCompletionsClient.for_openai(settings))
        article = await assembler.assemble(topic)
        snapshots.write_article(article)
        ArticleStore.from_settings(settings).save(article)
        return article

    article = _run(ctx, _draft(), "drafting")
    if article is None:
        return

    click.echo(f"\n📝 {article.filename}")
    click.echo(f"   Words: {article.word_count} ({article.attempts} attempt(s))")
    if article.validation.passed:
        click.echo("   ✅ Structure valid")
    for violation in article.validation.violations:
        click.echo(f"   ⚠️ {violation}")


@cli.command("run-full")
@click.option("--no-publish", is_flag=True, help="Keep the article local")
@click.pass_context
def run_full(ctx: click.Context, no_publish: bool) -> None:
    """Run the whole pipeline once."""

    async def _run_full():
        from articlebot.core.pipeline import PipelineOrchestrator

        settings = _load_settings(ctx)
        orchestrator = PipelineOrchestrator.from_settings(settings)

        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGTERM handler not available on this platform")

        return await orchestrator.run(publish=not no_publish, cancel_event=cancel_event)

    report = _run(ctx, _run_full(), "pipeline")
    _echo_report(report)
    if report.fatal:
        sys.exit(1)


@cli.command("list")
@click.option("--limit", default=20, show_default=True, help="Rows to show")
@click.pass_context
def list_articles(ctx: click.Context, limit: int) -> None:
    """List stored articles."""
    from articlebot.core.storage import ArticleStore, SnapshotStore

    settings = _load_settings(ctx)
    rows = ArticleStore.from_settings(settings).list_articles(limit=limit)
    files = SnapshotStore.from_settings(settings).list_article_files()

    if not rows and not files:
        click.echo("No articles yet")
        return

    if rows:
        click.echo(f"\n🗄️ {len(rows)} stored article(s)")
        for row in rows:
            mark = "✅" if row["passed_validation"] else "⚠️"
            click.echo(f"  {mark} {row['created_at'][:10]} [{row['category']}] {row['title']}")
    if files:
        click.echo(f"\n📁 {len(files)} file(s) in {settings.articles_dir}")
        for path in files[:limit]:
            click.echo(f"  {path.name}")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Display configuration and today's progress (without sensitive values)."""
    from articlebot.core.storage import SnapshotStore

    settings = _load_settings(ctx)
    snapshots = SnapshotStore.from_settings(settings)

    click.echo("\n📋 Article Bot Configuration\n")
    click.echo(f"Debug Mode: {settings.debug}")
    click.echo(f"Infisical Enabled: {settings.use_infisical}")
    click.echo(f"Categories: {len(settings.category_list)}")
    click.echo(f"Score threshold: {settings.min_score_threshold}")
    click.echo(f"Word bounds: {settings.min_word_count}-{settings.max_word_count}")

    click.echo("\n🔑 API Keys:")
    keys_status = {
        "Perplexity": settings.perplexity_api_key,
        "OpenAI": settings.openai_api_key,
        "Gemini": settings.gemini_api_key,
        "Reve": settings.reve_api_key,
        "Webflow": settings.webflow_api_key and settings.webflow_collection_id,
    }
    for service, configured in keys_status.items():
        click.echo(f"  {service}: {'✅ Configured' if configured else '❌ Missing'}")

    click.echo("\n📅 Today:")
    for kind in ("discovered", "ranked"):
        mark = "✅" if snapshots.has_snapshot(kind) else "❌"
        click.echo(f"  {kind}: {mark}")
    click.echo(f"  Articles on disk: {len(snapshots.list_article_files())}")

    missing = [s for s in ("Perplexity", "OpenAI") if not keys_status[s]]
    if missing:
        click.echo(f"\n⚠️ Missing critical API keys: {', '.join(missing)}")
    else:
        click.echo("\n✅ Ready to run")


if __name__ == "__main__":
    cli()
