"""Daily article pipeline scheduling."""

import logging
import subprocess
import sys
from datetime import datetime, timezone

from celery import Celery
from celery.schedules import crontab

from articlebot.models.settings import Settings

logger = logging.getLogger(__name__)

PIPELINE_TIMEOUT = 1800  # 30 minutes
HEALTH_TIMEOUT = 60

CRON_FIELDS = ("minute", "hour", "day_of_month", "month_of_year", "day_of_week")


def parse_cron(expression: str) -> crontab:
    """Turn a five-field cron expression into a celery ``crontab``."""
    fields = (expression or "").split()
    if len(fields) != len(CRON_FIELDS):
        raise ValueError(
            f"Invalid cron expression '{expression}': expected 5 fields, got {len(fields)}"
        )
    return crontab(**dict(zip(CRON_FIELDS, fields)))


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


settings = Settings()

app = Celery("article-scheduler")

app.conf.update(
    broker_url=settings.broker_url,
    result_backend=settings.broker_url,
    timezone=settings.schedule_timezone,
    enable_utc=True,
    beat_schedule={
        "run-daily-article": {
            "task": "scheduler.scheduler.run_pipeline_task",
            "schedule": parse_cron(settings.schedule_cron),
        },
    },
)


@app.task
def run_pipeline_task(publish: bool = True) -> dict:
    """Celery task running one full pipeline in a subprocess."""
    try:
        logger.info(f"Starting scheduled article run (publish={publish})")

        cmd = [sys.executable, "-m", "articlebot.article_bot", "run-full"]
        if not publish:
            cmd.append("--no-publish")

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=PIPELINE_TIMEOUT)

        if result.returncode == 0:
            logger.info("Article run completed")
            return {
                "status": "success",
                "timestamp": _timestamp(),
                "output": result.stdout,
                "publish": publish,
            }
        logger.error(f"Article run failed: {result.stderr}")
        return {
            "status": "error",
            "timestamp": _timestamp(),
            "error": result.stderr,
            "output": result.stdout,
            "publish": publish,
        }

    except subprocess.TimeoutExpired:
        logger.error("Article run timed out")
        return {
            "status": "timeout",
            "timestamp": _timestamp(),
            "error": f"Task timed out after {PIPELINE_TIMEOUT // 60} minutes",
            "publish": publish,
        }
    except Exception as e:
        logger.error(f"Unexpected error in article task: {e}")
        return {
            "status": "error",
            "timestamp": _timestamp(),
            "error": str(e),
            "publish": publish,
        }


@app.task
def health_check_task() -> dict:
    """Celery task reporting the bot's configuration status."""
    try:
        logger.info("Running scheduled health check")

        result = subprocess.run(
            [sys.executable, "-m", "articlebot.article_bot", "status"],
            capture_output=True,
            text=True,
            timeout=HEALTH_TIMEOUT,
        )

        return {
            "status": "success" if result.returncode == 0 else "warning",
            "timestamp": _timestamp(),
            "output": result.stdout,
            "return_code": result.returncode,
        }

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"status": "error", "timestamp": _timestamp(), "error": str(e)}


if __name__ == "__main__":
    app.start()
