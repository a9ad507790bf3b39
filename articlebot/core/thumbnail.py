"""Illustrate stage: best-effort thumbnail generation."""

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from articlebot.clients.errors import ContentViolationError, PortError
from articlebot.clients.interfaces import ImagePort
from articlebot.core.prompts import simplified_thumbnail_prompt, thumbnail_prompt
from articlebot.models.content import Article

logger = logging.getLogger(__name__)


class ThumbnailGenerator:
    """Generate and store one thumbnail per article.

    Attempts cycle through the full prompt, a simplified prompt, then the
    full prompt again, waiting ``base_delay * backoff_multiplier ** (n - 2)``
    seconds before attempt ``n``. A content-policy rejection moves on to the
    next prompt without waiting.
    """

    def __init__(
        self,
        image_port: ImagePort,
        output_dir: str = "articles/thumbnails",
        max_attempts: int = 3,
        base_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        aspect_ratio: str = "16:9",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.image_port = image_port
        self.output_dir = Path(output_dir)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_multiplier = backoff_multiplier
        self.aspect_ratio = aspect_ratio
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings, image_port: ImagePort, sleep=asyncio.sleep) -> "ThumbnailGenerator":
        return cls(
            image_port,
            output_dir=str(Path(settings.articles_dir) / "thumbnails"),
            base_delay=settings.thumbnail_base_delay,
            backoff_multiplier=settings.thumbnail_backoff_multiplier,
            aspect_ratio=settings.thumbnail_aspect_ratio,
            sleep=sleep,
        )

    def is_configured(self) -> bool:
        return self.image_port is not None and self.image_port.is_configured()

    def prompts_for(self, article: Article) -> List[str]:
        full = thumbnail_prompt(article.title, article.excerpt)
        simple = simplified_thumbnail_prompt(article.title, article.excerpt, self.aspect_ratio)
        cycle = [full, simple, full]
        return [cycle[i % len(cycle)] for i in range(self.max_attempts)]

    def delay_before(self, attempt: int) -> float:
        if attempt < 2:
            return 0.0
        return self.base_delay * self.backoff_multiplier ** (attempt - 2)

    def path_for(self, article: Article, today: date) -> Path:
        return self.output_dir / f"{today.isoformat()}-{article.slug}.png"

    async def generate(
        self,
        article: Article,
        today: Optional[date] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[str]:
        """Create the thumbnail; returns its path, or ``None`` when no attempt succeeded."""
        if not self.is_configured():
            logger.info("Image service not configured, skipping thumbnail")
            return None

        prompts = self.prompts_for(article)
        skip_wait = False
        for attempt, prompt in enumerate(prompts, 1):
            delay = self.delay_before(attempt)
            if delay and not skip_wait:
                logger.info(f"Waiting {delay:.1f}s before thumbnail attempt {attempt}")
                await self.sleep(delay)
            skip_wait = False
            if attempt > 1 and cancel_event is not None and cancel_event.is_set():
                logger.warning(f"⏹️ Thumbnail cancelled before attempt {attempt}")
                return None

            try:
                image = await self.image_port.create_image(prompt, self.aspect_ratio)
            except ContentViolationError as e:
                logger.warning(f"⚠️ Thumbnail prompt rejected (attempt {attempt}): {e}")
                skip_wait = True
                continue
            except PortError as e:
                logger.warning(f"⚠️ Thumbnail attempt {attempt} failed: {e}")
                continue

            path = self.path_for(article, today or date.today())
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(image)
            logger.info(f"🖼️ Thumbnail saved: {path}")
            return str(path)

        logger.warning(f"❌ No thumbnail after {len(prompts)} attempts")
        return None
