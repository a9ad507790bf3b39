"""Webflow CMS publisher."""

import asyncio
import html
import logging
import re
from typing import Any, Dict, List, Optional

import aiohttp
from bs4 import BeautifulSoup

from articlebot.clients.interfaces import PublishGateway
from articlebot.models.content import Article, PublishResult

logger = logging.getLogger(__name__)


def _inline(text: str) -> str:
    """Render bold, italic and links inside one line of Markdown."""
    text = html.escape(text, quote=False)
    text = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", text)
    text = re.sub(r"\*(.+?)\*", r"<em>\1</em>", text)
    text = re.sub(r"\[(.+?)\]\((.+?)\)", r'<a href="\2">\1</a>', text)
    return text


def markdown_to_html(markdown: str) -> str:
    """Convert the Markdown subset produced by the drafting model to HTML.

    Handles ``##``/``###`` headings, numbered and bulleted lists, bold,
    italic, links and paragraphs. The result is passed through
    BeautifulSoup so unbalanced tags from stray asterisks are closed.
    """
    blocks: List[str] = []
    paragraph: List[str] = []
    list_tag: Optional[str] = None
    items: List[str] = []

    def flush_paragraph():
        if paragraph:
            blocks.append(f"<p>{_inline(' '.join(paragraph))}</p>")
            paragraph.clear()

    def flush_list():
        nonlocal list_tag
        if list_tag:
            body = "".join(f"<li>{_inline(item)}</li>" for item in items)
            blocks.append(f"<{list_tag}>{body}</{list_tag}>")
            items.clear()
            list_tag = None

    for raw_line in markdown.splitlines():
        line = raw_line.strip()
        heading = re.match(r"^(#{2,3})\s+(.+)$", line)
        ordered = re.match(r"^\d+\.\s+(.+)$", line)
        bullet = re.match(r"^[-*]\s+(.+)$", line)

        if not line:
            flush_paragraph()
            flush_list()
        elif heading:
            flush_paragraph()
            flush_list()
            level = len(heading.group(1))
            blocks.append(f"<h{level}>{_inline(heading.group(2))}</h{level}>")
        elif ordered or bullet:
            flush_paragraph()
            tag = "ol" if ordered else "ul"
            if list_tag and list_tag != tag:
                flush_list()
            list_tag = tag
            items.append((ordered or bullet).group(1))
        else:
            flush_list()
            paragraph.append(line)

    flush_paragraph()
    flush_list()

    soup = BeautifulSoup("\n".join(blocks), "html.parser")
    return str(soup)


def clean_body_for_cms(body: str) -> str:
    """Drop front-matter, the H1 title and the category line from a body."""
    cleaned = re.sub(r"\A---\n.*?\n---\n", "", body, flags=re.DOTALL)
    cleaned = re.sub(r"^#\s+.+\n+", "", cleaned, count=1, flags=re.MULTILINE)
    cleaned = re.sub(r"^\*\*Catégorie:\*\*.*\n+", "", cleaned, count=1, flags=re.MULTILINE)
    return cleaned.strip()


class WebflowPublisher(PublishGateway):
    """Creates articles as live items of a Webflow CMS collection."""

    def __init__(
        self,
        api_key: Optional[str],
        collection_id: Optional[str],
        site_url: str = "https://example.webflow.io/blog",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.collection_id = collection_id
        self.site_url = site_url.rstrip("/")
        self.api_url = "https://api.webflow.com/v2"
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    @classmethod
    def from_settings(cls, settings) -> "WebflowPublisher":
        return cls(
            settings.webflow_api_key,
            settings.webflow_collection_id,
            settings.webflow_site_url,
            settings.webflow_timeout,
        )

    def is_configured(self) -> bool:
        return bool(self.api_key and self.collection_id)

    def build_field_data(self, article: Article) -> Dict[str, Any]:
        """Map an article onto the collection fields."""
        seo = article.front_matter.get("seo", {})
        keywords = ", ".join(seo.get("keywords", []))
        return {
            "name": article.title,
            "slug": article.slug,
            "post-body": markdown_to_html(clean_body_for_cms(article.body)),
            "post-summary": article.excerpt,
            "category": article.category,
            "reading-time": f"{article.reading_time} min",
            "meta-title": seo.get("title", article.title),
            "meta-description": seo.get("description", article.excerpt),
            "meta-keywords": keywords,
        }

    async def publish(self, article: Article) -> PublishResult:
        """Create the collection item.

        Returns:
            PublishResult; failures are reported, not raised
        """
        if not self.is_configured():
            return PublishResult(success=False, error="Webflow not configured")

        logger.info("📤 Publishing to Webflow CMS...")
        payload = {
            "fieldData": self.build_field_data(article),
            "isDraft": False,
            "isArchived": False,
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.api_url}/collections/{self.collection_id}/items",
                    headers=self.headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status not in (200, 201, 202):
                        error_text = await response.text()
                        logger.error(f"Webflow API error: {response.status} - {error_text[:200]}")
                        return PublishResult(
                            success=False, error=f"HTTP {response.status}: {error_text[:200]}"
                        )
                    data = await response.json(content_type=None)

            slug = (data.get("fieldData") or {}).get("slug", article.slug)
            logger.info(f"✅ Article published to Webflow: {data.get('id')}")
            return PublishResult(
                success=True,
                external_id=data.get("id"),
                url=f"{self.site_url}/{slug}",
            )

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Network error publishing to Webflow: {e}")
            return PublishResult(success=False, error=f"network error: {e}")
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Unexpected Webflow response: {e}")
            return PublishResult(success=False, error=f"bad response: {e}")
