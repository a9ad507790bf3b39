"""Reve API client for thumbnail generation."""

import asyncio
import base64
import binascii
import logging
import re
from typing import Any, Dict, Optional

import aiohttp

from articlebot.clients.errors import (
    ContentViolationError,
    MalformedResponseError,
    NotConfiguredError,
    PortTimeoutError,
    PortUnavailableError,
    error_for_status,
)
from articlebot.clients.interfaces import ImagePort

logger = logging.getLogger(__name__)


class ReveClient(ImagePort):
    """Client for the Reve image creation endpoint."""

    def __init__(self, api_key: Optional[str], settings=None):
        """Initialize Reve client.

        Args:
            api_key: Reve API key
            settings: Settings instance for configuration values
        """
        self.api_key = api_key
        self.api_url = "https://api.reve.com/v1/image/create"
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.timeout = settings.reve_timeout if settings else 90.0

    @property
    def provider_name(self) -> str:
        return "reve"

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def create_image(self, prompt: str, aspect_ratio: str = "16:9") -> bytes:
        """Generate an image for a prompt.

        The first request carries ``aspect_ratio``. If the API rejects that
        payload for any reason other than content policy, the prompt is
        resent alone.

        Raises:
            ContentViolationError: The prompt was refused
            PortError: Any other failure
        """
        if not self.is_configured():
            raise NotConfiguredError("reve", "API key not configured")

        payloads = [{"prompt": prompt, "aspect_ratio": aspect_ratio}, {"prompt": prompt}]
        for variant, payload in enumerate(payloads):
            status, body = await self._post(payload)

            if status == 200:
                return self._decode_image(body)

            text = body if isinstance(body, str) else str(body)
            if status == 400 and "content" in text.lower():
                raise ContentViolationError("reve", text[:300])
            if status == 400 and variant == 0:
                logger.warning(
                    f"Reve rejected payload with aspect_ratio, retrying minimal payload: {text[:200]}"
                )
                continue
            raise error_for_status("reve", status, text)

        raise MalformedResponseError("reve", "no payload variant accepted")

    async def _post(self, payload: Dict[str, Any]):
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    headers=self.headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status == 200:
                        return response.status, await response.json(content_type=None)
                    return response.status, await response.text()
        except asyncio.TimeoutError as e:
            raise PortTimeoutError("reve", f"timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise PortUnavailableError("reve", f"network error: {e}") from e
        except ValueError as e:
            raise MalformedResponseError("reve", f"unreadable response: {e}") from e

    def _decode_image(self, data: Dict[str, Any]) -> bytes:
        if data.get("content_violation"):
            raise ContentViolationError("reve", "content policy violation flagged")
        image = data.get("image")
        if not image:
            raise MalformedResponseError("reve", "no image data in response")

        image = re.sub(r"^data:image/\w+;base64,", "", image)
        try:
            return base64.b64decode(image)
        except (binascii.Error, ValueError) as e:
            raise MalformedResponseError("reve", f"invalid base64 image: {e}") from e
