"""Google Gemini client used as the secondary text port."""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from articlebot.clients.errors import (
    MalformedResponseError,
    NotConfiguredError,
    PortTimeoutError,
    PortUnavailableError,
    error_for_status,
)
from articlebot.clients.interfaces import PortResponse, TextPort

logger = logging.getLogger(__name__)


class GeminiClient(TextPort):
    """Text port backed by the ``generateContent`` endpoint."""

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.0-flash", timeout: float = 120.0):
        self.api_key = api_key
        self.model = model
        self.base_url = "https://generativelanguage.googleapis.com/v1beta"
        self.timeout = timeout

    @property
    def provider_name(self) -> str:
        return "gemini"

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @classmethod
    def from_settings(cls, settings) -> "GeminiClient":
        return cls(settings.gemini_api_key, settings.gemini_model, settings.gemini_timeout)

    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[str] = None,
        system: Optional[str] = None,
    ) -> PortResponse:
        if not self.is_configured():
            raise NotConfiguredError("gemini", "API key not configured")

        generation_config: Dict[str, Any] = {}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens
        if response_format == "json":
            generation_config["responseMimeType"] = "application/json"

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    params={"key": self.api_key},
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Gemini API error: {response.status} - {error_text[:200]}")
                        raise error_for_status("gemini", response.status, error_text)
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise PortTimeoutError("gemini", f"timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise PortUnavailableError("gemini", f"network error: {e}") from e
        except (ValueError, TypeError) as e:
            raise MalformedResponseError("gemini", f"unreadable response: {e}") from e

        candidates = data.get("candidates") or []
        if not candidates:
            raise MalformedResponseError("gemini", "no candidates in response")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts).strip()
        if not text:
            raise MalformedResponseError("gemini", "empty candidate")

        return PortResponse(text=text, usage=data.get("usageMetadata") or {}, model=self.model)
