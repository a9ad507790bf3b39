"""Client for OpenAI-compatible chat completion APIs (OpenAI, Perplexity)."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

from articlebot.clients.errors import (
    AuthenticationError,
    MalformedResponseError,
    NotConfiguredError,
    PortError,
    PortTimeoutError,
    PortUnavailableError,
    RateLimitError,
    error_for_status,
)
from articlebot.clients.interfaces import PortResponse, TextPort

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
PERPLEXITY_BASE_URL = "https://api.perplexity.ai"


class ChatCompletionsClient(TextPort):
    """Text port backed by a ``/chat/completions`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: str = OPENAI_BASE_URL,
        name: str = "openai",
        fallback_models: Optional[List[str]] = None,
        timeout: float = 120.0,
        min_request_interval: float = 1.0,
        max_backoff_multiplier: float = 8.0,
        supports_json_mode: bool = True,
    ):
        """Initialize the client.

        Args:
            api_key: Bearer token for the service
            model: Preferred model
            base_url: API root, without the ``/chat/completions`` suffix
            name: Provider name used in logs and errors
            fallback_models: Models tried, in order, when the preferred one fails
            timeout: Total request timeout in seconds
            min_request_interval: Minimum seconds between two requests
            max_backoff_multiplier: Upper bound of the rate-limit backoff
            supports_json_mode: Whether ``response_format`` JSON mode is accepted
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.default_model = model
        self.model_fallbacks = [m for m in (fallback_models or []) if m != model]
        self.timeout = timeout
        self.supports_json_mode = supports_json_mode
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        self.last_request_time = 0.0
        self.min_request_interval = min_request_interval
        self.max_backoff_multiplier = max_backoff_multiplier
        self.consecutive_failures = 0
        self.backoff_multiplier = 1.0

    @property
    def provider_name(self) -> str:
        return self.name

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @classmethod
    def for_openai(cls, settings, model: Optional[str] = None) -> "ChatCompletionsClient":
        """Build the OpenAI client from settings."""
        return cls(
            api_key=settings.openai_api_key,
            model=model or settings.openai_model,
            base_url=OPENAI_BASE_URL,
            name="openai",
            fallback_models=["gpt-4o-mini"],
            timeout=settings.openai_timeout,
            min_request_interval=settings.min_request_interval,
            max_backoff_multiplier=settings.max_backoff_multiplier,
        )

    @classmethod
    def for_perplexity(cls, settings) -> "ChatCompletionsClient":
        """Build the Perplexity client from settings."""
        return cls(
            api_key=settings.perplexity_api_key,
            model=settings.perplexity_model,
            base_url=PERPLEXITY_BASE_URL,
            name="perplexity",
            fallback_models=["sonar"],
            timeout=settings.perplexity_timeout,
            min_request_interval=settings.min_request_interval,
            max_backoff_multiplier=settings.max_backoff_multiplier,
            supports_json_mode=False,
        )

    async def _rate_limit_delay(self):
        """Space requests out, stretching the interval after rate-limit hits."""
        time_since_last = time.time() - self.last_request_time
        effective_interval = self.min_request_interval * self.backoff_multiplier

        if time_since_last < effective_interval:
            delay = effective_interval - time_since_last
            logger.debug(f"Rate limiting: waiting {delay:.1f}s before next {self.name} request")
            await asyncio.sleep(delay)

        self.last_request_time = time.time()

    def _build_payload(
        self,
        model: str,
        prompt: str,
        temperature: Optional[float],
        max_tokens: Optional[int],
        response_format: Optional[str],
        system: Optional[str],
    ) -> Dict[str, Any]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if response_format == "json" and self.supports_json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[str] = None,
        system: Optional[str] = None,
    ) -> PortResponse:
        """Generate text, walking the model fallback list on failure."""
        if not self.is_configured():
            raise NotConfiguredError(self.name, "API key not configured")

        last_error: Optional[PortError] = None
        for model in [self.default_model] + self.model_fallbacks:
            payload = self._build_payload(
                model, prompt, temperature, max_tokens, response_format, system
            )
            try:
                response = await self._make_single_request(payload)
                if model != self.default_model:
                    logger.info(f"Using fallback model: {model}")
                return response
            except AuthenticationError:
                raise
            except PortError as e:
                logger.warning(f"{self.name} model {model} failed: {e.message}")
                last_error = e

        logger.error(f"All {self.name} models failed")
        raise last_error

    async def _make_single_request(self, payload: Dict[str, Any]) -> PortResponse:
        """Send one request and translate failures into typed errors."""
        await self._rate_limit_delay()

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.base_url}/chat/completions",
                    headers=self.headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status == 200:
                        self.consecutive_failures = 0
                        self.backoff_multiplier = 1.0
                        data = await response.json(content_type=None)
                        return self._parse_response(data, payload["model"])

                    error_text = await response.text()
                    if response.status == 429:
                        self.consecutive_failures += 1
                        self.backoff_multiplier = min(
                            self.max_backoff_multiplier, 2.0**self.consecutive_failures
                        )
                        logger.warning(
                            f"Rate limit hit, backing off to {self.backoff_multiplier:.1f}x delay"
                        )
                    else:
                        logger.error(
                            f"{self.name} API error: {response.status} - {error_text[:200]}"
                        )
                    raise error_for_status(self.name, response.status, error_text)

        except asyncio.TimeoutError as e:
            raise PortTimeoutError(self.name, f"timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise PortUnavailableError(self.name, f"network error: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise MalformedResponseError(self.name, f"unreadable response: {e}") from e

    def _parse_response(self, data: Dict[str, Any], model: str) -> PortResponse:
        choices = data.get("choices") or []
        if not choices:
            raise MalformedResponseError(self.name, "response has no choices")
        content = (choices[0].get("message") or {}).get("content") or ""
        if not content.strip():
            raise MalformedResponseError(self.name, "empty completion")
        return PortResponse(
            text=content.strip(),
            usage=data.get("usage") or {},
            model=data.get("model", model),
        )

    async def test_connection(self) -> bool:
        """Test the API connection.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            await self.generate("Hello, world!", max_tokens=5)
            logger.info(f"{self.name} API connection successful")
            return True
        except PortError as e:
            logger.error(f"{self.name} connection failed: {e}")
            return False
