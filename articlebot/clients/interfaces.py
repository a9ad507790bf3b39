"""Interfaces for the external services the pipeline talks to."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from articlebot.models.content import Article, PublishResult, SaveResult


class PortResponse(BaseModel):
    """Text returned by a generation service."""

    text: str = Field(..., description="Generated text")
    usage: Dict[str, Any] = Field(default_factory=dict, description="Token usage")
    model: Optional[str] = Field(None, description="Model that answered")

    @property
    def total_tokens(self) -> Optional[int]:
        """Total token count when the service reports one."""
        total = self.usage.get("total_tokens")
        if total is None and "totalTokenCount" in self.usage:
            total = self.usage["totalTokenCount"]
        return total


class TextPort(ABC):
    """A remote text-generation service."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """A unique name for this provider, e.g., 'perplexity'."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """True when the client holds credentials."""
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[str] = None,
        system: Optional[str] = None,
    ) -> PortResponse:
        """
        Run one generation request.

        Args:
            prompt: User prompt
            temperature: Sampling temperature
            max_tokens: Upper bound on generated tokens
            response_format: "json" to ask for a JSON object, None for text
            system: Optional system instruction

        Returns:
            PortResponse with the generated text

        Raises:
            PortError: Any failure, as one of its typed subclasses
        """
        pass


class ImagePort(ABC):
    """A remote image-generation service."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    async def create_image(self, prompt: str, aspect_ratio: str = "16:9") -> bytes:
        """Generate an image and return the raw PNG bytes."""
        pass


class PersistenceGateway(ABC):
    """Durable article storage."""

    @abstractmethod
    def save(self, article: Article) -> SaveResult:
        pass

    @abstractmethod
    def exists(self, slug: str) -> bool:
        pass

    @abstractmethod
    def list_past_titles(self) -> List[str]:
        """Titles (or filename stems) of everything produced so far."""
        pass


class PublishGateway(ABC):
    """Optional CMS the article is pushed to."""

    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    async def publish(self, article: Article) -> PublishResult:
        pass
