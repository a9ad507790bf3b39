"""Settings and configuration management."""

import json
import logging
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    "Innovation & Produits,"
    "Finance & Investissement,"
    "Outils & Technologies,"
    "Marketing & Ventes,"
    "Analyse & Tendances,"
    "Régulation & Éthique,"
    "Business & Stratégie,"
    "Partenariats & Écosystème"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables or Infisical."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Secrets Management
    use_infisical: bool = Field(False, description="Use Infisical for secrets")

    # Text generation services
    perplexity_api_key: Optional[str] = Field(None, description="Perplexity key")
    perplexity_model: str = Field("sonar-pro", description="Discovery model")
    openai_api_key: Optional[str] = Field(None, description="OpenAI key")
    openai_model: str = Field("gpt-4o", description="Drafting model")
    openai_research_model: str = Field(
        "gpt-4o", description="Model used for research enrichment"
    )
    gemini_api_key: Optional[str] = Field(None, description="Gemini key")
    gemini_model: str = Field("gemini-2.0-flash", description="Gemini model")

    # Image generation
    reve_api_key: Optional[str] = Field(None, description="Reve image API key")
    thumbnail_aspect_ratio: str = Field("16:9", description="Thumbnail ratio")

    # CMS
    webflow_api_key: Optional[str] = Field(None, description="Webflow token")
    webflow_collection_id: Optional[str] = Field(
        None, description="Webflow collection receiving articles"
    )
    webflow_site_url: str = Field(
        "https://example.webflow.io/blog", description="Public article base URL"
    )

    # Application Settings
    debug: bool = Field(False, description="Debug mode")
    log_level: str = Field("INFO", description="Log level")

    # Editorial configuration
    categories: str = Field(
        DEFAULT_CATEGORIES, description="Comma-separated closed category set"
    )
    default_category: str = Field(
        "Innovation & Produits",
        description="Category assigned when a topic's category is not recognised",
    )
    discovery_query: str = Field(
        "actualités intelligence artificielle business France Europe",
        description="Editorial query handed to the discovery prompt",
    )
    freshness_window_hours: int = Field(
        48, ge=1, le=720, description="Maximum topic age in hours"
    )

    # Scoring
    min_score_threshold: int = Field(
        20, ge=0, le=100, description="Minimum total score to pass the gate"
    )
    freshness_points_recent: int = Field(20, ge=0, le=100)
    freshness_points_day: int = Field(15, ge=0, le=100)
    freshness_points_old: int = Field(10, ge=0, le=100)
    source_weight: int = Field(5, ge=0, le=50, description="Points per source")
    source_cap: int = Field(20, ge=0, le=100, description="Corroboration cap")

    # Deduplication
    dedup_min_token_length: int = Field(
        4, ge=1, le=20, description="Shortest title word counted for overlap"
    )
    dedup_overlap_threshold: int = Field(
        3, ge=1, le=20, description="Shared words that mark a duplicate"
    )

    # Article assembly
    min_word_count: int = Field(1000, ge=100, le=20000)
    max_word_count: int = Field(1600, ge=200, le=40000)
    min_major_sections: int = Field(5, ge=0, le=50)
    draft_max_attempts: int = Field(3, ge=1, le=10)
    words_per_minute: int = Field(200, ge=50, le=1000)
    excerpt_max_chars: int = Field(3000, ge=20, le=20000)
    filename_max_length: int = Field(60, ge=10, le=200)

    # Retry policy
    max_retry_attempts: int = Field(
        3, ge=1, le=10, description="Discovery attempts before giving up"
    )
    retry_base_delay: float = Field(
        2.0, ge=0.0, le=60.0, description="Seconds before retrying a failed stage call"
    )
    retry_backoff_multiplier: float = Field(
        1.0, ge=1.0, le=10.0, description="Growth factor of the retry delay"
    )
    research_max_attempts: int = Field(
        2, ge=1, le=10, description="Research calls before drafting without a dossier"
    )
    thumbnail_base_delay: float = Field(1.0, ge=0.0, le=60.0)
    thumbnail_backoff_multiplier: float = Field(2.0, ge=1.0, le=10.0)

    # API Timeout Settings (in seconds)
    perplexity_timeout: float = Field(120.0, ge=5.0, le=600.0)
    openai_timeout: float = Field(300.0, ge=5.0, le=900.0)
    gemini_timeout: float = Field(120.0, ge=5.0, le=600.0)
    reve_timeout: float = Field(90.0, ge=5.0, le=300.0)
    webflow_timeout: float = Field(30.0, ge=5.0, le=120.0)

    # Rate limiting shared by the text clients
    min_request_interval: float = Field(
        1.0, ge=0.0, le=10.0, description="Minimum seconds between requests"
    )
    max_backoff_multiplier: float = Field(
        8.0, ge=2.0, le=32.0, description="Maximum backoff multiplier"
    )

    # Storage
    articles_dir: str = Field("articles", description="Markdown output folder")
    data_dir: str = Field(".data", description="Daily snapshot folder")
    database_path: str = Field(".data/articles.db", description="SQLite file")

    # Scheduler
    schedule_cron: str = Field("0 9 * * *", description="Daily run schedule")
    schedule_timezone: str = Field("Europe/Paris", description="Scheduler TZ")
    broker_url: str = Field("redis://localhost:6379/0", description="Celery broker")

    @field_validator("categories", mode="before")
    @classmethod
    def join_category_list(cls, value):
        """Accept a JSON list or a Python list as well as a comma-separated string."""
        if isinstance(value, str) and value.strip().startswith("["):
            value = json.loads(value)
        if isinstance(value, (list, tuple)):
            return ",".join(str(item) for item in value)
        return value

    @property
    def category_list(self) -> List[str]:
        """Configured categories as an ordered list."""
        return [c.strip() for c in self.categories.split(",") if c.strip()]

    @model_validator(mode="after")
    def check_editorial_bounds(self) -> "Settings":
        """Keep the default category, word bounds and score scale consistent."""
        categories = self.category_list
        if not categories:
            raise ValueError("At least one category must be configured")
        if self.default_category not in categories:
            logger.warning(
                f"⚠️ Default category '{self.default_category}' is not configured, "
                f"using '{categories[0]}'"
            )
            self.default_category = categories[0]
        if self.min_word_count >= self.max_word_count:
            raise ValueError("min_word_count must be lower than max_word_count")
        best_freshness = max(
            self.freshness_points_recent, self.freshness_points_day, self.freshness_points_old
        )
        if best_freshness + self.source_cap <= 0:
            raise ValueError("Scoring needs freshness points or a source cap above zero")
        return self

    @model_validator(mode="after")
    def load_secrets_from_infisical(self) -> "Settings":
        """Load secrets from Infisical if enabled."""
        if not self.use_infisical:
            return self

        try:
            from articlebot.core.secrets import InfisicalConfig, InfisicalSecretManager

            secret_manager = InfisicalSecretManager(InfisicalConfig())  # type: ignore

            secret_mappings = {
                "perplexity_api_key": "PERPLEXITY_API_KEY",
                "openai_api_key": "OPENAI_API_KEY",
                "gemini_api_key": "GEMINI_API_KEY",
                "reve_api_key": "REVE_API_KEY",
                "webflow_api_key": "WEBFLOW_API_KEY",
                "webflow_collection_id": "WEBFLOW_COLLECTION_ID",
            }

            secrets_to_fetch = [
                secret_name
                for field_name, secret_name in secret_mappings.items()
                if getattr(self, field_name) is None
            ]

            if secrets_to_fetch:
                secrets = secret_manager.get_multiple_secrets(secrets_to_fetch)
                for field_name, secret_name in secret_mappings.items():
                    if secret_name in secrets:
                        setattr(self, field_name, secrets[secret_name])
                        logger.debug(f"Loaded {field_name} from Infisical")

        except (ImportError, ModuleNotFoundError) as e:
            logger.warning(
                "Infisical SDK not installed - falling back to environment variables"
            )
            if self.debug:
                logger.debug(f"Infisical import error details: {e}")
        except (KeyError, AttributeError, ValueError, TypeError) as e:
            logger.warning(
                "Infisical configuration error - check credentials and settings"
            )
            if self.debug:
                logger.debug(f"Infisical configuration error details: {e}")

        return self
