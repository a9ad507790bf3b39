"""Optional Infisical lookup for service credentials."""

import logging
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class InfisicalConfig(BaseSettings):
    """Connection details for the Infisical project holding the API keys."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    infisical_host: str = Field(
        "https://app.infisical.com", description="Infisical host URL"
    )
    infisical_project_id: Optional[str] = Field(None, description="Project ID")
    infisical_environment: str = Field("prod", description="Environment slug")
    infisical_secret_path: str = Field("/", description="Secret path")

    infisical_client_id: Optional[str] = Field(None, description="Client ID")
    infisical_client_secret: Optional[str] = Field(None, description="Secret")
    infisical_token: Optional[str] = Field(None, description="Auth token")


class InfisicalSecretManager:
    """Reads secrets by name and memoises them for the process lifetime."""

    def __init__(self, config: InfisicalConfig):
        self.config = config
        self._client = None
        self._cache: Dict[str, str] = {}

    @property
    def client(self):
        """Authenticated SDK client, created on first use."""
        if self._client is None:
            has_universal_auth = bool(
                self.config.infisical_client_id and self.config.infisical_client_secret
            )
            if not (self.config.infisical_token or has_universal_auth):
                raise ValueError(
                    "Set INFISICAL_TOKEN or both INFISICAL_CLIENT_ID and "
                    "INFISICAL_CLIENT_SECRET"
                )

            from infisical_sdk import InfisicalSDKClient

            if self.config.infisical_token:
                self._client = InfisicalSDKClient(
                    host=self.config.infisical_host,
                    token=self.config.infisical_token,
                )
            else:
                self._client = InfisicalSDKClient(host=self.config.infisical_host)
                self._client.auth.universal_auth.login(
                    client_id=self.config.infisical_client_id,
                    client_secret=self.config.infisical_client_secret,
                )
        return self._client

    def get_secret(self, secret_name: str) -> str:
        """Fetch one secret.

        Raises:
            ValueError: If the project is not configured or the secret is missing
        """
        if secret_name in self._cache:
            return self._cache[secret_name]

        if not self.config.infisical_project_id:
            raise ValueError("infisical_project_id is required")

        try:
            secret = self.client.secrets.get_secret_by_name(
                secret_name=secret_name,
                project_id=self.config.infisical_project_id,
                environment_slug=self.config.infisical_environment,
                secret_path=self.config.infisical_secret_path,
            )
        except (KeyError, AttributeError, TypeError) as e:
            raise ValueError(f"Secret '{secret_name}' not found") from e

        self._cache[secret_name] = secret.secretValue
        logger.debug(f"Retrieved secret: {secret_name}")
        return self._cache[secret_name]

    def get_multiple_secrets(self, secret_names: List[str]) -> Dict[str, str]:
        """Fetch several secrets, skipping the ones that cannot be read."""
        found = {}
        for name in secret_names:
            try:
                found[name] = self.get_secret(name)
            except ValueError as e:
                logger.warning(f"Secret {name} unavailable: {e}")
        return found
