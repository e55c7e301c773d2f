"""Environment-backed settings and the lazily populated settings cache."""

from __future__ import annotations

from collections.abc import Callable

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kb_agent.config import AgentConfig, ApiToolConfig, ContextConfig, RetrievalConfig
from kb_agent.errors import ConfigurationError


class Settings(BaseSettings):
    """Deployment settings read from the environment (or a `.env` file)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    azure_openai_endpoint: str | None = None
    azure_openai_api_key: str | None = None
    azure_openai_api_version: str = "2024-06-01"
    azure_openai_deployment_name: str | None = None
    azure_openai_embedding_deployment_name: str | None = None

    azure_search_endpoint: str | None = None
    azure_search_key: str | None = None
    azure_search_index: str = "sharepointblobindx"
    search_top_k: int = Field(default=48, ge=1)

    jira_base_url: str | None = None
    jira_username: str | None = None
    # Local fallback; production reads the token from Key Vault.
    secret_jira_api_token: str | None = None
    vault_url: str | None = None
    jira_token_secret_name: str = "JiraApiToken"
    jira_allowed_methods: list[str] = Field(default_factory=lambda: ["GET"])

    context_max_tokens: int = Field(default=2000, ge=1)
    agent_max_tool_round_trips: int = Field(default=1, ge=1)

    log_level: str = "INFO"
    environment: str = "development"

    @property
    def llm_configured(self) -> bool:
        return bool(
            self.azure_openai_endpoint
            and self.azure_openai_api_key
            and self.azure_openai_deployment_name
        )

    @property
    def search_configured(self) -> bool:
        return bool(
            self.azure_search_endpoint
            and self.azure_search_key
            and self.azure_openai_embedding_deployment_name
        )

    def retrieval_config(self) -> RetrievalConfig:
        return RetrievalConfig(index_name=self.azure_search_index, top_k=self.search_top_k)

    def context_config(self) -> ContextConfig:
        return ContextConfig(max_tokens=self.context_max_tokens)

    def agent_config(self) -> AgentConfig:
        return AgentConfig(max_tool_round_trips=self.agent_max_tool_round_trips)

    def api_tool_config(self) -> ApiToolConfig:
        if not self.jira_base_url or not self.jira_username:
            raise ConfigurationError(
                "JIRA_BASE_URL and JIRA_USERNAME must be set to enable the API tool",
                details={"missing": [
                    name
                    for name, value in (
                        ("JIRA_BASE_URL", self.jira_base_url),
                        ("JIRA_USERNAME", self.jira_username),
                    )
                    if not value
                ]},
            )
        return ApiToolConfig(
            base_url=self.jira_base_url.rstrip("/"),
            username=self.jira_username,
            allowed_methods=[method.upper() for method in self.jira_allowed_methods],
        )


class ConfigCache:
    """Loads `Settings` once on first read and serves the same object after.

    Readers may race on the first load; whichever instance is stored last wins,
    and both are equivalent.
    """

    def __init__(self, loader: Callable[[], Settings] = Settings) -> None:
        self._loader = loader
        self._settings: Settings | None = None

    def get(self) -> Settings:
        settings = self._settings
        if settings is None:
            settings = self._loader()
            self._settings = settings
        return settings

    def clear(self) -> None:
        self._settings = None
