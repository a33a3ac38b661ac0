from typing import Any

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from llmrouter.models import ProviderConfiguration


class ProviderSettings(BaseModel):
    """One entry of the ``PROVIDERS`` JSON list."""

    type: str
    name: str | None = None
    enabled: bool = True
    base_url: str | None = None
    api_key: SecretStr | None = None
    model: str | None = None
    project_id: str | None = None
    region: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    enable_web_search: bool = False
    options: dict[str, Any] = Field(default_factory=dict)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="llm-router")
    app_version: str = Field(default="0.1.0")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Observability
    otel_exporter_otlp_endpoint: str = Field(default="http://jaeger:4318")
    otel_service_name: str = Field(default="llm-router")
    log_level: str = Field(default="INFO")

    # Routing
    default_provider: str = Field(default="ollama")
    default_model: str | None = Field(default=None)
    web_search_allow_all_providers: bool = Field(default=False)

    # Timeouts in seconds for local (Ollama) and remote providers
    local_timeout: float = Field(default=5.0, gt=0)
    remote_timeout: float = Field(default=30.0, gt=0)

    # Provider credentials, stored as SecretStr to avoid accidental logging
    ollama_base_url: str | None = Field(default=None)
    openai_api_key: SecretStr | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    gemini_api_key: SecretStr | None = Field(default=None)
    google_cloud_project_id: str | None = Field(default=None)
    google_cloud_region: str | None = Field(default=None)

    # Explicit provider list (JSON); overrides everything derived above
    providers: list[ProviderSettings] = Field(default_factory=list)

    def provider_configurations(self) -> list[ProviderConfiguration]:
        """Build the configurations handed to the registry at startup.

        An explicit ``providers`` list wins.  Otherwise one provider per type
        is derived from the credentials present, always including local
        Ollama.
        """
        if self.providers:
            return [self._from_entry(entry) for entry in self.providers]

        configs = [
            ProviderConfiguration(
                type="ollama",
                name="ollama",
                base_url=self.ollama_base_url,
                timeout=self.local_timeout,
            )
        ]
        if self.openai_api_key is not None:
            configs.append(
                ProviderConfiguration(
                    type="openai",
                    name="openai",
                    base_url=self.openai_base_url,
                    api_key=self.openai_api_key.get_secret_value(),
                    timeout=self.remote_timeout,
                )
            )
        if self.gemini_api_key is not None:
            configs.append(
                ProviderConfiguration(
                    type="gemini",
                    name="gemini",
                    api_key=self.gemini_api_key.get_secret_value(),
                    timeout=self.remote_timeout,
                )
            )
        if self.google_cloud_project_id and self.google_cloud_region:
            configs.append(
                ProviderConfiguration(
                    type="google_cloud",
                    name="google_cloud",
                    project_id=self.google_cloud_project_id,
                    region=self.google_cloud_region,
                    timeout=self.remote_timeout,
                )
            )
        return configs

    def _from_entry(self, entry: ProviderSettings) -> ProviderConfiguration:
        default_timeout = self.local_timeout if entry.type == "ollama" else self.remote_timeout
        return ProviderConfiguration(
            type=entry.type,
            name=entry.name or entry.type,
            enabled=entry.enabled,
            base_url=entry.base_url,
            api_key=entry.api_key.get_secret_value() if entry.api_key else None,
            model=entry.model,
            project_id=entry.project_id,
            region=entry.region,
            timeout=entry.timeout or default_timeout,
            enable_web_search=entry.enable_web_search,
            options=entry.options,
        )


settings = Settings()
