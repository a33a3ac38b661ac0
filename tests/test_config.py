"""Tests for Settings -> ProviderConfiguration derivation."""

import json

import pytest

from llmrouter.config import Settings
from llmrouter.models import ProviderConfiguration


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell and .env out of these tests."""
    for variable in (
        "PROVIDERS",
        "OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "GOOGLE_CLOUD_PROJECT_ID",
        "GOOGLE_CLOUD_REGION",
        "OLLAMA_BASE_URL",
        "DEFAULT_PROVIDER",
    ):
        monkeypatch.delenv(variable, raising=False)


def _settings(**values: object) -> Settings:
    return Settings(_env_file=None, **values)


class TestDefaults:
    def test_defaults(self) -> None:
        settings = _settings()
        assert settings.default_provider == "ollama"
        assert settings.local_timeout == 5.0
        assert settings.remote_timeout == 30.0
        assert settings.web_search_allow_all_providers is False

    def test_only_ollama_without_credentials(self) -> None:
        configs = _settings().provider_configurations()
        assert [(c.name, c.type, c.timeout) for c in configs] == [("ollama", "ollama", 5.0)]


class TestDerivedProviders:
    def test_credentials_enable_remote_providers(self) -> None:
        configs = _settings(
            openai_api_key="sk-test",
            gemini_api_key="AIza-test",
            google_cloud_project_id="proj",
            google_cloud_region="us-central1",
        ).provider_configurations()

        by_name = {c.name: c for c in configs}
        assert set(by_name) == {"ollama", "openai", "gemini", "google_cloud"}
        assert by_name["openai"].api_key == "sk-test"
        assert by_name["gemini"].timeout == 30.0
        assert by_name["google_cloud"].project_id == "proj"

    def test_google_cloud_needs_region_too(self) -> None:
        configs = _settings(google_cloud_project_id="proj").provider_configurations()
        assert "google_cloud" not in {c.name for c in configs}

    def test_secrets_are_not_in_repr(self) -> None:
        assert "sk-secret" not in repr(_settings(openai_api_key="sk-secret"))


class TestExplicitProviders:
    def test_list_overrides_derivation(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(
            "PROVIDERS",
            json.dumps(
                [
                    {"type": "ollama", "name": "gpu", "base_url": "http://gpu:11434"},
                    {"type": "openai", "api_key": "env:MY_KEY", "timeout": 12},
                    {"type": "gemini", "name": "search", "enabled": False, "enable_web_search": True},
                ]
            ),
        )
        configs = _settings(openai_api_key="ignored").provider_configurations()

        assert [c.name for c in configs] == ["gpu", "openai", "search"]
        gpu, openai, search = configs
        assert gpu.timeout == 5.0
        assert gpu.base_url == "http://gpu:11434"
        assert openai.api_key == "env:MY_KEY"
        assert openai.timeout == 12
        assert search.enabled is False
        assert search.enable_web_search is True

    def test_options_pass_through(self) -> None:
        configs = _settings(
            providers=[{"type": "gemini", "api_key": "k", "options": {"temperature": 0.1}}]
        ).provider_configurations()
        assert configs[0].option("temperature") == 0.1

    def test_options_are_a_read_only_copy(self) -> None:
        source = {"temperature": 0.1}
        config = ProviderConfiguration(type="gemini", name="gemini", options=source)

        source["temperature"] = 0.9

        assert config.option("temperature") == 0.1
        with pytest.raises(TypeError):
            config.options["temperature"] = 0.5  # type: ignore[index]
