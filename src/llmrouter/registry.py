"""Registry of configured provider clients, keyed by name.

Factories are plain callables stored per provider type; registering a
configuration builds its client immediately (no network activity).  Disabled
configurations are recorded so callers can tell "disabled" from "unknown",
but no client is built for them.
"""

from collections.abc import Callable, Iterable

import structlog

from llmrouter.errors import ValidationError
from llmrouter.models import ProviderConfiguration
from llmrouter.providers import (
    GeminiProvider,
    GoogleCloudProvider,
    OllamaProvider,
    OpenAIProvider,
)
from llmrouter.providers.base import ModelProvider

ProviderFactory = Callable[[ProviderConfiguration], ModelProvider]

_log = structlog.get_logger(__name__)


class ProviderRegistry:
    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._configurations: dict[str, ProviderConfiguration] = {}
        self._providers: dict[str, ModelProvider] = {}
        # Clients displaced by re-registration, unregistration or clear(); they
        # still own connections until aclose().
        self._retired: list[ModelProvider] = []

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def register_factory(self, type_name: str, factory: ProviderFactory) -> None:
        """Install *factory* for *type_name*; an existing factory is replaced."""
        self._factories[type_name] = factory

    def has_factory(self, type_name: str) -> bool:
        return type_name in self._factories

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def register_provider(self, name: str, config: ProviderConfiguration) -> None:
        """Record *config* under *name*, building the client when enabled.

        Re-registering a name replaces whatever was stored before; the displaced
        client is closed by :meth:`aclose` or an earlier :meth:`close_retired`.

        Raises:
            ValidationError: If no factory is registered for ``config.type``.
                Errors raised by the factory itself (for example a missing
                API key) propagate unchanged.
        """
        factory = self._factories.get(config.type)
        if factory is None:
            raise ValidationError(
                f"No factory registered for provider type '{config.type}'",
                field="type",
                provider=config.type,
            )

        provider = factory(config) if config.enabled else None

        self._configurations[name] = config
        previous = self._providers.pop(name, None)
        if provider is not None:
            self._providers[name] = provider
        self._retire(previous, keep=provider)

        _log.info(
            "provider_registered",
            name=name,
            provider_type=config.type,
            enabled=config.enabled,
        )

    def unregister_provider(self, name: str) -> ModelProvider | None:
        self._configurations.pop(name, None)
        provider = self._providers.pop(name, None)
        self._retire(provider)
        return provider

    def get_provider(self, name: str) -> ModelProvider | None:
        """The client registered under *name*; ``None`` if unknown or disabled."""
        return self._providers.get(name)

    def has_provider(self, name: str) -> bool:
        """``True`` for any registered name, enabled or not."""
        return name in self._configurations

    def is_enabled(self, name: str) -> bool:
        return name in self._providers

    def get_configuration(self, name: str) -> ProviderConfiguration | None:
        return self._configurations.get(name)

    def list_providers(self) -> list[str]:
        return list(self._configurations)

    def clear(self) -> None:
        providers = list(self._providers.values())
        self._configurations.clear()
        self._providers.clear()
        for provider in providers:
            self._retire(provider)

    def _retire(self, provider: ModelProvider | None, keep: ModelProvider | None = None) -> None:
        if provider is None or provider is keep:
            return
        if any(provider is active for active in self._providers.values()):
            return
        if not any(provider is retired for retired in self._retired):
            self._retired.append(provider)

    async def close_retired(self) -> None:
        """Close clients that are no longer registered under any name."""
        retired, self._retired = self._retired, []
        await _close_all(retired)

    async def aclose(self) -> None:
        """Close every client that owns network resources, registered or displaced."""
        await self.close_retired()
        await _close_all(self._providers.values())


async def _close_all(providers: Iterable[ModelProvider]) -> None:
    seen: list[ModelProvider] = []
    for provider in providers:
        if any(provider is done for done in seen):
            continue
        seen.append(provider)
        aclose = getattr(provider, "aclose", None)
        if aclose is not None:
            await aclose()


def register_default_factories(registry: ProviderRegistry) -> ProviderRegistry:
    """Install the built-in ``ollama``, ``openai``, ``gemini`` and ``google_cloud`` types."""
    registry.register_factory("ollama", OllamaProvider)
    registry.register_factory("openai", OpenAIProvider)
    registry.register_factory("gemini", GeminiProvider)
    registry.register_factory("google_cloud", GoogleCloudProvider)
    return registry
