"""Resolve ``provider:model`` identifiers to configured provider clients."""

import structlog

from llmrouter.errors import ProviderNotFoundError, ValidationError
from llmrouter.models import ModelIdentifier
from llmrouter.providers.base import ModelProvider, SupportsModelSelection
from llmrouter.registry import ProviderRegistry

_log = structlog.get_logger(__name__)

DEFAULT_PROVIDER = "ollama"


def parse_model_id(model_id: str, default_provider: str = DEFAULT_PROVIDER) -> ModelIdentifier:
    """Split *model_id* on its first colon.

    Without a colon the whole id is the model and *default_provider* is the
    provider.  Pure and total: no trimming, no validation.

    >>> parse_model_id("ollama:qwen2.5-coder:7b")
    ModelIdentifier(provider='ollama', model='qwen2.5-coder:7b')
    >>> parse_model_id("gpt-4o", "openai")
    ModelIdentifier(provider='openai', model='gpt-4o')
    """
    provider, sep, model = model_id.partition(":")
    if not sep:
        return ModelIdentifier(provider=default_provider, model=model_id)
    return ModelIdentifier(provider=provider, model=model)


class ProviderRouter:
    """Routes model identifiers to clients and tracks the session's current provider.

    Args:
        registry: Source of truth for configured providers.
        default_provider: Provider used for ids without a ``provider:`` prefix.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        default_provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self.registry = registry
        self.default_provider = default_provider
        self._current_provider: str | None = None

    def parse_model_id(self, model_id: str) -> ModelIdentifier:
        return parse_model_id(model_id, self.default_provider)

    def _require_enabled(self, name: str) -> ModelProvider:
        if not self.registry.has_provider(name):
            raise ProviderNotFoundError(name, available=self.registry.list_providers())
        provider = self.registry.get_provider(name)
        if provider is None:
            raise ValidationError(
                f'Provider "{name}" is disabled',
                field="enabled",
                provider=name,
            )
        return provider

    def get_provider_for_model(
        self,
        model_id: str,
        default_provider: str | None = None,
    ) -> ModelProvider:
        """Return the client serving *model_id*, selecting the model on it.

        Raises:
            ProviderNotFoundError: If the provider name is not registered.
            ValidationError: If the provider is registered but disabled.
        """
        identifier = parse_model_id(model_id, default_provider or self.default_provider)
        provider = self._require_enabled(identifier.provider)
        if identifier.model and isinstance(provider, SupportsModelSelection):
            provider.set_model(identifier.model)
        _log.debug("model_routed", provider=identifier.provider, model=identifier.model)
        return provider

    def switch_provider(self, name: str) -> None:
        """Make *name* the current provider; on failure the pointer is unchanged.

        Raises:
            ProviderNotFoundError: If *name* is not registered.
            ValidationError: If *name* is registered but disabled.
        """
        self._require_enabled(name)
        previous = self._current_provider
        self._current_provider = name
        _log.info("provider_switched", provider=name, previous=previous)

    def get_current_provider(self) -> str | None:
        return self._current_provider

    # ------------------------------------------------------------------
    # Web search
    # ------------------------------------------------------------------

    def supports_web_search(self, name: str, allow_all_providers: bool = False) -> bool:
        """Whether a request for *name* may ask for web search.

        ``allow_all_providers`` admits every provider; those without search
        support then answer ungrounded.
        """
        provider = self.registry.get_provider(name)
        if provider is None:
            return False
        return allow_all_providers or bool(getattr(provider, "supports_web_search", False))

    def require_web_search(self, name: str, allow_all_providers: bool = False) -> bool:
        """Check a web-search request for *name*.

        Returns:
            ``True`` when the provider will actually ground the answer,
            ``False`` when the request proceeds without grounding.

        Raises:
            ValidationError: If the provider cannot search and
                ``allow_all_providers`` is not set.
        """
        provider = self._require_enabled(name)
        if getattr(provider, "supports_web_search", False):
            return True
        if not allow_all_providers:
            raise ValidationError(
                f'Provider "{name}" does not support web search',
                field="web_search",
                provider=name,
            )
        _log.warning("web_search_unsupported", provider=name)
        return False
