"""Stateless converters between the canonical shape and provider wire shapes.

Example::

    from llmrouter.converters import converter_for

    body = converter_for("gemini").to_provider_format(request, context)
"""

from types import ModuleType

from llmrouter.converters import gemini, openai
from llmrouter.errors import ValidationError

_BY_PROVIDER_TYPE: dict[str, ModuleType] = {
    "ollama": openai,
    "openai": openai,
    "google_cloud": openai,
    "gemini": gemini,
}


def converter_for(provider_type: str) -> ModuleType:
    """Return the converter module that speaks *provider_type*'s wire format."""
    try:
        return _BY_PROVIDER_TYPE[provider_type]
    except KeyError:
        raise ValidationError(
            f"No converter for provider type '{provider_type}'",
            field="type",
            provider=provider_type,
        ) from None


__all__ = ["converter_for", "gemini", "openai"]
