"""Provider clients for every supported backend.

Public surface area for the providers package.  Import from here rather than
from the individual submodules so internal structure can change freely.

Example::

    from llmrouter.models import ProviderConfiguration
    from llmrouter.providers import OllamaProvider

    provider = OllamaProvider(ProviderConfiguration(type="ollama", name="local"))
    async for text in provider.stream_response("Explain this function", context=[]):
        print(text, end="")
"""

from llmrouter.providers.backoff import calculate_backoff, rate_limit_retrying
from llmrouter.providers.base import (
    ModelProvider,
    SupportsModelListing,
    SupportsModelSelection,
    build_system_prompt,
)
from llmrouter.providers.chat_completions import ChatCompletionsClient
from llmrouter.providers.gemini import GeminiProvider
from llmrouter.providers.google_cloud import GoogleCloudProvider
from llmrouter.providers.ollama import OllamaProvider
from llmrouter.providers.openai import OpenAIProvider

__all__ = [
    # Interface
    "ModelProvider",
    "SupportsModelSelection",
    "SupportsModelListing",
    "build_system_prompt",
    # Clients
    "ChatCompletionsClient",
    "OllamaProvider",
    "OpenAIProvider",
    "GeminiProvider",
    "GoogleCloudProvider",
    # Backoff
    "calculate_backoff",
    "rate_limit_retrying",
]
