"""Canonical request/response dataclasses and provider configuration.

These types form the public contract between callers, the router and the
provider clients.  All of them are immutable (``frozen=True``) and validated
at construction time so callers get a fast, explicit
:class:`~llmrouter.errors.ValidationError` rather than a cryptic
downstream failure.
"""

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from llmrouter.errors import ValidationError

_VALID_ROLES: frozenset[str] = frozenset({"user", "system", "model"})

_ENV_PREFIX = "env:"


@dataclass(frozen=True)
class FileContext:
    """One file handed over by the context manager.

    Clients only serialise it into the system prompt; they never read the
    filesystem or mutate the entry.
    """

    path: str
    content: str
    last_modified: datetime | None = None
    size_bytes: int | None = None


@dataclass(frozen=True)
class ProviderConfiguration:
    """Settings for one configured backend, keyed by ``name`` in the registry.

    Args:
        type: Provider type understood by a registered factory, e.g.
            ``"ollama"``, ``"openai"``, ``"gemini"`` or ``"google_cloud"``.
        name: Unique registry key.  Several names may share one type.
        enabled: Disabled providers are recorded but never constructed.
        base_url: Endpoint override; each type has its own default.
        api_key: Literal key, or ``"env:VARNAME"`` to read it from the
            environment when the client is built.
        model: Initial model; each type has its own default.
        project_id: Google Cloud project (``google_cloud`` only).
        region: Google Cloud region (``google_cloud`` only).
        timeout: Per-request timeout in seconds.  Defaults to 5 s for local
            providers and 30 s for remote ones.
        enable_web_search: Ask search-capable providers to ground answers with
            web search.
        options: Provider-specific knobs (``temperature``, ``max_tokens``,
            ``top_p``, ``token_provider``).

    Raises:
        ValidationError: If ``type``/``name`` are blank or ``timeout`` is not
            positive.
    """

    type: str
    name: str
    enabled: bool = True
    base_url: str | None = None
    api_key: str | None = field(default=None, repr=False)
    model: str | None = None
    project_id: str | None = None
    region: str | None = None
    timeout: float | None = None
    enable_web_search: bool = False
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))
        if not self.type or not self.type.strip():
            raise ValidationError("provider type must be a non-empty string", field="type")
        if not self.name or not self.name.strip():
            raise ValidationError("provider name must be a non-empty string", field="name")
        if self.timeout is not None and self.timeout <= 0:
            raise ValidationError(
                f"timeout must be a positive number of seconds, got {self.timeout}",
                field="timeout",
            )

    def resolve_api_key(self) -> str | None:
        """Return the literal API key, expanding ``env:VARNAME`` references.

        Raises:
            ValidationError: If the referenced environment variable is unset.
        """
        if self.api_key is None or not self.api_key.startswith(_ENV_PREFIX):
            return self.api_key
        variable = self.api_key[len(_ENV_PREFIX) :]
        value = os.environ.get(variable)
        if not value:
            raise ValidationError(
                f"Environment variable {variable} is not set",
                field="api_key",
                provider=self.type,
            )
        return value

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


@dataclass(frozen=True)
class ModelIdentifier:
    """A model id split into its provider name and bare model name."""

    provider: str
    model: str


@dataclass(frozen=True)
class CanonicalMessage:
    role: str
    text: str

    def __post_init__(self) -> None:
        if self.role not in _VALID_ROLES:
            raise ValidationError(
                f"invalid role '{self.role}'; must be one of {sorted(_VALID_ROLES)}",
                field="role",
            )


@dataclass(frozen=True)
class CanonicalRequest:
    """Provider-agnostic generate request.

    Args:
        model: Model identifier, optionally ``provider:model``.
        messages: Full conversation history; roles are user, system or model.
        temperature: Sampling temperature in ``[0.0, 2.0]``.  ``None`` defers
            to the provider default.
        max_output_tokens: Maximum tokens to generate.  ``None`` defers to the
            provider default.

    Raises:
        ValidationError: If any field fails validation.
    """

    model: str
    messages: Sequence[CanonicalMessage]
    temperature: float | None = None
    max_output_tokens: int | None = None

    def __post_init__(self) -> None:
        if not self.model.strip():
            raise ValidationError("model must be a non-empty string", field="model")

        if not self.messages:
            raise ValidationError("messages must not be empty", field="messages")

        for i, message in enumerate(self.messages):
            if not isinstance(message, CanonicalMessage):
                raise ValidationError(
                    f"messages[{i}] must be a CanonicalMessage", field="messages"
                )

        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise ValidationError(
                f"temperature must be in [0.0, 2.0], got {self.temperature}",
                field="temperature",
            )

        if self.max_output_tokens is not None and self.max_output_tokens <= 0:
            raise ValidationError(
                f"max_output_tokens must be a positive integer, got {self.max_output_tokens}",
                field="max_output_tokens",
            )

        # Freeze the history so the request stays immutable.
        object.__setattr__(self, "messages", tuple(self.messages))


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class CanonicalResponse:
    """Provider-agnostic response.

    Attributes:
        messages: Model turns; normally exactly one.
        usage: Token counts when the provider reported them.
        finish_reason: Stop reason as reported by the provider.
    """

    messages: Sequence[CanonicalMessage] = ()
    usage: Usage | None = None
    finish_reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))

    @classmethod
    def from_text(
        cls,
        text: str,
        usage: Usage | None = None,
        finish_reason: str | None = None,
    ) -> "CanonicalResponse":
        return cls(
            messages=(CanonicalMessage(role="model", text=text),),
            usage=usage,
            finish_reason=finish_reason,
        )

    @property
    def text(self) -> str:
        return "".join(message.text for message in self.messages)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "messages": [{"role": m.role, "text": m.text} for m in self.messages],
            "finish_reason": self.finish_reason,
        }
        if self.usage is not None:
            data["usage"] = {
                "prompt_tokens": self.usage.prompt_tokens,
                "completion_tokens": self.usage.completion_tokens,
                "total_tokens": self.usage.total_tokens,
            }
        return data
