"""Classified error taxonomy for the provider layer.

Every provider failure reaching a caller is one of three kinds:

* :class:`ConnectionError`: the backend could not be reached, rejected the
  credentials, or does not know the requested model/endpoint.
* :class:`RateLimitError`: the backend throttled the request (HTTP 429).
* :class:`ValidationError`: the caller supplied malformed input.

Each kind renders provider-aware, numbered remediation steps through
:meth:`ProviderError.get_user_message` so callers can surface it verbatim.
Nothing in this package retries automatically; see
:mod:`llmrouter.providers.backoff` for caller-side helpers.
"""

from collections.abc import Sequence

# Human-readable names used in remediation text.
_DISPLAY_NAMES: dict[str, str] = {
    "ollama": "Ollama",
    "openai": "the OpenAI API",
    "gemini": "the Gemini API",
    "google_cloud": "Google Cloud AI Platform",
}

_CONNECTION_STEPS: dict[str, tuple[str, ...]] = {
    "ollama": (
        "Ollama is running locally: `ollama serve` (expected at {base_url})",
        "The model is installed: `ollama pull {model}`",
        "The server answers: `curl {base_url}/api/tags`",
    ),
    "openai": (
        "OPENAI_API_KEY holds a valid key (create one at https://platform.openai.com/api-keys)",
        "The endpoint {base_url} is reachable from this machine",
        'The model "{model}" is available to your account: '
        '`curl {base_url}/models -H "Authorization: Bearer $OPENAI_API_KEY"`',
    ),
    "gemini": (
        "GEMINI_API_KEY holds a valid key (create one at https://aistudio.google.com/app/apikey)",
        'The model "{model}" exists and is enabled for your key',
        "The endpoint {base_url} is reachable from this machine",
    ),
    "google_cloud": (
        "You are authenticated: `gcloud auth login`, then verify with "
        "`gcloud auth print-access-token`",
        "The right project is selected: `gcloud config set project <PROJECT_ID>`",
        "The API is enabled: `gcloud services enable aiplatform.googleapis.com`",
        'The model "{model}" is available in your region at {base_url}',
    ),
}

_GENERIC_CONNECTION_STEPS: tuple[str, ...] = (
    "Your internet connection",
    "The API endpoint {base_url} is accessible",
    "Firewall or proxy settings",
)

_RATE_LIMIT_HINTS: dict[str, str] = {
    "ollama": "Reduce the number of concurrent requests sent to the local server",
    "openai": "Review your usage limits at https://platform.openai.com/account/limits",
    "gemini": "Review your quota at https://aistudio.google.com/app/apikey",
    "google_cloud": "Review project quotas at https://console.cloud.google.com/iam-admin/quotas",
}

_API_KEY_HINTS: dict[str, str] = {
    "openai": "Set OPENAI_API_KEY or the provider's api_key "
    "(keys: https://platform.openai.com/api-keys)",
    "gemini": "Set GEMINI_API_KEY or the provider's api_key "
    "(keys: https://aistudio.google.com/app/apikey)",
    "google_cloud": "Run `gcloud auth print-access-token` or configure a token provider",
}


def _numbered(steps: Sequence[str]) -> str:
    return "\n".join(f"{i}. {step}" for i, step in enumerate(steps, start=1))


class ProviderError(Exception):
    """Base exception for all classified provider errors.

    Attributes:
        message: Human-readable error description.
        provider: Provider type (e.g. ``"ollama"``, ``"gemini"``).  ``None``
            when the failure is not tied to a backend.
        original_error: The upstream exception that caused this error, if any.
        status_code: HTTP status returned by the backend, when there was one.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.original_error = original_error
        self.status_code = status_code
        super().__init__(message)

    def get_user_message(self) -> str:
        suffix = f" (provider: {self.provider})" if self.provider else ""
        return f"{self.message}{suffix}"


class ConnectionError(ProviderError):  # noqa: A001
    """Raised for transport failures, auth rejections (401/403) and unknown models (404).

    Attributes:
        base_url: Endpoint the client was talking to, used in remediation text.
        model: Model the client was asking for, used in remediation text.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        original_error: Exception | None = None,
        status_code: int | None = None,
        base_url: str | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(
            message,
            provider=provider,
            original_error=original_error,
            status_code=status_code,
        )
        self.base_url = base_url
        self.model = model

    def get_user_message(self) -> str:
        provider = self.provider or "provider"
        steps = _CONNECTION_STEPS.get(provider, _GENERIC_CONNECTION_STEPS)
        values = {
            "base_url": self.base_url or "the configured endpoint",
            "model": self.model or "the configured model",
        }
        display = _DISPLAY_NAMES.get(provider, provider)
        verb = "ensure" if provider == "ollama" else "check"
        body = _numbered([step.format(**values) for step in steps])
        return f"Failed to connect to {display}. Please {verb}:\n{body}\n\nError: {self.message}"


class RateLimitError(ProviderError):
    """Raised when the provider returns HTTP 429.

    Attributes:
        retry_after_seconds: Seconds to wait, parsed from the ``Retry-After``
            header.  ``None`` when the header was absent or unparseable.
    """

    def __init__(
        self,
        message: str,
        retry_after_seconds: int | None = None,
        provider: str | None = None,
        original_error: Exception | None = None,
        status_code: int | None = 429,
    ) -> None:
        super().__init__(
            message,
            provider=provider,
            original_error=original_error,
            status_code=status_code,
        )
        self.retry_after_seconds = retry_after_seconds

    def get_user_message(self) -> str:
        if self.retry_after_seconds is not None:
            wait = f"Wait {self.retry_after_seconds} seconds before retrying"
        else:
            wait = "Wait a few moments before retrying, doubling the delay on each attempt"
        steps = [wait]
        if self.provider in _RATE_LIMIT_HINTS:
            steps.append(_RATE_LIMIT_HINTS[self.provider])
        steps.append("Send fewer or smaller requests (trim the file context)")
        return f"Rate limit exceeded.\n{_numbered(steps)}\n\nError: {self.message}"


class ValidationError(ProviderError):
    """Raised for malformed caller input; never for server-side failures.

    Attributes:
        field: Name of the offending input field, when known.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        provider: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, provider=provider, original_error=original_error)
        self.field = field

    def get_user_message(self) -> str:
        field_info = f" (field: {self.field})" if self.field else ""
        text = f"Validation failed{field_info}: {self.message}"
        if self.field == "api_key" and self.provider in _API_KEY_HINTS:
            text += f"\n1. {_API_KEY_HINTS[self.provider]}"
        return text


class ProviderNotFoundError(ValidationError):
    """Raised when a provider name is not registered."""

    def __init__(self, name: str, available: Sequence[str] = ()) -> None:
        listing = ", ".join(sorted(available)) or "none"
        super().__init__(
            f'Provider "{name}" not found. Available: {listing}',
            field="provider",
        )
        self.name = name
        self.available = tuple(available)

    def get_user_message(self) -> str:
        steps = [
            'Use a model id of the form "provider:model" with a configured provider',
            "Configure the provider (PROVIDERS setting) before routing to it",
        ]
        return f"{self.message}\n{_numbered(steps)}"
