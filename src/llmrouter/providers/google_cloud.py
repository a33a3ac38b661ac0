"""Client for models hosted on Google Cloud AI Platform's OpenAI-compatible endpoints.

Authentication uses short-lived OAuth access tokens.  By default they come
from ``gcloud auth print-access-token``; any async callable returning a token
can be supplied through the ``token_provider`` option instead.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from llmrouter.errors import ConnectionError, ProviderError, ValidationError
from llmrouter.models import FileContext, ProviderConfiguration
from llmrouter.providers.base import build_system_prompt
from llmrouter.providers.chat_completions import ChatCompletionsClient, chat_body

_log = structlog.get_logger(__name__)

PROVIDER_TYPE = "google_cloud"
DEFAULT_MODEL = "deepseek-ai/deepseek-v3.1-maas"
DEFAULT_TIMEOUT = 30.0

TokenProvider = Callable[[], Awaitable[str]]


@dataclass(frozen=True)
class ModelPreset:
    """Per-model generation defaults and endpoint shape.

    Attributes:
        api_version: ``v1`` or ``v1beta1`` path segment.
        regional: Served from ``{region}-aiplatform.googleapis.com`` rather
            than the global host.
    """

    api_version: str
    max_tokens: int
    temperature: float
    top_p: float
    regional: bool = False


MODEL_PRESETS: dict[str, ModelPreset] = {
    "deepseek-ai/deepseek-v3.1-maas": ModelPreset("v1", 32768, 0.4, 0.95, regional=True),
    "deepseek-ai/deepseek-r1-0528-maas": ModelPreset("v1", 32138, 0.4, 0.95, regional=True),
    "qwen/qwen3-coder-480b-a35b-instruct-maas": ModelPreset("v1beta1", 32768, 0.4, 0.8),
    "moonshotai/kimi-k2-thinking-maas": ModelPreset("v1", 32768, 0.4, 0.95),
    "openai/gpt-oss-120b-maas": ModelPreset("v1", 8192, 0.4, 0.95),
}

FALLBACK_PRESET = ModelPreset("v1beta1", 32768, 0.4, 0.95)


def endpoint_base_url(project_id: str, region: str, preset: ModelPreset) -> str:
    host = f"{region}-aiplatform.googleapis.com" if preset.regional else "aiplatform.googleapis.com"
    return (
        f"https://{host}/{preset.api_version}/projects/{project_id}"
        f"/locations/{region}/endpoints/openapi"
    )


async def gcloud_access_token() -> str:
    """Fetch a token with ``gcloud auth print-access-token``.

    Raises:
        ConnectionError: If gcloud is missing, fails, or prints nothing.
    """
    hint = "Please run 'gcloud auth login' first, or configure a token provider."
    try:
        process = await asyncio.create_subprocess_exec(
            "gcloud",
            "auth",
            "print-access-token",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ConnectionError(
            message=f"Failed to get access token: {exc}. {hint}",
            provider=PROVIDER_TYPE,
            original_error=exc,
        ) from exc

    stdout, stderr = await process.communicate()
    token = stdout.decode().strip()
    if process.returncode != 0 or not token:
        detail = stderr.decode().strip() or f"gcloud exited with status {process.returncode}"
        raise ConnectionError(
            message=f"Failed to get access token: {detail}. {hint}",
            provider=PROVIDER_TYPE,
        )
    return token


class GoogleCloudProvider:
    """Talks to ``POST {base_url}/chat/completions`` with a bearer access token.

    The base URL follows the current model's preset unless ``base_url`` is
    configured explicitly.

    Raises:
        ValidationError: At construction, if ``project_id`` or ``region`` is
            missing.
    """

    provider_type = PROVIDER_TYPE
    supports_web_search = False

    def __init__(
        self,
        config: ProviderConfiguration,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.project_id:
            raise ValidationError(
                "project_id is required for Google Cloud", field="project_id", provider=PROVIDER_TYPE
            )
        if not config.region:
            raise ValidationError(
                "region is required for Google Cloud", field="region", provider=PROVIDER_TYPE
            )
        self.project_id = config.project_id
        self.region = config.region
        self._base_url_override = config.base_url.rstrip("/") if config.base_url else None
        self._model = config.model or DEFAULT_MODEL
        self._options = config.options
        self._token_provider: TokenProvider = config.option("token_provider") or gcloud_access_token
        self._chat = ChatCompletionsClient(
            self.provider_type,
            timeout=config.timeout or DEFAULT_TIMEOUT,
            headers=self._auth_headers,
            http_client=http_client,
        )

    @property
    def preset(self) -> ModelPreset:
        return MODEL_PRESETS.get(self._model, FALLBACK_PRESET)

    @property
    def base_url(self) -> str:
        if self._base_url_override:
            return self._base_url_override
        return endpoint_base_url(self.project_id, self.region, self.preset)

    async def _auth_headers(self) -> Mapping[str, str]:
        try:
            token = await self._token_provider()
        except ProviderError:
            raise
        except Exception as exc:
            raise ConnectionError(
                message=f"Failed to get access token: {exc}",
                provider=PROVIDER_TYPE,
                original_error=exc,
                base_url=self.base_url,
                model=self._model,
            ) from exc
        return {"Authorization": f"Bearer {token}"}

    def set_model(self, model: str) -> None:
        self._model = model
        _log.debug("google_cloud_model_selected", model=model, base_url=self.base_url)

    def get_model(self) -> str:
        return self._model

    def _body(
        self,
        prompt: str,
        context: Sequence[FileContext],
        system_instruction: str | None,
        *,
        stream: bool,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        preset = self.preset
        if temperature is None:
            temperature = self._options.get("temperature", preset.temperature)
        return chat_body(
            self._model,
            build_system_prompt(system_instruction, context),
            prompt,
            stream=stream,
            temperature=temperature,
            max_tokens=max_tokens or self._options.get("max_tokens", preset.max_tokens),
            top_p=self._options.get("top_p", preset.top_p),
        )

    async def generate_response(
        self,
        prompt: str,
        context: Sequence[FileContext],
        *,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        base_url = self.base_url
        return await self._chat.complete(
            f"{base_url}/chat/completions",
            self._body(
                prompt,
                context,
                system_instruction,
                stream=False,
                temperature=temperature,
                max_tokens=max_output_tokens,
            ),
            base_url=base_url,
            cancel=cancel,
        )

    def stream_response(
        self,
        prompt: str,
        context: Sequence[FileContext],
        *,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        base_url = self.base_url
        return self._chat.stream(
            f"{base_url}/chat/completions",
            self._body(
                prompt,
                context,
                system_instruction,
                stream=True,
                temperature=temperature,
                max_tokens=max_output_tokens,
            ),
            base_url=base_url,
            cancel=cancel,
        )

    async def list_models(self) -> list[str]:
        return sorted(MODEL_PRESETS)

    async def has_model(self, name: str) -> bool:
        return name in MODEL_PRESETS

    async def aclose(self) -> None:
        await self._chat.aclose()
