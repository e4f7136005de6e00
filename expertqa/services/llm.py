# =============================================================================
# Multi-Provider LLM Abstraction — Completions, Streaming, Structured Output
# =============================================================================
#
# Provides a common interface for LLM calls, with concrete implementations
# for Anthropic (Claude) and OpenAI-compatible APIs (OpenAI, DeepSeek, Qwen,
# ...), plus two pieces built on top of it:
#
#   1. generate_structured_object() — streams JSON from a provider and
#      folds the partial objects into one validated pydantic model.
#   2. ModelRegistry — maps a logical role ("tag-model",
#      "expert-consensus-synthesis-model", ...) to a provider. Built once at
#      startup and handed to each component; nothing reads provider choice
#      from module state.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         — system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider  — system prompt as first message
#   ├── create_provider_from_id() — "type/model[@base_url]" → provider
#   └── ModelRegistry             — role → provider
#
# All SDK failures are re-raised as ProviderError.
# =============================================================================

from __future__ import annotations

import enum
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Annotated, Any, Protocol, TypeVar

from anthropic import AnthropicError
from openai import OpenAIError
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo
from pydantic_core import from_json

from expertqa.config import Settings, settings as default_settings
from expertqa.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Normalised completion result from any provider."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class ModelRole(str, enum.Enum):
    """Logical model roles. Each can be bound to a different provider."""

    CHAT = "chat-model"
    TITLE = "title-model"
    TAG = "tag-model"
    QUALITY = "quality-model"
    CONSENSUS_AGREEMENT = "expert-consensus-agreement-model"
    CONSENSUS_SYNTHESIS = "expert-consensus-synthesis-model"


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """
    Protocol every provider implements.

    Roles in `messages` are "user" / "assistant"; the system prompt is
    passed separately because providers place it differently.
    """

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        ...

    def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Yield text deltas as they arrive."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native async SDK.

    KEY API DIFFERENCE: Anthropic takes the system prompt as a top-level
    `system=` kwarg, not as a message with role "system".
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        cfg = settings or default_settings
        resolved_key = api_key or cfg.llm_api_key or cfg.anthropic_api_key
        if not resolved_key:
            raise ProviderError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or cfg.llm_model
        self._temperature = cfg.llm_temperature
        self._max_tokens = cfg.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    def _kwargs(self, messages, system, temperature, max_tokens) -> dict:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        try:
            response = await self._client.messages.create(
                **self._kwargs(messages, system, temperature, max_tokens)
            )
        except AnthropicError as e:
            raise ProviderError(f"Anthropic call failed: {e}") from e

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        try:
            async with self._client.messages.stream(
                **self._kwargs(messages, system, temperature, max_tokens)
            ) as stream:
                async for text in stream.text_stream:
                    yield text
        except AnthropicError as e:
            raise ProviderError(f"Anthropic stream failed: {e}") from e


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat completions spec.

    Switching vendors is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        cfg = settings or default_settings
        resolved_key = api_key or cfg.llm_api_key or cfg.openai_api_key
        if not resolved_key:
            raise ProviderError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or cfg.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or cfg.llm_model
        self._temperature = cfg.llm_temperature
        self._max_tokens = cfg.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    def _kwargs(self, messages, system, temperature, max_tokens) -> dict:
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)
        return {
            "model": self._model,
            "messages": all_messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        try:
            response = await self._client.chat.completions.create(
                **self._kwargs(messages, system, temperature, max_tokens)
            )
        except OpenAIError as e:
            raise ProviderError(f"OpenAI-compatible call failed: {e}") from e

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        try:
            response = await self._client.chat.completions.create(
                **self._kwargs(messages, system, temperature, max_tokens),
                stream=True,
            )
            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except OpenAIError as e:
            raise ProviderError(f"OpenAI-compatible stream failed: {e}") from e


# ---------------------------------------------------------------------------
# Provider construction
# ---------------------------------------------------------------------------

_KNOWN_PROVIDER_TYPES = {"anthropic", "openai_compatible"}


def _parse_provider_id(provider_id: str) -> tuple[str, str, str | None]:
    """
    Parse a provider id into (provider_type, model, base_url).

        "anthropic/claude-sonnet-4-6"
            → ("anthropic", "claude-sonnet-4-6", None)
        "openai_compatible/deepseek-chat@https://api.deepseek.com/v1"
            → ("openai_compatible", "deepseek-chat", "https://api.deepseek.com/v1")

    Raises:
        ValueError: If the format is unrecognisable or the type unknown.
    """
    if "/" not in provider_id:
        raise ValueError(
            f"Invalid provider_id '{provider_id}'. "
            "Expected format: 'provider_type/model' or "
            "'provider_type/model@base_url'"
        )

    provider_type, rest = provider_id.split("/", 1)

    base_url: str | None = None
    if "@" in rest:
        model, base_url = rest.split("@", 1)
    else:
        model = rest

    if provider_type not in _KNOWN_PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. "
            f"Supported types: {sorted(_KNOWN_PROVIDER_TYPES)}"
        )

    return provider_type, model, base_url


def create_provider_from_id(
    provider_id: str,
    settings: Settings | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """Create a fresh provider instance from a provider id string."""
    provider_type, model, base_url = _parse_provider_id(provider_id)

    if provider_type == "anthropic":
        return AnthropicProvider(model=model, settings=settings)
    return OpenAICompatibleProvider(model=model, base_url=base_url, settings=settings)


def create_default_provider(
    settings: Settings | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """The provider described by the LLM_* settings."""
    cfg = settings or default_settings
    if cfg.llm_provider == "anthropic":
        return AnthropicProvider(settings=cfg)
    return OpenAICompatibleProvider(settings=cfg)


# ---------------------------------------------------------------------------
# Model Registry
# ---------------------------------------------------------------------------


class ModelRegistry:
    """
    Role → provider mapping, resolved once.

    Roles without an explicit binding resolve to the default provider.
    """

    def __init__(
        self,
        default: LLMProvider,
        roles: dict[str, LLMProvider] | None = None,
    ) -> None:
        self._default = default
        self._roles: dict[str, LLMProvider] = {}
        for role, provider in (roles or {}).items():
            self._roles[ModelRole(role).value] = provider

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ModelRegistry:
        """
        Build providers for the default LLM and every MODEL_ROLES entry.

        Raises:
            ValueError: On an unknown role name or malformed provider id.
            ProviderError: If a provider has no API key.
        """
        cfg = settings or default_settings
        roles = {
            role: create_provider_from_id(provider_id, settings=cfg)
            for role, provider_id in cfg.model_roles.items()
        }
        registry = cls(create_default_provider(cfg), roles)
        logger.info(
            "Model registry ready (default=%s, overrides=%s)",
            cfg.llm_provider,
            sorted(cfg.model_roles) or "none",
        )
        return registry

    def get(self, role: ModelRole | str) -> LLMProvider:
        return self._roles.get(ModelRole(role).value, self._default)


# ---------------------------------------------------------------------------
# Structured generation
# ---------------------------------------------------------------------------
# Providers stream JSON text. After every delta the buffer is parsed as
# partial JSON; each top-level field that validates on its own is kept as
# the latest value for that field. The parse of the complete buffer is
# authoritative. Nothing downstream ever sees an intermediate partial.
# ---------------------------------------------------------------------------


def _field_adapter(info: FieldInfo) -> TypeAdapter:
    # Constraints such as max_length live in the field metadata
    if info.metadata:
        return TypeAdapter(Annotated[(info.annotation, *info.metadata)])
    return TypeAdapter(info.annotation)


class PartialObjectFold:
    """Accumulates the latest fully-valid top-level fields of a schema."""

    def __init__(self, schema: type[BaseModel], defaults: dict[str, Any] | None = None):
        self._schema = schema
        self._adapters = {
            name: _field_adapter(info) for name, info in schema.model_fields.items()
        }
        self.fields: dict[str, Any] = dict(defaults or {})

    @staticmethod
    def _json_slice(buffer: str) -> str | None:
        # Models sometimes wrap JSON in prose or ``` fences
        start = buffer.find("{")
        if start == -1:
            return None
        return buffer[start:]

    def feed(self, buffer: str) -> None:
        text = self._json_slice(buffer)
        if text is None:
            return
        try:
            partial = from_json(text, allow_partial=True)
        except ValueError:
            return
        if isinstance(partial, dict):
            self._merge(partial)

    def _merge(self, obj: dict) -> None:
        for name, value in obj.items():
            adapter = self._adapters.get(name)
            if adapter is None:
                continue
            try:
                adapter.validate_python(value)
            except PydanticValidationError:
                continue
            self.fields[name] = value

    def finish(self, buffer: str) -> BaseModel:
        """
        Parse the complete buffer and validate.

        Raises:
            ProviderError: If the folded object does not satisfy the schema.
        """
        text = self._json_slice(buffer)
        if text is not None:
            end = text.rfind("}")
            if end != -1:
                try:
                    final = from_json(text[: end + 1])
                except ValueError:
                    final = None
                if isinstance(final, dict):
                    self._merge(final)

        try:
            return self._schema.model_validate(self.fields)
        except PydanticValidationError as e:
            raise ProviderError(
                f"Provider output did not match {self._schema.__name__}: {e}"
            ) from e


def _schema_system_prompt(schema: type[BaseModel]) -> str:
    return (
        "Respond with a single JSON object and nothing else. "
        f"It must match this JSON schema:\n{schema.model_json_schema()}"
    )


async def generate_structured_object(
    provider: LLMProvider,
    prompt: str,
    schema: type[T],
    *,
    system: str | None = None,
    max_tokens: int | None = None,
    defaults: dict[str, Any] | None = None,
) -> T:
    """
    Stream a JSON object from `provider` and return it as `schema`.

    Args:
        provider: Any LLMProvider.
        prompt: User prompt.
        schema: Pydantic model the object must satisfy.
        system: Extra system instructions, prepended to the schema prompt.
        max_tokens: Output cap.
        defaults: Field values to start the fold from; provider output
            overrides them field by field.

    Raises:
        ProviderError: If the provider fails or the output is unusable.
    """
    fold = PartialObjectFold(schema, defaults)
    system_prompt = _schema_system_prompt(schema)
    if system:
        system_prompt = f"{system}\n\n{system_prompt}"

    buffer = ""
    async for delta in provider.stream(
        [{"role": "user", "content": prompt}],
        system=system_prompt,
        max_tokens=max_tokens,
    ):
        buffer += delta
        fold.feed(buffer)

    result = fold.finish(buffer)
    logger.debug("Structured %s generated (%d chars)", schema.__name__, len(buffer))
    return result
