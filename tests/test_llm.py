# =============================================================================
# Unit Tests — LLM Layer: Structured Generation, Model Registry
# =============================================================================
#
# No network calls. Providers are constructed with dummy keys (the SDK
# clients do not connect until used) or replaced by ScriptedProvider.
# =============================================================================

from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from expertqa.config import Settings
from expertqa.errors import ProviderError
from expertqa.services.llm import (
    AnthropicProvider,
    ModelRegistry,
    ModelRole,
    OpenAICompatibleProvider,
    PartialObjectFold,
    _parse_provider_id,
    generate_structured_object,
)
from tests.fakes import ScriptedProvider


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class Verdict(BaseModel):
    agreement: bool
    justification: str


# ---------------------------------------------------------------------------
# Test: Partial JSON fold
# ---------------------------------------------------------------------------


class TestPartialObjectFold:
    def test_complete_fields_survive_a_truncated_buffer(self):
        fold = PartialObjectFold(Verdict)
        fold.feed('{"agreement": true, "justification": "bo')
        assert fold.fields == {"agreement": True}

    def test_finish_validates_full_object(self):
        fold = PartialObjectFold(Verdict)
        buffer = '{"agreement": false, "justification": "They conflict."}'
        fold.feed(buffer)
        result = fold.finish(buffer)
        assert result == Verdict(agreement=False, justification="They conflict.")

    def test_prose_and_fences_are_ignored(self):
        fold = PartialObjectFold(Verdict)
        buffer = 'Sure!\n```json\n{"agreement": true, "justification": "Same"}\n```'
        assert fold.finish(buffer).agreement is True

    def test_defaults_fill_missing_fields(self):
        fold = PartialObjectFold(Verdict, defaults={"justification": "n/a"})
        assert fold.finish('{"agreement": true}').justification == "n/a"

    def test_missing_required_field_raises(self):
        fold = PartialObjectFold(Verdict)
        with pytest.raises(ProviderError):
            fold.finish('{"agreement": true}')

    def test_invalid_field_value_is_not_kept(self):
        fold = PartialObjectFold(Verdict)
        fold.feed('{"agreement": "maybe", "justification": "x"}')
        assert "agreement" not in fold.fields


class TestGenerateStructuredObject:
    def test_streams_and_validates(self):
        provider = ScriptedProvider(
            ['{"agreement": true, "justification": "Both say yes."}'], chunk_size=3,
        )

        result = _run(generate_structured_object(provider, "Compare", Verdict))

        assert result.justification == "Both say yes."
        assert "JSON schema" in provider.calls[0]["system"]

    def test_extra_system_prompt_is_prepended(self):
        provider = ScriptedProvider(['{"agreement": true, "justification": "ok"}'])

        _run(generate_structured_object(provider, "Compare", Verdict, system="Be strict."))

        assert provider.calls[0]["system"].startswith("Be strict.")

    def test_provider_error_propagates(self):
        provider = ScriptedProvider([ProviderError("rate limited")])
        with pytest.raises(ProviderError):
            _run(generate_structured_object(provider, "Compare", Verdict))


# ---------------------------------------------------------------------------
# Test: Provider ids and the model registry
# ---------------------------------------------------------------------------


class TestParseProviderId:
    def test_anthropic(self):
        assert _parse_provider_id("anthropic/claude-sonnet-4-6") == (
            "anthropic", "claude-sonnet-4-6", None,
        )

    def test_base_url(self):
        assert _parse_provider_id(
            "openai_compatible/deepseek-chat@https://api.deepseek.com/v1"
        ) == ("openai_compatible", "deepseek-chat", "https://api.deepseek.com/v1")

    def test_missing_slash(self):
        with pytest.raises(ValueError):
            _parse_provider_id("gpt-4o")

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown provider type"):
            _parse_provider_id("cohere/command-r")


class TestModelRegistry:
    def test_unbound_role_uses_default(self):
        default = ScriptedProvider()
        registry = ModelRegistry(default)
        assert registry.get(ModelRole.TITLE) is default
        assert registry.get("quality-model") is default

    def test_bound_role(self):
        default, synthesis = ScriptedProvider(), ScriptedProvider()
        registry = ModelRegistry(default, {"expert-consensus-synthesis-model": synthesis})
        assert registry.get(ModelRole.CONSENSUS_SYNTHESIS) is synthesis
        assert registry.get(ModelRole.CONSENSUS_AGREEMENT) is default

    def test_unknown_role_name_rejected(self):
        with pytest.raises(ValueError):
            ModelRegistry(ScriptedProvider(), {"summary-model": ScriptedProvider()})

    def test_from_settings(self):
        cfg = Settings(
            llm_provider="openai_compatible",
            llm_api_key="sk-test",
            model_roles={"tag-model": "anthropic/claude-haiku-4-5"},
        )

        registry = ModelRegistry.from_settings(cfg)

        assert isinstance(registry.get(ModelRole.CHAT), OpenAICompatibleProvider)
        assert isinstance(registry.get(ModelRole.TAG), AnthropicProvider)

    def test_missing_key_raises_provider_error(self):
        cfg = Settings(
            llm_provider="anthropic", llm_api_key=None, anthropic_api_key="",
        )
        with pytest.raises(ProviderError, match="API key"):
            ModelRegistry.from_settings(cfg)
