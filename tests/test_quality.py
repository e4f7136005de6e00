# =============================================================================
# Unit Tests — Quality Assessor
# =============================================================================

from __future__ import annotations

import asyncio
import json

import pytest

from expertqa.errors import ProviderError, ValidationError
from expertqa.services.quality import DEFAULT_RUBRIC, QualityAssessor
from tests.fakes import ScriptedProvider

LONG_QUESTION = (
    "We run a Django monolith on Postgres and p95 latency doubled after the "
    "last release. How should we go about finding the regression?"
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _rubric(overall, **overrides) -> str:
    body = {
        name: {"score": 8, "feedback": f"{name} is fine"}
        for name in ("accuracy", "completeness", "clarity", "helpfulness", "conciseness")
    }
    body["overall"] = {"score": overall, "feedback": "Solid"}
    body["suggestions"] = ["Mention EXPLAIN ANALYZE"]
    body.update(overrides)
    return json.dumps(body)


class TestThreshold:
    def test_69_fails(self):
        assessor = QualityAssessor(ScriptedProvider([_rubric(69)]))
        result = _run(assessor.assess(LONG_QUESTION, "Profile it."))
        assert result.overall.score == 69
        assert result.passes_threshold is False

    def test_70_passes(self):
        assessor = QualityAssessor(ScriptedProvider([_rubric(70)]))
        result = _run(assessor.assess(LONG_QUESTION, "Profile it."))
        assert result.passes_threshold is True

    def test_rubric_fields_returned(self):
        assessor = QualityAssessor(ScriptedProvider([_rubric(90)]))
        result = _run(assessor.assess(LONG_QUESTION, "Profile it."))
        assert result.accuracy.feedback == "accuracy is fine"
        assert result.suggestions == ["Mention EXPLAIN ANALYZE"]


class TestFallbacks:
    def test_short_question_skips_provider(self):
        provider = ScriptedProvider([_rubric(10)])
        assessor = QualityAssessor(provider)

        result = _run(assessor.assess("Why?", "Because."))

        assert provider.calls == []
        assert result.overall.score == DEFAULT_RUBRIC["overall"]["score"]
        assert result.passes_threshold is True

    def test_provider_failure_returns_default(self):
        assessor = QualityAssessor(ScriptedProvider([ProviderError("down")]))

        result = _run(assessor.assess(LONG_QUESTION, "Profile it."))

        assert result == assessor.default_assessment()

    def test_malformed_output_returns_default(self):
        assessor = QualityAssessor(ScriptedProvider(["I would rate this highly!"]))

        result = _run(assessor.assess(LONG_QUESTION, "Profile it."))

        assert result.overall.feedback == "Default evaluation"

    def test_partial_output_keeps_defaults_for_missing_fields(self):
        partial = json.dumps({"overall": {"score": 40, "feedback": "Too thin"}})
        assessor = QualityAssessor(ScriptedProvider([partial]))

        result = _run(assessor.assess(LONG_QUESTION, "Profile it."))

        assert result.overall.score == 40
        assert result.passes_threshold is False
        assert result.clarity.feedback == "Default evaluation"

    def test_empty_suggestions_fall_back_to_default(self):
        assessor = QualityAssessor(ScriptedProvider([_rubric(85, suggestions=[])]))

        result = _run(assessor.assess(LONG_QUESTION, "Profile it."))

        assert result.overall.score == 85
        assert result.suggestions == DEFAULT_RUBRIC["suggestions"]

    def test_too_many_suggestions_are_not_kept(self):
        many = [f"Suggestion {i}" for i in range(10)]
        assessor = QualityAssessor(ScriptedProvider([_rubric(85, suggestions=many)]))

        result = _run(assessor.assess(LONG_QUESTION, "Profile it."))

        assert result.overall.score == 85
        assert 1 <= len(result.suggestions) <= 3
        assert result.suggestions != many


class TestValidation:
    @pytest.mark.parametrize("question,response", [("", "x"), (LONG_QUESTION, ""), ("  ", " ")])
    def test_empty_inputs_rejected(self, question, response):
        assessor = QualityAssessor(ScriptedProvider())
        with pytest.raises(ValidationError):
            _run(assessor.assess(question, response))
