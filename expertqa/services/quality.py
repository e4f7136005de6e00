# =============================================================================
# Quality Assessor — Rubric Scoring of Expert Answers
# =============================================================================
#
# Scores an answer against its question on five criteria (0–10 each) plus
# an overall score (0–100) and 1–3 suggestions. An answer passes when
# overall >= the pass threshold (70).
#
# The assessor always returns something renderable:
#   - question shorter than the minimum length → default, no provider call
#   - provider failure or unusable output        → default, logged
#   - partial output                             → missing fields keep
#                                                  their default values
# =============================================================================

from __future__ import annotations

import logging

from expertqa.errors import ProviderError, ValidationError
from expertqa.models.responses import QualityAssessment, QualityRubric
from expertqa.services.llm import LLMProvider, generate_structured_object

logger = logging.getLogger(__name__)

_DEFAULT_FEEDBACK = "Default evaluation"

DEFAULT_RUBRIC: dict = {
    "accuracy": {"score": 7, "feedback": _DEFAULT_FEEDBACK},
    "completeness": {"score": 7, "feedback": _DEFAULT_FEEDBACK},
    "clarity": {"score": 7, "feedback": _DEFAULT_FEEDBACK},
    "helpfulness": {"score": 7, "feedback": _DEFAULT_FEEDBACK},
    "conciseness": {"score": 7, "feedback": _DEFAULT_FEEDBACK},
    "overall": {"score": 75, "feedback": _DEFAULT_FEEDBACK},
    "suggestions": ["Improve where needed"],
}

_PROMPT = """Analyze the following expert response to a user question based on these criteria:
- Accuracy: Is the information factually correct?
- Completeness: Does it fully answer the question?
- Clarity: Is the explanation clear and well-structured?
- Helpfulness: Does it provide actionable advice?
- Conciseness: Is it appropriately concise while being thorough?

Question: {question}

Expert Response: {response}

For each criterion, provide a score out of 10 and brief feedback.
Then provide an overall score out of 100 and list 1-3 specific suggestions for improvement."""


class QualityAssessor:
    def __init__(
        self,
        provider: LLMProvider,
        pass_threshold: int = 70,
        min_question_length: int = 100,
    ):
        self._provider = provider
        self.pass_threshold = pass_threshold
        self.min_question_length = min_question_length

    def _verdict(self, rubric: QualityRubric) -> QualityAssessment:
        return QualityAssessment(
            **rubric.model_dump(),
            passes_threshold=rubric.overall.score >= self.pass_threshold,
        )

    def default_assessment(self) -> QualityAssessment:
        return self._verdict(QualityRubric.model_validate(DEFAULT_RUBRIC))

    async def assess(self, question: str, response: str) -> QualityAssessment:
        """
        Score `response` as an answer to `question`.

        Raises:
            ValidationError: If the question or the response is empty.
        """
        errors = []
        if not question or not question.strip():
            errors.append("Question is required")
        if not response or not response.strip():
            errors.append("Response is required")
        if errors:
            raise ValidationError("; ".join(errors))

        if len(question) < self.min_question_length:
            logger.info(
                "Question shorter than %d chars (%d); returning default assessment",
                self.min_question_length, len(question),
            )
            return self.default_assessment()

        try:
            rubric = await generate_structured_object(
                self._provider,
                _PROMPT.format(question=question, response=response),
                QualityRubric,
                max_tokens=1000,
                defaults=DEFAULT_RUBRIC,
            )
        except ProviderError as e:
            logger.warning("Quality assessment failed, returning default: %s", e)
            return self.default_assessment()

        assessment = self._verdict(rubric)
        logger.info(
            "Quality assessment: overall=%s passes=%s",
            rubric.overall.score, assessment.passes_threshold,
        )
        return assessment
