# =============================================================================
# Assignment State Machine
# =============================================================================
#
# STATES:
#   assigned ──▶ working ──▶ submitted ──┬──▶ accepted
#                                        └──▶ rejected
#
# Every transition is ONE transaction with the assignment row locked.
# Side effects inside that transaction:
#
#   completed_experts_count  counts assignments in {submitted, accepted}:
#                            entering that set    → +1
#                            leaving that set     → -1 (floored at 0)
#                            always a relative UPDATE, never read-then-write
#   → accepted               credits > 0 → expert credits += n, xp += n
#                            request status → completed
#
# After commit (fire-and-forget through the dispatcher):
#   → submitted              evaluate_consensus(request_id)
#   → accepted               backfill_embeddings([assignment_id])
#
# Entering submitted/accepted/rejected requires a non-empty response,
# either supplied now or already stored; otherwise ValidationError and no
# side effect happens.
#
# accepted is terminal: credits are paid and the request is completed, so
# re-accepting is a no-op and any other target raises ValidationError.
#
# With quality_gate_on_submit enabled, a submission is re-assessed
# server-side and rejected (ValidationError) if it does not pass.
# =============================================================================

from __future__ import annotations

import logging

from expertqa.db.models import AssignmentStatus, RequestStatus
from expertqa.db.store import (
    COUNTED_STATUSES,
    RESPONSE_REQUIRED_STATUSES,
    AssignmentRecord,
    ExpertRepository,
    ExpertStore,
)
from expertqa.errors import NotFoundError, UnauthorizedError, ValidationError
from expertqa.services.dispatch import BACKFILL_EMBEDDINGS, EVALUATE_CONSENSUS, Dispatcher
from expertqa.services.quality import QualityAssessor

logger = logging.getLogger(__name__)

_REVIEW_STATUSES = frozenset({AssignmentStatus.ACCEPTED, AssignmentStatus.REJECTED})


def parse_status(value: AssignmentStatus | str) -> AssignmentStatus:
    try:
        return AssignmentStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status '{value}'") from None


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


class AssignmentStateMachine:
    def __init__(
        self,
        store: ExpertStore,
        dispatcher: Dispatcher,
        quality: QualityAssessor | None = None,
        quality_gate_on_submit: bool = False,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._quality = quality
        self.quality_gate_on_submit = quality_gate_on_submit and quality is not None

    async def transition(
        self,
        assignment_id: str,
        new_status: AssignmentStatus | str,
        response: str | None = None,
        credits_awarded: int | None = None,
        actor_id: str | None = None,
    ) -> AssignmentRecord:
        """
        Move an assignment to `new_status` and apply its side effects.

        `actor_id`, when given, must be the assigned expert for expert
        transitions, or the owner of the request's chat (or the expert)
        for accepted/rejected.

        Raises:
            ValidationError: Invalid status, missing response, negative
                credits, a failed quality gate, or a move out of accepted.
            NotFoundError: Unknown assignment.
            UnauthorizedError: `actor_id` may not perform this transition.
        """
        status = parse_status(new_status)
        if credits_awarded is not None and credits_awarded < 0:
            raise ValidationError("credits_awarded must not be negative")
        if response is not None and status in RESPONSE_REQUIRED_STATUSES and not _has_text(response):
            raise ValidationError(f"A non-empty response is required for status '{status.value}'")

        if self.quality_gate_on_submit and status == AssignmentStatus.SUBMITTED:
            await self._check_quality(assignment_id, response)

        async with self._store.transaction() as repo:
            current = await repo.get_assignment(assignment_id, for_update=True)
            if current is None:
                raise NotFoundError(f"Assignment {assignment_id} not found")
            if actor_id is not None:
                await self._authorize(repo, current, status, actor_id)

            if status == AssignmentStatus.ACCEPTED and current.status == AssignmentStatus.ACCEPTED:
                logger.debug("Assignment=%s already accepted; no-op", assignment_id)
                return current
            if current.status == AssignmentStatus.ACCEPTED:
                raise ValidationError(
                    f"Assignment {assignment_id} is accepted and cannot move to '{status.value}'"
                )

            final_response = response if response is not None else current.response
            if status in RESPONSE_REQUIRED_STATUSES and not _has_text(final_response):
                raise ValidationError(
                    f"A non-empty response is required for status '{status.value}'"
                )

            was_counted = current.status in COUNTED_STATUSES
            now_counted = status in COUNTED_STATUSES
            if now_counted and not was_counted:
                await repo.adjust_request_counters(current.expert_request_id, completed_delta=1)
            elif was_counted and not now_counted:
                await repo.adjust_request_counters(current.expert_request_id, completed_delta=-1)

            fields: dict = {"status": status}
            if response is not None:
                fields["response"] = response
            if status == AssignmentStatus.ACCEPTED and credits_awarded is not None:
                fields["credits_awarded"] = credits_awarded
            updated = await repo.update_assignment(assignment_id, **fields)

            if status == AssignmentStatus.ACCEPTED:
                if credits_awarded:
                    await repo.award_credits(current.expert_id, credits_awarded)
                await repo.set_request_status(current.expert_request_id, RequestStatus.COMPLETED)

        logger.info(
            "Assignment=%s %s → %s (request=%s)",
            assignment_id, current.status.value, status.value, current.expert_request_id,
        )

        if status == AssignmentStatus.SUBMITTED:
            self._dispatcher.dispatch(EVALUATE_CONSENSUS, current.expert_request_id)
        elif status == AssignmentStatus.ACCEPTED:
            self._dispatcher.dispatch(BACKFILL_EMBEDDINGS, [assignment_id])

        return updated

    async def _authorize(
        self,
        repo: ExpertRepository,
        assignment: AssignmentRecord,
        status: AssignmentStatus,
        actor_id: str,
    ) -> None:
        if actor_id == assignment.expert_id:
            return
        if status in _REVIEW_STATUSES:
            request = await repo.get_request(assignment.expert_request_id)
            chat = await repo.get_chat(request.chat_id) if request else None
            if chat is not None and chat.user_id == actor_id:
                return
        raise UnauthorizedError(
            f"User {actor_id} may not move assignment {assignment.id} to '{status.value}'"
        )

    async def _check_quality(self, assignment_id: str, response: str | None) -> None:
        async with self._store.transaction() as repo:
            current = await repo.get_assignment(assignment_id)
            if current is None:
                raise NotFoundError(f"Assignment {assignment_id} not found")
            request = await repo.get_request(current.expert_request_id)

        answer = response if response is not None else current.response
        if not _has_text(answer) or request is None:
            # The transaction reports the precise error
            return

        assessment = await self._quality.assess(request.question, answer)
        if not assessment.passes_threshold:
            logger.info(
                "Submission for assignment=%s blocked by quality gate (overall=%s)",
                assignment_id, assessment.overall.score,
            )
            raise ValidationError(
                f"Response did not pass the quality threshold "
                f"(overall {assessment.overall.score:g} < {self._quality.pass_threshold})"
            )
