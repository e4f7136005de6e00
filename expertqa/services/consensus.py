# =============================================================================
# Consensus Engine — Multi-Expert Agreement and Synthesis
# =============================================================================
#
# Runs after every submission (via the dispatcher). Decides whether the
# submitted answers agree and, if they do, closes the request with one
# synthesized answer.
#
# GRAPH TOPOLOGY:
#
#   START ──▶ load ──┬── no submitted answers ───────────────────────▶ END
#                    ├── exactly one answer ──────────┐
#                    └── two or more ──▶ agreement ──┬┼── disagree ──▶ END
#                                                    │▼
#                                                    └▶ synthesize
#                                                          │
#                                       finalize ◀─────────┘
#                                          │
#                                        embed ──▶ END
#
#   load       — request + its submitted assignments (their ids are the
#                only ones finalize may accept)
#   agreement  — agreement-model verdict; provider failure ⇒ disagree
#   synthesize — synthesis-model answer; failure ⇒ None, still finalize
#   finalize   — ONE transaction: accept the loaded assignments still submitted,
#                and only if that flipped something, append the assistant
#                message and mark the request completed
#   embed      — response embeddings for the newly accepted answers;
#                failures logged, never undo finalize
#
# IDEMPOTENCE: with no submitted assignments nothing happens. Two
# evaluations racing on the same request both reach finalize, but the
# accept UPDATE only flips rows for the first; the second appends nothing.
# =============================================================================

from __future__ import annotations

import logging

from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel, Field
from typing_extensions import TypedDict

from expertqa.db.models import AssignmentStatus, RequestStatus
from expertqa.db.store import AssignmentRecord, ExpertRequestRecord, ExpertStore
from expertqa.errors import NotFoundError, ProviderError, StorageError
from expertqa.services.llm import ModelRegistry, ModelRole, generate_structured_object
from expertqa.services.rag import RagCorpusIndex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Provider schemas
# ---------------------------------------------------------------------------


class AgreementVerdict(BaseModel):
    agreement: bool = Field(
        description="Whether the expert responses fundamentally agree on the answer.",
    )
    justification: str = Field(
        description="A brief explanation for the agreement decision.",
    )


class SynthesizedAnswer(BaseModel):
    synthesized_response: str = Field(
        description=(
            "A combined, well-rounded response synthesized from the provided "
            "expert answers."
        ),
    )


_AGREEMENT_PROMPT = """Given the user's question and the following responses from different experts, determine if the experts fundamentally agree on the answer.
Minor differences in phrasing are acceptable, but the core conclusion or information provided should be consistent.

User Question: {question}

{responses}

Please provide a boolean 'agreement' value (true if they agree, false if they significantly disagree) and a brief 'justification'."""

_SYNTHESIS_PROMPT = """Your task is to synthesize expert responses into a helpful answer.

Even if the user's question or expert responses seem nonsensical, incomplete, or unclear, you must provide a synthesized response that:
1. Acknowledges what was provided
2. Creates a coherent answer from whatever information is available
3. Never refuses to generate a response

User Question: {question}

Expert Responses:
{responses}

If the question or responses don't make sense, create a polite, helpful response that works with what's available, without mentioning the quality of the inputs.

Always return a complete response in the 'synthesized_response' field, formatted using markdown where appropriate."""


def _format_responses(responses: list[str]) -> str:
    return "\n\n".join(
        f"Expert Response {i}:\n{r}" for i, r in enumerate(responses, start=1)
    )


# ---------------------------------------------------------------------------
# Graph state
# ---------------------------------------------------------------------------


class ConsensusState(TypedDict, total=False):
    # --- Input ---
    request_id: str

    # --- Set by load ---
    request: ExpertRequestRecord
    assignment_ids: list[str]
    responses: list[str]

    # --- Set by agreement / synthesize ---
    agreement: bool
    justification: str
    synthesized: str | None

    # --- Set by finalize ---
    accepted: list[AssignmentRecord]

    # "idle" | "disagreed" | "completed" | "already-finalized"
    outcome: str


class ConsensusEngine:
    """
    Evaluates a request's submitted answers. Compiles its graph once.

    Provider roles used: expert-consensus-agreement-model,
    expert-consensus-synthesis-model.
    """

    def __init__(self, store: ExpertStore, registry: ModelRegistry, rag: RagCorpusIndex):
        self._store = store
        self._registry = registry
        self._rag = rag
        self._graph = self._build_graph()

    def _build_graph(self):
        builder = StateGraph(ConsensusState)
        builder.add_node("load", self._load_node)
        builder.add_node("agreement", self._agreement_node)
        builder.add_node("synthesize", self._synthesize_node)
        builder.add_node("finalize", self._finalize_node)
        builder.add_node("embed", self._embed_node)

        builder.add_edge(START, "load")
        builder.add_conditional_edges(
            "load",
            self._route_after_load,
            {"idle": END, "single": "synthesize", "compare": "agreement"},
        )
        builder.add_conditional_edges(
            "agreement",
            lambda state: "agree" if state["agreement"] else "disagree",
            {"agree": "synthesize", "disagree": END},
        )
        builder.add_edge("synthesize", "finalize")
        builder.add_edge("finalize", "embed")
        builder.add_edge("embed", END)
        return builder.compile()

    # --- Public API ---------------------------------------------------------

    async def evaluate(self, request_id: str) -> ConsensusState:
        """
        Evaluate `request_id`. Safe to call any number of times.

        Raises:
            NotFoundError: If the request does not exist.
        """
        logger.info("Evaluating consensus for request=%s", request_id)
        result = await self._graph.ainvoke({"request_id": request_id})
        logger.info(
            "Consensus for request=%s: %s", request_id, result.get("outcome", "unknown"),
        )
        return result

    # --- Nodes --------------------------------------------------------------

    async def _load_node(self, state: ConsensusState) -> dict:
        request_id = state["request_id"]
        async with self._store.transaction() as repo:
            request = await repo.get_request(request_id)
            if request is None:
                raise NotFoundError(f"Expert request {request_id} not found")
            submitted = await repo.list_assignments_by_request(
                request_id, status=AssignmentStatus.SUBMITTED,
            )

        judged = [a for a in submitted if a.response and a.response.strip()]
        responses = [a.response for a in judged]
        update: dict = {
            "request": request,
            "assignment_ids": [a.id for a in judged],
            "responses": responses,
        }
        if not responses:
            update["outcome"] = "idle"
        elif len(responses) == 1:
            update["agreement"] = True
            update["justification"] = "Single response"
        return update

    @staticmethod
    def _route_after_load(state: ConsensusState) -> str:
        responses = state.get("responses") or []
        if not responses:
            return "idle"
        if len(responses) == 1:
            return "single"
        return "compare"

    async def _agreement_node(self, state: ConsensusState) -> dict:
        request = state["request"]
        prompt = _AGREEMENT_PROMPT.format(
            question=request.question,
            responses=_format_responses(state["responses"]),
        )
        try:
            verdict = await generate_structured_object(
                self._registry.get(ModelRole.CONSENSUS_AGREEMENT),
                prompt,
                AgreementVerdict,
                max_tokens=500,
            )
        except ProviderError as e:
            logger.warning(
                "Agreement check failed for request=%s, treating as disagreement: %s",
                request.id, e,
            )
            return {
                "agreement": False,
                "justification": "Agreement check failed",
                "outcome": "disagreed",
            }

        logger.info(
            "Agreement for request=%s: %s (%s)",
            request.id, verdict.agreement, verdict.justification,
        )
        update: dict = {
            "agreement": verdict.agreement,
            "justification": verdict.justification,
        }
        if not verdict.agreement:
            update["outcome"] = "disagreed"
        return update

    async def _synthesize_node(self, state: ConsensusState) -> dict:
        request = state["request"]
        prompt = _SYNTHESIS_PROMPT.format(
            question=request.question,
            responses=_format_responses(state["responses"]),
        )
        try:
            result = await generate_structured_object(
                self._registry.get(ModelRole.CONSENSUS_SYNTHESIS),
                prompt,
                SynthesizedAnswer,
                max_tokens=1500,
            )
        except ProviderError as e:
            logger.warning(
                "Synthesis failed for request=%s; completing without a message: %s",
                request.id, e,
            )
            return {"synthesized": None}

        text = result.synthesized_response.strip()
        return {"synthesized": text or None}

    async def _finalize_node(self, state: ConsensusState) -> dict:
        request = state["request"]
        synthesized = state.get("synthesized")

        async with self._store.transaction() as repo:
            accepted = await repo.accept_submitted_assignments(
                request.id, state["assignment_ids"],
            )
            if not accepted:
                return {"accepted": [], "outcome": "already-finalized"}
            if synthesized:
                await repo.append_message(request.chat_id, "assistant", synthesized)
            await repo.set_request_status(request.id, RequestStatus.COMPLETED)

        logger.info(
            "Request=%s completed: %d assignments accepted, message=%s",
            request.id, len(accepted), "yes" if synthesized else "no",
        )
        return {"accepted": accepted, "outcome": "completed"}

    async def _embed_node(self, state: ConsensusState) -> dict:
        for assignment in state.get("accepted") or []:
            try:
                await self._rag.ensure_embedding(assignment.id)
            except (ProviderError, StorageError) as e:
                logger.warning(
                    "Embedding after acceptance failed for assignment=%s: %s",
                    assignment.id, e,
                )
        return {}
