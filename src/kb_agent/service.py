"""Caller-facing operations: context retrieval, tool answers and routing."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from langchain_core.messages import HumanMessage, SystemMessage

from kb_agent.agent.loop import AgentLoop
from kb_agent.agent.prompts import build_grounded_prompt
from kb_agent.config import ContextConfig
from kb_agent.errors import KnowledgeAgentError, ModelCallError
from kb_agent.obs.tracing import Timer, TraceStore
from kb_agent.retrieval.assembler import ContextAssembler
from kb_agent.retrieval.embedding import EmbeddingClient
from kb_agent.retrieval.search import HybridSearchClient
from kb_agent.retrieval.tokenizer import Tokenizer
from kb_agent.runtime import CancellationToken, check_cancelled
from kb_agent.types import AgentOutcome, AgentState, ContextBundle

logger = logging.getLogger(__name__)

Route = Literal["tools", "retrieval"]

FALLBACK_MESSAGE = "I'm sorry, I couldn't process your message at this time."
TOOL_FALLBACK_MESSAGE = (
    "I encountered an error fetching the Jira information. Please try again later."
)

_TOOL_ROUTE_PATTERN = re.compile(r"\bjira\b", flags=re.IGNORECASE)


@dataclass(slots=True)
class Answer:
    """Answer returned to the transport layer."""

    text: str
    route: Route
    succeeded: bool
    reason: str | None = None
    context: ContextBundle | None = None
    details: dict[str, Any] = field(default_factory=dict)


class KnowledgeService:
    """Composes retrieval and the tool agent behind the caller contract.

    All collaborators are injected; the service holds no per-query state.
    """

    def __init__(
        self,
        *,
        embedding_client: EmbeddingClient,
        search_client: HybridSearchClient,
        assembler: ContextAssembler,
        tokenizer: Tokenizer,
        trace_store: TraceStore,
        llm: Any | None = None,
        agent_loop: AgentLoop | None = None,
        context_config: ContextConfig | None = None,
        closeables: list[Any] | None = None,
    ) -> None:
        self.embedding_client = embedding_client
        self.search_client = search_client
        self.assembler = assembler
        self.tokenizer = tokenizer
        self.trace_store = trace_store
        self.llm = llm
        self.agent_loop = agent_loop
        self.context_config = context_config or ContextConfig()
        self._closeables = list(closeables or [])

    def close(self) -> None:
        """Release clients owned by this service (HTTP connection pools)."""
        for resource in self._closeables:
            resource.close()

    def route(self, query: str) -> Route:
        if self.agent_loop is not None and _TOOL_ROUTE_PATTERN.search(query):
            return "tools"
        return "retrieval"

    def get_context(
        self,
        query: str,
        max_tokens: int | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> ContextBundle:
        """Embed, search and assemble. Errors propagate to the caller."""
        budget = self.context_config.max_tokens if max_tokens is None else max_tokens
        if not query or not query.strip():
            return ContextBundle.empty()

        metrics: dict[str, Any] = {"query_length": len(query), "max_tokens": budget}
        timer = Timer()
        try:
            with timer:
                vector = self.embedding_client.embed(query, cancel=cancel)
                candidates = self.search_client.search(query, vector, cancel=cancel)
                check_cancelled(cancel, "context assembly")
                bundle = self.assembler.assemble(candidates, self.tokenizer, budget)
        except KnowledgeAgentError as exc:
            self.trace_store.record(
                "get_context",
                success=False,
                latency_ms=timer.elapsed_ms,
                metrics=metrics,
                error_code=exc.code,
            )
            raise

        metrics.update(
            candidate_count=len(candidates),
            chunks_used=bundle.source_metadata.chunks_used,
            chunks_available=bundle.source_metadata.chunks_available,
            output_tokens=bundle.token_count,
            truncated=bundle.truncated,
        )
        self.trace_store.record(
            "get_context", success=True, latency_ms=timer.elapsed_ms, metrics=metrics
        )
        return bundle

    def answer_via_tools(
        self, query: str, *, cancel: CancellationToken | None = None
    ) -> AgentOutcome:
        if self.agent_loop is None:
            return AgentOutcome(
                state=AgentState.FAILED,
                reason="tools_unavailable",
                error_detail={"message": "No API tool is configured"},
            )
        with Timer() as timer:
            outcome = self.agent_loop.run(query, cancel=cancel)
        self.trace_store.record(
            "answer_via_tools",
            success=outcome.succeeded,
            latency_ms=timer.elapsed_ms,
            metrics={
                "query_length": len(query),
                "model_calls": outcome.model_calls,
                "tool_calls": len(outcome.tool_results),
            },
            error_code=outcome.reason,
            tool_traces=outcome.tool_traces,
        )
        return outcome

    def answer(self, query: str, *, cancel: CancellationToken | None = None) -> Answer:
        """Route a query and always return user-facing text."""
        route = self.route(query)
        if route == "tools":
            outcome = self.answer_via_tools(query, cancel=cancel)
            if outcome.succeeded:
                return Answer(text=outcome.text, route=route, succeeded=True)
            return Answer(
                text=TOOL_FALLBACK_MESSAGE,
                route=route,
                succeeded=False,
                reason=outcome.reason,
                details=dict(outcome.error_detail or {}),
            )

        try:
            bundle = self.get_context(query, cancel=cancel)
            text = self._complete_with_context(query, bundle, cancel)
        except KnowledgeAgentError as exc:
            logger.warning("retrieval answer failed", extra={"reason": exc.code})
            return Answer(
                text=FALLBACK_MESSAGE,
                route=route,
                succeeded=False,
                reason=exc.code,
                details={"message": exc.message},
            )
        return Answer(text=text, route=route, succeeded=True, context=bundle)

    def _complete_with_context(
        self,
        query: str,
        bundle: ContextBundle,
        cancel: CancellationToken | None,
    ) -> str:
        if self.llm is None:
            # No chat model configured: hand back the assembled context itself.
            return bundle.output_text or "No matching documents were found."

        check_cancelled(cancel, "grounded completion")
        messages = [
            SystemMessage(build_grounded_prompt(bundle.output_text)),
            HumanMessage(query),
        ]
        try:
            response = self.llm.invoke(messages)
        except Exception as exc:
            raise ModelCallError(f"Chat completion failed: {exc}") from exc
        content = str(getattr(response, "content", "") or "")
        if not content.strip():
            raise ModelCallError("Chat completion returned no content")
        return content
