"""Bounded function-calling loop between a chat model and the API tool."""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from kb_agent.agent.prompts import build_synthesis_prompt, build_system_prompt
from kb_agent.agent.registry import ToolRegistry, render_tool_payload
from kb_agent.config import AgentConfig, ApiToolConfig
from kb_agent.errors import (
    AgentLoopExhausted,
    ApiCallError,
    KnowledgeAgentError,
    ModelCallError,
    ToolArgumentError,
)
from kb_agent.runtime import CancellationToken, check_cancelled
from kb_agent.types import (
    AgentOutcome,
    AgentState,
    AgentTranscript,
    ToolCallRequest,
    ToolCallResult,
    Turn,
    TurnRole,
)

logger = logging.getLogger(__name__)


class AgentLoop:
    """Drives one query through model turns and tool executions.

    States move AWAITING_MODEL_TURN -> EXECUTING_TOOL -> AWAITING_MODEL_TURN
    until the model answers (DONE) or something fails (FAILED). After
    `config.max_tool_round_trips` tool executions the loop stops offering tools:
    with `synthesize_after_tools` a final model call is made without the tool
    schema and must produce the answer; otherwise one more tool request fails
    the run with `AgentLoopExhausted`. Either way the number of model calls is
    at most `max_tool_round_trips + 1`.

    Tool errors (non-2xx responses, policy refusals) are handed back to the
    model as tool results. Malformed tool arguments fail the run before any
    request is sent.

    The loop keeps no per-query state on the instance; one loop can serve
    concurrent queries.
    """

    def __init__(
        self,
        *,
        llm: Any,
        tool_registry: ToolRegistry,
        api_config: ApiToolConfig,
        config: AgentConfig | None = None,
    ) -> None:
        self.llm = llm
        self.tool_registry = tool_registry
        self.api_config = api_config
        self.config = config or AgentConfig()
        self.tool_model = llm.bind_tools(tool_registry.as_langchain_tools())
        self.system_prompt = build_system_prompt(
            base_url=api_config.base_url,
            username=api_config.username,
            allowed_methods=list(api_config.allowed_methods),
        )

    def run(self, query: str, *, cancel: CancellationToken | None = None) -> AgentOutcome:
        transcript = AgentTranscript()
        outcome = AgentOutcome(state=AgentState.AWAITING_MODEL_TURN, transcript=transcript)
        messages: list[BaseMessage] = [SystemMessage(self.system_prompt), HumanMessage(query)]
        transcript.append(Turn(TurnRole.SYSTEM, self.system_prompt))
        transcript.append(Turn(TurnRole.USER, query))

        round_trips = 0
        try:
            while True:
                limit_reached = round_trips >= self.config.max_tool_round_trips
                if limit_reached and self.config.synthesize_after_tools:
                    return self._synthesize(query, outcome, cancel)

                outcome.state = AgentState.AWAITING_MODEL_TURN
                response = self._invoke(self.tool_model, messages, outcome, cancel)
                requests = _tool_requests(response)
                content = _message_text(response)

                if not requests:
                    return self._finish(outcome, content)

                if round_trips >= self.config.max_tool_round_trips:
                    raise AgentLoopExhausted(
                        "Model kept requesting tools after the round-trip limit",
                        details={"round_trips": round_trips, "tools": [r.name for r in requests]},
                    )

                transcript.append(Turn(TurnRole.MODEL, content, tool_calls=tuple(requests)))
                messages.append(response)

                outcome.state = AgentState.EXECUTING_TOOL
                # Reject the whole turn before any request goes out.
                for request in requests:
                    self.tool_registry.validate(request.name, request.arguments)
                for request in requests:
                    result = self._execute(request, outcome, cancel)
                    rendered = render_tool_payload(result, self.config.max_tool_result_chars)
                    messages.append(ToolMessage(content=rendered, tool_call_id=request.call_id))
                    transcript.append(
                        Turn(TurnRole.TOOL, rendered, tool_call_id=request.call_id)
                    )
                round_trips += 1
        except KnowledgeAgentError as exc:
            return self._fail(outcome, exc)

    def _execute(
        self,
        request: ToolCallRequest,
        outcome: AgentOutcome,
        cancel: CancellationToken | None,
    ) -> ToolCallResult:
        try:
            result = self.tool_registry.execute(
                request.name,
                request.arguments,
                cancel,
                observer=outcome.tool_traces.append,
            )
        except ApiCallError as exc:
            logger.warning(
                "tool call failed; returning error to the model",
                extra={"tool": request.name, "status_code": exc.status_code},
            )
            result = ToolCallResult(
                payload=exc.body or None,
                succeeded=False,
                error_detail=exc.message,
                status_code=exc.status_code,
            )
        outcome.tool_results.append(result)
        return result

    def _synthesize(
        self,
        query: str,
        outcome: AgentOutcome,
        cancel: CancellationToken | None,
    ) -> AgentOutcome:
        prompt = build_synthesis_prompt(
            query=query,
            api_results=[
                render_tool_payload(result, self.config.max_tool_result_chars)
                for result in outcome.tool_results
            ],
            base_url=self.api_config.base_url,
        )
        outcome.transcript.append(Turn(TurnRole.SYSTEM, prompt))
        outcome.state = AgentState.AWAITING_MODEL_TURN
        response = self._invoke(self.llm, [SystemMessage(prompt)], outcome, cancel)
        if _tool_requests(response):
            raise AgentLoopExhausted(
                "Synthesis call proposed another tool call",
                details={"model_calls": outcome.model_calls},
            )
        return self._finish(outcome, _message_text(response))

    def _invoke(
        self,
        model: Any,
        messages: list[BaseMessage],
        outcome: AgentOutcome,
        cancel: CancellationToken | None,
    ) -> AIMessage:
        check_cancelled(cancel, "model call")
        outcome.model_calls += 1
        try:
            response = model.invoke(messages)
        except KnowledgeAgentError:
            raise
        except Exception as exc:
            raise ModelCallError(
                f"Chat completion failed: {exc}",
                details={"model_calls": outcome.model_calls},
            ) from exc
        return response

    def _finish(self, outcome: AgentOutcome, content: str) -> AgentOutcome:
        if not content.strip():
            raise AgentLoopExhausted(
                "Model returned neither content nor a tool call",
                details={"model_calls": outcome.model_calls},
            )
        outcome.transcript.append(Turn(TurnRole.MODEL, content))
        outcome.state = AgentState.DONE
        outcome.text = content
        logger.info(
            "agent loop finished",
            extra={
                "model_calls": outcome.model_calls,
                "tool_calls": len(outcome.tool_results),
                "answer_length": len(content),
            },
        )
        return outcome

    def _fail(self, outcome: AgentOutcome, exc: KnowledgeAgentError) -> AgentOutcome:
        outcome.state = AgentState.FAILED
        outcome.reason = exc.code
        outcome.error_detail = {"message": exc.message, **exc.details}
        logger.warning(
            "agent loop failed",
            extra={
                "reason": exc.code,
                "model_calls": outcome.model_calls,
                "tool_calls": len(outcome.tool_results),
            },
        )
        return outcome


def _tool_requests(response: Any) -> list[ToolCallRequest]:
    invalid = getattr(response, "invalid_tool_calls", None) or []
    if invalid:
        first = invalid[0]
        raise ToolArgumentError(
            f"Model proposed a malformed call to {first.get('name') or 'unknown tool'}",
            details={"raw_arguments": first.get("args"), "error": first.get("error")},
        )
    return [
        ToolCallRequest(
            name=str(call.get("name") or ""),
            arguments=call.get("args"),
            call_id=str(call.get("id") or f"call_{index}"),
        )
        for index, call in enumerate(getattr(response, "tool_calls", None) or [])
    ]


def _message_text(response: Any) -> str:
    content = getattr(response, "content", "")
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return " ".join(parts).strip()
    return str(content or "")
