"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class SearchCandidate:
    """One ranked chunk returned by the search engine."""

    document_id: str
    filename: str
    file_url: str
    description: str
    chunk_index: int
    total_chunks: int
    relevance_score: float


@dataclass(frozen=True, slots=True)
class SourceMetadata:
    """Provenance for an assembled context block."""

    filename: str = ""
    file_url: str = ""
    chunks_used: int = 0
    chunks_available: int = 0


@dataclass(frozen=True, slots=True)
class ContextBundle:
    """Token-bounded, citation-tagged context handed to the prompt renderer."""

    output_text: str
    token_count: int
    truncated: bool
    source_metadata: SourceMetadata = field(default_factory=SourceMetadata)

    @classmethod
    def empty(cls) -> "ContextBundle":
        return cls(output_text="", token_count=0, truncated=False)


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """A tool invocation proposed by the model."""

    name: str
    arguments: dict[str, Any]
    call_id: str = ""


@dataclass(frozen=True, slots=True)
class ToolCallResult:
    """Outcome of one tool execution, fed back to the model as data."""

    payload: Any
    succeeded: bool
    error_detail: str | None = None
    status_code: int | None = None


class TurnRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    MODEL = "model"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class Turn:
    """One entry in an agent transcript."""

    role: TurnRole
    content: str
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None


class AgentTranscript:
    """Append-only record of the turns exchanged for a single query."""

    def __init__(self) -> None:
        self._turns: list[Turn] = []

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)


class AgentState(str, Enum):
    AWAITING_MODEL_TURN = "awaiting_model_turn"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class AgentOutcome:
    """Terminal result of an agent loop run."""

    state: AgentState
    text: str = ""
    reason: str | None = None
    error_detail: dict[str, Any] | None = None
    transcript: AgentTranscript = field(default_factory=AgentTranscript)
    tool_results: list[ToolCallResult] = field(default_factory=list)
    tool_traces: list[ToolTrace] = field(default_factory=list)
    model_calls: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state is AgentState.DONE


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
