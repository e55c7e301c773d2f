"""Error taxonomy for the retrieval pipeline and the tool agent.

Every error carries a stable `code` that callers use as the failure reason
and a `details` mapping preserved for diagnostics.
"""

from __future__ import annotations

from typing import Any


class KnowledgeAgentError(Exception):
    """Base class for all errors raised by this package."""

    code = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(KnowledgeAgentError):
    code = "configuration_error"


class EmbeddingError(KnowledgeAgentError):
    code = "embedding_error"


class SearchError(KnowledgeAgentError):
    code = "search_error"


class AssemblyError(KnowledgeAgentError):
    code = "assembly_error"


class ToolArgumentError(KnowledgeAgentError):
    code = "tool_argument_error"


class ApiCallError(KnowledgeAgentError):
    """Non-2xx response (or transport failure) from the external API."""

    code = "api_call_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        merged = {"status_code": status_code, "body": body}
        merged.update(details or {})
        super().__init__(message, merged)


class ModelCallError(KnowledgeAgentError):
    code = "model_call_error"


class AgentLoopExhausted(KnowledgeAgentError):
    code = "agent_loop_exhausted"


class OperationCancelled(KnowledgeAgentError):
    code = "operation_cancelled"
