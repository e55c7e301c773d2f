"""Configuration models for retrieval, context assembly and the tool agent."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]


class RetrievalConfig(BaseModel):
    """Configures the hybrid search request sent to the index."""

    index_name: str = "sharepointblobindx"
    top_k: int = Field(default=48, ge=1, le=1000)
    vector_field: str = "descriptionVector"
    search_fields: list[str] = Field(default_factory=lambda: ["description", "filename"])
    select_fields: list[str] = Field(
        default_factory=lambda: [
            "description",
            "chunkindex",
            "filename",
            "fileUrl",
            "totalChunks",
        ]
    )
    # Only meaningful together with a filter expression, which is never sent.
    vector_filter_mode: str | None = None
    rrf_k: int = Field(default=60, ge=1)


class ContextConfig(BaseModel):
    """Configures token budgeting for assembled context."""

    max_tokens: int = Field(default=2000, ge=1)
    encoding_model: str = "gpt-4o"


class AgentConfig(BaseModel):
    """Configures the bounded tool-calling loop."""

    max_tool_round_trips: int = Field(default=1, ge=1, le=8)
    synthesize_after_tools: bool = True
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    tool_result_preview_chars: int = Field(default=320, ge=16)
    max_tool_result_chars: int = Field(default=24000, ge=256)


class ApiToolConfig(BaseModel):
    """Configures the `make_api_call` tool and its target API."""

    base_url: str
    username: str
    allowed_methods: list[HttpMethod] = Field(default_factory=lambda: ["GET"])
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_error_body_chars: int = Field(default=2000, ge=0)
