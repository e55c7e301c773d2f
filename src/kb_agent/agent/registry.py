"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import json
from collections.abc import Callable
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kb_agent.errors import ToolArgumentError
from kb_agent.runtime import CancellationToken
from kb_agent.types import ToolCallResult, ToolTrace

ToolHandler = Callable[[BaseModel, CancellationToken | None], ToolCallResult]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: ToolHandler
    tags: list[str] = Field(default_factory=list)

    def validate_payload(self, payload: Any) -> BaseModel:
        if not isinstance(payload, dict):
            raise ToolArgumentError(
                f"Arguments for {self.name} must be an object",
                details={"tool": self.name, "received_type": type(payload).__name__},
            )
        try:
            return self.args_schema.model_validate(payload)
        except ValidationError as exc:
            raise ToolArgumentError(
                f"Invalid arguments for {self.name}",
                details={"tool": self.name, "errors": exc.errors(include_url=False)},
            ) from exc

    def invoke(
        self, payload: dict[str, Any], cancel: CancellationToken | None = None
    ) -> ToolCallResult:
        return self.handler(self.validate_payload(payload), cancel)


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects."""

    def __init__(self, *, preview_chars: int = 320) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._preview_chars = preview_chars

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise ToolArgumentError(
                f"Unknown tool: {name}",
                details={"tool": name, "known_tools": sorted(self._tools)},
            )
        return spec

    def validate(self, name: str, payload: Any) -> BaseModel:
        """Check a proposed call without running it."""
        return self.get(name).validate_payload(payload)

    def execute(
        self,
        name: str,
        payload: dict[str, Any],
        cancel: CancellationToken | None = None,
        *,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> ToolCallResult:
        """Validate and run one tool call.

        `observer` is called once per execution, also when the handler raises,
        so callers can collect per-request traces without shared state.
        """
        return self._execute_spec(self.get(name), payload, cancel, observer)

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec),
                )
            )
        return tools

    def _build_function(self, spec: ToolSpec) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return render_tool_payload(self._execute_spec(spec, kwargs, None))

        return _callable

    def _execute_spec(
        self,
        spec: ToolSpec,
        payload: dict[str, Any],
        cancel: CancellationToken | None,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> ToolCallResult:
        start = perf_counter()
        try:
            output = spec.invoke(payload, cancel)
        except Exception as exc:
            if observer is not None:
                observer(self._trace(spec, payload, f"ERROR: {exc}", start))
            raise

        if observer is not None:
            observer(self._trace(spec, payload, render_tool_payload(output), start))
        return output

    def _trace(
        self, spec: ToolSpec, payload: dict[str, Any], output: str, start: float
    ) -> ToolTrace:
        return ToolTrace(
            name=spec.name,
            input_payload=_redact_headers(payload),
            output_preview=output[: self._preview_chars],
            latency_ms=(perf_counter() - start) * 1000.0,
        )


def render_tool_payload(result: ToolCallResult, max_chars: int | None = None) -> str:
    """Serialize a tool result the way the model receives it."""
    if result.succeeded:
        body: Any = result.payload
    else:
        body = {
            "error": result.error_detail,
            "status_code": result.status_code,
            "response": result.payload,
        }
    text = body if isinstance(body, str) else json.dumps(body, default=str, ensure_ascii=False)
    if max_chars is not None and len(text) > max_chars:
        return text[: max_chars - 3] + "..."
    return text


def _redact_headers(payload: dict[str, Any]) -> dict[str, Any]:
    headers = payload.get("headers")
    if not isinstance(headers, dict):
        return dict(payload)
    masked = {
        key: "***REDACTED***" if key.lower() == "authorization" else value
        for key, value in headers.items()
    }
    return {**payload, "headers": masked}
