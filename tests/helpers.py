"""Test doubles shared by the unit and integration suites."""

from collections.abc import Callable
from typing import Any

import httpx
from langchain_core.messages import AIMessage

from kb_agent.types import SearchCandidate

BASE_URL = "https://example.atlassian.net"


class ScriptedChatModel:
    """Chat model double that replays canned replies and records each call."""

    def __init__(self, replies: list[AIMessage | Exception]) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[str, list[Any]]] = []
        self.bound_tools: list[Any] = []

    def bind_tools(self, tools: list[Any]) -> "_BoundModel":
        self.bound_tools = list(tools)
        return _BoundModel(self)

    def invoke(self, messages: list[Any]) -> AIMessage:
        return self._reply("plain", messages)

    def _reply(self, mode: str, messages: list[Any]) -> AIMessage:
        self.calls.append((mode, list(messages)))
        if not self.replies:
            raise AssertionError("model called more often than scripted")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class _BoundModel:
    def __init__(self, model: ScriptedChatModel) -> None:
        self._model = model

    def invoke(self, messages: list[Any]) -> AIMessage:
        return self._model._reply("tools", messages)


def tool_call(args: Any, *, name: str = "make_api_call", call_id: str = "call_1") -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": args, "id": call_id, "type": "tool_call"}],
    )


def candidate(
    description: str,
    *,
    filename: str = "",
    file_url: str = "",
    chunk_index: int = 0,
    total_chunks: int = 1,
    score: float = 1.0,
) -> SearchCandidate:
    return SearchCandidate(
        document_id=f"{filename or 'doc'}-{chunk_index}",
        filename=filename,
        file_url=file_url,
        description=description,
        chunk_index=chunk_index,
        total_chunks=total_chunks,
        relevance_score=score,
    )


class RecordingTransport:
    """Collects outgoing requests and answers each with `responder`."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)
