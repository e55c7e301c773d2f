import httpx
import pytest
from helpers import BASE_URL, RecordingTransport, ScriptedChatModel, tool_call
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from kb_agent.agent.credentials import StaticCredentialProvider
from kb_agent.agent.loop import AgentLoop
from kb_agent.agent.registry import ToolRegistry
from kb_agent.agent.tools import ApiExecutor, register_api_tool
from kb_agent.config import ApiToolConfig, ContextConfig, RetrievalConfig
from kb_agent.errors import EmbeddingError
from kb_agent.obs.tracing import TraceStore
from kb_agent.retrieval.assembler import ContextAssembler
from kb_agent.retrieval.embedding import EmbeddingClient, HashingEmbeddings
from kb_agent.retrieval.memory_index import InMemoryHybridIndex
from kb_agent.retrieval.search import HybridSearchClient
from kb_agent.retrieval.tokenizer import RegexTokenizer
from kb_agent.service import FALLBACK_MESSAGE, TOOL_FALLBACK_MESSAGE, KnowledgeService

DOCUMENTS = [
    {
        "id": "vpn-0",
        "description": "Install the VPN client and sign in with your corporate account.",
        "filename": "vpn-guide.pdf",
        "fileUrl": "https://sharepoint.example/vpn-guide.pdf",
        "chunkindex": 0,
        "totalChunks": 2,
    },
    {
        "id": "vpn-1",
        "description": "If the VPN client fails to connect, restart it and retry.",
        "filename": "vpn-guide.pdf",
        "fileUrl": "https://sharepoint.example/vpn-guide.pdf",
        "chunkindex": 1,
        "totalChunks": 2,
    },
    {
        "id": "holiday-0",
        "description": "Holiday requests are approved by your line manager.",
        "filename": "handbook.docx",
        "fileUrl": "https://sharepoint.example/handbook.docx",
        "chunkindex": 0,
        "totalChunks": 9,
    },
]


class _CountingEmbeddings(HashingEmbeddings):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        return super().embed_query(text)


def _index(embeddings: HashingEmbeddings) -> InMemoryHybridIndex:
    index = InMemoryHybridIndex(RetrievalConfig())
    index.upsert(
        DOCUMENTS,
        embeddings.embed_documents([doc["description"] for doc in DOCUMENTS]),
    )
    return index


def _service(
    *,
    llm: ScriptedChatModel | None = None,
    agent_loop: AgentLoop | None = None,
    embeddings: HashingEmbeddings | None = None,
) -> KnowledgeService:
    embeddings = embeddings or HashingEmbeddings()
    return KnowledgeService(
        embedding_client=EmbeddingClient(embeddings, deployment_name="hashing"),
        search_client=HybridSearchClient(_index(embeddings), RetrievalConfig()),
        assembler=ContextAssembler(),
        tokenizer=RegexTokenizer(),
        trace_store=TraceStore(),
        llm=llm,
        agent_loop=agent_loop,
        context_config=ContextConfig(max_tokens=400),
    )


def _agent(llm: ScriptedChatModel, transport: RecordingTransport) -> AgentLoop:
    api_config = ApiToolConfig(base_url=BASE_URL, username="bot@example.com")
    registry = ToolRegistry()
    register_api_tool(
        registry,
        ApiExecutor(
            api_config,
            StaticCredentialProvider("s3cret"),
            client=httpx.Client(transport=httpx.MockTransport(transport)),
        ),
    )
    return AgentLoop(llm=llm, tool_registry=registry, api_config=api_config)


def test_get_context_ranks_relevant_chunks_first() -> None:
    service = _service()

    bundle = service.get_context("VPN client fails to connect")

    assert bundle.source_metadata.filename == "vpn-guide.pdf"
    assert bundle.source_metadata.file_url == "https://sharepoint.example/vpn-guide.pdf"
    assert "<context>If the VPN client fails to connect" in bundle.output_text
    assert bundle.token_count <= 400
    record = service.trace_store.list_recent(limit=1)[0]
    assert record.operation == "get_context"
    assert record.success is True
    assert record.metrics["chunks_used"] == bundle.source_metadata.chunks_used


@pytest.mark.parametrize("query", ["", "   "])
def test_blank_query_returns_empty_bundle_without_embedding(query: str) -> None:
    embeddings = _CountingEmbeddings()
    service = _service(embeddings=embeddings)
    embeddings.calls = 0

    bundle = service.get_context(query)

    assert bundle.output_text == ""
    assert bundle.truncated is False
    assert embeddings.calls == 0


def test_retrieval_errors_propagate_and_are_traced() -> None:
    class _Broken(HashingEmbeddings):
        def embed_query(self, text: str) -> list[float]:
            raise TimeoutError("embedding endpoint timed out")

    service = _service(embeddings=_Broken())

    with pytest.raises(EmbeddingError):
        service.get_context("vpn")

    record = service.trace_store.list_recent(limit=1)[0]
    assert record.success is False
    assert record.error_code == "embedding_error"


def test_answer_renders_grounded_prompt() -> None:
    llm = ScriptedChatModel([AIMessage(content="Restart the VPN client and retry.")])
    service = _service(llm=llm)

    answer = service.answer("VPN client fails to connect")

    assert answer.succeeded
    assert answer.route == "retrieval"
    assert answer.text == "Restart the VPN client and retry."
    system, human = llm.calls[0][1]
    assert isinstance(system, SystemMessage)
    assert isinstance(human, HumanMessage)
    assert "<context>" in system.content
    assert human.content == "VPN client fails to connect"


def test_answer_falls_back_when_model_fails() -> None:
    service = _service(llm=ScriptedChatModel([RuntimeError("quota exceeded")]))

    answer = service.answer("vpn")

    assert answer.succeeded is False
    assert answer.text == FALLBACK_MESSAGE
    assert answer.reason == "model_call_error"


def test_jira_queries_route_to_the_tool_agent() -> None:
    transport = RecordingTransport(lambda request: httpx.Response(200, json={"total": 3}))
    llm = ScriptedChatModel(
        [
            tool_call(
                {
                    "method": "GET",
                    "url": f"{BASE_URL}/rest/api/3/search?jql=project='OPS'&maxResults=0",
                    "headers": {},
                }
            ),
            AIMessage(content="OPS has 3 open issues."),
        ]
    )
    service = _service(llm=llm, agent_loop=_agent(llm, transport))

    assert service.route("How many Jira issues are open?") == "tools"
    assert service.route("How do I set up the VPN?") == "retrieval"

    answer = service.answer("How many Jira issues are open in OPS?")

    assert answer.route == "tools"
    assert answer.text == "OPS has 3 open issues."
    assert len(transport.requests) == 1
    record = service.trace_store.list_recent(limit=1)[0]
    assert record.operation == "answer_via_tools"
    assert record.tool_traces[0].input_payload["method"] == "GET"


def test_tool_failure_gives_fallback_answer() -> None:
    transport = RecordingTransport(lambda request: httpx.Response(200, json={}))
    llm = ScriptedChatModel([tool_call({"method": "GET"})])
    service = _service(llm=llm, agent_loop=_agent(llm, transport))

    answer = service.answer("list jira projects")

    assert answer.succeeded is False
    assert answer.text == TOOL_FALLBACK_MESSAGE
    assert answer.reason == "tool_argument_error"
    assert transport.requests == []


def test_jira_queries_use_retrieval_when_no_tool_is_configured() -> None:
    assert _service().route("jira issues") == "retrieval"
    outcome = _service().answer_via_tools("jira issues")
    assert outcome.succeeded is False
    assert outcome.reason == "tools_unavailable"
