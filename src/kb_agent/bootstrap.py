"""Composition root: builds every client from settings and wires the service."""

from __future__ import annotations

import logging
from typing import Any

from kb_agent.agent.credentials import (
    CredentialProvider,
    KeyVaultCredentialProvider,
    StaticCredentialProvider,
)
from kb_agent.agent.loop import AgentLoop
from kb_agent.agent.registry import ToolRegistry
from kb_agent.agent.tools import ApiExecutor, register_api_tool
from kb_agent.errors import ConfigurationError
from kb_agent.obs.tracing import TraceStore
from kb_agent.retrieval.assembler import ContextAssembler
from kb_agent.retrieval.embedding import (
    EmbeddingClient,
    HashingEmbeddings,
    create_azure_embeddings,
)
from kb_agent.retrieval.memory_index import InMemoryHybridIndex
from kb_agent.retrieval.search import HybridSearchClient, create_azure_search_backend
from kb_agent.retrieval.tokenizer import TiktokenTokenizer
from kb_agent.service import KnowledgeService
from kb_agent.settings import Settings

logger = logging.getLogger(__name__)


def create_chat_model(settings: Settings, *, temperature: float) -> Any:
    if not settings.llm_configured:
        return None

    from langchain_openai import AzureChatOpenAI

    return AzureChatOpenAI(
        azure_endpoint=settings.azure_openai_endpoint,
        api_key=settings.azure_openai_api_key,
        azure_deployment=settings.azure_openai_deployment_name,
        api_version=settings.azure_openai_api_version,
        temperature=temperature,
    )


def create_credential_provider(settings: Settings) -> CredentialProvider:
    if settings.vault_url:
        return KeyVaultCredentialProvider(settings.vault_url, settings.jira_token_secret_name)
    if not settings.secret_jira_api_token:
        raise ConfigurationError(
            "SECRET_JIRA_API_TOKEN or VAULT_URL must be set to enable the API tool"
        )
    return StaticCredentialProvider(settings.secret_jira_api_token)


def build_retrieval(settings: Settings) -> tuple[EmbeddingClient, HybridSearchClient]:
    retrieval_config = settings.retrieval_config()
    if settings.search_configured:
        embeddings = create_azure_embeddings(
            endpoint=settings.azure_openai_endpoint or "",
            api_key=settings.azure_openai_api_key or "",
            deployment=settings.azure_openai_embedding_deployment_name or "",
            api_version=settings.azure_openai_api_version,
        )
        backend = create_azure_search_backend(
            endpoint=settings.azure_search_endpoint or "",
            index_name=retrieval_config.index_name,
            api_key=settings.azure_search_key or "",
        )
        deployment = settings.azure_openai_embedding_deployment_name or ""
    else:
        logger.warning("search service not configured; using an empty in-memory index")
        embeddings = HashingEmbeddings()
        backend = InMemoryHybridIndex(retrieval_config)
        deployment = "hashing"

    return (
        EmbeddingClient(embeddings, deployment_name=deployment),
        HybridSearchClient(backend, retrieval_config),
    )


def build_agent_loop(settings: Settings, llm: Any) -> tuple[AgentLoop, ApiExecutor] | None:
    """Return the tool loop and the executor whose HTTP client it owns."""
    if llm is None:
        return None
    try:
        api_config = settings.api_tool_config()
        credentials = create_credential_provider(settings)
    except ConfigurationError as exc:
        logger.warning("API tool disabled", extra={"reason": exc.message, "details": exc.details})
        return None

    agent_config = settings.agent_config()
    registry = ToolRegistry(preview_chars=agent_config.tool_result_preview_chars)
    executor = ApiExecutor(api_config, credentials)
    register_api_tool(registry, executor)
    loop = AgentLoop(
        llm=llm,
        tool_registry=registry,
        api_config=api_config,
        config=agent_config,
    )
    return loop, executor


def build_service(
    settings: Settings,
    *,
    trace_store: TraceStore | None = None,
) -> KnowledgeService:
    context_config = settings.context_config()
    llm = create_chat_model(settings, temperature=settings.agent_config().temperature)
    embedding_client, search_client = build_retrieval(settings)
    tools = build_agent_loop(settings, llm)
    agent_loop, executor = tools if tools is not None else (None, None)
    return KnowledgeService(
        embedding_client=embedding_client,
        search_client=search_client,
        assembler=ContextAssembler(),
        tokenizer=TiktokenTokenizer(context_config.encoding_model),
        trace_store=trace_store or TraceStore(),
        llm=llm,
        agent_loop=agent_loop,
        context_config=context_config,
        closeables=[executor] if executor is not None else None,
    )
