"""Knowledge-base retrieval and API tool agent."""

from .config import AgentConfig, ApiToolConfig, ContextConfig, RetrievalConfig
from .errors import KnowledgeAgentError

__all__ = [
    "AgentConfig",
    "ApiToolConfig",
    "ContextConfig",
    "KnowledgeAgentError",
    "RetrievalConfig",
]
