import httpx
import pytest
from helpers import BASE_URL, RecordingTransport

from kb_agent.agent.credentials import StaticCredentialProvider
from kb_agent.agent.tools import ApiExecutor
from kb_agent.config import ApiToolConfig
from kb_agent.retrieval.tokenizer import RegexTokenizer


@pytest.fixture()
def tokenizer() -> RegexTokenizer:
    return RegexTokenizer()


@pytest.fixture()
def api_config() -> ApiToolConfig:
    return ApiToolConfig(base_url=BASE_URL, username="bot@example.com")


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport(lambda request: httpx.Response(200, json={"total": 7}))


@pytest.fixture()
def executor(api_config: ApiToolConfig, transport: RecordingTransport) -> ApiExecutor:
    client = httpx.Client(transport=httpx.MockTransport(transport))
    return ApiExecutor(api_config, StaticCredentialProvider("s3cret"), client=client)
