import base64
import json

import httpx
import pytest
from helpers import BASE_URL, RecordingTransport

from kb_agent.agent.credentials import StaticCredentialProvider
from kb_agent.agent.tools import MAKE_API_CALL, ApiExecutor
from kb_agent.config import ApiToolConfig
from kb_agent.errors import (
    ApiCallError,
    ConfigurationError,
    OperationCancelled,
    ToolArgumentError,
)
from kb_agent.runtime import CancellationToken
from kb_agent.types import ToolCallRequest


def _request(**arguments: object) -> ToolCallRequest:
    return ToolCallRequest(name=MAKE_API_CALL, arguments=dict(arguments), call_id="call_1")


def test_injected_credentials_override_model_headers(
    executor: ApiExecutor, transport: RecordingTransport
) -> None:
    result = executor.execute(
        _request(
            method="GET",
            url=f"{BASE_URL}/rest/api/3/search?jql=project='OPS'",
            headers={"authorization": "Bearer stolen", "X-Trace": "abc"},
        )
    )

    assert result.succeeded is True
    assert result.payload == {"total": 7}
    sent = transport.requests[0]
    expected = base64.b64encode(b"bot@example.com:s3cret").decode("ascii")
    assert sent.headers["Authorization"] == f"Basic {expected}"
    assert sent.headers.get_list("authorization") == [f"Basic {expected}"]
    assert sent.headers["Content-Type"] == "application/json"
    assert sent.headers["X-Trace"] == "abc"


def test_relative_url_joined_to_base_and_max_results_sent(
    executor: ApiExecutor, transport: RecordingTransport
) -> None:
    executor.execute(_request(method="GET", url="/rest/api/3/project", headers={}, maxResults=0))

    sent = transport.requests[0]
    assert str(sent.url).startswith(f"{BASE_URL}/rest/api/3/project")
    assert sent.url.params["maxResults"] == "0"


def test_url_outside_base_is_refused_without_network(
    executor: ApiExecutor, transport: RecordingTransport
) -> None:
    result = executor.execute(
        _request(method="GET", url="https://evil.example.com/collect", headers={})
    )

    assert result.succeeded is False
    assert BASE_URL in (result.error_detail or "")
    assert transport.requests == []


def test_base_url_prefix_lookalike_is_refused(
    executor: ApiExecutor, transport: RecordingTransport
) -> None:
    result = executor.execute(
        _request(method="GET", url=f"{BASE_URL}.evil.example.com/rest", headers={})
    )

    assert result.succeeded is False
    assert transport.requests == []


def test_mutating_method_refused_by_default(
    executor: ApiExecutor, transport: RecordingTransport
) -> None:
    result = executor.execute(
        _request(method="DELETE", url=f"{BASE_URL}/rest/api/3/issue/OPS-1", headers={})
    )

    assert result.succeeded is False
    assert "DELETE" in (result.error_detail or "")
    assert transport.requests == []


def test_mutating_method_allowed_when_configured(transport: RecordingTransport) -> None:
    config = ApiToolConfig(
        base_url=BASE_URL, username="bot@example.com", allowed_methods=["GET", "POST"]
    )
    executor = ApiExecutor(
        config,
        StaticCredentialProvider("s3cret"),
        client=httpx.Client(transport=httpx.MockTransport(transport)),
    )

    result = executor.execute(
        _request(
            method="POST",
            url=f"{BASE_URL}/rest/api/3/search",
            headers={},
            data={"jql": "project = OPS"},
        )
    )

    assert result.succeeded is True
    assert transport.requests[0].method == "POST"
    assert json.loads(transport.requests[0].content) == {"jql": "project = OPS"}


def test_non_success_status_raises_with_body(api_config: ApiToolConfig) -> None:
    transport = RecordingTransport(
        lambda request: httpx.Response(400, json={"errorMessages": ["bad jql"]})
    )
    executor = ApiExecutor(
        api_config,
        StaticCredentialProvider("s3cret"),
        client=httpx.Client(transport=httpx.MockTransport(transport)),
    )

    with pytest.raises(ApiCallError) as exc_info:
        executor.execute(_request(method="GET", url="/rest/api/3/search?jql=x", headers={}))

    assert exc_info.value.status_code == 400
    assert "bad jql" in exc_info.value.body


@pytest.mark.parametrize(
    ("url", "headers"),
    [
        ("/rest/api/3/project", {"X-Note": "café"}),
        ("/rest/api/3/search?jql=a\x00b", {}),
    ],
)
def test_request_build_errors_raise_api_call_error(
    executor: ApiExecutor, transport: RecordingTransport, url: str, headers: dict[str, str]
) -> None:
    with pytest.raises(ApiCallError) as exc_info:
        executor.execute(_request(method="GET", url=url, headers=headers))

    assert exc_info.value.status_code is None
    assert transport.requests == []


def test_close_releases_http_client(api_config: ApiToolConfig) -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    executor = ApiExecutor(api_config, StaticCredentialProvider("s3cret"), client=client)

    executor.close()

    assert client.is_closed


def test_transport_error_raises_api_call_error(api_config: ApiToolConfig) -> None:
    def _fail(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    executor = ApiExecutor(
        api_config,
        StaticCredentialProvider("s3cret"),
        client=httpx.Client(transport=httpx.MockTransport(_fail)),
    )

    with pytest.raises(ApiCallError) as exc_info:
        executor.execute(_request(method="GET", url="/rest/api/3/myself", headers={}))

    assert exc_info.value.status_code is None


@pytest.mark.parametrize(
    "arguments",
    [
        {"method": "GET", "url": f"{BASE_URL}/rest/api/3/project"},
        {"method": "PATCH", "url": f"{BASE_URL}/rest/api/3/project", "headers": {}},
        {"method": "GET", "url": "", "headers": {}},
        {"method": "GET", "url": "/x", "headers": {}, "password": "nope"},
    ],
)
def test_invalid_arguments_rejected_without_network(
    executor: ApiExecutor, transport: RecordingTransport, arguments: dict[str, object]
) -> None:
    with pytest.raises(ToolArgumentError):
        executor.execute(_request(**arguments))
    assert transport.requests == []


def test_unknown_tool_name_rejected(executor: ApiExecutor) -> None:
    with pytest.raises(ToolArgumentError):
        executor.execute(ToolCallRequest(name="shell", arguments={}))


def test_cancelled_token_blocks_request(
    executor: ApiExecutor, transport: RecordingTransport
) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelled):
        executor.execute(
            _request(method="GET", url="/rest/api/3/project", headers={}), cancel=token
        )
    assert transport.requests == []


def test_missing_token_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        StaticCredentialProvider("").get_api_token()
