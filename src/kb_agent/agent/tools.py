"""The `make_api_call` tool: argument schema and credential-injecting executor."""

from __future__ import annotations

import base64
import logging
from typing import Any, cast

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kb_agent.agent.credentials import CredentialProvider
from kb_agent.agent.registry import ToolRegistry, ToolSpec
from kb_agent.config import ApiToolConfig, HttpMethod
from kb_agent.errors import ApiCallError, ToolArgumentError
from kb_agent.runtime import CancellationToken, check_cancelled
from kb_agent.types import ToolCallRequest, ToolCallResult

logger = logging.getLogger(__name__)

MAKE_API_CALL = "make_api_call"


class MakeApiCallInput(BaseModel):
    """Make a call to the API."""

    model_config = ConfigDict(extra="forbid")

    method: HttpMethod = Field(description="The HTTP method for the API call")
    url: str = Field(
        min_length=1,
        description=(
            "The full URL for the API call, including the base URL, endpoint, "
            "and encoded query parameters"
        ),
    )
    headers: dict[str, Any] = Field(
        description="Headers for the API call. Always include this, even if empty."
    )
    data: dict[str, Any] | None = Field(
        default=None, description="Request body for POST, PUT, or DELETE requests"
    )
    maxResults: int | None = Field(
        default=None,
        ge=0,
        description="Maximum number of results to return (optional, for search queries)",
    )


class ApiExecutor:
    """Executes `make_api_call` against the configured API.

    Credentials never come from the model: the executor resolves the token
    itself and its auth headers replace any the model supplied. Calls are only
    sent to URLs under `config.base_url` and with methods listed in
    `config.allowed_methods`; anything else is refused without network traffic
    and reported back as a failed result.
    """

    def __init__(
        self,
        config: ApiToolConfig,
        credentials: CredentialProvider,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self._client = client or httpx.Client()

    def close(self) -> None:
        self._client.close()

    def execute(
        self, request: ToolCallRequest, *, cancel: CancellationToken | None = None
    ) -> ToolCallResult:
        if request.name != MAKE_API_CALL:
            raise ToolArgumentError(
                f"Unknown tool: {request.name}", details={"tool": request.name}
            )
        try:
            args = MakeApiCallInput.model_validate(request.arguments)
        except ValidationError as exc:
            raise ToolArgumentError(
                f"Invalid arguments for {MAKE_API_CALL}",
                details={"tool": MAKE_API_CALL, "errors": exc.errors(include_url=False)},
            ) from exc
        return self.call(args, cancel)

    def call(
        self, args: MakeApiCallInput, cancel: CancellationToken | None = None
    ) -> ToolCallResult:
        if args.method not in self.config.allowed_methods:
            logger.warning(
                "refused API call with disallowed method",
                extra={"method": args.method, "allowed_methods": self.config.allowed_methods},
            )
            return ToolCallResult(
                payload=None,
                succeeded=False,
                error_detail=(
                    f"Method {args.method} is not permitted; "
                    f"allowed methods: {', '.join(self.config.allowed_methods)}"
                ),
            )

        url = self.resolve_url(args.url)
        if url is None:
            logger.warning("refused API call outside the base URL", extra={"url": args.url})
            return ToolCallResult(
                payload=None,
                succeeded=False,
                error_detail=f"URL must be under {self.config.base_url}",
            )

        check_cancelled(cancel, "API call")
        headers = self._merge_headers(args.headers)
        params = (
            {"maxResults": args.maxResults}
            if args.maxResults is not None and "maxresults=" not in url.lower()
            else None
        )
        timeout = (
            cancel.timeout(self.config.timeout_seconds)
            if cancel is not None
            else self.config.timeout_seconds
        )

        logger.info("calling external API", extra={"method": args.method, "url": url})
        try:
            response = self._client.request(
                args.method,
                url,
                headers=headers,
                params=params,
                json=args.data,
                timeout=timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as exc:
            # InvalidURL and UnicodeEncodeError come from building the request.
            raise ApiCallError(
                f"{args.method} {url} failed: {exc}",
                details={"method": args.method, "url": url},
            ) from exc

        if not response.is_success:
            body = response.text[: self.config.max_error_body_chars]
            logger.warning(
                "external API returned an error",
                extra={"method": args.method, "url": url, "status_code": response.status_code},
            )
            raise ApiCallError(
                f"{args.method} {url} returned {response.status_code}",
                status_code=response.status_code,
                body=body,
                details={"method": args.method, "url": url},
            )

        return ToolCallResult(
            payload=_decode_body(response),
            succeeded=True,
            status_code=response.status_code,
        )

    def resolve_url(self, url: str) -> str | None:
        """Return the absolute URL to call, or None when it leaves the base URL."""
        base = self.config.base_url.rstrip("/")
        url = url.strip()
        if "://" not in url:
            return f"{base}/{url.lstrip('/')}"
        if url == base or url.startswith((f"{base}/", f"{base}?")):
            return url
        return None

    def _merge_headers(self, supplied: dict[str, Any]) -> dict[str, str]:
        token = self.credentials.get_api_token()
        basic = base64.b64encode(f"{self.config.username}:{token}".encode()).decode("ascii")
        injected = {
            "Authorization": f"Basic {basic}",
            "Content-Type": "application/json",
        }
        injected_keys = {key.lower() for key in injected}
        merged = {
            str(key): str(value)
            for key, value in supplied.items()
            if str(key).lower() not in injected_keys
        }
        merged.update(injected)
        return merged


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def register_api_tool(registry: ToolRegistry, executor: ApiExecutor) -> None:
    """Register `make_api_call` backed by `executor`."""

    def _handler(data: BaseModel, cancel: CancellationToken | None) -> ToolCallResult:
        return executor.call(cast(MakeApiCallInput, data), cancel)

    registry.register(
        ToolSpec(
            name=MAKE_API_CALL,
            description="Make a call to the API.",
            args_schema=MakeApiCallInput,
            handler=_handler,
            tags=["http", "ticketing"],
        )
    )
