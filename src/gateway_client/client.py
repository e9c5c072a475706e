"""Tool Gateway client.

Thin async HTTP client for the tool endpoints.
Handles authentication, cursor pagination and error mapping.
"""

import re
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.logging import get_logger

logger = get_logger(__name__)

CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_challenge(header: Optional[str]) -> dict[str, str]:
    """Parameters of a Bearer WWW-Authenticate challenge."""
    if not header:
        return {}
    return dict(CHALLENGE_PARAM.findall(header))


class ToolGatewayClientError(Exception):
    """Base exception for gateway client errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class GatewayConnectionError(ToolGatewayClientError):
    """Connection to the gateway failed."""
    pass


class GatewayAuthError(ToolGatewayClientError):
    """The gateway refused the credentials."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        www_authenticate: Optional[str] = None,
        token_scopes: Optional[str] = None
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.www_authenticate = www_authenticate
        self.challenge = parse_challenge(www_authenticate)
        self.current_scopes = (token_scopes or "").split()

    @property
    def error(self) -> Optional[str]:
        return self.challenge.get("error")

    @property
    def missing_scopes(self) -> list[str]:
        return self.challenge.get("scope", "").split()


class ToolGatewayClient:
    """
    Client for the Tool Gateway.

    Provides methods for:
    - Listing tools, one page or all of them
    - Describing a tool
    - Invoking a tool

    Discovery calls are retried on connection errors; invocations are not.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8002",
        timeout: float = 30.0,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Gateway base URL
            timeout: Request timeout in seconds
            auth_token: Optional OAuth bearer token
            transport: Optional httpx transport (e.g. ASGITransport in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._auth_token = auth_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def auth_token(self) -> Optional[str]:
        return self._auth_token

    @auth_token.setter
    def auth_token(self, token: Optional[str]) -> None:
        self._auth_token = token

    def _get_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ToolGatewayClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any
    ) -> dict[str, Any]:
        try:
            client = await self._get_client()
            response = await client.request(method, path, headers=self._get_headers(), **kwargs)
        except httpx.TransportError as e:
            raise GatewayConnectionError(f"Cannot connect to Tool Gateway: {e}")

        if response.status_code in (401, 403):
            raise GatewayAuthError(
                "Authentication required" if response.status_code == 401 else "Insufficient scope",
                status_code=response.status_code,
                www_authenticate=response.headers.get("WWW-Authenticate"),
                token_scopes=response.headers.get("X-OAuth-Scopes"),
            )

        if response.is_error:
            code = None
            message = f"Request failed with status {response.status_code}"
            try:
                error = response.json().get("error", {})
                code = error.get("code")
                message = error.get("message", message)
            except ValueError:
                pass
            raise ToolGatewayClientError(message, status_code=response.status_code, code=code)

        return response.json()

    @retry(
        retry=retry_if_exception_type(GatewayConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    )
    async def list_tools(self, cursor: Optional[str] = None) -> dict[str, Any]:
        """
        Fetch one page of tools.

        Returns:
            ``{"tools": [...], "nextCursor": str | None}``

        Raises:
            GatewayConnectionError: If the gateway is unreachable
            ToolGatewayClientError: For error responses (e.g. invalid cursor)
        """
        params = {"cursor": cursor} if cursor else {}
        return await self._request("GET", "/tools/list", params=params)

    async def list_all_tools(self) -> list[dict[str, Any]]:
        """Follow cursors until every visible tool has been fetched."""
        tools: list[dict[str, Any]] = []
        cursor: Optional[str] = None

        while True:
            page = await self.list_tools(cursor)
            tools.extend(page.get("tools", []))
            cursor = page.get("nextCursor")
            if not cursor:
                break

        logger.debug("Fetched tool list", tool_count=len(tools))
        return tools

    @retry(
        retry=retry_if_exception_type(GatewayConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    )
    async def describe_tool(self, name: str) -> Optional[dict[str, Any]]:
        """
        Describe a tool.

        Returns:
            Tool descriptor or None if not found (or not accessible)
        """
        try:
            data = await self._request("GET", "/tools/describe", params={"name": name})
        except ToolGatewayClientError as e:
            if e.status_code == 404:
                return None
            raise
        return data.get("tool")

    async def invoke(self, name: str, arguments: Optional[dict[str, Any]] = None) -> Any:
        """
        Invoke a tool.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            The tool result

        Raises:
            GatewayAuthError: If the OAuth gate refused the call
            ToolGatewayClientError: For any other error response
        """
        logger.debug("Invoking tool", tool=name)
        data = await self._request(
            "POST",
            "/tools/invoke",
            json={"name": name, "arguments": arguments or {}}
        )
        return data.get("result")
