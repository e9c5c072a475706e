"""Gateway Client - async HTTP client for the Tool Gateway.

Lists, describes and invokes tools on behalf of UIs, CLIs and services.
"""

from gateway_client.client import (
    GatewayAuthError,
    GatewayConnectionError,
    ToolGatewayClient,
    ToolGatewayClientError,
)

__all__ = [
    "ToolGatewayClient",
    "ToolGatewayClientError",
    "GatewayConnectionError",
    "GatewayAuthError",
]
