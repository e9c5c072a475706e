"""Tool Gateway - discovery, description and invocation of registry procedures.

The gateway exposes procedures that opted in with tool metadata, filters
them per requester, enforces OAuth scopes on invocation and delegates the
call to the registry's dispatcher.
"""

from tool_gateway.controller import GatewayController
from tool_gateway.discovery import ToolDiscoveryService
from tool_gateway.errors import AuthorizationDenied, ToolGatewayError
from tool_gateway.normalizer import ToolNormalizer
from tool_gateway.oauth import OAuthGate
from tool_gateway.routes import RouteTable

__all__ = [
    "GatewayController",
    "ToolDiscoveryService",
    "ToolNormalizer",
    "OAuthGate",
    "RouteTable",
    "ToolGatewayError",
    "AuthorizationDenied",
]
