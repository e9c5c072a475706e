"""Shared fixtures for the gateway tests."""

from typing import Any

import pytest
from fastapi.testclient import TestClient

from shared.config import GatewaySettings, OAuthSettings, Settings, UserAccount
from shared.models import ExecutionContext, ParameterSpec, Principal, AuthMethod
from rpc_registry.base import Procedure, ProcedureError, mcp_tool
from rpc_registry.permissions import RolePermissionPredicate
from rpc_registry.registry import MethodRegistry
from tool_gateway.tokens import InMemoryTokenStore


class Echo(Procedure):
    """Echoes its message back."""

    method_id = "demo.echo"
    usage = "Echoes a message"
    access = ("access content",)
    params = {
        "msg": ParameterSpec(schema={"type": "string"}, required=True),
    }

    def execute(self, params: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        return {"msg": params["msg"], "user": context.principal.user_id}


@mcp_tool(title="Ping")
class Ping(Procedure):
    method_id = "demo.ping"
    usage = "Answers pong"
    access = ("access content",)

    def execute(self, params: dict[str, Any], context: ExecutionContext) -> str:
        return "pong"


@mcp_tool(title="Explode")
class Explode(Procedure):
    method_id = "demo.explode"
    usage = "Always fails"
    access = ("access content",)

    def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        raise RuntimeError("boom")


@mcp_tool(title="Reject")
class Reject(Procedure):
    method_id = "demo.reject"
    usage = "Reports a procedure error"
    access = ("access content",)

    def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        raise ProcedureError.invalid_params("Node with ID 99 not found")


@mcp_tool(title="Configure", annotations={"auth": {"level": "required"}})
class Configure(Procedure):
    method_id = "demo.admin.configure"
    usage = "Administrative procedure"
    access = ("administer site configuration",)

    def execute(self, params: dict[str, Any], context: ExecutionContext) -> str:
        return "configured"


ECHO_METADATA = {"title": "Echo", "annotations": {"auth": {"scopes": ["x:read"]}}}


@pytest.fixture
def registry() -> MethodRegistry:
    """Registry with the demo procedures; demo.echo opts in with x:read."""
    registry = MethodRegistry()
    registry.register(Echo, extension=ECHO_METADATA)
    registry.register(Ping)
    registry.register(Explode)
    registry.register(Reject)
    registry.register(Configure)
    return registry


@pytest.fixture
def permissions() -> RolePermissionPredicate:
    return RolePermissionPredicate()


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def anonymous() -> Principal:
    return Principal.anonymous()


@pytest.fixture
def editor() -> Principal:
    return Principal(
        user_id="2",
        username="editor",
        roles=("authenticated",),
        authenticated_via=AuthMethod.SESSION,
    )


@pytest.fixture
def admin() -> Principal:
    return Principal(
        user_id="1",
        username="admin",
        roles=("authenticated", "administrator"),
        authenticated_via=AuthMethod.SESSION,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        gateway=GatewaySettings(
            page_size=2,
            enable_audit=False,
            load_examples=False,
            resource_url="https://gateway.example.com",
            authorization_servers=["https://auth.example.com"],
        ),
        oauth=OAuthSettings(token_backend="memory"),
        users=[
            UserAccount(user_id="1", username="admin", roles=["administrator"]),
            UserAccount(user_id="2", username="editor"),
        ],
    )


@pytest.fixture
def services(settings, registry, token_store):
    from tool_gateway.main import build_services

    return build_services(settings, registry=registry, token_store=token_store)


@pytest.fixture
def client(services) -> TestClient:
    from tool_gateway.main import create_app

    return TestClient(create_app(services))


@pytest.fixture
def editor_token(token_store) -> str:
    """Bearer token of the editor holding x:read."""
    return token_store.issue("2", scopes=["x:read"]).value
