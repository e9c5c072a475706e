"""Tests for the gateway controller and audit logging."""

import asyncio
import json
import threading
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, Mock

from shared.models import (
    AuditEntry,
    AuthLevel,
    AuthRequirements,
    InvocationStatus,
    Principal,
    RpcError,
    RpcResponse,
)
from rpc_registry.dispatcher import RpcDispatcher
from tool_gateway.audit import AuditLogger
from tool_gateway.controller import GatewayController
from tool_gateway.discovery import ToolDiscoveryService
from tool_gateway.errors import (
    AuthorizationDenied,
    ExecutionError,
    InvalidCursorError,
    InvalidJsonError,
    MissingParameterError,
    ToolNotFoundError,
)
from tool_gateway.normalizer import ToolNormalizer
from tool_gateway.oauth import OAuthGate
from tool_gateway.pagination import decode_cursor


def read_entries(audit_logger):
    with open(audit_logger.log_path) as f:
        return [AuditEntry.model_validate_json(line) for line in f if line.strip()]


def make_controller(registry, permissions, token_store, dispatcher=None, **kwargs):
    return GatewayController(
        discovery=ToolDiscoveryService(registry, permissions),
        normalizer=ToolNormalizer(registry),
        gate=OAuthGate(token_store, permissions),
        dispatcher=dispatcher or RpcDispatcher(registry, permissions),
        **kwargs
    )


@pytest.fixture
def controller(registry, permissions, token_store):
    return make_controller(registry, permissions, token_store, page_size=3)


class TestListAndDescribe:
    """Tests for list and describe."""

    def test_list_first_page(self, controller, editor):
        result = controller.list_tools(editor)

        assert [tool["name"] for tool in result["tools"]] == ["demo.echo", "demo.ping", "demo.explode"]
        assert decode_cursor(result["nextCursor"]) == 3

    def test_list_follows_cursor(self, controller, editor):
        first = controller.list_tools(editor)
        second = controller.list_tools(editor, first["nextCursor"])

        assert [tool["name"] for tool in second["tools"]] == ["demo.reject"]
        assert second["nextCursor"] is None

    def test_list_empty_registry(self, permissions, token_store, editor):
        from rpc_registry.registry import MethodRegistry
        from conftest import Echo

        registry = MethodRegistry()
        registry.register(Echo)

        result = make_controller(registry, permissions, token_store).list_tools(editor)

        assert result == {"tools": [], "nextCursor": None}

    def test_list_bad_cursor(self, controller, editor):
        with pytest.raises(InvalidCursorError):
            controller.list_tools(editor, "%%%")

    def test_describe(self, controller, editor):
        result = controller.describe_tool(editor, "demo.ping")

        assert result["tool"]["name"] == "demo.ping"
        assert result["tool"]["title"] == "Ping"

    def test_describe_requires_name(self, controller, editor):
        with pytest.raises(MissingParameterError):
            controller.describe_tool(editor, None)

    def test_describe_hidden_and_missing_look_alike(self, controller, editor):
        with pytest.raises(ToolNotFoundError) as hidden:
            controller.describe_tool(editor, "demo.admin.configure")
        with pytest.raises(ToolNotFoundError) as missing:
            controller.describe_tool(editor, "demo.nothing")

        assert hidden.value.status_code == missing.value.status_code == 404
        assert hidden.value.message == "Tool 'demo.admin.configure' not found or access denied"


class TestInvoke:
    """Tests for invocation."""

    @pytest.mark.asyncio
    async def test_invoke_success(self, controller, editor, editor_token):
        result = await controller.invoke_tool(
            editor, "demo.echo", {"msg": "hi"}, authorization=f"Bearer {editor_token}"
        )

        assert result == {"result": {"msg": "hi", "user": "2"}}

    @pytest.mark.asyncio
    async def test_invoke_from_body(self, controller, editor):
        body = json.dumps({"name": "demo.ping", "arguments": {}}).encode()

        assert await controller.invoke_from_body(editor, body) == {"result": "pong"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"{not json", b"[1, 2]", b"", b"\xff\xfe"])
    async def test_invalid_json_never_dispatches(self, registry, permissions, token_store, editor, body):
        dispatcher = Mock()
        controller = make_controller(registry, permissions, token_store, dispatcher=dispatcher)

        with pytest.raises(InvalidJsonError):
            await controller.invoke_from_body(editor, body)

        dispatcher.call.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload,parameter", [
        ({"arguments": {}}, "name"),
        ({"name": "", "arguments": {}}, "name"),
        ({"name": 5, "arguments": {}}, "name"),
        ({"name": "demo.ping"}, "arguments"),
        ({"name": "demo.ping", "arguments": [1]}, "arguments"),
    ])
    async def test_missing_parameter(self, controller, editor, payload, parameter):
        with pytest.raises(MissingParameterError) as exc_info:
            await controller.invoke_from_body(editor, json.dumps(payload))

        assert exc_info.value.parameter == parameter
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_prefilled_name_allows_empty_body(self, controller, editor):
        assert await controller.invoke_from_body(editor, b"", name="demo.ping") == {"result": "pong"}

    @pytest.mark.asyncio
    async def test_prefilled_name_wins_over_body(self, controller, editor):
        body = json.dumps({"name": "demo.explode", "arguments": {}})

        assert await controller.invoke_from_body(editor, body, name="demo.ping") == {"result": "pong"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, controller, editor):
        with pytest.raises(ToolNotFoundError):
            await controller.invoke_tool(editor, "demo.nothing", {})

    @pytest.mark.asyncio
    async def test_gate_denial_short_circuits(self, registry, permissions, token_store, editor):
        dispatcher = Mock()
        controller = make_controller(registry, permissions, token_store, dispatcher=dispatcher)
        token = token_store.issue("2", scopes=["y:read"]).value

        with pytest.raises(AuthorizationDenied) as exc_info:
            await controller.invoke_tool(editor, "demo.echo", {"msg": "hi"}, f"Bearer {token}")

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["missingScopes"] == ["x:read"]
        dispatcher.call.assert_not_called()

    @pytest.mark.asyncio
    async def test_inner_error_folded_into_execution_error(self, controller, editor):
        with pytest.raises(ExecutionError) as exc_info:
            await controller.invoke_tool(editor, "demo.reject", {})

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Node with ID 99 not found"
        assert exc_info.value.to_dict()["error"]["code"] == "execution_error"

    @pytest.mark.asyncio
    async def test_unexpected_exception_folded(self, controller, editor):
        with pytest.raises(ExecutionError) as exc_info:
            await controller.invoke_tool(editor, "demo.explode", {})

        assert "boom" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_arguments_folded(self, controller, editor, editor_token):
        with pytest.raises(ExecutionError):
            await controller.invoke_tool(editor, "demo.echo", {"msg": 1}, f"Bearer {editor_token}")

    @pytest.mark.asyncio
    async def test_dispatcher_crash_folded(self, registry, permissions, token_store, editor):
        dispatcher = Mock()
        dispatcher.call = AsyncMock(side_effect=ConnectionError("registry unreachable"))
        controller = make_controller(registry, permissions, token_store, dispatcher=dispatcher)

        with pytest.raises(ExecutionError) as exc_info:
            await controller.invoke_tool(editor, "demo.ping", {})

        assert "registry unreachable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_async_dispatcher_receives_correlation_id(self, registry, permissions, token_store, editor):
        dispatcher = Mock()
        dispatcher.call = AsyncMock(return_value=RpcResponse(id="x", result=42))
        controller = make_controller(registry, permissions, token_store, dispatcher=dispatcher)

        result = await controller.invoke_tool(editor, "demo.ping", {})

        request, principal = dispatcher.call.call_args.args
        assert result == {"result": 42}
        assert request.method == "demo.ping"
        assert request.id.startswith("mcp_")
        assert principal == editor

    @pytest.mark.asyncio
    async def test_error_response_from_async_dispatcher(self, registry, permissions, token_store, editor):
        dispatcher = Mock()
        dispatcher.call = AsyncMock(
            return_value=RpcResponse(error=RpcError(code=-32000, message="Access denied"))
        )
        controller = make_controller(registry, permissions, token_store, dispatcher=dispatcher)

        with pytest.raises(ExecutionError) as exc_info:
            await controller.invoke_tool(editor, "demo.ping", {})

        assert exc_info.value.message == "Access denied"

    @pytest.mark.asyncio
    async def test_timeout(self, registry, permissions, token_store, editor):
        async def slow_call(request, principal):
            await asyncio.sleep(1)

        dispatcher = Mock()
        dispatcher.call = slow_call
        controller = make_controller(
            registry, permissions, token_store, dispatcher=dispatcher, invoke_timeout=0.01
        )

        with pytest.raises(ExecutionError, match="timed out"):
            await controller.invoke_tool(editor, "demo.ping", {})

    @pytest.mark.asyncio
    async def test_unusable_bearer_rejected_before_lookup(self, controller, editor, token_store):
        expired = token_store.issue("2", scopes=["x:read"], ttl=timedelta(seconds=-5)).value

        with pytest.raises(AuthorizationDenied) as unknown_tool:
            await controller.invoke_tool(editor, "demo.nothing", {}, "Bearer forged")
        with pytest.raises(AuthorizationDenied) as expired_token:
            await controller.invoke_tool(editor, "demo.echo", {"msg": "hi"}, f"Bearer {expired}")

        assert unknown_tool.value.status_code == expired_token.value.status_code == 401
        assert expired_token.value.code.value == "invalid_token"
        assert 'error="invalid_token"' in expired_token.value.headers["WWW-Authenticate"]

    @pytest.mark.asyncio
    async def test_given_requirements_replace_registry_lookup(self, controller, editor, editor_token):
        requirements = AuthRequirements(level=AuthLevel.REQUIRED, scopes=("z:write",))

        with pytest.raises(AuthorizationDenied) as exc_info:
            await controller.invoke_tool(
                editor, "demo.ping", {}, f"Bearer {editor_token}", requirements=requirements
            )

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["missingScopes"] == ["z:write"]

    @pytest.mark.asyncio
    async def test_token_and_permission_checks_leave_the_event_loop(
        self, controller, editor, editor_token, token_store, monkeypatch
    ):
        threads = []
        resolve = token_store.resolve
        lookup = controller.discovery.lookup

        def tracking_resolve(value):
            threads.append(threading.current_thread())
            return resolve(value)

        def tracking_lookup(principal, name):
            threads.append(threading.current_thread())
            return lookup(principal, name)

        monkeypatch.setattr(token_store, "resolve", tracking_resolve)
        monkeypatch.setattr(controller.discovery, "lookup", tracking_lookup)

        result = await controller.invoke_tool(
            editor, "demo.echo", {"msg": "hi"}, f"Bearer {editor_token}"
        )

        assert result == {"result": {"msg": "hi", "user": "2"}}
        assert len(threads) == 3
        assert threading.main_thread() not in threads


class TestAudit:
    """Tests for invocation auditing."""

    @pytest.fixture
    def audit_logger(self, tmp_path):
        return AuditLogger(log_path=str(tmp_path / "audit.log"), buffer_size=100)

    @pytest.mark.asyncio
    async def test_invocations_are_audited(self, registry, permissions, token_store, editor, audit_logger):
        controller = make_controller(registry, permissions, token_store, audit_logger=audit_logger)
        token = token_store.issue("2", scopes=["y:read"]).value

        await controller.invoke_tool(editor, "demo.ping", {})
        with pytest.raises(AuthorizationDenied):
            await controller.invoke_tool(editor, "demo.echo", {"msg": "hi"}, f"Bearer {token}")
        with pytest.raises(ExecutionError):
            await controller.invoke_tool(editor, "demo.explode", {})
        await audit_logger.flush()

        entries = read_entries(audit_logger)

        assert [entry.status for entry in entries] == [
            InvocationStatus.SUCCESS,
            InvocationStatus.DENIED,
            InvocationStatus.ERROR,
        ]
        assert entries[1].error_code == "insufficient_scope"
        assert entries[1].http_status == 403
        assert entries[1].correlation_id is None
        assert entries[2].correlation_id.startswith("mcp_")

    @pytest.mark.asyncio
    async def test_sensitive_arguments_redacted(self, audit_logger, editor):
        entry = audit_logger.create_entry(
            principal=editor,
            tool_name="demo.login",
            arguments={"user": "bob", "password": "hunter2", "nested": {"api_key": "k"}},
            status=InvocationStatus.SUCCESS,
        )

        assert entry.arguments == {
            "user": "bob",
            "password": "[REDACTED]",
            "nested": {"api_key": "[REDACTED]"},
        }

    @pytest.mark.asyncio
    async def test_flush_appends_json_lines(self, audit_logger, editor, admin):
        for principal, tool, status in [
            (editor, "demo.ping", InvocationStatus.SUCCESS),
            (admin, "demo.ping", InvocationStatus.ERROR),
        ]:
            await audit_logger.log(audit_logger.create_entry(principal, tool, {}, status))
        await audit_logger.flush()
        await audit_logger.log(
            audit_logger.create_entry(admin, "demo.echo", {}, InvocationStatus.SUCCESS)
        )
        await audit_logger.flush()

        entries = read_entries(audit_logger)

        assert [(entry.user_id, entry.tool_name) for entry in entries] == [
            ("2", "demo.ping"),
            ("1", "demo.ping"),
            ("1", "demo.echo"),
        ]
        assert entries[1].status == InvocationStatus.ERROR

    @pytest.mark.asyncio
    async def test_rejected_bearer_is_audited(self, registry, permissions, token_store, editor, audit_logger):
        controller = make_controller(registry, permissions, token_store, audit_logger=audit_logger)

        with pytest.raises(AuthorizationDenied):
            await controller.invoke_tool(editor, "demo.ping", {}, "Bearer forged")
        await audit_logger.flush()

        [entry] = read_entries(audit_logger)
        assert entry.status == InvocationStatus.DENIED
        assert entry.error_code == "invalid_token"
        assert entry.http_status == 401

    @pytest.mark.asyncio
    async def test_disabled_logger_writes_nothing(self, tmp_path, editor):
        audit_logger = AuditLogger(log_path=str(tmp_path / "off" / "audit.log"), enabled=False)

        await audit_logger.log(
            audit_logger.create_entry(editor, "demo.ping", {}, InvocationStatus.SUCCESS)
        )
        await audit_logger.flush()

        assert not (tmp_path / "off").exists()

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_invocation(self, registry, permissions, token_store, editor):
        audit_logger = Mock()
        audit_logger.log = AsyncMock(side_effect=OSError("disk full"))
        controller = make_controller(registry, permissions, token_store, audit_logger=audit_logger)

        assert await controller.invoke_tool(editor, "demo.ping", {}) == {"result": "pong"}
