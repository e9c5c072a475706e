"""Tests for the logging helpers."""

import structlog

from shared.logging import (
    add_service,
    bind_request,
    clear_context,
    invocation_context,
    mask_credentials,
)


class TestLogContext:
    """Tests for request and invocation context binding."""

    def teardown_method(self):
        clear_context()

    def test_invocation_context_nests_in_request(self):
        bind_request(request_id="req-1", http_method="POST", path="/tools/invoke")

        with invocation_context(tool="demo.ping", correlation_id="mcp_1"):
            inside = structlog.contextvars.get_contextvars()
        after = structlog.contextvars.get_contextvars()

        assert inside == {
            "request_id": "req-1",
            "http_method": "POST",
            "path": "/tools/invoke",
            "tool": "demo.ping",
            "correlation_id": "mcp_1",
        }
        assert after == {"request_id": "req-1", "http_method": "POST", "path": "/tools/invoke"}

    def test_new_request_drops_previous_context(self):
        bind_request(request_id="req-1", http_method="GET", path="/health")
        bind_request(request_id="req-2", http_method="GET", path="/tools/list")

        assert structlog.contextvars.get_contextvars()["request_id"] == "req-2"


class TestProcessors:
    """Tests for the structlog processors."""

    def test_credentials_masked(self):
        event = mask_credentials(None, "info", {"event": "x", "authorization": "Bearer abc", "user": "2"})

        assert event == {"event": "x", "authorization": "[REDACTED]", "user": "2"}

    def test_service_added(self):
        assert add_service(None, "info", {"event": "x"})["service"] == "tool-gateway"
