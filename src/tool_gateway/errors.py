"""Error taxonomy of the tool protocol.

Every error carries a stable machine-readable code and a human-readable
message. Inner registry error codes never appear here.
"""

from typing import Any, Optional

from fastapi import status

from shared.models import ToolErrorCode


class ToolGatewayError(Exception):
    """Base class for errors reported to tool clients."""

    code: ToolErrorCode = ToolErrorCode.EXECUTION_ERROR
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.headers = headers or {}

    @property
    def empty_body(self) -> bool:
        """Whether the HTTP response carries no body."""
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code.value, "message": self.message, **self.details}}


class MissingParameterError(ToolGatewayError):
    code = ToolErrorCode.MISSING_PARAMETER
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, parameter: str, message: Optional[str] = None) -> None:
        super().__init__(message or f'Required parameter "{parameter}" is missing')
        self.parameter = parameter


class InvalidJsonError(ToolGatewayError):
    code = ToolErrorCode.INVALID_JSON
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Request body must be valid JSON") -> None:
        super().__init__(message)


class InvalidCursorError(ToolGatewayError):
    code = ToolErrorCode.INVALID_CURSOR
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, cursor: str) -> None:
        super().__init__("Pagination cursor is malformed")
        self.cursor = cursor


class ToolNotFoundError(ToolGatewayError):
    code = ToolErrorCode.TOOL_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' not found or access denied")
        self.name = name


class ExecutionError(ToolGatewayError):
    code = ToolErrorCode.EXECUTION_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class AuthorizationDenied(ToolGatewayError):
    """
    Denial from the OAuth gate.

    Rendered as an empty body plus a ``WWW-Authenticate`` header. Scope
    denials also carry the token's scopes and the accepted scopes in
    ``X-OAuth-Scopes`` / ``X-Accepted-OAuth-Scopes``; the details stay
    available to logs, audit and in-process callers.
    """

    def __init__(
        self,
        code: ToolErrorCode,
        status_code: int,
        message: str,
        www_authenticate: str,
        details: Optional[dict[str, Any]] = None,
        scope_headers: Optional[dict[str, str]] = None
    ) -> None:
        headers = {"WWW-Authenticate": www_authenticate, **(scope_headers or {})}
        super().__init__(message, details=details, headers=headers)
        self.code = code
        self.status_code = status_code

    @property
    def empty_body(self) -> bool:
        return True
