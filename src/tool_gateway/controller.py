"""Gateway Controller.

Implements the three tool operations on top of the collaborators:
- list: discovery -> pagination -> normalization
- describe: discovery -> lookup -> normalization
- invoke: validation -> discovery lookup -> OAuth gate -> inner call

Stateless: apart from the discovery cache nothing survives a request.
"""

import asyncio
import functools
import inspect
import json
import time
import uuid
from typing import Any, Optional, Union

from fastapi.concurrency import run_in_threadpool

from shared.logging import get_logger, invocation_context
from shared.models import (
    AuthRequirements,
    InvocationStatus,
    Principal,
    ProcedureDescriptor,
    RpcRequest,
    RpcResponse,
)
from tool_gateway.audit import AuditLogger
from tool_gateway.auth_metadata import resolve_extension_auth
from tool_gateway.discovery import ToolDiscoveryService
from tool_gateway.errors import (
    ExecutionError,
    InvalidJsonError,
    MissingParameterError,
    ToolGatewayError,
    ToolNotFoundError,
)
from tool_gateway.interfaces import CallDispatcher
from tool_gateway.normalizer import ToolNormalizer
from tool_gateway.oauth import OAuthGate
from tool_gateway.pagination import DEFAULT_PAGE_SIZE, paginate

logger = get_logger(__name__)


def new_correlation_id() -> str:
    """Fresh id for an inner call."""
    return f"mcp_{uuid.uuid4().hex}"


class GatewayController:
    """
    Orchestrates discovery, normalization, authorization and delegation.

    Errors are raised as ToolGatewayError subclasses; inner registry errors
    are always folded into ExecutionError.
    """

    def __init__(
        self,
        discovery: ToolDiscoveryService,
        normalizer: ToolNormalizer,
        gate: OAuthGate,
        dispatcher: CallDispatcher,
        audit_logger: Optional[AuditLogger] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        invoke_timeout: Optional[float] = 30.0
    ) -> None:
        self.discovery = discovery
        self.normalizer = normalizer
        self.gate = gate
        self.dispatcher = dispatcher
        self.audit_logger = audit_logger
        self.page_size = page_size
        self.invoke_timeout = invoke_timeout

    def list_tools(self, principal: Principal, cursor: Optional[str] = None) -> dict[str, Any]:
        """
        List one page of the tools visible to ``principal``.

        Returns:
            ``{"tools": [...], "nextCursor": str | None}``

        Raises:
            InvalidCursorError: If the cursor is malformed
        """
        tools = list(self.discovery.discover(principal).values())
        page = paginate(tools, cursor, self.page_size)

        return {
            "tools": [tool.to_dict() for tool in self.normalizer.normalize_many(page.items)],
            "nextCursor": page.next_cursor,
        }

    def describe_tool(self, principal: Principal, name: Optional[str]) -> dict[str, Any]:
        """
        Describe a single tool.

        Absent and inaccessible tools are reported identically.

        Raises:
            MissingParameterError: If no name was given
            ToolNotFoundError: If the tool is absent or not accessible
        """
        if not name:
            raise MissingParameterError("name")

        descriptor = self.discovery.lookup(principal, name)
        if descriptor is None:
            raise ToolNotFoundError(name)

        return {"tool": self.normalizer.normalize(descriptor).to_dict()}

    def requirements_for(self, descriptor: ProcedureDescriptor) -> AuthRequirements:
        """Authentication requirements of a discovered tool."""
        extension = self.normalizer.registry.get_extension(descriptor.implementation_ref)
        return resolve_extension_auth(extension)

    async def invoke_from_body(
        self,
        principal: Principal,
        body: Union[bytes, str, None],
        authorization: Optional[str] = None,
        name: Optional[str] = None,
        requirements: Optional[AuthRequirements] = None
    ) -> dict[str, Any]:
        """
        Invoke a tool from a raw request body.

        The body is ``{"name": str, "arguments": object}``. When ``name`` is
        given (per-tool endpoints) it takes precedence over the body, the
        body may be empty and ``arguments`` defaults to an empty object.
        ``requirements`` is passed through to :meth:`invoke_tool`.

        Raises:
            InvalidJsonError: If the body is not a JSON object
            MissingParameterError: If name or arguments are missing or invalid
        """
        data = self._parse_body(body, allow_empty=name is not None)

        if name is None:
            name = data.get("name")
            if not isinstance(name, str) or not name:
                raise MissingParameterError(
                    "name", 'Required parameter "name" is missing or invalid'
                )
            if "arguments" not in data:
                raise MissingParameterError(
                    "arguments", 'Required parameter "arguments" is missing or invalid'
                )

        arguments = data.get("arguments", {})
        if not isinstance(arguments, dict):
            raise MissingParameterError(
                "arguments", 'Required parameter "arguments" is missing or invalid'
            )

        return await self.invoke_tool(principal, name, arguments, authorization, requirements)

    async def invoke_tool(
        self,
        principal: Principal,
        name: str,
        arguments: dict[str, Any],
        authorization: Optional[str] = None,
        requirements: Optional[AuthRequirements] = None
    ) -> dict[str, Any]:
        """
        Invoke a tool.

        Args:
            principal: The requester
            name: Tool name
            arguments: Tool arguments
            authorization: Raw Authorization header, if any
            requirements: Auth requirements already resolved by the caller
                (per-tool routes); resolved from the registry if omitted

        Returns:
            ``{"result": ...}``

        Raises:
            AuthorizationDenied: If a presented bearer token is not active,
                or the OAuth gate refuses the call
            ToolNotFoundError: If the tool is absent or not accessible
            ExecutionError: If the inner call fails in any way
        """
        start_time = time.time()

        # Token store and permission lookups may block
        unusable = await run_in_threadpool(self.gate.reject_unusable_bearer, authorization)
        if unusable is not None:
            await self._audit(
                principal, name, arguments, InvocationStatus.DENIED, start_time,
                correlation_id=None, error=unusable
            )
            raise unusable

        descriptor = await run_in_threadpool(self.discovery.lookup, principal, name)
        if descriptor is None:
            raise ToolNotFoundError(name)

        correlation_id = new_correlation_id()
        with invocation_context(tool=name, correlation_id=correlation_id):
            if requirements is None:
                requirements = self.requirements_for(descriptor)
            decision = await run_in_threadpool(
                self.gate.authorize, requirements, principal, authorization
            )
            if not decision.allowed:
                await self._audit(
                    principal, name, arguments, InvocationStatus.DENIED, start_time,
                    correlation_id=None, error=decision.denial
                )
                raise decision.denial

            try:
                response = await self._dispatch(
                    RpcRequest(method=name, params=arguments, id=correlation_id),
                    principal
                )
            except ToolGatewayError as e:
                await self._audit(
                    principal, name, arguments, InvocationStatus.ERROR, start_time,
                    correlation_id=correlation_id, error=e
                )
                raise

            await self._audit(
                principal, name, arguments, InvocationStatus.SUCCESS, start_time,
                correlation_id=correlation_id
            )
            logger.info("Tool invoked", duration_ms=round((time.time() - start_time) * 1000, 2))
            return {"result": response.result}

    async def _dispatch(self, request: RpcRequest, principal: Principal) -> RpcResponse:
        """Run the inner call and fold every failure into ExecutionError."""
        try:
            response = await asyncio.wait_for(
                self._call_dispatcher(request, principal),
                timeout=self.invoke_timeout
            )
        except asyncio.TimeoutError:
            logger.error("Tool execution timed out", tool=request.method, request_id=request.id)
            raise ExecutionError("Tool execution failed: timed out")
        except Exception as e:
            logger.error(
                "Tool execution failed",
                tool=request.method,
                request_id=request.id,
                error=str(e),
                exc_info=True
            )
            raise ExecutionError(f"Tool execution failed: {e}")

        if response is None:
            raise ExecutionError("Tool execution returned no response")

        if response.is_error:
            logger.info(
                "Procedure returned an error",
                tool=request.method,
                request_id=request.id,
                inner_code=response.error.code
            )
            raise ExecutionError(response.error.message)

        return response

    async def _call_dispatcher(self, request: RpcRequest, principal: Principal) -> Optional[RpcResponse]:
        call = self.dispatcher.call
        if inspect.iscoroutinefunction(call):
            return await call(request, principal)

        # Run sync dispatchers in the thread pool
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, functools.partial(call, request, principal))
        if inspect.isawaitable(result):
            result = await result
        return result

    def _parse_body(self, body: Union[bytes, str, None], allow_empty: bool) -> dict[str, Any]:
        if body is None or (isinstance(body, (bytes, str)) and not body.strip()):
            if allow_empty:
                return {}
            raise InvalidJsonError()

        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidJsonError()

        if not isinstance(data, dict):
            raise InvalidJsonError()
        return data

    async def _audit(
        self,
        principal: Principal,
        name: str,
        arguments: dict[str, Any],
        status: InvocationStatus,
        start_time: float,
        correlation_id: Optional[str],
        error: Optional[ToolGatewayError] = None
    ) -> None:
        if self.audit_logger is None:
            return

        try:
            entry = self.audit_logger.create_entry(
                principal=principal,
                tool_name=name,
                arguments=arguments,
                status=status,
                http_status=error.status_code if error else 200,
                error_code=error.code.value if error else None,
                error=error.message if error else None,
                execution_time_ms=(time.time() - start_time) * 1000,
                correlation_id=correlation_id,
            )
            await self.audit_logger.log(entry)
        except Exception as e:
            logger.error("Failed to audit invocation", tool=name, error=str(e), exc_info=True)
