"""Call dispatcher for the method registry.

Executes RpcRequests against registered procedures and always answers with
an RpcResponse: procedure failures are reported in the ``error`` member,
never raised to the caller.
"""

import time
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import (
    ExecutionContext,
    Principal,
    ProcedureDescriptor,
    RpcError,
    RpcRequest,
    RpcResponse,
)
from shared.schema import validate_schema
from rpc_registry.base import (
    ACCESS_DENIED,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    ProcedureError,
)
from rpc_registry.permissions import RolePermissionPredicate
from rpc_registry.registry import MethodRegistry

logger = get_logger(__name__)


class RpcDispatcher:
    """
    Dispatches procedure calls.

    Responsibilities:
    - Resolve the procedure
    - Enforce the procedure's access requirements
    - Validate parameters against their schemas
    - Execute and wrap the result
    """

    def __init__(
        self,
        registry: MethodRegistry,
        permissions: RolePermissionPredicate
    ) -> None:
        self.registry = registry
        self.permissions = permissions

    def call(self, request: RpcRequest, principal: Optional[Principal] = None) -> RpcResponse:
        """
        Execute a single call.

        Args:
            request: Inner call request
            principal: Calling principal (anonymous if omitted)

        Returns:
            Response carrying either the result or an error
        """
        principal = principal or Principal.anonymous()
        start_time = time.time()

        descriptor = self.registry.get(request.method)
        procedure_cls = self.registry.get_implementation(request.method)
        if descriptor is None or procedure_cls is None:
            return self._error(request, METHOD_NOT_FOUND, f"Method '{request.method}' not found")

        if not self.permissions.permits(principal, descriptor.access_requirements):
            logger.warning(
                "Access denied",
                procedure=request.method,
                user=principal.user_id
            )
            return self._error(request, ACCESS_DENIED, "Access denied")

        errors = self.validate_params(descriptor, request.params)
        if errors:
            return self._error(
                request,
                INVALID_PARAMS,
                f"Invalid params: {'; '.join(errors)}",
                data={"errors": errors}
            )

        context = ExecutionContext(
            request_id=request.id or "notification",
            principal=principal,
        )

        try:
            result = procedure_cls().execute(dict(request.params), context)
        except ProcedureError as e:
            logger.info(
                "Procedure reported an error",
                procedure=request.method,
                code=e.code,
                error=e.message
            )
            return self._error(request, e.code, e.message, data=e.data)
        except Exception as e:
            logger.error(
                "Procedure execution failed",
                procedure=request.method,
                error=str(e),
                exc_info=True
            )
            return self._error(request, INTERNAL_ERROR, f"Internal error: {e}")

        logger.debug(
            "Procedure executed",
            procedure=request.method,
            request_id=request.id,
            execution_time_ms=(time.time() - start_time) * 1000
        )
        return RpcResponse(id=request.id, result=result)

    def validate_params(
        self,
        descriptor: ProcedureDescriptor,
        params: dict[str, Any]
    ) -> list[str]:
        """
        Validate call parameters against the procedure's declarations.

        Returns:
            List of error messages, empty when the params are valid
        """
        errors: list[str] = []

        for name in params:
            if name not in descriptor.parameters:
                errors.append(f"{name}: unknown parameter")

        for name, spec in descriptor.parameters.items():
            if name not in params:
                if spec.required:
                    errors.append(f"{name}: required parameter is missing")
                continue
            is_valid, messages = validate_schema(params[name], spec.json_schema)
            if not is_valid:
                errors.extend(f"{name}: {message}" for message in messages)

        return errors

    def _error(
        self,
        request: RpcRequest,
        code: int,
        message: str,
        data: Any = None
    ) -> RpcResponse:
        return RpcResponse(id=request.id, error=RpcError(code=code, message=message, data=data))
