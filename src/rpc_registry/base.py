"""Base classes for registry procedures.

A procedure is a class declaring its identifier, usage text, access
requirements and parameters as class attributes, plus an ``execute``
method. Procedures:
- Are stateless between calls
- Receive already validated parameters
- Signal failures by raising ProcedureError
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TypeVar

from shared.models import ExecutionContext, ExtensionMetadata, ParameterSpec


# JSON-RPC 2.0 error codes used by the dispatcher
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
ACCESS_DENIED = -32000

TOOL_METADATA_ATTR = "__tool_metadata__"

P = TypeVar("P", bound=type["Procedure"])


class ProcedureError(Exception):
    """Raised by a procedure to report a procedure-level error."""

    def __init__(self, message: str, code: int = INTERNAL_ERROR, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

    @classmethod
    def invalid_params(cls, message: str) -> "ProcedureError":
        return cls(message, code=INVALID_PARAMS)


class Procedure(ABC):
    """
    Base class for procedures served by the method registry.

    Subclasses set ``method_id``, ``usage``, ``access`` and ``params`` and
    implement ``execute``. A classmethod ``output_schema`` may describe the
    return value.
    """

    method_id: str = ""
    usage: str = ""
    access: tuple[str, ...] = ()
    params: dict[str, ParameterSpec] = {}

    @abstractmethod
    def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        """
        Execute the procedure.

        Args:
            params: Validated parameters keyed by name
            context: Execution context with the calling principal

        Returns:
            JSON-compatible result

        Raises:
            ProcedureError: On a procedure-level failure
        """

    @classmethod
    def output_schema(cls) -> Optional[Any]:
        """JSON Schema of the result, or None if undeclared."""
        return None


def mcp_tool(
    title: Optional[str] = None,
    annotations: Optional[dict[str, Any]] = None
) -> Callable[[P], P]:
    """
    Mark a procedure class as exposed through the tool gateway.

    The metadata is validated immediately, so a malformed declaration
    (for instance ``annotations`` given as a list) fails at import time.

    Usage::

        @mcp_tool(title="Echo", annotations={"auth": {"scopes": ["x:read"]}})
        class Echo(Procedure):
            ...
    """
    metadata = ExtensionMetadata(title=title, annotations=annotations)

    def decorator(cls: P) -> P:
        setattr(cls, TOOL_METADATA_ATTR, metadata)
        return cls

    return decorator


def get_tool_metadata(procedure_cls: type) -> Optional[ExtensionMetadata]:
    """Return the tool metadata declared on a class itself, if any."""
    # Only the class' own declaration counts; subclasses do not inherit the opt-in.
    return procedure_cls.__dict__.get(TOOL_METADATA_ATTR)


def implementation_ref(procedure_cls: type) -> str:
    """Stable handle of a procedure implementation."""
    return f"{procedure_cls.__module__}.{procedure_cls.__qualname__}"
