"""Collaborator interfaces consumed by the tool gateway.

The gateway only depends on these protocols. The rpc_registry package and
tool_gateway.tokens provide in-process implementations.
"""

from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Union

from shared.models import (
    ExtensionMetadata,
    Principal,
    ProcedureDescriptor,
    RpcRequest,
    RpcResponse,
    TokenRecord,
)


class ProcedureRegistry(Protocol):
    """Read access to the method registry."""

    @property
    def version(self) -> int: ...

    def list_procedures(self) -> list[ProcedureDescriptor]: ...

    def get_output_schema(self, ref: str) -> Optional[Any]: ...

    def get_extension(self, ref: str) -> Optional[ExtensionMetadata]: ...

    def subscribe(self, listener: Callable[[Any], None]) -> None: ...


class PermissionPredicate(Protocol):
    """The permission / identity system."""

    def permits(self, principal: Principal, requirements: Iterable[str]) -> bool: ...

    def is_anonymous(self, principal: Principal) -> bool: ...

    def fingerprint(self, principal: Principal) -> str: ...


class TokenStore(Protocol):
    """Resolves bearer token values to token records."""

    def resolve(self, value: str) -> Optional[TokenRecord]: ...


class CallDispatcher(Protocol):
    """Executes inner procedure calls; may be sync or async."""

    def call(
        self,
        request: RpcRequest,
        principal: Optional[Principal] = None
    ) -> Union[RpcResponse, Awaitable[RpcResponse]]: ...
