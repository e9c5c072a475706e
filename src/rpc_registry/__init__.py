"""Method registry - procedures, permissions and call dispatch.

The registry is the inner, independently evolving protocol the tool
gateway fronts. Procedures are registered once at startup; those carrying
tool metadata become candidates for exposure through the gateway.
"""

from rpc_registry.base import Procedure, ProcedureError, mcp_tool
from rpc_registry.dispatcher import RpcDispatcher
from rpc_registry.permissions import RolePermissionPredicate
from rpc_registry.registry import MethodRegistry, RegistryChanged

__all__ = [
    "Procedure",
    "ProcedureError",
    "mcp_tool",
    "RpcDispatcher",
    "RolePermissionPredicate",
    "MethodRegistry",
    "RegistryChanged",
]
