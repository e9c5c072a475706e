"""OAuth 2.0 Protected Resource Metadata contribution.

Publishes what a client needs to obtain a suitable token for the tools:
the scopes they declare (RFC 9728 ``scopes_supported``), the supported
bearer methods and the tool names as authorization details types
(RFC 9396).
"""

from typing import Any, Iterable, Optional

from shared.logging import get_logger
from shared.models import ProcedureDescriptor
from tool_gateway.auth_metadata import resolve_extension_auth
from tool_gateway.interfaces import ProcedureRegistry

logger = get_logger(__name__)


class ScopeCatalog:
    """Known OAuth scopes with their label and description."""

    def __init__(self, scopes: dict[str, dict[str, str]]) -> None:
        self._scopes = {name: dict(info) for name, info in scopes.items()}

    def unknown(self, scopes: Iterable[str]) -> list[str]:
        """Scopes not present in the catalog, in input order."""
        return [scope for scope in scopes if scope not in self._scopes]


def collect_tool_scopes(
    registry: ProcedureRegistry,
    tools: Iterable[ProcedureDescriptor]
) -> tuple[list[str], list[str]]:
    """
    Gather scopes and names of tools.

    Returns:
        (sorted unique scopes, sorted tool names)
    """
    scopes: set[str] = set()
    names: list[str] = []

    for descriptor in tools:
        extension = registry.get_extension(descriptor.implementation_ref)
        scopes.update(resolve_extension_auth(extension).scopes)
        names.append(descriptor.id)

    return sorted(scopes), sorted(names)


def build_resource_metadata(
    registry: ProcedureRegistry,
    tools: Iterable[ProcedureDescriptor],
    resource: Optional[str] = None,
    authorization_servers: Optional[list[str]] = None
) -> dict[str, Any]:
    """
    Build the protected resource metadata document.

    ``scopes_supported`` is only present when at least one tool declares
    a scope, and the tool-derived fields only when there are tools.
    """
    metadata: dict[str, Any] = {}
    if resource:
        metadata["resource"] = resource
    if authorization_servers:
        metadata["authorization_servers"] = list(authorization_servers)

    metadata["bearer_methods_supported"] = ["header"]

    scopes, names = collect_tool_scopes(registry, tools)
    if not names:
        return metadata

    if scopes:
        metadata["scopes_supported"] = scopes
    metadata["authorization_details_types_supported"] = names
    return metadata


def warn_unknown_scopes(registry: ProcedureRegistry, catalog: ScopeCatalog) -> list[str]:
    """Log tools declaring scopes missing from the catalog."""
    unknown_all: list[str] = []
    for descriptor in registry.list_procedures():
        extension = registry.get_extension(descriptor.implementation_ref)
        if extension is None:
            continue
        unknown = catalog.unknown(resolve_extension_auth(extension).scopes)
        if unknown:
            logger.warning("Tool declares unknown scopes", tool=descriptor.id, scopes=unknown)
            unknown_all.extend(unknown)
    return unknown_all
