"""Per-tool route table.

Every procedure exposed as a tool gets a convenience endpoint
``/tools/<name>`` accepting GET and POST. The table is built from the
registry snapshot and rebuilt when the registry changes, instead of being
recomputed per request.
"""

import threading
from dataclasses import dataclass
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import AuthLevel, AuthRequirements
from tool_gateway.auth_metadata import resolve_extension_auth
from tool_gateway.interfaces import ProcedureRegistry

logger = get_logger(__name__)

TOOL_ROUTE_PREFIX = "/tools/"
TOOL_ROUTE_METHODS = ("GET", "POST")


@dataclass(frozen=True)
class ToolRoute:
    """Route of a single tool plus the auth data the handler needs."""
    name: str
    route_name: str
    path: str
    methods: tuple[str, ...]
    auth_level: AuthLevel
    auth_scopes: tuple[str, ...]

    @property
    def requirements(self) -> AuthRequirements:
        return AuthRequirements(level=self.auth_level, scopes=self.auth_scopes)

    def allows(self, method: str) -> bool:
        return method.upper() in self.methods


def route_for(name: str, extension: Any) -> ToolRoute:
    requirements = resolve_extension_auth(extension)
    return ToolRoute(
        name=name,
        route_name="tool_gateway.tool." + name.replace(".", "_"),
        path=TOOL_ROUTE_PREFIX + name,
        methods=TOOL_ROUTE_METHODS,
        auth_level=requirements.level,
        auth_scopes=requirements.scopes,
    )


class RouteTable:
    """Tool name to route, regenerated on registry change."""

    def __init__(self, registry: ProcedureRegistry) -> None:
        self.registry = registry
        self._routes: dict[str, ToolRoute] = {}
        self._lock = threading.Lock()
        self.rebuild()
        registry.subscribe(self._on_registry_changed)

    def rebuild(self) -> None:
        """Recompute every route from the registry."""
        routes: dict[str, ToolRoute] = {}
        for descriptor in self.registry.list_procedures():
            extension = self.registry.get_extension(descriptor.implementation_ref)
            if extension is None:
                continue
            routes[descriptor.id] = route_for(descriptor.id, extension)

        with self._lock:
            self._routes = routes
        logger.debug("Tool routes rebuilt", route_count=len(routes))

    def get(self, name: str) -> Optional[ToolRoute]:
        with self._lock:
            return self._routes.get(name)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._routes)

    def _on_registry_changed(self, event: Any) -> None:
        self.rebuild()
