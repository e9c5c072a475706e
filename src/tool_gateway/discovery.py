"""Tool discovery.

Selects the procedures exposed as tools for a given principal:
1. Walk the registry in registration order
2. Keep procedures carrying tool metadata (explicit opt-in)
3. Keep those whose access requirements the principal satisfies

Results may be cached per (registry version, permission fingerprint).
"""

import threading
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import Principal, ProcedureDescriptor
from tool_gateway.interfaces import PermissionPredicate, ProcedureRegistry

logger = get_logger(__name__)

DISCOVERY_CACHE_TAG = "tool_gateway:discovery"

CacheKey = tuple[int, str]


class ToolDiscoveryService:
    """
    Discovers the tools visible to a principal.

    The returned mapping is ordered like the registry, so a fixed registry
    and a fixed permission context always produce the same order. The cache
    never serves a result computed for another permission fingerprint.
    """

    def __init__(
        self,
        registry: ProcedureRegistry,
        permissions: PermissionPredicate,
        cache_enabled: bool = True
    ) -> None:
        self.registry = registry
        self.permissions = permissions
        self.cache_enabled = cache_enabled
        self._cache: dict[CacheKey, dict[str, ProcedureDescriptor]] = {}
        self._lock = threading.Lock()

        registry.subscribe(self._on_registry_changed)

    def discover(self, principal: Principal) -> dict[str, ProcedureDescriptor]:
        """
        Discover all tools accessible to ``principal``.

        Returns:
            Tool name to descriptor, in registry order
        """
        if not self.cache_enabled:
            return self._discover(principal)

        key = self.cache_key(principal)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return dict(cached)

        tools = self._discover(principal)

        with self._lock:
            # A registry change while computing makes the key stale; never store it.
            if key[0] == self.registry.version:
                self._cache[key] = tools
        return dict(tools)

    def lookup(self, principal: Principal, name: str) -> Optional[ProcedureDescriptor]:
        """Find a single tool, or None if absent or not accessible."""
        return self.discover(principal).get(name)

    def cache_key(self, principal: Principal) -> CacheKey:
        """Cache key of a principal's discovery result."""
        return (self.registry.version, self.permissions.fingerprint(principal))

    def invalidate(self) -> None:
        """Drop every cached discovery result."""
        with self._lock:
            dropped = len(self._cache)
            self._cache = {}
        logger.debug("Discovery cache invalidated", entries=dropped)

    def _on_registry_changed(self, event: Any) -> None:
        self.invalidate()

    def _discover(self, principal: Principal) -> dict[str, ProcedureDescriptor]:
        tools: dict[str, ProcedureDescriptor] = {}

        for descriptor in self.registry.list_procedures():
            if self.registry.get_extension(descriptor.implementation_ref) is None:
                continue

            if not self.permissions.permits(principal, descriptor.access_requirements):
                continue

            tools[descriptor.id] = descriptor

        logger.debug(
            "Tools discovered",
            user=principal.user_id,
            tool_count=len(tools)
        )
        return tools
