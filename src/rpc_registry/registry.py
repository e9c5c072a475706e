"""Method Registry.

Manages registration and lookup of procedures. At registration time each
procedure is turned into an immutable ProcedureDescriptor and its optional
tool metadata is stored in a side-table keyed by implementation reference,
so later lookups never need to inspect the procedure classes again.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from shared.logging import get_logger
from shared.models import ExtensionMetadata, ProcedureDescriptor
from rpc_registry.base import Procedure, get_tool_metadata, implementation_ref

logger = get_logger(__name__)


@dataclass(frozen=True)
class RegistryChanged:
    """Event emitted after procedures were added or removed."""
    version: int
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()


RegistryListener = Callable[[RegistryChanged], None]


class MethodRegistry:
    """
    Central registry of callable procedures.

    Responsibilities:
    - Register procedures and build their descriptors
    - Keep the tool metadata side-table
    - Provide output schemas for implementations
    - Notify subscribers when the set of procedures changes
    """

    def __init__(self) -> None:
        self._procedures: dict[str, type[Procedure]] = {}
        self._descriptors: dict[str, ProcedureDescriptor] = {}
        self._extensions: dict[str, ExtensionMetadata] = {}
        self._output_schemas: dict[str, Any] = {}
        self._listeners: list[RegistryListener] = []
        self._version = 0
        self._lock = threading.RLock()

    @property
    def version(self) -> int:
        """Monotonic counter bumped on every change."""
        return self._version

    def register(
        self,
        procedure_cls: type[Procedure],
        extension: Union[ExtensionMetadata, dict[str, Any], None] = None
    ) -> ProcedureDescriptor:
        """
        Register a procedure class.

        Args:
            procedure_cls: Procedure implementation
            extension: Tool metadata overriding the one declared with
                ``@mcp_tool``. Plain dicts are validated into
                ExtensionMetadata.

        Returns:
            The descriptor built for the procedure

        Raises:
            ValueError: If the id is empty or already registered, or if
                the tool metadata is malformed
        """
        method_id = procedure_cls.method_id
        if not method_id:
            raise ValueError(f"Procedure {procedure_cls.__name__} does not declare a method_id")

        if isinstance(extension, dict):
            extension = ExtensionMetadata.model_validate(extension)
        if extension is None:
            extension = get_tool_metadata(procedure_cls)

        ref = implementation_ref(procedure_cls)
        descriptor = ProcedureDescriptor(
            id=method_id,
            usage_text=procedure_cls.usage,
            parameters=dict(procedure_cls.params),
            access_requirements=frozenset(procedure_cls.access),
            implementation_ref=ref,
        )

        with self._lock:
            if method_id in self._procedures:
                raise ValueError(f"Procedure '{method_id}' is already registered")

            self._procedures[method_id] = procedure_cls
            self._descriptors[method_id] = descriptor
            if extension is not None:
                self._extensions[ref] = extension
            output_schema = procedure_cls.output_schema()
            if output_schema is not None:
                self._output_schemas[ref] = output_schema
            self._version += 1
            event = RegistryChanged(version=self._version, added=(method_id,))

        logger.info(
            "Procedure registered",
            procedure=method_id,
            exposed_as_tool=extension is not None,
            version=event.version
        )
        self._notify(event)
        return descriptor

    def register_many(self, procedures: list[type[Procedure]]) -> None:
        """Register multiple procedures at once."""
        for procedure_cls in procedures:
            self.register(procedure_cls)

    def unregister(self, method_id: str) -> bool:
        """
        Remove a procedure from the registry.

        Args:
            method_id: Procedure identifier

        Returns:
            True if the procedure was removed, False if not found
        """
        with self._lock:
            if method_id not in self._procedures:
                return False

            descriptor = self._descriptors.pop(method_id)
            del self._procedures[method_id]
            self._extensions.pop(descriptor.implementation_ref, None)
            self._output_schemas.pop(descriptor.implementation_ref, None)
            self._version += 1
            event = RegistryChanged(version=self._version, removed=(method_id,))

        logger.info("Procedure unregistered", procedure=method_id, version=event.version)
        self._notify(event)
        return True

    def get(self, method_id: str) -> Optional[ProcedureDescriptor]:
        """Get a procedure descriptor by id."""
        return self._descriptors.get(method_id)

    def get_implementation(self, method_id: str) -> Optional[type[Procedure]]:
        """Get the procedure class registered under an id."""
        return self._procedures.get(method_id)

    def list_procedures(self) -> list[ProcedureDescriptor]:
        """All descriptors in registration order."""
        with self._lock:
            return list(self._descriptors.values())

    def get_extension(self, ref: str) -> Optional[ExtensionMetadata]:
        """Tool metadata attached to an implementation, if any."""
        return self._extensions.get(ref)

    def get_output_schema(self, ref: str) -> Optional[Any]:
        """Output schema declared by an implementation, if any."""
        return self._output_schemas.get(ref)

    def subscribe(self, listener: RegistryListener) -> None:
        """Call ``listener`` after every registry change."""
        self._listeners.append(listener)

    def _notify(self, event: RegistryChanged) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Registry listener failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                    exc_info=True
                )

    def clear(self) -> None:
        """Remove every procedure. Use with caution."""
        with self._lock:
            removed = tuple(self._procedures)
            self._procedures.clear()
            self._descriptors.clear()
            self._extensions.clear()
            self._output_schemas.clear()
            self._version += 1
            event = RegistryChanged(version=self._version, removed=removed)

        logger.warning("Method registry cleared")
        self._notify(event)
