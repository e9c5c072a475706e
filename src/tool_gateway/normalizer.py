"""Schema normalization.

Turns registry procedure descriptors into canonical tool descriptors:

- name: the procedure id
- description: the procedure usage text
- inputSchema: object schema of the parameters, with each parameter's
  description merged into its schema and ``required`` listing mandatory
  parameters (omitted when there are none)
- outputSchema: the implementation's output schema, when declared
- title / annotations: copied from the tool metadata
"""

import copy
from typing import Any, Optional

from shared.models import ExtensionMetadata, NormalizedTool, ProcedureDescriptor
from shared.schema import build_object_schema, with_description
from tool_gateway.interfaces import ProcedureRegistry


def build_input_schema(descriptor: ProcedureDescriptor) -> dict[str, Any]:
    """Build the object schema describing a procedure's parameters."""
    properties: dict[str, dict[str, Any]] = {}
    required: list[str] = []

    for name, spec in descriptor.parameters.items():
        properties[name] = with_description(spec.json_schema, spec.description)
        if spec.required:
            required.append(name)

    return build_object_schema(properties, required)


def normalize(
    descriptor: ProcedureDescriptor,
    extension: Optional[ExtensionMetadata] = None,
    output_schema: Optional[Any] = None
) -> NormalizedTool:
    """
    Normalize a procedure descriptor into a tool descriptor.

    Pure and deterministic: inputs are never mutated and equal inputs give
    equal outputs.
    """
    title = None
    annotations = None
    if extension is not None:
        title = extension.title or None
        annotations = copy.deepcopy(extension.annotations) if extension.annotations else None

    return NormalizedTool(
        name=descriptor.id,
        description=descriptor.usage_text,
        input_schema=build_input_schema(descriptor),
        output_schema=copy.deepcopy(output_schema),
        title=title,
        annotations=annotations,
    )


class ToolNormalizer:
    """Normalizer resolving tool metadata and output schemas from a registry."""

    def __init__(self, registry: ProcedureRegistry) -> None:
        self.registry = registry

    def normalize(self, descriptor: ProcedureDescriptor) -> NormalizedTool:
        ref = descriptor.implementation_ref
        return normalize(
            descriptor,
            extension=self.registry.get_extension(ref),
            output_schema=self.registry.get_output_schema(ref),
        )

    def normalize_many(self, descriptors: list[ProcedureDescriptor]) -> list[NormalizedTool]:
        return [self.normalize(descriptor) for descriptor in descriptors]
