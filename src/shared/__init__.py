"""Shared models, configuration and logging for the RPC Tool Gateway."""

from shared.models import (
    AuthLevel,
    AuthRequirements,
    ExtensionMetadata,
    NormalizedTool,
    ParameterSpec,
    Principal,
    ProcedureDescriptor,
    TokenRecord,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AuthLevel",
    "AuthRequirements",
    "ExtensionMetadata",
    "NormalizedTool",
    "ParameterSpec",
    "Principal",
    "ProcedureDescriptor",
    "TokenRecord",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
