"""Authentication metadata resolution.

Derives the effective authentication level and required scopes of a tool
from the ``auth`` entry of its annotations:

- no ``auth`` entry: level ``none``, no scopes
- explicit ``level``: used verbatim, whatever the scopes
- no ``level`` and at least one scope: ``required``
- no ``level`` and no scopes: ``none``
"""

from typing import Any, Optional

from shared.models import AuthLevel, AuthRequirements, ExtensionMetadata

AUTH_KEY = "auth"


def resolve_auth(annotations: Optional[dict[str, Any]]) -> AuthRequirements:
    """
    Resolve the authentication requirements declared in annotations.

    Args:
        annotations: Tool annotations, or None

    Returns:
        Effective level, scopes and description
    """
    if not annotations:
        return AuthRequirements()

    auth = annotations.get(AUTH_KEY)
    if not auth:
        return AuthRequirements()

    scopes = tuple(auth.get("scopes") or ())
    level = auth.get("level")

    if level is not None:
        effective = AuthLevel(level)
    elif scopes:
        effective = AuthLevel.REQUIRED
    else:
        effective = AuthLevel.NONE

    return AuthRequirements(
        level=effective,
        scopes=scopes,
        description=auth.get("description"),
    )


def resolve_extension_auth(extension: Optional[ExtensionMetadata]) -> AuthRequirements:
    """Resolve the requirements of a tool from its extension metadata."""
    if extension is None:
        return AuthRequirements()
    return resolve_auth(extension.annotations)
