"""OAuth bearer-token gate for tool invocation.

Checked in order:
1. level ``required`` and an anonymous requester: 401
2. scopes declared and no bearer token: 401
3. no bearer token: allowed (session authentication is accepted as is)
4. bearer token unknown, expired or revoked: 401 invalid_token
5. bearer token missing a required scope: 403 insufficient_scope
6. otherwise allowed

This runs in addition to the registry's own access check.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import status

from shared.logging import get_logger
from shared.models import AuthLevel, AuthMethod, AuthRequirements, Principal, ToolErrorCode, TokenRecord
from tool_gateway.errors import AuthorizationDenied
from tool_gateway.identity import extract_bearer
from tool_gateway.interfaces import PermissionPredicate, TokenStore

logger = get_logger(__name__)

INVALID_TOKEN_DESCRIPTION = "The access token is invalid or expired"
CURRENT_SCOPES_HEADER = "X-OAuth-Scopes"
ACCEPTED_SCOPES_HEADER = "X-Accepted-OAuth-Scopes"


@dataclass(frozen=True)
class GateDecision:
    """Outcome of the gate. ``denial`` is set when access is refused."""
    allowed: bool
    denial: Optional[AuthorizationDenied] = None
    token: Optional[TokenRecord] = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls, token: Optional[TokenRecord] = None) -> "GateDecision":
        return cls(allowed=True, token=token)

    @classmethod
    def deny(cls, denial: AuthorizationDenied) -> "GateDecision":
        return cls(allowed=False, denial=denial, details=denial.details)


class OAuthGate:
    """Decides allow / 401 / 403 for a tool invocation."""

    def __init__(
        self,
        token_store: TokenStore,
        permissions: PermissionPredicate,
        realm: str = "MCP Tools"
    ) -> None:
        self.token_store = token_store
        self.permissions = permissions
        self.realm = realm

    def authorize(
        self,
        requirements: AuthRequirements,
        principal: Principal,
        authorization: Optional[str] = None
    ) -> GateDecision:
        """
        Apply the gate to one invocation.

        Args:
            requirements: Resolved auth requirements of the tool
            principal: The requester
            authorization: Raw Authorization header, if any

        Returns:
            The decision; denials carry status code and WWW-Authenticate
        """
        required_scopes = list(requirements.scopes)
        bearer = extract_bearer(authorization)

        if requirements.level == AuthLevel.REQUIRED and self.permissions.is_anonymous(principal):
            return self._deny_unauthenticated("Authentication required")

        if required_scopes and bearer is None:
            return self._deny_unauthenticated("Bearer token required for scoped tool")

        if bearer is None:
            return GateDecision.allow()

        record = self._resolve(bearer)
        if record is None or not record.is_active():
            return GateDecision.deny(self._invalid_token(record))

        current_scopes = sorted(record.scopes)
        missing_scopes = [scope for scope in required_scopes if scope not in record.scopes]
        if missing_scopes:
            logger.info(
                "Insufficient token scopes",
                user=principal.user_id,
                missing_scopes=missing_scopes
            )
            return GateDecision.deny(AuthorizationDenied(
                code=ToolErrorCode.INSUFFICIENT_SCOPE,
                status_code=status.HTTP_403_FORBIDDEN,
                message="Insufficient OAuth scopes",
                www_authenticate=self._challenge(
                    error="insufficient_scope",
                    scope=" ".join(missing_scopes)
                ),
                scope_headers={
                    CURRENT_SCOPES_HEADER: " ".join(current_scopes),
                    ACCEPTED_SCOPES_HEADER: " ".join(required_scopes),
                },
                details={
                    "requiredScopes": required_scopes,
                    "missingScopes": missing_scopes,
                    "currentScopes": current_scopes,
                },
            ))

        return GateDecision.allow(token=record)

    def reject_unusable_bearer(self, authorization: Optional[str]) -> Optional[AuthorizationDenied]:
        """
        Check a presented bearer token before the tool is looked up.

        A token that is unknown, expired or revoked must not silently
        degrade the requester to anonymous.

        Returns:
            The 401 invalid_token denial, or None when no bearer was
            presented or it is active
        """
        bearer = extract_bearer(authorization)
        if bearer is None:
            return None

        record = self._resolve(bearer)
        if record is None or not record.is_active():
            return self._invalid_token(record)
        return None

    def require_bearer(
        self,
        principal: Principal,
        authorization: Optional[str]
    ) -> Optional[AuthorizationDenied]:
        """401 unless the requester was identified by an active bearer token."""
        denial = self.reject_unusable_bearer(authorization)
        if denial is None and principal.authenticated_via != AuthMethod.BEARER:
            denial = self._deny_unauthenticated("Bearer token required").denial
        return denial

    def _resolve(self, bearer: str) -> Optional[TokenRecord]:
        try:
            return self.token_store.resolve(bearer)
        except Exception as e:
            logger.error("Token store lookup failed", error=str(e), exc_info=True)
            return None

    def _invalid_token(self, record: Optional[TokenRecord]) -> AuthorizationDenied:
        if record is None:
            reason = "unknown"
        elif record.revoked:
            reason = "revoked"
        else:
            reason = "expired"
        logger.info("Bearer token rejected", reason=reason)

        return AuthorizationDenied(
            code=ToolErrorCode.INVALID_TOKEN,
            status_code=status.HTTP_401_UNAUTHORIZED,
            message=INVALID_TOKEN_DESCRIPTION,
            www_authenticate=self._challenge(
                error="invalid_token",
                error_description=INVALID_TOKEN_DESCRIPTION
            ),
        )

    def _deny_unauthenticated(self, message: str) -> GateDecision:
        return GateDecision.deny(AuthorizationDenied(
            code=ToolErrorCode.UNAUTHENTICATED,
            status_code=status.HTTP_401_UNAUTHORIZED,
            message=message,
            www_authenticate=self._challenge(),
        ))

    def _challenge(self, **params: str) -> str:
        parts = [f'realm="{self.realm}"']
        parts.extend(f'{key}="{value}"' for key, value in params.items())
        return "Bearer " + ", ".join(parts)
