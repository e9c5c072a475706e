"""Requester identification.

Resolves who is calling from the HTTP request:
- A valid bearer token identifies the token's subject
- Otherwise a session cookie identifies the session user
- Otherwise the requester is anonymous

An unusable bearer token yields an anonymous principal here; invocation
rejects such a token with ``invalid_token`` before looking up the tool.

Sessions are opened by exchanging an active bearer token at
``POST /session`` and closed with ``DELETE /session``.
"""

import secrets
import threading
from typing import Optional

from shared.config import UserAccount
from shared.logging import get_logger
from shared.models import AuthMethod, Principal
from tool_gateway.interfaces import TokenStore

logger = get_logger(__name__)

SESSION_COOKIE = "session_id"
BEARER_PREFIX = "bearer "


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the bearer value of an Authorization header, if any."""
    if not authorization:
        return None
    if not authorization.lower().startswith(BEARER_PREFIX):
        return None
    value = authorization[len(BEARER_PREFIX):].strip()
    return value or None


class SessionStore:
    """Server-side sessions mapping session ids to user ids."""

    def __init__(self) -> None:
        self._sessions: dict[str, str] = {}
        self._lock = threading.Lock()

    def open(self, user_id: str) -> str:
        """Start a session and return its id."""
        session_id = secrets.token_urlsafe(24)
        with self._lock:
            self._sessions[session_id] = user_id
        return session_id

    def close(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Optional[str]:
        with self._lock:
            return self._sessions.get(session_id)


class PrincipalResolver:
    """Builds the Principal of a request from its credentials."""

    def __init__(
        self,
        token_store: TokenStore,
        users: Optional[list[UserAccount]] = None,
        sessions: Optional[SessionStore] = None
    ) -> None:
        self.token_store = token_store
        self.sessions = sessions or SessionStore()
        self._users = {user.user_id: user for user in users or []}

    def resolve(
        self,
        authorization: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> Principal:
        """
        Identify the requester.

        Args:
            authorization: Value of the Authorization header
            session_id: Value of the session cookie

        Returns:
            The requesting principal, anonymous if nothing matched
        """
        bearer = extract_bearer(authorization)
        if bearer:
            principal = self._from_bearer(bearer)
            if principal is not None:
                return principal
            logger.debug("Bearer token not usable for identification")

        if session_id:
            user_id = self.sessions.get(session_id)
            if user_id is not None:
                return self._principal(user_id, AuthMethod.SESSION)

        return Principal.anonymous()

    def _from_bearer(self, bearer: str) -> Optional[Principal]:
        try:
            record = self.token_store.resolve(bearer)
        except Exception as e:
            logger.error("Token store lookup failed", error=str(e), exc_info=True)
            return None

        if record is None or not record.is_active():
            return None

        return self._principal(
            record.subject,
            AuthMethod.BEARER,
            scopes=tuple(sorted(record.scopes))
        )

    def _principal(
        self,
        user_id: str,
        method: AuthMethod,
        scopes: tuple[str, ...] = ()
    ) -> Principal:
        user = self._users.get(user_id)
        roles = ["authenticated"]
        if user is not None:
            roles.extend(role for role in user.roles if role not in roles)
        return Principal(
            user_id=user_id,
            username=user.username if user else user_id,
            roles=tuple(roles),
            authenticated_via=method,
            scopes=scopes,
        )
