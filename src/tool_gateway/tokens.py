"""OAuth token stores.

Two TokenStore implementations:
- InMemoryTokenStore: opaque random tokens kept in process memory
- JWTTokenStore: self-contained signed JWTs, with a jti revocation list

Both resolve a bearer value into a TokenRecord; validity (expiry,
revocation) is judged by the OAuth gate from the record.
"""

import secrets
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from jose import JWTError, jwt

from shared.logging import get_logger
from shared.models import TokenRecord, utcnow

logger = get_logger(__name__)

ALGORITHM = "HS256"


class InMemoryTokenStore:
    """Opaque bearer tokens stored in memory."""

    def __init__(self, default_ttl_minutes: int = 60) -> None:
        self.default_ttl = timedelta(minutes=default_ttl_minutes)
        self._tokens: dict[str, TokenRecord] = {}
        self._lock = threading.Lock()

    def issue(
        self,
        subject: str,
        scopes: Iterable[str] = (),
        ttl: Optional[timedelta] = None,
        client_id: Optional[str] = None
    ) -> TokenRecord:
        """Create and store a new token."""
        record = TokenRecord(
            value=secrets.token_urlsafe(32),
            subject=subject,
            scopes=frozenset(scopes),
            expires_at=utcnow() + (ttl if ttl is not None else self.default_ttl),
            client_id=client_id,
        )
        with self._lock:
            self._tokens[record.value] = record
        logger.info("Token issued", subject=subject, scopes=sorted(record.scopes))
        return record

    def add(self, record: TokenRecord) -> None:
        """Store an externally created token record."""
        with self._lock:
            self._tokens[record.value] = record

    def revoke(self, value: str) -> bool:
        """Mark a token as revoked. Returns False if unknown."""
        with self._lock:
            record = self._tokens.get(value)
            if record is None:
                return False
            self._tokens[value] = record.model_copy(update={"revoked": True})
        logger.info("Token revoked", subject=record.subject)
        return True

    def resolve(self, value: str) -> Optional[TokenRecord]:
        with self._lock:
            return self._tokens.get(value)


class JWTTokenStore:
    """
    Signed JWT access tokens.

    Claims: ``sub`` (subject), ``scope`` (list or space separated string),
    ``exp``, ``jti`` and optional ``client_id``. Expiry is reported through
    the record rather than rejected during decoding, so the gate can answer
    with the proper error.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = ALGORITHM,
        token_expire_minutes: int = 60
    ) -> None:
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_expire_minutes = token_expire_minutes
        self._revoked: set[str] = set()
        self._lock = threading.Lock()

    def create_token(
        self,
        subject: str,
        scopes: Iterable[str] = (),
        client_id: Optional[str] = None,
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create a signed access token.

        Args:
            subject: User id the token is issued to
            scopes: Granted scopes
            client_id: Client the token was issued for
            expires_delta: Lifetime, defaults to the configured one

        Returns:
            JWT token string
        """
        expire = utcnow() + (expires_delta or timedelta(minutes=self.token_expire_minutes))
        payload = {
            "sub": subject,
            "scope": " ".join(scopes),
            "exp": int(expire.timestamp()),
            "jti": uuid.uuid4().hex,
        }
        if client_id:
            payload["client_id"] = client_id
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def revoke(self, token: str) -> bool:
        """Revoke a token by its jti. Returns False if it cannot be decoded."""
        claims = self._decode(token)
        if claims is None or not claims.get("jti"):
            return False
        with self._lock:
            self._revoked.add(claims["jti"])
        return True

    def resolve(self, value: str) -> Optional[TokenRecord]:
        claims = self._decode(value)
        if claims is None:
            return None

        subject = claims.get("sub")
        exp = claims.get("exp")
        if not subject or exp is None:
            logger.warning("Token is missing required claims")
            return None

        scope_claim = claims.get("scope", [])
        if isinstance(scope_claim, str):
            scopes = frozenset(scope_claim.split())
        else:
            scopes = frozenset(scope_claim)

        with self._lock:
            revoked = claims.get("jti") in self._revoked

        return TokenRecord(
            value=value,
            subject=subject,
            scopes=scopes,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            revoked=revoked,
            client_id=claims.get("client_id"),
        )

    def _decode(self, token: str) -> Optional[dict]:
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.warning("Token verification failed", error=str(e))
            return None
