"""Core data models for the RPC Tool Gateway.

This module defines the shared data structures passed between the method
registry, the gateway core and the HTTP layer. Everything here is plain
data: no I/O and no behaviour beyond validation and serialization.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class AuthLevel(str, Enum):
    """Coarse authentication requirement of a tool."""
    NONE = "none"
    OPTIONAL = "optional"
    REQUIRED = "required"


class AuthMethod(str, Enum):
    """How a principal was authenticated."""
    ANONYMOUS = "anonymous"
    SESSION = "session"
    BEARER = "bearer"


class ToolErrorCode(str, Enum):
    """Error codes of the outer tool protocol."""
    MISSING_PARAMETER = "missing_parameter"
    INVALID_JSON = "invalid_json"
    INVALID_CURSOR = "invalid_cursor"
    TOOL_NOT_FOUND = "tool_not_found"
    EXECUTION_ERROR = "execution_error"
    INVALID_TOKEN = "invalid_token"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    UNAUTHENTICATED = "unauthenticated"


class ParameterSpec(BaseModel):
    """Declaration of a single procedure parameter."""
    model_config = ConfigDict(populate_by_name=True)

    json_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "string"},
        alias="schema",
        description="JSON Schema of the parameter value"
    )
    description: Optional[str] = None
    required: bool = False

    @field_validator("json_schema")
    @classmethod
    def _schema_has_type(cls, value: dict[str, Any]) -> dict[str, Any]:
        if "type" not in value:
            raise ValueError("Parameter schema must declare a 'type'")
        return value


class ProcedureDescriptor(BaseModel):
    """
    Read-only view of a procedure registered in the method registry.

    Descriptors are built once at registration time and never mutated.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Dotted procedure identifier")
    usage_text: str = Field(default="", description="Human readable description")
    parameters: dict[str, ParameterSpec] = Field(default_factory=dict)
    access_requirements: frozenset[str] = Field(default_factory=frozenset)
    implementation_ref: str = Field(..., description="Handle used for side-table lookups")


class AuthAnnotation(BaseModel):
    """The reserved ``auth`` entry of tool annotations."""
    scopes: list[str] = Field(default_factory=list)
    description: Optional[str] = None
    level: Optional[AuthLevel] = None


class ExtensionMetadata(BaseModel):
    """
    Opt-in metadata exposing a procedure as a tool.

    ``annotations`` must be an associative mapping. A list is a modelling
    error and is rejected when the metadata is loaded.
    """
    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    annotations: Optional[dict[str, Any]] = None

    @field_validator("annotations", mode="before")
    @classmethod
    def _annotations_must_be_mapping(cls, value: Any) -> Any:
        if value is None:
            return value
        if isinstance(value, (list, tuple)):
            raise ValueError("Tool annotations must be an associative mapping, not a list")
        if not isinstance(value, dict):
            raise ValueError("Tool annotations must be an associative mapping")
        auth = value.get("auth")
        if auth is not None:
            # Validates shape only; the raw mapping is kept verbatim.
            try:
                AuthAnnotation.model_validate(auth)
            except ValidationError as e:
                raise ValueError(f"Invalid auth annotation: {e}") from e
        return value


class AuthRequirements(BaseModel):
    """Effective authentication requirements of a tool."""
    model_config = ConfigDict(frozen=True)

    level: AuthLevel = AuthLevel.NONE
    scopes: tuple[str, ...] = ()
    description: Optional[str] = None

    @property
    def requires_authentication(self) -> bool:
        return self.level == AuthLevel.REQUIRED


class NormalizedTool(BaseModel):
    """
    Canonical tool descriptor served by ``list`` and ``describe``.

    Computed fresh per request. Optional members are omitted from the
    serialized form when absent.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str
    input_schema: dict[str, Any] = Field(..., alias="inputSchema")
    output_schema: Optional[Any] = Field(default=None, alias="outputSchema")
    title: Optional[str] = None
    annotations: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize using protocol field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Principal(BaseModel):
    """Identity of the requester as seen by the permission system."""
    model_config = ConfigDict(frozen=True)

    user_id: str = "anonymous"
    username: str = "anonymous"
    roles: tuple[str, ...] = ()
    authenticated_via: AuthMethod = AuthMethod.ANONYMOUS
    scopes: tuple[str, ...] = ()

    @property
    def is_anonymous(self) -> bool:
        return self.authenticated_via == AuthMethod.ANONYMOUS

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls(roles=("anonymous",))


class TokenRecord(BaseModel):
    """OAuth access token as returned by a token store."""
    value: str
    subject: str
    scopes: frozenset[str] = Field(default_factory=frozenset)
    expires_at: datetime
    revoked: bool = False
    client_id: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return not self.revoked and not self.is_expired(now)


class RpcError(BaseModel):
    """Error member of an inner procedure-call response."""
    code: int
    message: str
    data: Optional[Any] = None


class RpcRequest(BaseModel):
    """
    A single inner procedure call.

    The gateway always issues requests with an id, never notifications.
    """
    jsonrpc: str = "2.0"
    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


class RpcResponse(BaseModel):
    """Result or error of an inner procedure call."""
    jsonrpc: str = "2.0"
    id: Optional[str] = None
    result: Optional[Any] = None
    error: Optional[RpcError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class ExecutionContext(BaseModel):
    """Context handed to a procedure when it executes."""
    request_id: str = Field(..., description="Correlation id of the inner call")
    principal: Principal
    timestamp: datetime = Field(default_factory=utcnow)


class InvocationStatus(str, Enum):
    """Outcome of a tool invocation, as recorded in the audit trail."""
    SUCCESS = "success"
    DENIED = "denied"
    ERROR = "error"


class AuditEntry(BaseModel):
    """
    Audit log entry for tool invocations.

    Captures requester, tool, arguments, timestamp and outcome.
    """
    id: str
    timestamp: datetime = Field(default_factory=utcnow)

    # Requester
    user_id: str
    authenticated_via: AuthMethod

    # Tool
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    # Outcome
    status: InvocationStatus
    error_code: Optional[str] = None
    error: Optional[str] = None
    http_status: int = 200
    execution_time_ms: float = 0

    # Correlation
    correlation_id: Optional[str] = None
