"""Audit logging for tool invocations.

Logs every invocation of a resolved tool for compliance and debugging.
Captures: requester, tool, arguments, timestamp, outcome.
"""

import asyncio
import uuid
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.logging import get_logger
from shared.models import AuditEntry, InvocationStatus, Principal, utcnow

logger = get_logger(__name__)


class AuditLogger:
    """
    Audit logger for tool invocations.

    All invocations are logged with:
    - Requester identity and authentication method
    - Tool name
    - Arguments (with sensitive data redaction)
    - Timestamp
    - Outcome and error code
    """

    # Arguments that should be redacted in audit logs
    SENSITIVE_PARAMS = {"password", "token", "secret", "api_key", "apikey", "credential"}

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = True,
        buffer_size: int = 100
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

        if self.enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _redact_sensitive(self, params: dict[str, Any]) -> dict[str, Any]:
        """Redact sensitive arguments from audit logs."""
        redacted = {}
        for key, value in params.items():
            if key.lower() in self.SENSITIVE_PARAMS:
                redacted[key] = "[REDACTED]"
            elif isinstance(value, dict):
                redacted[key] = self._redact_sensitive(value)
            else:
                redacted[key] = value
        return redacted

    def create_entry(
        self,
        principal: Principal,
        tool_name: str,
        arguments: dict[str, Any],
        status: InvocationStatus,
        http_status: int = 200,
        error_code: Optional[str] = None,
        error: Optional[str] = None,
        execution_time_ms: float = 0,
        correlation_id: Optional[str] = None
    ) -> AuditEntry:
        """
        Create an audit entry for an invocation.

        Args:
            principal: The requester
            tool_name: Invoked tool
            arguments: Invocation arguments (redacted before storing)
            status: Outcome
            http_status: HTTP status returned to the client
            error_code: Outer error code, if the invocation failed
            error: Error message, if the invocation failed
            execution_time_ms: Wall time spent
            correlation_id: Id of the inner call

        Returns:
            Audit entry
        """
        return AuditEntry(
            id=str(uuid.uuid4()),
            timestamp=utcnow(),
            user_id=principal.user_id,
            authenticated_via=principal.authenticated_via,
            tool_name=tool_name,
            arguments=self._redact_sensitive(arguments),
            status=status,
            error_code=error_code,
            error=error,
            http_status=http_status,
            execution_time_ms=execution_time_ms,
            correlation_id=correlation_id,
        )

    async def log(self, entry: AuditEntry) -> None:
        """
        Record an audit entry.

        Args:
            entry: Entry built with create_entry
        """
        if not self.enabled:
            return

        logger.info(
            "Tool invoked",
            audit_id=entry.id,
            user=entry.user_id,
            tool=entry.tool_name,
            status=entry.status.value,
            error_code=entry.error_code,
            execution_time_ms=entry.execution_time_ms
        )

        # Buffer for batch file writing
        async with self._lock:
            self._buffer.append(entry)

            if len(self._buffer) >= self.buffer_size:
                await self._flush()

    async def _flush(self) -> None:
        """Flush buffered entries to file."""
        if not self._buffer:
            return

        entries_to_write = self._buffer.copy()
        self._buffer.clear()

        try:
            async with aiofiles.open(self.log_path, "a") as f:
                for entry in entries_to_write:
                    await f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write audit log", error=str(e))
            # Re-add entries to buffer for retry
            self._buffer.extend(entries_to_write)

    async def flush(self) -> None:
        """Public method to flush audit buffer."""
        async with self._lock:
            await self._flush()
