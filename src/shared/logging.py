"""Structured logging for the Tool Gateway.

structlog with request-scoped context:
- every HTTP request binds ``request_id``, ``http_method`` and ``path``
- every tool invocation additionally binds ``tool`` and ``correlation_id``
- credentials never reach the log output
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "tool-gateway"

CREDENTIAL_KEYS = frozenset({"authorization", "token", "bearer", "secret_key", "cookie"})


def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def mask_credentials(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credential values bound by mistake."""
    for key in CREDENTIAL_KEYS.intersection(event_dict):
        event_dict[key] = "[REDACTED]"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    environment: Optional[str] = None
) -> None:
    """
    Configure structlog for the gateway.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines for log shipping instead of console output
        environment: Deployment environment added to every event
    """
    level = getattr(logging, log_level.upper())

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_service,
        mask_credentials,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if environment:
        def add_environment(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
            event_dict.setdefault("environment", environment)
            return event_dict

        processors.insert(2, add_environment)

    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn access and error logs
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Module logger; request and invocation context is merged in automatically."""
    return structlog.get_logger(name)


def bind_request(request_id: str, http_method: str, path: str) -> None:
    """Start the log context of an HTTP request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        http_method=http_method,
        path=path,
    )


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def invocation_context(tool: str, correlation_id: str) -> Iterator[None]:
    """Bind the invoked tool and the inner call id for the enclosed block."""
    with structlog.contextvars.bound_contextvars(tool=tool, correlation_id=correlation_id):
        yield
