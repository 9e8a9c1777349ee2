from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Mapping, Optional

import structlog

# Per-request id for log tracing. Unrelated to the client correlation record.
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID for log tracing."""
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set or generate a request ID for the current request context."""
    rid = request_id or str(uuid.uuid4())
    request_id_var.set(rid)
    return rid


def _add_request_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    rid = get_request_id()
    if rid:
        event_dict["request_id"] = rid
    return event_dict


_SENSITIVE_KEYS = ("password", "secret", "token", "authorization", "private_key")


def _mask(value: Any) -> Any:
    if isinstance(value, str) and len(value) > 4:
        # Keep first/last 2 chars so entries can still be told apart
        return value[:2] + "***" + value[-2:]
    if value is None or isinstance(value, (bool, int)):
        return value
    return "***"


def _looks_like_jwt(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("eyJ") and value.count(".") == 2


def _redact_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Keep correlation secrets and bearer tokens out of log entries.

    Sensitive keys are masked, a correlation claim (``{"id", "secret"}``)
    keeps its id but not its secret, and any value shaped like a JWT is
    masked under whatever key it was logged.
    """
    for key, value in list(event_dict.items()):
        lower_key = key.lower()
        if any(part in lower_key for part in _SENSITIVE_KEYS):
            event_dict[key] = _mask(value)
        elif isinstance(value, Mapping) and "secret" in value:
            event_dict[key] = {**value, "secret": _mask(value["secret"])}
        elif _looks_like_jwt(value):
            event_dict[key] = _mask(value)
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def _configure_structlog(log_level: str = "INFO", console: bool = False) -> None:
    """Install the processor chain: JSON lines, or colored console output."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_request_id,
        _redact_credentials,
    ]
    if console:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# LOG_DEV_MODE or LOG_JSON=false switch to console output
_configure_structlog(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    console=_env_flag("LOG_DEV_MODE", "false") or not _env_flag("LOG_JSON", "true"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
