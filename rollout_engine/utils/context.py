"""
Request Context Utilities.

Provides the request ID for log correlation.

Usage:
    from rollout_engine.utils.context import get_request_id

    logger.info("Processing", request_id=get_request_id())
"""

from contextvars import ContextVar
from typing import Any, Optional

# Request-scoped context using contextvars (async-safe)
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get current request ID from context."""
    return request_id_ctx.get()


def add_request_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor that adds the request ID to all logs."""
    request_id = get_request_id()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict
