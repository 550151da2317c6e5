"""Structured log helpers for requests, store writes and access decisions.

Timing and status counting of HTTP requests live in ``metrics``; these helpers
only describe *who* did *what* to *which* document.
"""

import logging
from typing import Any

from fastapi import Request

from .config import Settings


def log_access_decision(
    uid: str, state: str, logger_name: str = "access", **kwargs: Any
) -> None:
    """Log the outcome of an access request or an admin decision.

    Args:
        uid: Identity the decision applies to
        state: Resulting access state (allowed, pending, denied, blocked)
        logger_name: Name of the logger to use
        **kwargs: Additional context data
    """
    logger = logging.getLogger(logger_name)
    logger.info(
        f"Access decision: {uid} -> {state}",
        extra={"uid": uid, "state": state, **kwargs},
    )


def log_api_request(request: Request, response_status: int) -> None:
    """Log one API call against the route it matched and the calling uid.

    The matched route template is logged instead of the raw path, so dates and
    item ids stay in their own fields. Telegram webhook calls carry no uid.
    """
    route = request.scope.get("route")
    template = getattr(route, "path", request.url.path)
    uid = request.headers.get("x-auth-uid", "")

    if response_status >= 500:
        level = logging.ERROR
    elif response_status in (401, 403):
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.getLogger("api").log(
        level,
        f"{request.method} {template} -> {response_status} ({uid or 'anonymous'})",
        extra={
            "method": request.method,
            "route": template,
            "path_params": dict(request.path_params),
            "status_code": response_status,
            "uid": uid,
        },
    )


def log_database_operation(
    operation: str,
    collection: str,
    doc_id: str,
    success: bool = True,
    **kwargs: Any,
) -> None:
    """Log a write to one store document.

    Args:
        operation: upsert, append, transition, reopen, unblock or deactivate
        collection: Store collection (table) name
        doc_id: Document key, e.g. ``{date}_{itemId}`` or a uid
        success: Whether the write went through
        **kwargs: Fields worth seeing next to the document id
    """
    level = logging.INFO if success else logging.ERROR
    outcome = "" if success else " failed"
    logging.getLogger("database").log(
        level,
        f"{operation} {collection}/{doc_id}{outcome}",
        extra={
            "operation": operation,
            "collection": collection,
            "doc_id": doc_id,
            "success": success,
            **kwargs,
        },
    )


def log_system_info(settings: Settings, hostname: str) -> None:
    """Log what this instance is wired to at startup, without secrets."""
    backend = settings.database_url.split(":", 1)[0]
    logging.getLogger("system").info(
        f"{settings.app_name} {settings.version} starting on {hostname}",
        extra={
            "hostname": hostname,
            "debug_mode": settings.debug,
            "database_backend": backend,
            "telegram_configured": settings.telegram_configured,
            "webhook_secret_set": bool(settings.telegram_webhook_secret),
            "source_api_configured": bool(settings.source_api_base_url),
        },
    )
