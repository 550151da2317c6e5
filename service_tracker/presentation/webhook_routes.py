"""Telegram webhook endpoint.

This endpoint keeps Telegram's own ``{ok, ...}`` wire contract instead of
Problem Details, and rejects bad calls before the store is touched.
"""

import hmac
from typing import Annotated, Final

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from ..application.access_service import process_telegram_update
from ..constants import TELEGRAM_SECRET_HEADER
from ..logging_config import get_logger
from .dependencies import GatewayDep, SessionDep, SettingsDep

logger: Final = get_logger(__name__)

WEBHOOK_PATH: Final = "/telegram/webhook"

webhook_router: Final = APIRouter(tags=["telegram"])


@webhook_router.post(WEBHOOK_PATH, summary="Telegram callback updates")
async def telegram_webhook(
    *,
    session: SessionDep,
    gateway: GatewayDep,
    settings: SettingsDep,
    request: Request,
    secret_token: Annotated[str | None, Header(alias=TELEGRAM_SECRET_HEADER)] = None,
) -> JSONResponse:
    expected = settings.telegram_webhook_secret
    provided = secret_token or ""
    if not provided or not expected or not hmac.compare_digest(provided, expected):
        logger.warning("Telegram webhook rejected", reason="invalid_secret")
        return JSONResponse(
            status_code=401, content={"ok": False, "error": "invalid_secret"}
        )

    try:
        update = await request.json()
    except ValueError:
        update = {}

    outcome = await process_telegram_update(
        session,
        update if isinstance(update, dict) else {},
        gateway,
        settings.telegram_admin_chat_id,
    )
    return JSONResponse(status_code=outcome.http_status, content=outcome.to_response())


@webhook_router.api_route(
    WEBHOOK_PATH,
    methods=["GET", "HEAD", "OPTIONS", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def telegram_webhook_method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={"ok": False, "error": "method_not_allowed"},
        headers={"Allow": "POST"},
    )
