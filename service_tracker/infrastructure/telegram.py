"""Telegram Bot API gateway for access approval cards.

Every call is a best-effort side channel: callers decide whether a
``TelegramError`` matters, except ``answer_callback`` which never raises.
"""

from dataclasses import dataclass
from typing import Any, Final

import httpx

from ..constants import DEFAULT_HTTP_TIMEOUT_SECONDS, DEFAULT_TELEGRAM_API_BASE_URL
from ..domain.access import RequestStatus, encode_callback_data, format_user_label
from ..domain.exceptions import ConfigurationError, TelegramError
from ..logging_config import get_logger

logger: Final = get_logger(__name__)

_RESOLVED_HEADLINES: Final[dict[str, str]] = {
    RequestStatus.APPROVED: "Request approved",
    RequestStatus.DENIED: "Request denied",
    RequestStatus.BLOCKED: "Request blocked",
}


@dataclass(frozen=True)
class RequestCard:
    """Identity snapshot shown on an approval message."""

    uid: str
    email: str = ""
    display_name: str = ""
    request_count: int = 0

    @property
    def label(self) -> str:
        return format_user_label(self.display_name, self.email, self.uid)


@dataclass(frozen=True)
class SentMessage:
    message_id: int | None
    chat_id: str


def format_request_message(card: RequestCard) -> str:
    return "\n".join(
        [
            "New access request",
            "",
            f"Name: {card.label}",
            f"Email: {card.email or '-'}",
            f"UID: {card.uid}",
            f"Attempts: {card.request_count}",
        ]
    )


def format_resolved_message(card: RequestCard, status: str) -> str:
    headline = _RESOLVED_HEADLINES.get(status, "Request updated")
    return "\n".join(
        [
            headline,
            "",
            f"Name: {card.label}",
            f"Email: {card.email or '-'}",
            f"UID: {card.uid}",
        ]
    )


def build_keyboard(uid: str) -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {"text": "Approve", "callback_data": encode_callback_data("a", uid)},
                {"text": "Deny", "callback_data": encode_callback_data("d", uid)},
                {"text": "Block", "callback_data": encode_callback_data("b", uid)},
            ]
        ]
    }


class TelegramGateway:
    """Thin async client over the Bot API methods the approval flow needs."""

    def __init__(
        self,
        bot_token: str,
        api_base_url: str = DEFAULT_TELEGRAM_API_BASE_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        self.bot_token = bot_token
        self.api_base_url = api_base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, payload: dict[str, Any]) -> Any:
        """POST a Bot API method and return its ``result``.

        Raises:
            ConfigurationError: If no bot token is configured
            TelegramError: On a non-2xx response or an ``ok: false`` body
        """
        if not self.bot_token:
            raise ConfigurationError("Telegram bot token is not configured")

        url = f"{self.api_base_url}/bot{self.bot_token}/{method}"
        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise TelegramError(method, 0, str(e)) from e

        try:
            parsed = response.json()
        except ValueError:
            parsed = {}
        if not isinstance(parsed, dict):
            parsed = {}

        if not response.is_success or not parsed.get("ok"):
            raise TelegramError(
                method, response.status_code, str(parsed.get("description") or "")
            )

        return parsed.get("result")

    async def send_approval_request(
        self, chat_id: str, card: RequestCard
    ) -> SentMessage:
        result = await self.call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": format_request_message(card),
                "reply_markup": build_keyboard(card.uid),
                "disable_web_page_preview": True,
            },
        )
        result = result if isinstance(result, dict) else {}

        try:
            message_id = int(result.get("message_id") or 0) or None
        except (TypeError, ValueError):
            message_id = None
        chat = result.get("chat") if isinstance(result.get("chat"), dict) else {}
        sent_chat_id = str(chat.get("id") if chat.get("id") is not None else chat_id)

        logger.info(
            "Approval request sent",
            uid=card.uid,
            chat_id=sent_chat_id,
            message_id=message_id,
        )
        return SentMessage(message_id=message_id, chat_id=sent_chat_id)

    async def edit_resolved_message(
        self, chat_id: str, message_id: int | None, card: RequestCard, status: str
    ) -> bool:
        """Replace the card with its resolved headline and drop the buttons.

        Returns False without calling Telegram when the message is not
        addressable.
        """
        if not chat_id or not message_id:
            return False

        await self.call(
            "editMessageText",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "text": format_resolved_message(card, status),
                "disable_web_page_preview": True,
                "reply_markup": {"inline_keyboard": []},
            },
        )
        return True

    async def answer_callback(self, callback_id: str, text: str) -> None:
        if not callback_id:
            return

        try:
            await self.call(
                "answerCallbackQuery",
                {"callback_query_id": callback_id, "text": text, "show_alert": False},
            )
        except (TelegramError, ConfigurationError) as e:
            logger.warning("Failed to answer callback query", error=str(e))

    async def set_webhook(self, url: str, secret_token: str) -> bool:
        result = await self.call(
            "setWebhook",
            {
                "url": url,
                "secret_token": secret_token,
                "allowed_updates": ["callback_query"],
            },
        )
        return bool(result)
