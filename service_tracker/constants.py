"""Infrastructure and technical constants."""

from typing import Final

# Technical configuration constants
DEFAULT_PORT: Final = 8000
DEFAULT_METRICS_PORT: Final = 9464
DEFAULT_TELEGRAM_API_BASE_URL: Final = "https://api.telegram.org"
DEFAULT_HTTP_TIMEOUT_SECONDS: Final = 10.0
DEFAULT_FEED_POLL_INTERVAL_SECONDS: Final = 2.0
MAX_NOTIFICATION_ERROR_LENGTH: Final = 500
TELEGRAM_SECRET_HEADER: Final = "X-Telegram-Bot-Api-Secret-Token"
PIN_HEADER: Final = "X-PIN"
