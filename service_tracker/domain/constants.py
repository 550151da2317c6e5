"""Domain business rules and constants."""

from datetime import timedelta
from typing import Final

# Access approval
NOTIFICATION_COOLDOWN: Final = timedelta(minutes=15)
CALLBACK_PREFIX: Final = "apr"
CALLBACK_SEPARATOR: Final = "|"
DEFAULT_STAFF_ROLE: Final = "staff"
BLOCK_REASON_TELEGRAM: Final = "telegram_block"
BLOCKLIST_DECIDER: Final = "system:blocklist"
APPROVED_BY_TELEGRAM: Final = "telegram"

# Service day
STALE_AFTER: Final = timedelta(hours=2)
COMPLETED_HIDE_AFTER: Final = timedelta(hours=1)
# The local clock snapshot may lag up to a minute behind the 1 hour window
FORCE_COMPLETED_OFFSET: Final = timedelta(minutes=65)
CLOCK_TICK_SECONDS: Final = 60.0
ACTIVITY_DISPLAY_LIMIT: Final = 300
ACCESS_POLL_SECONDS: Final = 20.0
FALLBACK_ITEM_ID_PREFIX: Final = "fallback:"
PLATE_HUE_STEP: Final = 137.508
MAX_PIN_LENGTH: Final = 4
