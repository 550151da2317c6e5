from datetime import datetime
from typing import Final

from sqlmodel import Session

from ..domain.entities import normalize_pin
from ..infrastructure.database.models import UserSettings
from ..infrastructure.database.repositories import UserSettingsRepository
from ..logging_config import get_logger
from ..logging_utils import log_database_operation
from ..utils import utc_now

logger: Final = get_logger(__name__)


def get_api_pin(session: Session, uid: str) -> str:
    user_settings = UserSettingsRepository(session).find(uid)
    return normalize_pin(user_settings.api_pin) if user_settings else ""


def set_api_pin(
    session: Session, uid: str, pin: str, now: datetime | None = None
) -> str:
    """Store the caller's upstream API PIN, keeping digits only (max 4)."""
    repository = UserSettingsRepository(session)
    normalized = normalize_pin(pin)
    user_settings = repository.find(uid) or UserSettings(uid=uid)
    user_settings.api_pin = normalized
    user_settings.updated_at = now or utc_now()
    repository.save(user_settings)
    session.commit()

    log_database_operation("upsert", "user_settings", uid, has_pin=bool(normalized))
    return normalized
