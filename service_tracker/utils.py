from datetime import UTC, datetime
from typing import Any


def utc_now() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the database."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_datetime(value: Any) -> datetime | None:
    """Coerce a timestamp-like value into a naive UTC datetime.

    Accepts datetimes (aware values are converted to UTC), epoch milliseconds,
    ISO 8601 strings and mappings with a ``seconds`` key as produced by
    document stores. Anything unparseable yields ``None``.

    Args:
        value: The timestamp-like value

    Returns:
        Naive UTC datetime or None
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(UTC).replace(tzinfo=None)
        return value

    if isinstance(value, bool):
        return None

    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, UTC).replace(tzinfo=None)

    if isinstance(value, dict) and isinstance(value.get("seconds"), int | float):
        return datetime.fromtimestamp(value["seconds"], UTC).replace(tzinfo=None)

    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return to_datetime(parsed)

    return None


def to_millis(value: Any) -> int:
    """Epoch milliseconds of a timestamp-like value, 0 when absent."""
    parsed = to_datetime(value)
    if parsed is None:
        return 0
    return int(parsed.replace(tzinfo=UTC).timestamp() * 1000)


def clean_str(value: Any) -> str:
    """Stringify and trim a loosely typed value, mapping None to ''."""
    if value is None:
        return ""
    return str(value).strip()
