import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("ROLLBOOK_DB_PATH", BASE_DIR / "database" / "rollbook.db"))

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
FACING_MODES = ("user", "environment")


def _parse_float(value: str | None, fallback: float) -> float:
    if value is None or not value.strip():
        return fallback
    try:
        return float(value)
    except ValueError:
        return fallback


def _parse_int(value: str | None, fallback: int) -> int:
    if value is None or not value.strip():
        return fallback
    try:
        return int(value)
    except ValueError:
        return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_weekdays(value: str | None, fallback: frozenset[int]) -> frozenset[int]:
    """
    "sat,sun" -> {5, 6} (date.weekday() numbering).
    Unknown names are dropped; an all-invalid list keeps the fallback.
    """
    names = _parse_csv(value, [])
    days = {WEEKDAY_NAMES.index(n[:3].lower()) for n in names if n[:3].lower() in WEEKDAY_NAMES}
    return frozenset(days) if days else fallback


def _parse_facing_mode(value: str | None) -> str:
    normalized = (value or "").strip().lower()
    if normalized in FACING_MODES:
        return normalized
    return "user"


# Euclidean distance units of the embedding model (face-api style 128-d descriptors).
MATCH_THRESHOLD = _parse_float(os.getenv("ROLLBOOK_MATCH_THRESHOLD"), 0.5)
POLL_INTERVAL_MS = max(50, _parse_int(os.getenv("ROLLBOOK_POLL_INTERVAL_MS"), 600))

WEEKLY_OFF_DAYS = _parse_weekdays(os.getenv("ROLLBOOK_WEEKLY_OFF_DAYS"), frozenset({6}))

CAMERA_FRONT_DEVICE = _parse_int(os.getenv("ROLLBOOK_CAMERA_FRONT_DEVICE"), 0)
CAMERA_REAR_DEVICE = _parse_int(os.getenv("ROLLBOOK_CAMERA_REAR_DEVICE"), 1)
DEFAULT_FACING_MODE = _parse_facing_mode(os.getenv("ROLLBOOK_DEFAULT_FACING_MODE"))

PERCENT_SENTINEL = os.getenv("ROLLBOOK_PERCENT_SENTINEL", "N/A").strip() or "N/A"
