"""Challenge types, statuses, timeframes and the index sentinel."""

from __future__ import annotations

TYPE_VS_INDEX = "vs_index"
TYPE_VS_USER = "vs_user"
VALID_TYPES = frozenset({TYPE_VS_INDEX, TYPE_VS_USER})

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_DECLINED = "declined"
STATUS_CANCELLED = "cancelled"

# Statuses that count against a user's active-challenge cap
OPEN_STATUSES = (STATUS_PENDING, STATUS_ACTIVE)

# Winner value when the benchmark beats the challenger
INDEX_WINNER = "index"

TIMEFRAME_DAYS: dict[str, int] = {
    "1W": 7,
    "2W": 14,
    "1M": 30,
    "3M": 90,
}


def timeframe_days(timeframe: str, default: int = 7) -> int:
    """Resolve a timeframe selector to a day count."""
    return TIMEFRAME_DAYS.get(timeframe, default)
