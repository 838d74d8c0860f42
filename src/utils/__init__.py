"""Utility modules for the content engine."""

from .config import Settings, get_settings
from .timezone import (
    local_now,
    day_bounds,
    week_bounds,
    month_bounds,
    end_of_day,
    end_of_month,
)

__all__ = [
    "Settings",
    "get_settings",
    # Period boundaries
    "local_now",
    "day_bounds",
    "week_bounds",
    "month_bounds",
    "end_of_day",
    "end_of_month",
]
