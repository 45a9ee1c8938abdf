# backend/roombook/core/constants.py
"""Calendar and booking constants for the reservation engine."""

from __future__ import annotations

# Business weekdays use Python's convention: Monday=0 ... Sunday=6
MONDAY = 0
FRIDAY = 4
SATURDAY = 5
SUNDAY = 6

WEEKDAY_OPEN_HOUR = 8
WEEKDAY_CLOSE_HOUR = 20
SATURDAY_OPEN_HOUR = 8
SATURDAY_CLOSE_HOUR = 12

# (start_hour, end_hour) of every canonical shift block
SHIFT_DURATION_HOURS = 4
WEEKDAY_SHIFT_BLOCKS: tuple[tuple[int, int], ...] = ((8, 12), (12, 16), (16, 20))
SATURDAY_SHIFT_BLOCKS: tuple[tuple[int, int], ...] = ((8, 12),)

HOURLY_DURATION_MINUTES = 60

# Rate limiter
RATE_LIMIT_WINDOW_EVICTION_MULTIPLIER = 2
