from .base import AvailabilitySource, Schedule, Slot, find_slot, non_empty_schedule_days
from .memory import InMemoryAvailability, Reservation, WorkingHours, month_window

__all__ = [
    "AvailabilitySource",
    "InMemoryAvailability",
    "Reservation",
    "Schedule",
    "Slot",
    "WorkingHours",
    "find_slot",
    "month_window",
    "non_empty_schedule_days",
]
