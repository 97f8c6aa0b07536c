"""
Scheduling module: conflict detection, free slots and reminders.
"""

from hiring_engine.scheduling.conflicts import BookingInterval, ConflictResolver, format_clock, parse_clock
from hiring_engine.scheduling.reminders import DueReminder, ReminderScheduler, bucket_name, reminder_key

__all__ = [
    "BookingInterval",
    "ConflictResolver",
    "DueReminder",
    "ReminderScheduler",
    "bucket_name",
    "format_clock",
    "parse_clock",
    "reminder_key",
]
