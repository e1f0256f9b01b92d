"""Reminders for scheduled meditation sessions.

Uses APScheduler date triggers with local SQLite persistence.
"""

from .models import Reminder, RelativeDate, TimeOfDay
from .parser import parse_time_of_day, resolve_fire_at, TimeParseError
from .store import KeyValueStore, ReminderStore, StoreUnavailableError
from .permissions import Permission, PermissionGate
from .sinks import NotificationSink, LogSink, WebhookSink
from .scheduler import ReminderScheduler
from .watchdog import ActivityWatchdog
from .service import ReminderService

__all__ = [
    "Reminder",
    "RelativeDate",
    "TimeOfDay",
    "parse_time_of_day",
    "resolve_fire_at",
    "TimeParseError",
    "KeyValueStore",
    "ReminderStore",
    "StoreUnavailableError",
    "Permission",
    "PermissionGate",
    "NotificationSink",
    "LogSink",
    "WebhookSink",
    "ReminderScheduler",
    "ActivityWatchdog",
    "ReminderService",
]
