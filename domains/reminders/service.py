"""Reminder service - wires permission, store, scheduler and watchdog together."""

from datetime import timedelta, tzinfo
from typing import Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from logger import logger
from . import config
from .models import Reminder
from .permissions import NotificationPlatform, PermissionGate
from .scheduler import ReminderScheduler
from .sinks import NotificationSink
from .store import ReminderStore
from .watchdog import ActivityWatchdog


class ReminderService:
    """Everything the app needs for scheduled-session reminders.

    Usage:
        service = ReminderService(scheduler, store, sink)
        service.initialize()
        scheduler.start()

        service.schedule("ws-1", "Bedtime Story", "9:00 PM", "Today", "20 Min")
        service.on_activity("keypress")
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        store: ReminderStore,
        sink: NotificationSink,
        platform: Optional[NotificationPlatform] = None,
        idle_threshold: timedelta = config.IDLE_THRESHOLD,
        tz: Optional[tzinfo] = None
    ):
        self.scheduler = scheduler
        self.store = store
        self.gate = PermissionGate(platform if platform is not None else _as_platform(sink))
        self.reminders = ReminderScheduler(scheduler, store, sink, tz=tz)
        self.watchdog = ActivityWatchdog(
            scheduler, store, sink, threshold=idle_threshold, tz=self.reminders.tz
        )
        self.permission_granted = False

    def initialize(self) -> int:
        """Start-up sequence: permission, rehydrate, watchdog, polling.

        Returns:
            Count of reminders rehydrated
        """
        self.permission_granted = self.gate.request_permission()
        if not self.permission_granted:
            logger.warning("Notifications not permitted - reminders will be scheduled but not shown")

        count = self.reminders.rehydrate()
        self.watchdog.start()
        self.start_polling()
        return count

    def start_polling(self) -> None:
        """Poll the store for reminders added by other processes."""
        self.scheduler.add_job(
            self._poll,
            trigger=IntervalTrigger(seconds=config.POLL_INTERVAL_SECONDS),
            id=config.POLL_JOB_ID,
            name="Poll for new reminders",
            replace_existing=True
        )
        logger.info(f"Started reminder polling (every {config.POLL_INTERVAL_SECONDS}s)")

    def _poll(self) -> None:
        try:
            count = self.reminders.poll_for_new_reminders()
        except Exception as e:
            logger.error(f"Reminder polling failed: {e}")
            return
        if count > 0:
            logger.info(f"Polling picked up {count} new reminder(s)")

    def request_permission(self) -> bool:
        self.permission_granted = self.gate.request_permission()
        return self.permission_granted

    def schedule(self, reminder_id: str, title: str, time_of_day, relative_date, duration: str) -> bool:
        return self.reminders.schedule(reminder_id, title, time_of_day, relative_date, duration)

    def cancel(self, reminder_id: str) -> bool:
        return self.reminders.cancel(reminder_id)

    def list_reminders(self) -> list[Reminder]:
        """Pending reminders, soonest first."""
        return sorted(self.store.list_all(), key=lambda r: r.fire_at_epoch_ms)

    def on_activity(self, source: Optional[str] = None) -> bool:
        return self.watchdog.on_activity(source)

    def shutdown(self) -> None:
        self.watchdog.stop()
        self.store.kv.close()


def _as_platform(sink) -> Optional[NotificationPlatform]:
    """Use the sink as the permission platform when it implements one."""
    if all(hasattr(sink, attr) for attr in ("supported", "permission", "request")):
        return sink
    return None
