"""Manage reminder jobs with APScheduler.

Each reminder owns up to two date-trigger jobs:
- lead: "starts in 5 minutes", only when more than LEAD_OFFSET away
- main: "time for your meditation", then the reminder leaves the store

Jobs are tracked per reminder id so re-scheduling or cancelling an id
always removes the old jobs before new ones are armed.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger
from dateutil.tz import tzlocal

from config import TIMEZONE
from logger import logger
from . import config
from .models import Reminder, RelativeDate, TimeOfDay, to_epoch_ms
from .parser import parse_time_of_day, resolve_fire_at
from .sinks import NotificationSink
from .store import ReminderStore


@dataclass
class _Armed:
    """Jobs currently armed for one reminder."""
    fire_at_epoch_ms: int
    job_ids: list[str] = field(default_factory=list)


def local_timezone() -> tzinfo:
    """Wall-clock timezone: HUSHHLY_TIMEZONE if set, else the system zone.

    The system zone applies its own DST rules per date, so "Next Week"
    across a clock change still means the same wall-clock time.
    """
    if TIMEZONE:
        return ZoneInfo(TIMEZONE)
    return tzlocal()


class ReminderScheduler:
    """Schedules, rehydrates and fires meditation reminders."""

    def __init__(
        self,
        scheduler: BaseScheduler,
        store: ReminderStore,
        sink: NotificationSink,
        tz: Optional[tzinfo] = None
    ):
        """Initialize the reminder scheduler.

        Args:
            scheduler: APScheduler instance that runs the deferred callbacks
            store: Durable reminder store
            sink: Where notifications are delivered
            tz: Wall-clock timezone for resolving dates (default: local)
        """
        self.scheduler = scheduler
        self.store = store
        self.sink = sink
        self.tz = tz or local_timezone()
        self._armed: dict[str, _Armed] = {}
        self._lock = threading.RLock()

    def _now(self) -> datetime:
        return datetime.now(self.tz)

    def schedule(
        self,
        reminder_id: str,
        title: str,
        time_of_day: Union[str, TimeOfDay],
        relative_date: Union[str, RelativeDate],
        duration: str
    ) -> bool:
        """Schedule a reminder.

        Args:
            reminder_id: Caller-supplied unique id (re-using one replaces it)
            title: Session title shown in the notification
            time_of_day: "HH:MM", "H:MM AM/PM" or a TimeOfDay
            relative_date: Today, Tomorrow or Next Week
            duration: Display label such as "10 Min"

        Returns:
            True if scheduled, False if the time has already passed

        Raises:
            TimeParseError: If time_of_day is malformed
            ValueError: If relative_date is unknown
            StoreUnavailableError: If the reminder could not be persisted
        """
        tod = parse_time_of_day(time_of_day)
        rel = RelativeDate.parse(relative_date)
        now = self._now()
        fire_at = resolve_fire_at(tod, rel, now, self.tz)

        if fire_at <= now:
            logger.info(f"Rejected reminder {reminder_id}: {fire_at:%Y-%m-%d %H:%M} is in the past")
            return False

        reminder = Reminder(
            id=reminder_id,
            title=title,
            time_of_day=tod,
            relative_date=rel,
            duration=duration,
            fire_at_epoch_ms=to_epoch_ms(fire_at),
        )

        with self._lock:
            # Persist first
            self.store.put(reminder)
            self._disarm(reminder_id)
            self._arm(reminder, now)

        logger.info(f"Scheduled reminder {reminder_id}: '{title}' at {fire_at:%Y-%m-%d %H:%M %Z}")
        return True

    def cancel(self, reminder_id: str) -> bool:
        """Cancel a pending reminder.

        Returns:
            True if the reminder was armed or stored
        """
        with self._lock:
            was_armed = self._disarm(reminder_id)
            was_stored = self.store.remove(reminder_id)

        if was_armed or was_stored:
            logger.info(f"Cancelled reminder {reminder_id}")
        return was_armed or was_stored

    def rehydrate(self) -> int:
        """Re-arm every stored reminder after a restart.

        Reminders whose time has already passed are dropped without firing.

        Returns:
            Count of reminders re-armed
        """
        now = self._now()
        now_ms = to_epoch_ms(now)
        loaded = 0
        skipped = 0

        with self._lock:
            for reminder in self.store.list_all():
                if reminder.fire_at_epoch_ms <= now_ms:
                    logger.warning(f"Dropping missed reminder {reminder.id}: was due {reminder.fire_at}")
                    self.store.remove(reminder.id)
                    skipped += 1
                    continue

                self._disarm(reminder.id)
                self._arm(reminder, now)
                loaded += 1

        logger.info(f"Rehydrated {loaded} pending reminders (dropped {skipped} missed)")
        return loaded

    def poll_for_new_reminders(self) -> int:
        """Sync armed jobs with reminders changed by another process (e.g. the CLI).

        New or re-timed store entries are armed; armed ids that have left
        the store (cancelled elsewhere) are disarmed.

        Returns:
            Count of new reminders armed
        """
        now = self._now()
        now_ms = to_epoch_ms(now)
        added = 0

        with self._lock:
            stored = self.store.list_all()
            stored_ids = {reminder.id for reminder in stored}

            for reminder_id in list(self._armed):
                if reminder_id not in stored_ids:
                    self._disarm(reminder_id)
                    logger.info(f"Disarmed reminder {reminder_id}: removed from store")

            for reminder in stored:
                armed = self._armed.get(reminder.id)
                if armed is not None and armed.fire_at_epoch_ms == reminder.fire_at_epoch_ms:
                    continue
                if reminder.fire_at_epoch_ms <= now_ms:
                    continue

                self._disarm(reminder.id)
                self._arm(reminder, now)
                added += 1
                logger.info(f"Picked up new reminder from store: {reminder.id} - {reminder.title[:30]}")

        return added

    def armed_job_ids(self, reminder_id: str) -> list[str]:
        with self._lock:
            armed = self._armed.get(reminder_id)
            return list(armed.job_ids) if armed else []

    def _arm(self, reminder: Reminder, now: datetime) -> None:
        """Add lead (if there is room) and main jobs. Caller holds the lock."""
        fire_at = reminder.fire_at.astimezone(self.tz)
        armed = _Armed(fire_at_epoch_ms=reminder.fire_at_epoch_ms)

        if fire_at - now > config.LEAD_OFFSET:
            lead_id = f"{config.JOB_PREFIX}{reminder.id}{config.LEAD_SUFFIX}"
            self.scheduler.add_job(
                self._fire_lead,
                trigger=DateTrigger(run_date=fire_at - config.LEAD_OFFSET),
                args=[reminder],
                id=lead_id,
                name=f"reminder-lead:{reminder.title[:30]}",
                misfire_grace_time=config.MISFIRE_GRACE_SECONDS,
                replace_existing=True
            )
            armed.job_ids.append(lead_id)

        main_id = f"{config.JOB_PREFIX}{reminder.id}"
        self.scheduler.add_job(
            self._fire_main,
            trigger=DateTrigger(run_date=fire_at),
            args=[reminder],
            id=main_id,
            name=f"reminder:{reminder.title[:30]}",
            misfire_grace_time=config.MISFIRE_GRACE_SECONDS,
            replace_existing=True
        )
        armed.job_ids.append(main_id)

        self._armed[reminder.id] = armed
        logger.debug(f"Armed {len(armed.job_ids)} job(s) for reminder {reminder.id}")

    def _disarm(self, reminder_id: str) -> bool:
        """Remove any jobs armed for a reminder. Caller holds the lock."""
        armed = self._armed.pop(reminder_id, None)
        if armed is None:
            return False

        for job_id in armed.job_ids:
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                # Already fired
                pass
        return True

    def _is_current(self, reminder: Reminder) -> bool:
        """Whether the store still holds this exact reminder.

        A store read failure counts as current: better one notification
        than a silently dropped one.
        """
        try:
            stored = self.store.get(reminder.id)
        except Exception as e:
            logger.error(f"Could not check reminder {reminder.id} in store: {e}")
            return True
        return stored is not None and stored.fire_at_epoch_ms == reminder.fire_at_epoch_ms

    def _fire_lead(self, reminder: Reminder) -> None:
        """Called by APScheduler LEAD_OFFSET before the reminder."""
        if not self._is_current(reminder):
            logger.debug(f"Skipping lead for cancelled or re-timed reminder {reminder.id}")
            return

        try:
            self.sink.deliver(
                config.LEAD_TITLE.format(title=reminder.title),
                config.LEAD_BODY.format(duration=reminder.duration),
                f"{reminder.id}{config.LEAD_SUFFIX}"
            )
            logger.info(f"Fired lead notification for reminder {reminder.id}")
        except Exception as e:
            logger.error(f"Failed to deliver lead notification for {reminder.id}: {e}")

    def _fire_main(self, reminder: Reminder) -> None:
        """Called by APScheduler when the reminder is due."""
        with self._lock:
            armed = self._armed.get(reminder.id)
            if armed is None or armed.fire_at_epoch_ms != reminder.fire_at_epoch_ms:
                logger.debug(f"Ignoring superseded job for reminder {reminder.id}")
                return
            self._disarm(reminder.id)

            # Cancelled or re-timed by another process since the last poll
            if not self._is_current(reminder):
                logger.info(f"Skipping reminder {reminder.id}: no longer in store")
                return

        try:
            self.sink.deliver(
                config.MAIN_TITLE.format(title=reminder.title),
                config.MAIN_BODY.format(duration=reminder.duration),
                reminder.id
            )
            logger.info(f"Fired reminder {reminder.id}: {reminder.title}")
        except Exception as e:
            logger.error(f"Failed to deliver reminder {reminder.id}: {e}")
        finally:
            # Remove from store (prevents re-fire on restart)
            try:
                with self._lock:
                    stored = self.store.get(reminder.id)
                    if stored is not None and stored.fire_at_epoch_ms == reminder.fire_at_epoch_ms:
                        self.store.remove(reminder.id)
            except Exception as e:
                logger.error(f"Failed to remove fired reminder {reminder.id}: {e}")
