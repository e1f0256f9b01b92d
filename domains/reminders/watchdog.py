"""Inactivity watchdog - nudges the user after a day without activity.

Exactly one idle job is outstanding while running. Each qualifying activity
signal removes it and arms a fresh one `threshold` from now; when the job
fires it notifies (if still idle) and arms the next window, so the watchdog
keeps checking until stopped.
"""

import threading
from datetime import datetime, timedelta, tzinfo
from typing import Iterable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from logger import logger
from . import config
from .models import to_epoch_ms
from .scheduler import local_timezone
from .sinks import NotificationSink
from .store import ReminderStore


class ActivityWatchdog:
    """Fires a re-engagement notification after a period of inactivity."""

    def __init__(
        self,
        scheduler: BaseScheduler,
        store: ReminderStore,
        sink: NotificationSink,
        threshold: timedelta = config.IDLE_THRESHOLD,
        sources: Iterable[str] = config.DEFAULT_ACTIVITY_SOURCES,
        tz: Optional[tzinfo] = None
    ):
        """Initialize the watchdog.

        Args:
            scheduler: APScheduler instance that runs the idle check
            store: Store holding the last-activity timestamp
            sink: Where the re-engagement notification goes
            threshold: Idle time before notifying
            sources: Activity sources that count as user activity
            tz: Timezone for job times (default: local)
        """
        self.scheduler = scheduler
        self.store = store
        self.sink = sink
        self.threshold = threshold
        self.sources = frozenset(sources)
        self.tz = tz or local_timezone()
        self._running = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_activity(self) -> Optional[datetime]:
        epoch_ms = self.store.get_last_activity()
        if epoch_ms is None:
            return None
        return datetime.fromtimestamp(epoch_ms / 1000, tz=self.tz)

    def start(self) -> None:
        """Record activity now and arm the first idle check."""
        with self._lock:
            self._running = True
            self._touch()
        logger.info(f"Inactivity watchdog started ({self.threshold} threshold)")

    def on_activity(self, source: Optional[str] = None) -> bool:
        """Register user activity.

        Args:
            source: Event source (e.g. "keypress"); None counts as activity

        Returns:
            True if the signal reset the watchdog
        """
        if source is not None and source not in self.sources:
            return False

        with self._lock:
            if not self._running:
                return False
            self._touch()
        return True

    def stop(self) -> None:
        """Tear down the idle job."""
        with self._lock:
            self._running = False
            self._remove_job()
        logger.info("Inactivity watchdog stopped")

    def _touch(self) -> None:
        now = datetime.now(self.tz)
        self.store.set_last_activity(to_epoch_ms(now))
        self._arm(now)

    def _arm(self, now: datetime) -> None:
        self._remove_job()
        self.scheduler.add_job(
            self._check_inactivity,
            trigger=DateTrigger(run_date=now + self.threshold),
            id=config.IDLE_JOB_ID,
            name="Inactivity check",
            misfire_grace_time=config.MISFIRE_GRACE_SECONDS,
            replace_existing=True
        )

    def _remove_job(self) -> None:
        try:
            self.scheduler.remove_job(config.IDLE_JOB_ID)
        except JobLookupError:
            pass

    def _check_inactivity(self) -> None:
        """Called by APScheduler when the idle window elapses."""
        now = datetime.now(self.tz)
        try:
            last = self.store.get_last_activity() or 0
            if to_epoch_ms(now) - last >= self.threshold.total_seconds() * 1000:
                self.sink.deliver(config.IDLE_TITLE, config.IDLE_BODY, config.IDLE_TAG)
                logger.info("Sent inactivity reminder")
        except Exception as e:
            logger.error(f"Inactivity check failed: {e}")

        # Re-read the clock under the lock so a concurrent on_activity
        # deadline is never replaced by an earlier one
        with self._lock:
            if self._running:
                self._arm(datetime.now(self.tz))
