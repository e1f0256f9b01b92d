"""Tests for scheduling, firing and rehydrating reminders."""

import time
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from freezegun import freeze_time

from conftest import RecordingSink, fire
from domains.reminders.models import Reminder, RelativeDate, TimeOfDay, to_epoch_ms
from domains.reminders.parser import resolve_fire_at
from domains.reminders.scheduler import ReminderScheduler, local_timezone
from domains.reminders.store import KeyValueStore, ReminderStore, StoreUnavailableError

UTC = timezone.utc


def at(hour, minute, day=19):
    return datetime(2026, 10, day, hour, minute, tzinfo=UTC)


@pytest.fixture
def engine(scheduler, store, sink):
    return ReminderScheduler(scheduler, store, sink, tz=UTC)


def reminder_jobs(scheduler):
    return sorted(
        (job for job in scheduler.get_jobs() if job.id.startswith("reminder:")),
        key=lambda job: job.trigger.run_date
    )


class TestBedtimeStoryScenario:
    """ws-1 scheduled for 21:00 at 20:45."""

    @freeze_time("2026-10-19 20:45:00")
    def test_full_lifecycle(self, engine, scheduler, store, sink):
        assert engine.schedule("ws-1", "Bedtime Story", "21:00", RelativeDate.TODAY, "20 Min") is True

        stored = store.get("ws-1")
        assert stored.fire_at_epoch_ms == to_epoch_ms(at(21, 0))

        lead, main = reminder_jobs(scheduler)
        assert lead.id == "reminder:ws-1-pre"
        assert lead.trigger.run_date == at(20, 55)
        assert main.id == "reminder:ws-1"
        assert main.trigger.run_date == at(21, 0)

        # Lead fires first and leaves the store alone
        fire(lead)
        assert sink.delivered == [(
            "Meditation reminder: Bedtime Story",
            "Your 20 Min meditation session starts in 5 minutes.",
            "ws-1-pre",
        )]
        assert store.get("ws-1") is not None

        # Main fires and clears the store
        fire(main)
        title, body, tag = sink.delivered[-1]
        assert title == "Time for your meditation: Bedtime Story"
        assert "20 Min" in body
        assert tag == "ws-1"
        assert store.list_all() == []
        assert engine.armed_job_ids("ws-1") == []


class TestSchedule:
    """Accepting and rejecting schedule requests."""

    @freeze_time("2026-10-19 20:45:00")
    def test_future_time_is_stored(self, engine, store):
        assert engine.schedule("r1", "Morning Calm", "7:30 AM", "Tomorrow", "10 Min") is True
        reminder = store.get("r1")
        assert reminder.time_of_day == TimeOfDay(7, 30)
        assert reminder.relative_date == RelativeDate.TOMORROW
        assert reminder.fire_at_epoch_ms == to_epoch_ms(at(7, 30, day=20))

    @freeze_time("2026-10-19 20:45:00")
    def test_next_week(self, engine, store):
        assert engine.schedule("r1", "Focus", "08:00", "Next Week", "15 Min") is True
        assert store.get("r1").fire_at_epoch_ms == to_epoch_ms(at(8, 0, day=26))

    @freeze_time("2026-10-19 21:30:00")
    def test_past_time_rejected(self, engine, scheduler, store):
        store_before = store.list_all()
        assert engine.schedule("ws-1", "Bedtime Story", "21:00", "Today", "20 Min") is False
        assert store.list_all() == store_before
        assert scheduler.get_jobs() == []

    @freeze_time("2026-10-19 21:00:00")
    def test_exactly_now_rejected(self, engine, store):
        assert engine.schedule("ws-1", "Bedtime Story", "21:00", "Today", "20 Min") is False
        assert store.list_all() == []

    def test_bad_time_raises(self, engine, store):
        with pytest.raises(ValueError):
            engine.schedule("r1", "x", "25:00", "Today", "10 Min")
        assert store.list_all() == []

    @freeze_time("2026-10-19 20:45:00")
    def test_store_failure_propagates(self, scheduler, sink):
        store = Mock()
        store.put.side_effect = StoreUnavailableError("disk gone")
        engine = ReminderScheduler(scheduler, store, sink, tz=UTC)

        with pytest.raises(StoreUnavailableError):
            engine.schedule("r1", "x", "21:00", "Today", "10 Min")
        assert scheduler.get_jobs() == []


class TestLeadGating:
    """Lead notification only when there is more than 5 minutes to go."""

    @freeze_time("2026-10-19 20:57:00")
    def test_under_five_minutes_main_only(self, engine, scheduler):
        engine.schedule("r1", "Quick", "21:00", "Today", "5 Min")
        jobs = reminder_jobs(scheduler)
        assert [job.id for job in jobs] == ["reminder:r1"]

    @freeze_time("2026-10-19 20:55:00")
    def test_exactly_five_minutes_main_only(self, engine, scheduler):
        engine.schedule("r1", "Quick", "21:00", "Today", "5 Min")
        assert len(reminder_jobs(scheduler)) == 1

    @freeze_time("2026-10-19 20:50:00")
    def test_over_five_minutes_lead_then_main(self, engine, scheduler):
        engine.schedule("r1", "Quick", "21:00", "Today", "5 Min")
        lead, main = reminder_jobs(scheduler)
        assert lead.id.endswith("-pre")
        assert lead.trigger.run_date < main.trigger.run_date


class TestRescheduleAndCancel:
    """Replacing and cancelling reminders by id."""

    @freeze_time("2026-10-19 20:00:00")
    def test_reschedule_replaces_jobs_and_entry(self, engine, scheduler, store):
        engine.schedule("r1", "First", "21:00", "Today", "10 Min")
        engine.schedule("r1", "Second", "22:00", "Today", "10 Min")

        jobs = reminder_jobs(scheduler)
        assert len(jobs) == 2
        assert jobs[-1].trigger.run_date == at(22, 0)
        assert [r.title for r in store.list_all()] == ["Second"]

    @freeze_time("2026-10-19 20:00:00")
    def test_superseded_main_job_is_ignored(self, engine, scheduler, store, sink):
        engine.schedule("r1", "First", "21:00", "Today", "10 Min")
        old_main = scheduler.get_job("reminder:r1")
        engine.schedule("r1", "Second", "22:00", "Today", "10 Min")

        fire(old_main)

        assert sink.delivered == []
        assert store.get("r1").title == "Second"

    @freeze_time("2026-10-19 20:00:00")
    def test_same_instant_fires_independently(self, engine, scheduler, store, sink):
        engine.schedule("a", "A", "21:00", "Today", "10 Min")
        engine.schedule("b", "B", "21:00", "Today", "10 Min")

        fire(scheduler.get_job("reminder:a"))
        fire(scheduler.get_job("reminder:b"))

        assert sink.tags == ["a", "b"]
        assert store.list_all() == []

    @freeze_time("2026-10-19 20:00:00")
    def test_cancel(self, engine, scheduler, store):
        engine.schedule("r1", "First", "21:00", "Today", "10 Min")

        assert engine.cancel("r1") is True
        assert reminder_jobs(scheduler) == []
        assert store.list_all() == []
        assert engine.cancel("r1") is False


class TestFiring:
    """Callback behaviour."""

    @freeze_time("2026-10-19 20:00:00")
    def test_sink_failure_still_clears_store(self, scheduler, store):
        sink = Mock()
        sink.deliver.side_effect = RuntimeError("display crashed")
        engine = ReminderScheduler(scheduler, store, sink, tz=UTC)
        engine.schedule("r1", "First", "21:00", "Today", "10 Min")

        fire(scheduler.get_job("reminder:r1"))

        assert store.list_all() == []

    @freeze_time("2026-10-19 20:00:00")
    def test_lead_failure_is_logged_not_raised(self, scheduler, store):
        sink = Mock()
        sink.deliver.side_effect = RuntimeError("display crashed")
        engine = ReminderScheduler(scheduler, store, sink, tz=UTC)
        engine.schedule("r1", "First", "21:00", "Today", "10 Min")

        fire(scheduler.get_job("reminder:r1-pre"))

        assert store.get("r1") is not None


class TestRehydrate:
    """Restoring reminders after a restart."""

    def _persist(self, store, reminder_id, fire_at):
        store.put(Reminder(
            id=reminder_id,
            title="Evening Wind Down",
            time_of_day=TimeOfDay(fire_at.hour, fire_at.minute),
            relative_date=RelativeDate.TODAY,
            duration="10 Min",
            fire_at_epoch_ms=to_epoch_ms(fire_at),
        ))

    @freeze_time("2026-10-19 20:00:00")
    def test_restart_rearms_future_reminder(self, store):
        self._persist(store, "r1", at(20, 10))

        # Fresh process: new scheduler, nothing armed
        scheduler = AsyncIOScheduler(timezone=UTC)
        sink = RecordingSink()
        engine = ReminderScheduler(scheduler, store, sink, tz=UTC)

        assert engine.rehydrate() == 1
        lead, main = reminder_jobs(scheduler)
        assert main.trigger.run_date == at(20, 10)
        assert lead.trigger.run_date == at(20, 5)
        assert at(20, 0) < lead.trigger.run_date < main.trigger.run_date

        fire(main)
        assert sink.tags == ["r1"]
        assert store.list_all() == []

    @freeze_time("2026-10-19 20:00:00")
    def test_missed_reminder_dropped_without_firing(self, engine, scheduler, store, sink):
        self._persist(store, "missed", at(19, 0))
        self._persist(store, "future", at(21, 0))

        assert engine.rehydrate() == 1
        assert [r.id for r in store.list_all()] == ["future"]
        assert sink.delivered == []
        assert scheduler.get_job("reminder:missed") is None

    @freeze_time("2026-10-19 20:00:00")
    def test_rehydrate_twice_does_not_duplicate(self, engine, scheduler, store):
        self._persist(store, "r1", at(21, 0))
        engine.rehydrate()
        engine.rehydrate()
        assert len(reminder_jobs(scheduler)) == 2

    @freeze_time("2026-10-19 20:00:00")
    def test_poll_picks_up_external_reminders(self, engine, scheduler, store):
        self._persist(store, "from-cli", at(21, 0))

        assert engine.poll_for_new_reminders() == 1
        assert engine.armed_job_ids("from-cli") == ["reminder:from-cli-pre", "reminder:from-cli"]
        assert engine.poll_for_new_reminders() == 0

    @freeze_time("2026-10-19 20:00:00")
    def test_poll_ignores_past_reminders(self, engine, store):
        self._persist(store, "old", at(19, 0))
        assert engine.poll_for_new_reminders() == 0


class TestCancelFromAnotherProcess:
    """A CLI process cancels a reminder the daemon already armed."""

    @pytest.fixture
    def cli(self, db_path):
        kv = KeyValueStore(db_path)
        yield ReminderScheduler(AsyncIOScheduler(timezone=UTC), ReminderStore(kv), RecordingSink(), tz=UTC)
        kv.close()

    @freeze_time("2026-10-19 20:00:00")
    def test_armed_jobs_do_not_deliver_after_cancel(self, engine, scheduler, sink, cli):
        engine.schedule("r1", "Evening Wind Down", "21:00", "Today", "10 Min")
        lead, main = reminder_jobs(scheduler)

        assert cli.cancel("r1") is True

        fire(lead)
        fire(main)
        assert sink.delivered == []

    @freeze_time("2026-10-19 20:00:00")
    def test_poll_disarms_cancelled_reminder(self, engine, scheduler, cli):
        engine.schedule("r1", "Evening Wind Down", "21:00", "Today", "10 Min")
        engine.schedule("r2", "Morning Calm", "7:30 AM", "Tomorrow", "10 Min")

        cli.cancel("r1")

        assert engine.poll_for_new_reminders() == 0
        assert engine.armed_job_ids("r1") == []
        assert [job.id for job in reminder_jobs(scheduler)] == ["reminder:r2-pre", "reminder:r2"]

    @freeze_time("2026-10-19 20:00:00")
    def test_retimed_elsewhere_old_lead_is_skipped(self, engine, scheduler, store, sink, cli):
        engine.schedule("r1", "Evening Wind Down", "21:00", "Today", "10 Min")
        old_lead = scheduler.get_job("reminder:r1-pre")

        cli.schedule("r1", "Evening Wind Down", "22:00", "Today", "10 Min")

        fire(old_lead)
        assert sink.delivered == []
        assert store.get("r1").fire_at_epoch_ms == to_epoch_ms(at(22, 0))


class TestLocalTimezone:
    """Wall-clock resolution across a daylight-saving change."""

    @pytest.fixture
    def new_york_system_zone(self, monkeypatch):
        if not hasattr(time, "tzset"):
            pytest.skip("time.tzset not available on this platform")
        monkeypatch.setattr("domains.reminders.scheduler.TIMEZONE", "")
        monkeypatch.setenv("TZ", "America/New_York")
        time.tzset()
        yield
        monkeypatch.undo()
        time.tzset()

    def test_system_zone_next_week_across_fall_back(self, new_york_system_zone):
        tz = local_timezone()
        # Friday before US clocks go back on Sunday 1 Nov 2026
        now = datetime(2026, 10, 30, 12, 0, tzinfo=tz)
        assert now.utcoffset() == timedelta(hours=-4)

        fire_at = resolve_fire_at(TimeOfDay(21, 0), RelativeDate.NEXT_WEEK, now, tz)

        assert (fire_at.hour, fire_at.minute) == (21, 0)
        assert fire_at.utcoffset() == timedelta(hours=-5)
        assert fire_at.astimezone(UTC) == datetime(2026, 11, 7, 2, 0, tzinfo=UTC)

    def test_configured_zone_wins(self, monkeypatch):
        monkeypatch.setattr("domains.reminders.scheduler.TIMEZONE", "Europe/London")
        assert local_timezone() == ZoneInfo("Europe/London")

    @freeze_time("2026-10-30 16:00:00")
    def test_next_week_job_keeps_wall_clock(self, scheduler, store, sink):
        tz = ZoneInfo("America/New_York")
        engine = ReminderScheduler(scheduler, store, sink, tz=tz)

        engine.schedule("r1", "Evening Wind Down", "21:00", "Next Week", "10 Min")

        main = scheduler.get_job("reminder:r1")
        assert main.trigger.run_date.astimezone(tz).hour == 21
        assert main.trigger.run_date.astimezone(UTC) == datetime(2026, 11, 7, 2, 0, tzinfo=UTC)
