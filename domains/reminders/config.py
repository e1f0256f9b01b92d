"""Reminder engine configuration - timings, storage keys and notification text."""

from datetime import timedelta

# Lead ("starts in 5 minutes") notification offset before the main one
LEAD_OFFSET = timedelta(minutes=5)

# Re-engagement notification after this long without qualifying activity
IDLE_THRESHOLD = timedelta(hours=24)

# Activity sources that reset the idle watchdog
DEFAULT_ACTIVITY_SOURCES = frozenset({"mousemove", "keypress", "touchstart", "scroll"})

# Polling for reminders written by another process (CLI)
POLL_INTERVAL_SECONDS = 60

# How late APScheduler may still run a job (e.g. after a busy loop)
MISFIRE_GRACE_SECONDS = 60

# Key-value store keys
REMINDERS_KEY = "meditation_reminders"
LAST_ACTIVITY_KEY = "last_activity_time"
PERMISSION_KEY = "notification_permission"

# Job IDs
JOB_PREFIX = "reminder:"
LEAD_SUFFIX = "-pre"
IDLE_JOB_ID = "inactivity-reminder"
POLL_JOB_ID = "reminder-polling"

# Notification text
MAIN_TITLE = "Time for your meditation: {title}"
MAIN_BODY = "Your {duration} meditation session is scheduled to start now."
LEAD_TITLE = "Meditation reminder: {title}"
LEAD_BODY = "Your {duration} meditation session starts in 5 minutes."
IDLE_TITLE = "Missing your meditation?"
IDLE_BODY = "It's been a while since your last meditation. Take a moment to center yourself today."
IDLE_TAG = "inactivity-reminder"
