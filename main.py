#!/usr/bin/env python3
"""Hushhly reminder daemon and CLI.

Usage:
    python main.py run
    python main.py add ws-1 "Bedtime Story" "9:00 PM" --date Today --duration "20 Min"
    python main.py list
    python main.py cancel ws-1
"""

import argparse
import asyncio
import sys
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.background import BackgroundScheduler

from config import REMINDER_DB, NOTIFY_AUTO_GRANT, NOTIFY_WEBHOOK_URL, NOTIFY_WEBHOOK_TIMEOUT
from logger import logger
from domains.reminders import (
    KeyValueStore,
    LogSink,
    ReminderService,
    ReminderStore,
    TimeParseError,
    WebhookSink,
)


def _ask_permission() -> Optional[bool]:
    """Terminal prompt used the first time notifications are needed.

    Without a terminal nobody can answer: stay undecided unless
    NOTIFY_AUTO_GRANT is set.
    """
    if not sys.stdin.isatty():
        if NOTIFY_AUTO_GRANT:
            logger.info("No terminal, granting notification permission (NOTIFY_AUTO_GRANT)")
            return True
        logger.warning("No terminal to ask for notification permission; set NOTIFY_AUTO_GRANT=1 to allow")
        return None
    answer = input("Allow meditation reminder notifications? [Y/n] ").strip().lower()
    return answer in ("", "y", "yes")


def build_service(scheduler) -> ReminderService:
    kv = KeyValueStore(REMINDER_DB)
    if NOTIFY_WEBHOOK_URL:
        sink = WebhookSink(NOTIFY_WEBHOOK_URL, kv=kv, prompt=_ask_permission, timeout=NOTIFY_WEBHOOK_TIMEOUT)
    else:
        sink = LogSink(kv=kv, prompt=_ask_permission)
    return ReminderService(scheduler, ReminderStore(kv), sink)


async def cmd_run():
    scheduler = AsyncIOScheduler()
    service = build_service(scheduler)

    count = service.initialize()
    scheduler.start()
    logger.info(f"Reminder daemon started with {len(scheduler.get_jobs())} jobs ({count} reminders)")

    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        service.shutdown()
        logger.info("Reminder daemon stopped")


def cmd_add(reminder_id: str, title: str, time_of_day: str, date: str, duration: str) -> int:
    # Never started: the store entry is what matters, `run` arms it via polling
    service = build_service(BackgroundScheduler())
    try:
        ok = service.schedule(reminder_id, title, time_of_day, date, duration)
    except (TimeParseError, ValueError) as e:
        print(f"Invalid reminder: {e}")
        return 2
    finally:
        service.store.kv.close()

    if not ok:
        print("That time has already passed.")
        return 1
    print(f"Reminder set: {title} ({date} {time_of_day})")
    return 0


def cmd_list() -> int:
    service = build_service(BackgroundScheduler())
    try:
        reminders = service.list_reminders()
    finally:
        service.store.kv.close()

    if not reminders:
        print("No active reminders.")
        return 0

    tz = service.reminders.tz
    for r in reminders:
        print(f"- {r.fire_at.astimezone(tz):%a %d %b %H:%M}  {r.title} ({r.duration})  [{r.id}]")
    return 0


def cmd_cancel(reminder_id: str) -> int:
    service = build_service(BackgroundScheduler())
    try:
        removed = service.cancel(reminder_id)
    finally:
        service.store.kv.close()
    print(f"Cancelled reminder {reminder_id}" if removed else "Reminder not found.")
    return 0 if removed else 1


def main():
    parser = argparse.ArgumentParser(
        description="Hushhly meditation reminders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the reminder daemon")

    add_parser = subparsers.add_parser("add", help="Schedule a reminder")
    add_parser.add_argument("id", help="Reminder ID")
    add_parser.add_argument("title", help="Session title")
    add_parser.add_argument("time", help='Time of day, e.g. "21:00" or "9:00 PM"')
    add_parser.add_argument("--date", default="Today", help='Today, Tomorrow or "Next Week"')
    add_parser.add_argument("--duration", default="10 Min", help='Session length label')

    subparsers.add_parser("list", help="List pending reminders")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a reminder")
    cancel_parser.add_argument("id", help="Reminder ID")

    args = parser.parse_args()

    if args.command == "run":
        try:
            asyncio.run(cmd_run())
        except KeyboardInterrupt:
            pass
        return 0
    elif args.command == "add":
        return cmd_add(args.id, args.title, args.time, args.date, args.duration)
    elif args.command == "list":
        return cmd_list()
    elif args.command == "cancel":
        return cmd_cancel(args.id)


if __name__ == "__main__":
    sys.exit(main())
