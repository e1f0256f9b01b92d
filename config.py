"""Global configuration for the Hushhly reminder engine."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Data directory (SQLite store + logs)
HUSHHLY_HOME = Path(os.getenv("HUSHHLY_HOME", "~/.hushhly")).expanduser()

# Reminder store
REMINDER_DB = os.getenv("HUSHHLY_REMINDER_DB", str(HUSHHLY_HOME / "reminders.db"))

# IANA timezone used to resolve "Today"/"Tomorrow"/"Next Week" (empty = system local)
TIMEZONE = os.getenv("HUSHHLY_TIMEZONE", "")

# Webhook notifications (ntfy topic, chat webhook, ...). Empty = log only
NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "")
NOTIFY_WEBHOOK_TIMEOUT = float(os.getenv("NOTIFY_WEBHOOK_TIMEOUT", "10"))

# Grant notification permission without a terminal (services, cron). Off by default
NOTIFY_AUTO_GRANT = os.getenv("NOTIFY_AUTO_GRANT", "").lower() in ("1", "true", "yes")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = HUSHHLY_HOME / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)
