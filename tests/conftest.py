"""Pytest configuration and fixtures."""

import os
import sys
import tempfile

# Keep logs and the default store out of the user's home during tests
os.environ.setdefault("HUSHHLY_HOME", tempfile.mkdtemp(prefix="hushhly-test-"))

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from datetime import timezone
from unittest.mock import Mock, patch

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from domains.reminders.store import KeyValueStore, ReminderStore


class RecordingSink:
    """Notification sink that remembers every delivery."""

    def __init__(self):
        self.delivered = []

    def deliver(self, title, body, tag):
        self.delivered.append((title, body, tag))

    @property
    def tags(self):
        return [tag for _, _, tag in self.delivered]


def fire(job):
    """Run a job's callback the way APScheduler would."""
    return job.func(*job.args, **job.kwargs)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "reminders.db")


@pytest.fixture
def kv(db_path):
    store = KeyValueStore(db_path)
    yield store
    store.close()


@pytest.fixture
def store(kv):
    return ReminderStore(kv)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scheduler():
    """Unstarted scheduler - jobs are inspected and fired by hand."""
    return AsyncIOScheduler(timezone=timezone.utc)


@pytest.fixture
def mock_httpx_post():
    """Patch httpx.post for webhook sinks."""
    with patch("httpx.post") as mock:
        mock.return_value = Mock(raise_for_status=Mock())
        yield mock
