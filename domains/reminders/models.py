"""Reminder data model and persisted record layout."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple, Optional


class RelativeDate(Enum):
    """Day a reminder is scheduled for, relative to when it was scheduled."""
    TODAY = "Today"
    TOMORROW = "Tomorrow"
    NEXT_WEEK = "Next Week"

    @property
    def days_ahead(self) -> int:
        return {"Today": 0, "Tomorrow": 1, "Next Week": 7}[self.value]

    @classmethod
    def parse(cls, value) -> "RelativeDate":
        """Accept a member, its display value, or a loose spelling like "next_week"."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "").replace(" ", "")
        for member in cls:
            if member.value.lower().replace(" ", "") == key:
                return member
        raise ValueError(f"Unknown relative date: {value!r}")


class TimeOfDay(NamedTuple):
    """Normalized 24-hour wall-clock time."""
    hour: int
    minute: int

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass
class Reminder:
    """A persisted request for a future meditation notification."""
    id: str
    title: str
    time_of_day: TimeOfDay
    relative_date: RelativeDate
    duration: str
    fire_at_epoch_ms: int

    @property
    def fire_at(self) -> datetime:
        return datetime.fromtimestamp(self.fire_at_epoch_ms / 1000, tz=timezone.utc)

    def to_record(self) -> dict:
        """Serialize to the stored JSON layout."""
        return {
            "id": self.id,
            "title": self.title,
            "time": str(self.time_of_day),
            "date": self.relative_date.value,
            "duration": self.duration,
            "fireAtEpochMs": self.fire_at_epoch_ms,
        }

    @classmethod
    def from_record(cls, record: dict) -> Optional["Reminder"]:
        """Build from a stored record, or None if it is malformed."""
        try:
            hour, minute = (int(part) for part in str(record["time"]).split(":"))
            return cls(
                id=str(record["id"]),
                title=str(record["title"]),
                time_of_day=TimeOfDay(hour, minute),
                relative_date=RelativeDate.parse(record["date"]),
                duration=str(record.get("duration", "")),
                fire_at_epoch_ms=int(record["fireAtEpochMs"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)
