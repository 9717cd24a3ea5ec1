"""
Event Coming — Data Models.

Events, participants, scheduled tasks and location samples. Rows live in
SQLite; the latest location per participant is also cached in Redis.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParticipantStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DENIED = "denied"
    CHECKED_IN = "checked_in"
    NO_SHOW = "no_show"


class TaskAction(str, enum.Enum):
    """Kind of outreach a scheduled task performs."""

    CONFIRMATION = "confirmation"
    REMINDER = "reminder"
    LOCATION = "location"
    CLOSURE = "closure"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PENDING


class ETAMethod(str, enum.Enum):
    VELOCITY = "velocity"
    HAVERSINE = "haversine"


@dataclass
class Event:
    """A scheduled real-world gathering with a fixed target coordinate."""

    id: str
    org_id: str
    name: str
    location_lat: float
    location_lng: float
    start_time: datetime
    end_time: datetime | None = None
    location_address: str | None = None
    status: EventStatus = EventStatus.SCHEDULED


@dataclass
class Participant:
    """Someone invited to an event, reachable on their phone number."""

    id: str
    event_id: str
    org_id: str
    name: str
    phone_number: str
    status: ParticipantStatus = ParticipantStatus.PENDING
    confirmed_at: datetime | None = None
    checked_in_at: datetime | None = None


@dataclass
class ScheduledTask:
    """A time-triggered action owned by the scheduler.

    `action` is a TaskAction for every task this version creates; rows
    written by a newer version may carry an action string this version
    does not know, which is kept as-is and processed as a no-op.
    """

    id: str
    org_id: str
    event_id: str
    action: TaskAction | str
    scheduled_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    instance_id: str | None = None
    processed_at: datetime | None = None
    retries: int = 0
    max_retries: int = 3
    error_message: str | None = None
    metadata: dict = field(default_factory=dict)
    claimed_until: datetime | None = None
    created_at: datetime | None = None


@dataclass
class LocationSample:
    """A single GPS fix reported by a participant. Immutable once written."""

    participant_id: str
    event_id: str
    latitude: float
    longitude: float
    timestamp: datetime
    org_id: str = ""
    accuracy: float | None = None
    altitude: float | None = None
    speed: float | None = None        # m/s as reported by the device
    heading: float | None = None      # degrees, 0-360

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> LocationSample:
        return cls(
            participant_id=str(data["participant_id"]),
            event_id=str(data["event_id"]),
            org_id=str(data.get("org_id") or ""),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=_optional_float(data.get("accuracy")),
            altitude=_optional_float(data.get("altitude")),
            speed=_optional_float(data.get("speed")),
            heading=_optional_float(data.get("heading")),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class ETAResult:
    """Derived on every query, never persisted."""

    participant_id: str
    distance_meters: float
    eta_minutes: int
    method: ETAMethod
    last_update: datetime


@dataclass
class ConfirmationEntry:
    """A participant's RSVP state as stored in the event cache."""

    participant_id: str
    status: ParticipantStatus
    updated_at: datetime
    participant_name: str = ""
    phone_number: str = ""
    confirmed_at: datetime | None = None
    checked_in_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "phone_number": self.phone_number,
            "status": self.status.value,
            "confirmed_at": _iso(self.confirmed_at),
            "checked_in_at": _iso(self.checked_in_at),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConfirmationEntry:
        return cls(
            participant_id=str(data["participant_id"]),
            participant_name=data.get("participant_name") or "",
            phone_number=data.get("phone_number") or "",
            status=ParticipantStatus(data["status"]),
            confirmed_at=_parse_dt(data.get("confirmed_at")),
            checked_in_at=_parse_dt(data.get("checked_in_at")),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass
class EventCacheSnapshot:
    """Point-in-time read view assembled from cache scans."""

    event_id: str
    org_id: str
    fetched_at: datetime
    locations: list[LocationSample] = field(default_factory=list)
    confirmations: list[ConfirmationEntry] = field(default_factory=list)
    total_locations: int = 0
    total_confirmed: int = 0   # confirmed + checked in
    total_pending: int = 0
    total_denied: int = 0
    skipped_entries: int = 0   # malformed cache values left out


def _optional_float(value) -> float | None:
    return None if value is None else float(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
