"""
Event Coming — Relational stores.

SQLite-backed storage for events, participants, scheduled tasks and the
append-only location history. Datetimes are stored as UTC ISO-8601 strings
so that they compare correctly as text.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from event_coming.data.models import (
    Event,
    EventStatus,
    LocationSample,
    Participant,
    ParticipantStatus,
    ScheduledTask,
    TaskAction,
    TaskStatus,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dt_to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc(value).isoformat(timespec="microseconds")


def _dt_from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return to_utc(datetime.fromisoformat(value))


def parse_action(value: str) -> TaskAction | str:
    """Map a stored action string to TaskAction, keeping unknown values as-is."""
    try:
        return TaskAction(value)
    except ValueError:
        return value


class _SQLiteStore:
    """Connection handling shared by every store."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from event_coming.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the store's table and indexes. Every subclass overrides this."""
        raise NotImplementedError


class EventDB(_SQLiteStore):
    """Storage for events."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id               TEXT PRIMARY KEY,
                    org_id           TEXT NOT NULL,
                    name             TEXT NOT NULL,
                    status           TEXT NOT NULL DEFAULT 'scheduled',
                    location_lat     REAL NOT NULL,
                    location_lng     REAL NOT NULL,
                    location_address TEXT,
                    start_time       TEXT NOT NULL,
                    end_time         TEXT
                )
            """)
        logger.debug("Events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            org_id=row["org_id"],
            name=row["name"],
            status=EventStatus(row["status"]),
            location_lat=row["location_lat"],
            location_lng=row["location_lng"],
            location_address=row["location_address"],
            start_time=_dt_from_db(row["start_time"]),
            end_time=_dt_from_db(row["end_time"]),
        )

    def add_event(
        self,
        org_id: str,
        name: str,
        location_lat: float,
        location_lng: float,
        start_time: datetime,
        end_time: datetime | None = None,
        location_address: str | None = None,
        status: EventStatus = EventStatus.SCHEDULED,
        event_id: str | None = None,
    ) -> Event:
        """Insert a new event and return it."""
        event = Event(
            id=event_id or str(uuid.uuid4()),
            org_id=org_id,
            name=name,
            status=status,
            location_lat=location_lat,
            location_lng=location_lng,
            location_address=location_address,
            start_time=to_utc(start_time),
            end_time=to_utc(end_time) if end_time else None,
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO events
                    (id, org_id, name, status, location_lat, location_lng,
                     location_address, start_time, end_time)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id, org_id, name, status.value, location_lat,
                    location_lng, location_address,
                    _dt_to_db(event.start_time), _dt_to_db(event.end_time),
                ),
            )
        logger.info("Event added: %s '%s'", event.id, name)
        return event

    def get_event(self, event_id: str, org_id: str | None = None) -> Event | None:
        """Fetch a single event, optionally scoped to an organization."""
        query = "SELECT * FROM events WHERE id = ?"
        params: list = [event_id]
        if org_id is not None:
            query += " AND org_id = ?"
            params.append(org_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def update_status(self, event_id: str, org_id: str, status: EventStatus) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE events SET status = ? WHERE id = ? AND org_id = ?",
                (status.value, event_id, org_id),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Event %s status -> %s", event_id, status.value)
        return updated


class ParticipantDB(_SQLiteStore):
    """Storage for event participants and their RSVP status."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS participants (
                    id            TEXT PRIMARY KEY,
                    event_id      TEXT NOT NULL,
                    org_id        TEXT NOT NULL,
                    name          TEXT NOT NULL,
                    phone_number  TEXT NOT NULL,
                    status        TEXT NOT NULL DEFAULT 'pending',
                    confirmed_at  TEXT,
                    checked_in_at TEXT,
                    created_at    TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_participants_event "
                "ON participants (event_id, org_id)"
            )
        logger.debug("Participants table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_participant(row: sqlite3.Row) -> Participant:
        return Participant(
            id=row["id"],
            event_id=row["event_id"],
            org_id=row["org_id"],
            name=row["name"],
            phone_number=row["phone_number"],
            status=ParticipantStatus(row["status"]),
            confirmed_at=_dt_from_db(row["confirmed_at"]),
            checked_in_at=_dt_from_db(row["checked_in_at"]),
        )

    def add_participant(
        self,
        event_id: str,
        org_id: str,
        name: str,
        phone_number: str,
        status: ParticipantStatus = ParticipantStatus.PENDING,
        participant_id: str | None = None,
    ) -> Participant:
        participant = Participant(
            id=participant_id or str(uuid.uuid4()),
            event_id=event_id,
            org_id=org_id,
            name=name,
            phone_number=phone_number,
            status=status,
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO participants
                    (id, event_id, org_id, name, phone_number, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    participant.id, event_id, org_id, name, phone_number,
                    status.value, _dt_to_db(utcnow()),
                ),
            )
        logger.info("Participant added: %s to event %s", participant.id, event_id)
        return participant

    def get_participant(
        self, participant_id: str, org_id: str | None = None,
    ) -> Participant | None:
        query = "SELECT * FROM participants WHERE id = ?"
        params: list = [participant_id]
        if org_id is not None:
            query += " AND org_id = ?"
            params.append(org_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_participant(row)

    def list_by_event(
        self, event_id: str, org_id: str, page: int = 1, per_page: int = 1000,
    ) -> list[Participant]:
        """Return one page of an event's participants in insertion order."""
        offset = max(page - 1, 0) * per_page
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM participants
                WHERE event_id = ? AND org_id = ?
                ORDER BY created_at, id
                LIMIT ? OFFSET ?
                """,
                (event_id, org_id, per_page, offset),
            ).fetchall()
        return [self._row_to_participant(r) for r in rows]

    def update_status(
        self,
        participant_id: str,
        org_id: str,
        status: ParticipantStatus,
        now: datetime | None = None,
    ) -> Participant:
        """Change a participant's RSVP status.

        Stamps confirmed_at the first time a participant confirms and
        checked_in_at on check-in. Raises ValueError if the participant
        does not exist.
        """
        now = to_utc(now or utcnow())
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM participants WHERE id = ? AND org_id = ?",
                (participant_id, org_id),
            ).fetchone()
            if row is None:
                raise ValueError(f"Participant {participant_id} not found")

            participant = self._row_to_participant(row)
            participant.status = status
            if status is ParticipantStatus.CONFIRMED and participant.confirmed_at is None:
                participant.confirmed_at = now
            if status is ParticipantStatus.CHECKED_IN:
                participant.checked_in_at = now

            conn.execute(
                """
                UPDATE participants
                SET status = ?, confirmed_at = ?, checked_in_at = ?
                WHERE id = ? AND org_id = ?
                """,
                (
                    status.value,
                    _dt_to_db(participant.confirmed_at),
                    _dt_to_db(participant.checked_in_at),
                    participant_id, org_id,
                ),
            )
        logger.info("Participant %s status -> %s", participant_id, status.value)
        return participant

    def delete_participant(self, participant_id: str, org_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM participants WHERE id = ? AND org_id = ?",
                (participant_id, org_id),
            )
        return cursor.rowcount > 0


class SchedulerDB(_SQLiteStore):
    """Storage for scheduled tasks.

    Rows are never deleted; terminal rows are the audit trail. Every
    terminal write is conditional on the row still being pending, and
    reports whether it took effect.
    """

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS scheduled_tasks (
                    id            TEXT PRIMARY KEY,
                    org_id        TEXT NOT NULL,
                    event_id      TEXT NOT NULL,
                    instance_id   TEXT,
                    action        TEXT NOT NULL,
                    status        TEXT NOT NULL DEFAULT 'pending',
                    scheduled_at  TEXT NOT NULL,
                    processed_at  TEXT,
                    retries       INTEGER NOT NULL DEFAULT 0,
                    max_retries   INTEGER NOT NULL DEFAULT 3,
                    error_message TEXT,
                    metadata      TEXT NOT NULL DEFAULT '{}',
                    claimed_until TEXT,
                    created_at    TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_scheduled_tasks_due "
                "ON scheduled_tasks (status, scheduled_at)"
            )
        logger.debug("Scheduled tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> ScheduledTask:
        return ScheduledTask(
            id=row["id"],
            org_id=row["org_id"],
            event_id=row["event_id"],
            instance_id=row["instance_id"],
            action=parse_action(row["action"]),
            status=TaskStatus(row["status"]),
            scheduled_at=_dt_from_db(row["scheduled_at"]),
            processed_at=_dt_from_db(row["processed_at"]),
            retries=row["retries"],
            max_retries=row["max_retries"],
            error_message=row["error_message"],
            metadata=json.loads(row["metadata"] or "{}"),
            claimed_until=_dt_from_db(row["claimed_until"]),
            created_at=_dt_from_db(row["created_at"]),
        )

    def create(self, task: ScheduledTask) -> ScheduledTask:
        action = task.action.value if isinstance(task.action, TaskAction) else task.action
        task.created_at = task.created_at or utcnow()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO scheduled_tasks
                    (id, org_id, event_id, instance_id, action, status,
                     scheduled_at, retries, max_retries, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id, task.org_id, task.event_id, task.instance_id,
                    action, task.status.value, _dt_to_db(task.scheduled_at),
                    task.retries, task.max_retries, json.dumps(task.metadata),
                    _dt_to_db(task.created_at),
                ),
            )
        return task

    def get_task(self, task_id: str, org_id: str | None = None) -> ScheduledTask | None:
        query = "SELECT * FROM scheduled_tasks WHERE id = ?"
        params: list = [task_id]
        if org_id is not None:
            query += " AND org_id = ?"
            params.append(org_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_by_event(self, event_id: str, org_id: str) -> list[ScheduledTask]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM scheduled_tasks
                WHERE event_id = ? AND org_id = ?
                ORDER BY scheduled_at
                """,
                (event_id, org_id),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def list_pending(self, before: datetime, limit: int) -> list[ScheduledTask]:
        """Return pending tasks due at or before `before`, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM scheduled_tasks
                WHERE status = 'pending' AND scheduled_at <= ?
                ORDER BY scheduled_at
                LIMIT ?
                """,
                (_dt_to_db(before), limit),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def claim(self, task_id: str, now: datetime, lease_seconds: int) -> bool:
        """Atomically lease a pending task to the caller.

        Succeeds only if the task is pending and not leased, or its lease
        has expired. A sweep that loses the claim must not run the task.
        """
        now = to_utc(now)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE scheduled_tasks
                SET claimed_until = ?
                WHERE id = ? AND status = 'pending'
                  AND (claimed_until IS NULL OR claimed_until <= ?)
                """,
                (
                    _dt_to_db(now + timedelta(seconds=lease_seconds)),
                    task_id, _dt_to_db(now),
                ),
            )
        return cursor.rowcount > 0

    def mark_processed(self, task_id: str, now: datetime | None = None) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE scheduled_tasks
                SET status = 'processed', processed_at = ?, claimed_until = NULL
                WHERE id = ? AND status = 'pending'
                """,
                (_dt_to_db(now or utcnow()), task_id),
            )
        return cursor.rowcount > 0

    def mark_failed(
        self, task_id: str, error_message: str, now: datetime | None = None,
    ) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE scheduled_tasks
                SET status = 'failed', processed_at = ?, error_message = ?,
                    claimed_until = NULL
                WHERE id = ? AND status = 'pending'
                """,
                (_dt_to_db(now or utcnow()), error_message[:500], task_id),
            )
        return cursor.rowcount > 0

    def mark_skipped(self, task_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE scheduled_tasks
                SET status = 'skipped', claimed_until = NULL
                WHERE id = ? AND status = 'pending'
                """,
                (task_id,),
            )
        return cursor.rowcount > 0

    def increment_retries(self, task_id: str) -> int | None:
        """Bump the retry counter and release the lease.

        Returns the new retry count, or None if the task is no longer pending.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE scheduled_tasks
                SET retries = retries + 1, claimed_until = NULL
                WHERE id = ? AND status = 'pending'
                """,
                (task_id,),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT retries FROM scheduled_tasks WHERE id = ?", (task_id,)
            ).fetchone()
        return row["retries"]


class LocationDB(_SQLiteStore):
    """Append-only location history. Authoritative past cache expiry."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS locations (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    participant_id TEXT NOT NULL,
                    event_id       TEXT NOT NULL,
                    org_id         TEXT NOT NULL,
                    latitude       REAL NOT NULL,
                    longitude      REAL NOT NULL,
                    accuracy       REAL,
                    altitude       REAL,
                    speed          REAL,
                    heading        REAL,
                    timestamp      TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_locations_participant "
                "ON locations (participant_id, timestamp)"
            )
        logger.debug("Locations table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_sample(row: sqlite3.Row) -> LocationSample:
        return LocationSample(
            participant_id=row["participant_id"],
            event_id=row["event_id"],
            org_id=row["org_id"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            accuracy=row["accuracy"],
            altitude=row["altitude"],
            speed=row["speed"],
            heading=row["heading"],
            timestamp=_dt_from_db(row["timestamp"]),
        )

    def add_location(self, sample: LocationSample) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO locations
                    (participant_id, event_id, org_id, latitude, longitude,
                     accuracy, altitude, speed, heading, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sample.participant_id, sample.event_id, sample.org_id,
                    sample.latitude, sample.longitude, sample.accuracy,
                    sample.altitude, sample.speed, sample.heading,
                    _dt_to_db(sample.timestamp),
                ),
            )
        return cursor.lastrowid

    def get_latest(
        self,
        participant_id: str,
        org_id: str | None = None,
        event_id: str | None = None,
    ) -> LocationSample | None:
        query = "SELECT * FROM locations WHERE participant_id = ?"
        params: list = [participant_id]
        if org_id is not None:
            query += " AND org_id = ?"
            params.append(org_id)
        if event_id is not None:
            query += " AND event_id = ?"
            params.append(event_id)
        query += " ORDER BY timestamp DESC, id DESC LIMIT 1"
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_sample(row)

    def get_latest_by_event(self, event_id: str, org_id: str) -> list[LocationSample]:
        """Latest sample per participant of an event."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT l.* FROM locations l
                WHERE l.event_id = ? AND l.org_id = ?
                  AND l.id = (
                      SELECT l2.id FROM locations l2
                      WHERE l2.participant_id = l.participant_id
                        AND l2.event_id = l.event_id
                      ORDER BY l2.timestamp DESC, l2.id DESC LIMIT 1
                  )
                ORDER BY l.participant_id
                """,
                (event_id, org_id),
            ).fetchall()
        return [self._row_to_sample(r) for r in rows]

    def get_history(
        self,
        participant_id: str,
        start: datetime,
        end: datetime,
        org_id: str | None = None,
        event_id: str | None = None,
    ) -> list[LocationSample]:
        """All samples in [start, end], oldest first."""
        query = (
            "SELECT * FROM locations WHERE participant_id = ? "
            "AND timestamp >= ? AND timestamp <= ?"
        )
        params: list = [participant_id, _dt_to_db(start), _dt_to_db(end)]
        if org_id is not None:
            query += " AND org_id = ?"
            params.append(org_id)
        if event_id is not None:
            query += " AND event_id = ?"
            params.append(event_id)
        query += " ORDER BY timestamp, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_sample(r) for r in rows]
