"""Tests for event_coming.data.db — SQLite stores."""

from datetime import timedelta

import pytest

from event_coming.data.db import _SQLiteStore
from event_coming.data.models import (
    EventStatus,
    LocationSample,
    ParticipantStatus,
    ScheduledTask,
    TaskAction,
    TaskStatus,
)

from conftest import T0


def _task(task_id="t1", action=TaskAction.REMINDER, scheduled_at=T0, **kwargs):
    return ScheduledTask(
        id=task_id, org_id="org-1", event_id="ev-1",
        action=action, scheduled_at=scheduled_at, **kwargs,
    )


class TestSQLiteStore:
    def test_base_store_has_no_schema(self, tmp_db_path):
        with pytest.raises(NotImplementedError):
            _SQLiteStore(tmp_db_path)


class TestEventDB:
    def test_add_and_get(self, event_db):
        ev = event_db.add_event(
            org_id="org-1", name="Match", location_lat=1.5, location_lng=-2.5,
            start_time=T0, end_time=T0 + timedelta(hours=2),
        )
        fetched = event_db.get_event(ev.id)
        assert fetched.name == "Match"
        assert fetched.start_time == T0
        assert fetched.end_time == T0 + timedelta(hours=2)
        assert fetched.status is EventStatus.SCHEDULED

    def test_get_scoped_to_org(self, event_db, event):
        assert event_db.get_event(event.id, "org-1") is not None
        assert event_db.get_event(event.id, "org-2") is None

    def test_get_nonexistent(self, event_db):
        assert event_db.get_event("nope") is None

    def test_update_status(self, event_db, event):
        assert event_db.update_status(event.id, "org-1", EventStatus.COMPLETED) is True
        assert event_db.get_event(event.id).status is EventStatus.COMPLETED

    def test_update_status_missing(self, event_db):
        assert event_db.update_status("nope", "org-1", EventStatus.COMPLETED) is False

    def test_naive_times_are_utc(self, event_db):
        ev = event_db.add_event(
            org_id="org-1", name="Naive", location_lat=0.0, location_lng=0.0,
            start_time=T0.replace(tzinfo=None),
        )
        assert event_db.get_event(ev.id).start_time == T0


class TestParticipantDB:
    def test_add_and_list(self, participant_db, event):
        a = participant_db.add_participant(event.id, "org-1", "Ana", "+5511911110000")
        b = participant_db.add_participant(event.id, "org-1", "Bruno", "+5511922220000")
        participant_db.add_participant("other", "org-1", "Caio", "+5511933330000")

        listed = participant_db.list_by_event(event.id, "org-1")
        assert [p.id for p in listed] == [a.id, b.id]

    def test_list_pages(self, participant_db, event):
        for i in range(5):
            participant_db.add_participant(event.id, "org-1", f"P{i}", f"+55119{i}")
        assert len(participant_db.list_by_event(event.id, "org-1", page=1, per_page=2)) == 2
        assert len(participant_db.list_by_event(event.id, "org-1", page=3, per_page=2)) == 1
        assert participant_db.list_by_event(event.id, "org-1", page=4, per_page=2) == []

    def test_confirm_stamps_once(self, participant_db, event):
        p = participant_db.add_participant(event.id, "org-1", "Ana", "+5511911110000")
        first = participant_db.update_status(p.id, "org-1", ParticipantStatus.CONFIRMED, now=T0)
        again = participant_db.update_status(
            p.id, "org-1", ParticipantStatus.CONFIRMED, now=T0 + timedelta(hours=1),
        )
        assert first.confirmed_at == T0
        assert again.confirmed_at == T0

    def test_check_in_stamps(self, participant_db, event):
        p = participant_db.add_participant(event.id, "org-1", "Ana", "+5511911110000")
        participant_db.update_status(p.id, "org-1", ParticipantStatus.CHECKED_IN, now=T0)
        stored = participant_db.get_participant(p.id)
        assert stored.status is ParticipantStatus.CHECKED_IN
        assert stored.checked_in_at == T0

    def test_update_missing_raises(self, participant_db):
        with pytest.raises(ValueError):
            participant_db.update_status("nope", "org-1", ParticipantStatus.DENIED)

    def test_delete(self, participant_db, event):
        p = participant_db.add_participant(event.id, "org-1", "Ana", "+5511911110000")
        assert participant_db.delete_participant(p.id, "org-1") is True
        assert participant_db.get_participant(p.id) is None
        assert participant_db.delete_participant(p.id, "org-1") is False


class TestSchedulerDB:
    def test_create_and_get(self, scheduler_db):
        scheduler_db.create(_task(metadata={"k": "v"}))
        task = scheduler_db.get_task("t1")
        assert task.action is TaskAction.REMINDER
        assert task.status is TaskStatus.PENDING
        assert task.metadata == {"k": "v"}
        assert task.created_at is not None

    def test_unknown_action_kept_as_string(self, scheduler_db):
        scheduler_db.create(_task(action="survey"))
        assert scheduler_db.get_task("t1").action == "survey"

    def test_list_pending_due_and_ordered(self, scheduler_db):
        scheduler_db.create(_task("late", scheduled_at=T0 - timedelta(minutes=1)))
        scheduler_db.create(_task("early", scheduled_at=T0 - timedelta(minutes=5)))
        scheduler_db.create(_task("future", scheduled_at=T0 + timedelta(minutes=5)))
        scheduler_db.create(_task("done", scheduled_at=T0 - timedelta(minutes=9)))
        scheduler_db.mark_processed("done", T0)

        due = scheduler_db.list_pending(T0, limit=10)
        assert [t.id for t in due] == ["early", "late"]
        assert len(scheduler_db.list_pending(T0, limit=1)) == 1

    def test_claim_is_exclusive_until_lease_expires(self, scheduler_db):
        scheduler_db.create(_task())
        assert scheduler_db.claim("t1", T0, lease_seconds=60) is True
        assert scheduler_db.claim("t1", T0 + timedelta(seconds=30), lease_seconds=60) is False
        assert scheduler_db.claim("t1", T0 + timedelta(seconds=60), lease_seconds=60) is True

    def test_claim_terminal_task_fails(self, scheduler_db):
        scheduler_db.create(_task())
        scheduler_db.mark_skipped("t1")
        assert scheduler_db.claim("t1", T0, lease_seconds=60) is False

    def test_terminal_writes_only_from_pending(self, scheduler_db):
        scheduler_db.create(_task())
        assert scheduler_db.mark_processed("t1", T0) is True
        assert scheduler_db.mark_failed("t1", "late error", T0) is False
        assert scheduler_db.mark_skipped("t1") is False

        task = scheduler_db.get_task("t1")
        assert task.status is TaskStatus.PROCESSED
        assert task.processed_at == T0
        assert task.error_message is None

    def test_mark_failed_truncates_message(self, scheduler_db):
        scheduler_db.create(_task())
        scheduler_db.mark_failed("t1", "x" * 800, T0)
        task = scheduler_db.get_task("t1")
        assert task.status is TaskStatus.FAILED
        assert len(task.error_message) == 500

    def test_increment_retries_releases_claim(self, scheduler_db):
        scheduler_db.create(_task())
        scheduler_db.claim("t1", T0, lease_seconds=60)
        assert scheduler_db.increment_retries("t1") == 1
        assert scheduler_db.get_task("t1").claimed_until is None
        assert scheduler_db.claim("t1", T0, lease_seconds=60) is True

    def test_increment_retries_on_terminal_task(self, scheduler_db):
        scheduler_db.create(_task())
        scheduler_db.mark_skipped("t1")
        assert scheduler_db.increment_retries("t1") is None
        assert scheduler_db.get_task("t1").retries == 0

    def test_list_by_event_scoped(self, scheduler_db):
        scheduler_db.create(_task("a"))
        scheduler_db.create(_task("b", scheduled_at=T0 - timedelta(hours=1)))
        assert [t.id for t in scheduler_db.list_by_event("ev-1", "org-1")] == ["b", "a"]
        assert scheduler_db.list_by_event("ev-1", "org-2") == []


class TestLocationDB:
    def _sample(self, minutes=0, lat=0.0, participant="p1", event="ev-1"):
        return LocationSample(
            participant_id=participant, event_id=event, org_id="org-1",
            latitude=lat, longitude=0.0, timestamp=T0 + timedelta(minutes=minutes),
        )

    def test_latest_is_newest_timestamp(self, location_db):
        location_db.add_location(self._sample(minutes=5, lat=5.0))
        location_db.add_location(self._sample(minutes=1, lat=1.0))
        assert location_db.get_latest("p1").latitude == 5.0

    def test_latest_scoped_to_event(self, location_db):
        location_db.add_location(self._sample(minutes=5, lat=5.0, event="ev-2"))
        location_db.add_location(self._sample(minutes=1, lat=1.0))
        assert location_db.get_latest("p1", event_id="ev-1").latitude == 1.0
        assert location_db.get_latest("p1", event_id="ev-3") is None

    def test_history_window_oldest_first(self, location_db):
        for m in (0, 10, 20, 30):
            location_db.add_location(self._sample(minutes=m, lat=float(m)))
        history = location_db.get_history(
            "p1", T0 + timedelta(minutes=10), T0 + timedelta(minutes=20),
        )
        assert [s.latitude for s in history] == [10.0, 20.0]

    def test_history_scoped_to_event(self, location_db):
        location_db.add_location(self._sample(minutes=0, lat=1.0))
        location_db.add_location(self._sample(minutes=1, lat=2.0, event="ev-2"))
        location_db.add_location(self._sample(minutes=2, lat=3.0))
        window = (T0, T0 + timedelta(minutes=5))

        assert [s.latitude for s in location_db.get_history("p1", *window, event_id="ev-1")] == [1.0, 3.0]
        assert [s.latitude for s in location_db.get_history("p1", *window)] == [1.0, 2.0, 3.0]
        assert location_db.get_history("p1", *window, org_id="org-2") == []

    def test_latest_by_event(self, location_db):
        location_db.add_location(self._sample(minutes=0, lat=1.0, participant="p1"))
        location_db.add_location(self._sample(minutes=3, lat=2.0, participant="p1"))
        location_db.add_location(self._sample(minutes=1, lat=9.0, participant="p2"))
        latest = location_db.get_latest_by_event("ev-1", "org-1")
        assert [(s.participant_id, s.latitude) for s in latest] == [("p1", 2.0), ("p2", 9.0)]
