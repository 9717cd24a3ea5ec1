"""
Event Coming — Scheduler.

Owns the time-triggered actions of each event: confirmation requests,
reminders, location requests and event closure. A sweep loads the due
pending tasks, claims each one, runs it against the event/participant
stores and the notification gateway, and records the outcome.

Outcome rules:
- success → processed
- NotFound / InvalidInput while running → failed at once (retrying
  cannot help)
- any other error, a timeout or cancellation → retries + 1; the task
  stays pending for the next sweep until max_retries is reached, then
  it is failed with the last error message

This module is provider-agnostic: it depends on the NotificationPort
protocol, not on a specific messaging implementation.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Awaitable, Callable

from event_coming.config import SchedulerConfig
from event_coming.core.errors import InvalidInputError, NotFoundError
from event_coming.data.db import to_utc, utcnow
from event_coming.data.models import (
    Event,
    EventStatus,
    Participant,
    ParticipantStatus,
    ScheduledTask,
    TaskAction,
    TaskStatus,
)
from event_coming.ports.notification_port import NotificationError

if TYPE_CHECKING:
    from event_coming.data.db import EventDB, ParticipantDB, SchedulerDB
    from event_coming.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_MAX_RETRIES_LIMIT = 10

SendFn = Callable[[Event, Participant], Awaitable[None]]


@dataclass
class TaskInput:
    """Request to create a single scheduled task."""

    event_id: str
    action: TaskAction | str | None
    scheduled_at: datetime | None
    instance_id: str | None = None
    max_retries: int = 0          # 0 → configured default
    metadata: dict = field(default_factory=dict)


@dataclass
class SchedulePlan:
    """Which actions to schedule for an event, and optional explicit times.

    Defaults: confirmation 24h before start, reminder 2h before start,
    location request 1h before start. A closure task is always created
    at the event end (or start, when the event has no end).
    """

    send_confirmation: bool = True
    confirmation_time: datetime | None = None
    send_reminder: bool = True
    reminder_time: datetime | None = None
    reminder_before_hours: int | None = None
    track_location: bool = True
    location_tracking_time: datetime | None = None


def parse_task_action(value: TaskAction | str | None) -> TaskAction:
    """Validate an action from outside input. Raises InvalidInputError."""
    if value is None or value == "":
        raise InvalidInputError("action is required")
    try:
        return TaskAction(value)
    except ValueError as exc:
        raise InvalidInputError(f"unknown action: {value!r}") from exc


class SchedulerService:
    """Creates, cancels and executes scheduled tasks."""

    def __init__(
        self,
        tasks: SchedulerDB,
        events: EventDB,
        participants: ParticipantDB,
        notifier: NotificationPort,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._tasks = tasks
        self._events = events
        self._participants = participants
        self._notifier = notifier
        self._config = config or SchedulerConfig()
        self._clock = clock

    # -----------------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------------

    def create(self, org_id: str, task_input: TaskInput) -> ScheduledTask:
        """Create a pending task.

        Raises:
            InvalidInputError: action or scheduled time missing or invalid.
        """
        action = parse_task_action(task_input.action)
        if task_input.scheduled_at is None:
            raise InvalidInputError("scheduled_at is required")
        if not 0 <= task_input.max_retries <= _MAX_RETRIES_LIMIT:
            raise InvalidInputError(
                f"max_retries must be within 0-{_MAX_RETRIES_LIMIT}, "
                f"got {task_input.max_retries}"
            )

        task = ScheduledTask(
            id=str(uuid.uuid4()),
            org_id=org_id,
            event_id=task_input.event_id,
            instance_id=task_input.instance_id,
            action=action,
            status=TaskStatus.PENDING,
            scheduled_at=to_utc(task_input.scheduled_at),
            retries=0,
            max_retries=task_input.max_retries or self._config.max_retries,
            metadata=dict(task_input.metadata),
        )
        self._tasks.create(task)
        logger.info(
            "Task created: %s action=%s scheduled_at=%s",
            task.id, action.value, task.scheduled_at.isoformat(),
        )
        return task

    def get_by_id(self, org_id: str, task_id: str) -> ScheduledTask:
        task = self._tasks.get_task(task_id, org_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def cancel(self, org_id: str, task_id: str) -> None:
        """Move a pending task to skipped.

        Raises:
            NotFoundError: no such task.
            InvalidInputError: the task is not pending (already terminal).
        """
        task = self.get_by_id(org_id, task_id)
        if task.status is not TaskStatus.PENDING:
            raise InvalidInputError(
                f"Task {task_id} is {task.status.value}, only pending tasks can be cancelled"
            )
        # A sweep may have finished the task since it was read.
        if not self._tasks.mark_skipped(task_id):
            raise InvalidInputError(f"Task {task_id} is no longer pending")
        logger.info("Task %s cancelled", task_id)

    def list_for_event(self, org_id: str, event_id: str) -> list[ScheduledTask]:
        return self._tasks.list_by_event(event_id, org_id)

    def schedule_event(
        self, event: Event, plan: SchedulePlan | None = None,
    ) -> list[ScheduledTask]:
        """Create one task per action configured in `plan` (all by default)."""
        plan = plan or SchedulePlan()
        start = event.start_time
        base_metadata = {"event_name": event.name}
        inputs: list[TaskInput] = []

        if plan.send_confirmation:
            inputs.append(TaskInput(
                event_id=event.id,
                action=TaskAction.CONFIRMATION,
                scheduled_at=plan.confirmation_time or start - timedelta(hours=24),
                metadata=dict(base_metadata),
            ))

        if plan.send_reminder:
            if plan.reminder_time is not None:
                reminder_at = plan.reminder_time
            elif plan.reminder_before_hours is not None:
                reminder_at = start - timedelta(hours=plan.reminder_before_hours)
            else:
                reminder_at = start - timedelta(hours=2)
            inputs.append(TaskInput(
                event_id=event.id,
                action=TaskAction.REMINDER,
                scheduled_at=reminder_at,
                metadata=dict(base_metadata),
            ))

        if plan.track_location:
            inputs.append(TaskInput(
                event_id=event.id,
                action=TaskAction.LOCATION,
                scheduled_at=plan.location_tracking_time or start - timedelta(hours=1),
                metadata={
                    **base_metadata,
                    "location_lat": event.location_lat,
                    "location_lng": event.location_lng,
                },
            ))

        inputs.append(TaskInput(
            event_id=event.id,
            action=TaskAction.CLOSURE,
            scheduled_at=event.end_time or start,
            metadata=dict(base_metadata),
        ))

        created = [self.create(event.org_id, task_input) for task_input in inputs]
        logger.info("Scheduled %d tasks for event %s", len(created), event.id)
        return created

    # -----------------------------------------------------------------------
    # Sweep
    # -----------------------------------------------------------------------

    async def process_pending_tasks(self, limit: int | None = None) -> int:
        """Run every due pending task (up to `limit`). Returns how many succeeded."""
        now = self._clock()
        tasks = self._tasks.list_pending(now, limit or self._config.batch_size)
        if not tasks:
            return 0

        logger.debug("Found %d pending tasks", len(tasks))

        processed = 0
        for task in tasks:
            # Earlier tasks in this sweep may have taken a while; lease from now.
            if not self._tasks.claim(task.id, self._clock(), self._config.claim_ttl_seconds):
                logger.info("Task %s is claimed by another sweep, skipping", task.id)
                continue
            if await self._run_task(task):
                processed += 1
        return processed

    async def _run_task(self, task: ScheduledTask) -> bool:
        """Execute one claimed task and record its outcome."""
        try:
            await asyncio.wait_for(
                self._process_task(task), timeout=self._config.task_timeout_seconds,
            )
        except (NotFoundError, InvalidInputError) as exc:
            logger.error(
                "Task %s (%s) cannot be processed: %s", task.id, _action_name(task), exc,
            )
            self._tasks.increment_retries(task.id)
            self._tasks.mark_failed(task.id, _describe(exc), self._clock())
            return False
        except asyncio.CancelledError:
            logger.warning("Task %s cancelled mid-run", task.id)
            self._record_failure(task, "cancelled")
            raise
        except asyncio.TimeoutError:
            logger.error(
                "Task %s (%s) timed out after %.0fs",
                task.id, _action_name(task), self._config.task_timeout_seconds,
            )
            self._record_failure(
                task, f"timed out after {self._config.task_timeout_seconds:.0f}s",
            )
            return False
        except Exception as exc:
            logger.error(
                "Failed to process task %s (%s): %s", task.id, _action_name(task), exc,
            )
            self._record_failure(task, _describe(exc))
            return False

        if not self._tasks.mark_processed(task.id, self._clock()):
            logger.error("Failed to mark task %s as processed", task.id)
        return True

    def _record_failure(self, task: ScheduledTask, error_message: str) -> None:
        """Count a transient failure; fail the task once retries are exhausted."""
        retries = self._tasks.increment_retries(task.id)
        if retries is None:
            return  # no longer pending
        if retries >= task.max_retries:
            self._tasks.mark_failed(task.id, error_message, self._clock())
            logger.warning(
                "Task %s failed permanently after %d attempts: %s",
                task.id, retries, error_message,
            )
        else:
            logger.info(
                "Task %s will be retried on the next sweep (%d/%d)",
                task.id, retries, task.max_retries,
            )

    async def _process_task(self, task: ScheduledTask) -> None:
        logger.info(
            "Processing task %s action=%s event=%s",
            task.id, _action_name(task), task.event_id,
        )

        action = task.action
        if action is TaskAction.CONFIRMATION:
            await self._notify_participants(
                task, ParticipantStatus.PENDING,
                self._notifier.send_confirmation_request, "confirmation request",
            )
        elif action is TaskAction.REMINDER:
            await self._notify_participants(
                task, ParticipantStatus.CONFIRMED,
                self._notifier.send_reminder, "reminder",
            )
        elif action is TaskAction.LOCATION:
            await self._notify_participants(
                task, ParticipantStatus.CONFIRMED,
                self._notifier.send_location_request, "location request",
            )
        elif action is TaskAction.CLOSURE:
            self._close_event(task)
        else:
            # Actions added by newer versions are left alone, not failed.
            logger.warning(
                "Unknown scheduler action %r on task %s, nothing to do", action, task.id,
            )

    # -----------------------------------------------------------------------
    # Actions
    # -----------------------------------------------------------------------

    def _load_event(self, task: ScheduledTask) -> Event:
        event = self._events.get_event(task.event_id, task.org_id)
        if event is None:
            raise NotFoundError(f"Event {task.event_id} not found")
        return event

    def _list_participants(self, event: Event) -> list[Participant]:
        page_size = self._config.participant_page_size
        participants: list[Participant] = []
        page = 1
        while True:
            batch = self._participants.list_by_event(
                event.id, event.org_id, page=page, per_page=page_size,
            )
            participants.extend(batch)
            if len(batch) < page_size:
                return participants
            page += 1

    async def _notify_participants(
        self,
        task: ScheduledTask,
        wanted: ParticipantStatus,
        send: SendFn,
        label: str,
    ) -> None:
        """Send to every participant in `wanted` status, concurrently.

        One failed send never stops the others. The task fails only when
        every attempted send failed.
        """
        event = self._load_event(task)
        recipients = [p for p in self._list_participants(event) if p.status is wanted]
        if not recipients:
            logger.info("Task %s: no %s participants to message", task.id, wanted.value)
            return

        results = await asyncio.gather(
            *(send(event, p) for p in recipients), return_exceptions=True,
        )

        failures: list[str] = []
        for participant, result in zip(recipients, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to send %s to participant %s: %s",
                    label, participant.id, result,
                )
                failures.append(_describe(result))

        if not failures:
            logger.info("Task %s: sent %d %s(s)", task.id, len(recipients), label)
            return
        if len(failures) == len(recipients):
            raise NotificationError(
                f"all {len(recipients)} {label} sends failed; last error: {failures[-1]}"
            )
        logger.warning(
            "Task %s: %d of %d %s sends failed",
            task.id, len(failures), len(recipients), label,
        )

    def _close_event(self, task: ScheduledTask) -> None:
        if not self._events.update_status(task.event_id, task.org_id, EventStatus.COMPLETED):
            raise NotFoundError(f"Event {task.event_id} not found")
        logger.info("Event %s closed by task %s", task.event_id, task.id)


def _action_name(task: ScheduledTask) -> str:
    return task.action.value if isinstance(task.action, TaskAction) else str(task.action)


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__
