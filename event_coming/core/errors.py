"""Domain errors shared by the core services.

Transport-level errors live beside their ports
(NotificationError, CacheError).
"""

from __future__ import annotations


class EventComingError(Exception):
    """Base class for all domain errors."""


class NotFoundError(EventComingError):
    """A referenced event, participant, task or location does not exist."""


class InvalidInputError(EventComingError):
    """Malformed input or an operation not allowed in the current state."""
