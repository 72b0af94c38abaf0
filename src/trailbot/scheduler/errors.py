"""
Exception taxonomy for delayed-action scheduling.

Synchronous errors (``InvalidSchedule``, ``NotFound``, ``NotOwner`` and
``StoreUnavailable`` on insert) reach the command that asked for the change.
Delivery errors raised by handlers never reach a caller; the scheduler uses
their class to decide whether a fired row is deleted or left for catch-up.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for every error raised by the scheduling core."""


class InvalidSchedule(SchedulerError):
    """The due time is not in the future, or the payload is malformed."""


class NotFound(SchedulerError):
    """No pending action with this id (already fired, cancelled, or firing)."""

    def __init__(self, action_id: int) -> None:
        super().__init__(f"No pending action with id {action_id}")
        self.action_id = action_id


class NotOwner(SchedulerError):
    """The requester does not own the action they tried to cancel."""

    def __init__(self, action_id: int) -> None:
        super().__init__(f"Action {action_id} belongs to another user")
        self.action_id = action_id


class StoreUnavailable(SchedulerError):
    """The durable store could not be reached. Transient."""


class DeliveryError(SchedulerError):
    """Base class for failures reported by a notifier or moderation collaborator."""

    retryable: bool = False


class TargetNotFound(DeliveryError):
    """The delivery target no longer exists or refuses delivery. Never retried."""

    retryable = False


class Unreachable(DeliveryError):
    """The upstream service could not be reached. Retried on the next catch-up."""

    retryable = True


class QuotaExceeded(SchedulerError):
    """The owner already holds the maximum number of pending actions of this kind."""

    def __init__(self, current: int, limit: int) -> None:
        super().__init__(f"{current} of {limit} allowed actions already pending")
        self.current = current
        self.limit = limit


class InvalidDuration(SchedulerError):
    """A requested duration is unparseable or outside the configured bounds."""
