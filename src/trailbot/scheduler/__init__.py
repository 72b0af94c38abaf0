"""
Durable delayed-action scheduling.

- **delayed_action_scheduler.py**: The scheduling engine. Persists each
  action before arming it, recovers pending actions on startup (catch-up),
  enforces single firing, and dispatches to kind handlers.

- **action_registry.py**: In-memory index of live asyncio timers, including
  the recurring ticker used by countdowns.

- **action_handlers.py**: Reminder delivery, timeout lift and countdown
  tick/finalize strategies, plus the ``Notifier`` and ``Moderator``
  collaborator protocols they call.

- **errors.py**: Exception taxonomy; delivery errors are split into
  non-retryable ``TargetNotFound`` and transient ``Unreachable``.
"""
