"""
Exception hierarchy for the Team Task Tracker.

Authentication failures are rejected before the payload is parsed. Malformed
or non task-bearing deliveries are acknowledged as no-ops. Persistence
failures are isolated per (team, task) pair inside a delivery and surface as
a 500 anywhere else.
"""

from typing import Optional


class TaskTrackerError(Exception):
    """Base class for all task tracker errors."""


class AuthenticationError(TaskTrackerError):
    """Missing or invalid webhook signature."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)
        self.message = message


class MalformedEventError(TaskTrackerError):
    """Delivery is not a recognizable push event."""


class UnsupportedCategoryError(TaskTrackerError):
    """Push targeted a branch that carries no tasks."""

    def __init__(self, category: str):
        super().__init__(f"{category} category does not have tasks")
        self.category = category


class PersistenceError(TaskTrackerError):
    """The store was unavailable or rejected a write."""

    def __init__(self, message: str, original: Optional[Exception] = None):
        super().__init__(message)
        self.original = original
