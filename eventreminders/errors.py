"""Error taxonomy for reminder scheduling runs."""

from __future__ import annotations


class ReminderError(Exception):
    """Base class for scheduler errors."""


class ConfigError(ReminderError):
    """Raised when required configuration (e.g. the trigger token) is missing."""


class AuthError(ReminderError):
    """Raised when a trigger request carries a missing or invalid credential."""


class TransientStoreError(ReminderError):
    """Raised when a store read or write keeps failing after retries."""


class JobNotFound(ReminderError):
    """Raised when a reminder job id does not exist."""


class InvalidJobTransition(ReminderError):
    """Raised when a job status change would leave a terminal state."""
