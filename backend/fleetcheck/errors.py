"""Exceptions raised by fleetcheck services.

Probe failures never appear here: they are converted to issues on the
domain result. These exceptions cover caller mistakes and run-level faults.
"""


class FleetcheckError(Exception):
    """Base class for service errors."""


class NoTargetsError(FleetcheckError):
    """A batch request resolved to zero target domains."""

    def __init__(self, message: str = "No domains found matching criteria"):
        super().__init__(message)


class OperationNotFoundError(FleetcheckError):
    """No batch operation with the given id."""


class AlertNotFoundError(FleetcheckError):
    """No alert with the given id."""


class TemplateNotFoundError(FleetcheckError):
    """No check template with the given id."""


class InvalidTransitionError(FleetcheckError):
    """A state change that the alert or operation state machine forbids."""


class NotificationError(FleetcheckError):
    """A notification channel failed to deliver a message."""


class RunError(FleetcheckError):
    """A system-level failure outside the per-domain loop of a batch run."""
