"""
Domain exceptions for the offer settlement and follow-up engine.
"""


class WashCrmError(Exception):
    """Base exception for all engine errors."""
    pass


class ValidationError(WashCrmError):
    """Bad or missing input (monetary amounts, malformed selection snapshot)."""
    pass


class NotFoundError(WashCrmError):
    """The offer or task an operation is keyed on does not exist."""
    pass


class PersistenceError(WashCrmError):
    """
    Underlying store failure.

    Primary failures propagate and fail the operation. Secondary failures
    (reminder batch, event reschedule) are turned into warnings by the outbox.
    """

    def __init__(self, message: str, secondary: bool = False):
        super().__init__(message)
        self.secondary = secondary
