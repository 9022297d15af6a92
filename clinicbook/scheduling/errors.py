"""Error kinds raised by the scheduling core."""


class SchedulingError(Exception):
    """Base class for scheduling failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Missing or malformed input. Raised before any write."""


class ConflictError(SchedulingError):
    """The slot is held by another booking or is blocked."""

    def __init__(self, message: str = 'This time is no longer available.'):
        super().__init__(message)


class PaymentProviderError(SchedulingError):
    """The payment provider could not create or report a payment."""


class NotFoundError(SchedulingError):
    """A referenced booking does not exist."""


class InvalidTransitionError(SchedulingError):
    """The booking's current status does not allow the requested change."""


class DuplicateSlotError(SchedulingError):
    """The active-slot unique index rejected a write."""

    def __init__(self, message: str = 'Active booking already exists for this slot.'):
        super().__init__(message)
