"""Error taxonomy for appointment transitions.

Every error raised between the request gate and the executor carries the
HTTP status and stable code the API layer responds with. NotificationFailure
is the exception: it never leaves the notification dispatcher.
"""


class SchedulingError(Exception):
    """Base class for errors surfaced to the caller of a transition."""

    status_code = 500
    code = "scheduling_error"

    def __init__(self, message: str | None = None):
        self.message = message or (self.__doc__ or "").strip() or self.code
        super().__init__(self.message)


class AuthenticationError(SchedulingError):
    """Missing or unparseable credential."""

    status_code = 401
    code = "authentication_error"


class NotFoundError(SchedulingError):
    """Appointment not found."""

    status_code = 404
    code = "not_found"


# Ownership failures are reported as absence so we never confirm that
# another user's appointment exists.
AuthorizationError = NotFoundError


class ValidationError(SchedulingError):
    """Invalid transition request."""

    status_code = 400
    code = "validation_error"


class ConflictError(SchedulingError):
    """Transition not allowed from the appointment's current state."""

    status_code = 409
    code = "conflict"


class WriteFailure(SchedulingError):
    """The store accepted the write but the appointment was not updated."""

    status_code = 500
    code = "write_failure"


class RateLimitedError(SchedulingError):
    """Too many transition requests."""

    status_code = 429
    code = "rate_limited"


class NotificationFailure(RuntimeError):
    """Raised inside the notification dispatcher; logged and discarded there."""
    pass
