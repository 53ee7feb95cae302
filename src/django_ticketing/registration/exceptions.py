"""Error taxonomy for the registration, purchase, and ticket pipeline.

Every service-level failure derives from :class:`RegistrationError`. Each
subclass carries the HTTP status the views respond with and whether the
caller can reasonably retry the same action. ``AlreadyRegistered`` and
``AlreadyPurchased`` are benign: callers treat them as idempotent success.
"""

from http import HTTPStatus


class RegistrationError(Exception):
    """Base class for registration pipeline errors."""

    status_code: int = HTTPStatus.BAD_REQUEST
    retryable: bool = False
    default_message: str = "Registration request failed."

    def __init__(self, message: str | None = None) -> None:
        """Initialize the error with an optional human-readable message.

        Args:
            message: Overrides the class-level ``default_message``.
        """
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def code(self) -> str:
        """Return a stable machine-readable error code (the class name)."""
        return type(self).__name__


class Unauthenticated(RegistrationError):
    """The action requires a signed-in user."""

    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "You must be signed in to do that."


class NotFound(RegistrationError):
    """The event, purchase, or ticket does not exist or is not visible."""

    status_code = HTTPStatus.NOT_FOUND
    default_message = "Not found."


class AlreadyRegistered(RegistrationError):
    """An attendance record already exists for this user and event."""

    status_code = HTTPStatus.CONFLICT
    default_message = "You are already registered for this event."


class AlreadyPurchased(RegistrationError):
    """The user already holds a paid purchase for this event."""

    status_code = HTTPStatus.CONFLICT
    default_message = "You have already purchased a ticket for this event."


class NotPayable(RegistrationError):
    """A checkout was requested for a free event."""

    default_message = "This event is free and does not require payment."


class NotFree(RegistrationError):
    """A free registration was requested for a paid event."""

    default_message = "This event requires a ticket purchase."


class EventFull(RegistrationError):
    """The event has reached its attendee capacity."""

    status_code = HTTPStatus.CONFLICT
    default_message = "This event is sold out."


class ProcessorError(RegistrationError):
    """The payment processor was unreachable or rejected the request."""

    status_code = HTTPStatus.BAD_GATEWAY
    retryable = True
    default_message = "The payment processor is unavailable. Please try again."


class IssuanceFailure(RegistrationError):
    """A ticket record could not be created."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    retryable = True
    default_message = "Your ticket could not be generated yet. Please try again."


class RenderingError(RegistrationError):
    """A ticket PDF could not be rendered. The ticket itself is unaffected."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Your ticket could not be rendered right now. Please try again."


class TicketNotValid(RegistrationError):
    """A ticket presented at the door is forged, used, or expired."""

    status_code = HTTPStatus.CONFLICT
    default_message = "This ticket is not valid for entry."
