"""
Error types raised by the booking client.

Every failure a UI layer can show derives from RyderXError, so callers can
catch one type and display ``str(exc)``:

- DraftValidationError: caught before submission, never reaches the network.
- ServiceRejectedError: the API answered with a non-2xx status. The message
  is the API's own, shown verbatim.
- ServiceUnavailableError: no usable response (connection error, timeout).

A redundant cancel of an already cancelled or expired reservation is not an
error; see ReservationHoldClient.cancel_hold.
"""

from typing import Optional


class RyderXError(Exception):
    """Base class for displayable client errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DraftValidationError(RyderXError):
    """A wizard step failed its client-side pre-check."""

    def __init__(self, message: str, step: int):
        super().__init__(message)
        self.step = step


class ServiceRejectedError(RyderXError):
    """The reservations API rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(ServiceRejectedError):
    """The API answered 401; the stored session has been cleared."""


class MalformedResponseError(ServiceRejectedError):
    """The API answered 2xx but the body was not what the client expects."""


class ServiceUnavailableError(RyderXError):
    """No response from the API."""


class ActionInProgressError(RyderXError):
    """The same action for the same reservation is already in flight."""


class StatusTransitionError(RyderXError):
    """A status change that the booking workflow does not allow."""


class RefundNotApplicableError(RyderXError):
    """Refund estimates are only shown for confirmed reservations."""
