"""Kiosk error taxonomy.

Issuance errors carry two texts: ``message`` is shown on screen and
``speech`` is announced for the no-look keypad workflow.
"""

from typing import Optional

from kiosk.core import messages


class KioskError(Exception):
    """Base class for all kiosk errors."""

    status_code = 500
    default_message = messages.GENERIC_ERROR

    def __init__(self, message: Optional[str] = None, speech: Optional[str] = None):
        self.message = message or self.default_message
        self.speech = speech or self.message
        super().__init__(self.message)


class ValidationError(KioskError):
    """A record is missing required fields."""

    status_code = 422
    default_message = messages.INCOMPLETE_TICKET


class NotFoundError(KioskError):
    """A code is not present in the cached roster."""

    status_code = 404
    default_message = messages.INVALID_CODE


class ConflictError(KioskError):
    """A ticket with the same uuid already exists locally."""

    status_code = 409
    default_message = messages.DUPLICATE_TICKET


class ConnectivityError(KioskError):
    """The remote service could not be reached or answered garbage."""

    status_code = 503
    default_message = messages.NO_CONNECTION


class PersistenceError(KioskError):
    """The local store failed after all retries."""

    status_code = 500
    default_message = messages.SAVE_FAILED


class RemoteBusinessError(KioskError):
    """The remote service rejected a request on a business rule."""

    status_code = 409
    default_message = messages.REMOTE_REJECTED

    def __init__(self, error_code: str, message: Optional[str] = None):
        self.error_code = error_code
        super().__init__(message)


class NotReadyError(KioskError):
    """Issuance attempted before the application finished loading."""

    status_code = 503
    default_message = messages.STILL_LOADING

    def __init__(self):
        super().__init__(messages.STILL_LOADING, messages.STILL_LOADING_SPEECH)


class EmptyCodeError(KioskError):
    status_code = 400
    default_message = messages.ENTER_CODE

    def __init__(self):
        super().__init__(messages.ENTER_CODE, messages.ENTER_CODE_SPEECH)


class NoActivePeriodError(KioskError):
    status_code = 409
    default_message = messages.NO_PERIOD

    def __init__(self):
        super().__init__(messages.NO_PERIOD, messages.NO_PERIOD_SPEECH)


class NoActiveMealError(KioskError):
    status_code = 409
    default_message = messages.NO_MEAL


class RosterEmptyError(KioskError):
    status_code = 409
    default_message = messages.NO_ROSTER

    def __init__(self):
        super().__init__(messages.NO_ROSTER, messages.NO_ROSTER_SPEECH)


class SyncCancelled(KioskError):
    """Raised inside a sync run when its cancellation token fires."""

    status_code = 409
    default_message = messages.SYNC_CANCELLED
