"""Operator feedback: the message on screen and its spoken announcement."""

import asyncio
import enum
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from kiosk.core.config import settings
from kiosk.core.exceptions import KioskError

logger = logging.getLogger(__name__)


class FeedbackKind(str, enum.Enum):
    ERROR = "error"
    SUCCESS = "success"
    INFO = "info"


@dataclass(frozen=True)
class Feedback:
    kind: FeedbackKind
    message: str
    speech: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def from_error(cls, error: KioskError) -> "Feedback":
        return cls(FeedbackKind.ERROR, error.message, speech=error.speech)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "speech": self.speech,
            "detail": self.detail,
        }


class Announcer(Protocol):
    def announce(self, text: str) -> None:
        ...


class LoggingAnnouncer:
    """Announcer used when no speech engine is attached."""

    def announce(self, text: str) -> None:
        logger.info(f"Announce: {text}")


FeedbackListener = Callable[[Optional[Feedback]], None]


class FeedbackBus:
    """Holds the current feedback and clears it after a short delay.

    Each publish gets its own clear timer; a timer only clears the feedback it
    was started for, so a newer message is never cut short by an older one.
    """

    def __init__(self, announcer: Optional[Announcer] = None, clear_after: Optional[float] = None):
        self.announcer = announcer or LoggingAnnouncer()
        self.clear_after = clear_after if clear_after is not None else settings.feedback_clear_seconds
        self._listeners: List[FeedbackListener] = []
        self._current: Optional[Feedback] = None
        self._expires_at = 0.0
        self._token = 0
        self._tokens = itertools.count(1)

    @property
    def current(self) -> Optional[Feedback]:
        if self._current is not None and time.monotonic() >= self._expires_at:
            self._current = None
        return self._current

    def subscribe(self, listener: FeedbackListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, feedback: Feedback, clear_after: Optional[float] = None) -> Feedback:
        delay = self.clear_after if clear_after is None else clear_after
        token = next(self._tokens)
        self._token = token
        self._current = feedback
        self._expires_at = time.monotonic() + delay
        self._notify(feedback)

        if feedback.speech:
            try:
                self.announcer.announce(feedback.speech)
            except Exception as e:
                logger.warning(f"Announcement failed: {e}")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            loop.call_later(delay, self._expire, token)
        return feedback

    def error(self, error: KioskError, clear_after: Optional[float] = None) -> Feedback:
        return self.publish(Feedback.from_error(error), clear_after)

    def clear(self) -> None:
        self._current = None
        self._notify(None)

    def _expire(self, token: int) -> None:
        if token == self._token and self._current is not None:
            self.clear()

    def _notify(self, feedback: Optional[Feedback]) -> None:
        for listener in list(self._listeners):
            try:
                listener(feedback)
            except Exception as e:
                logger.warning(f"Feedback listener failed: {e}")
