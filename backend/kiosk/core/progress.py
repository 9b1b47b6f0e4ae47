"""Weighted multi-stage sync progress."""

import enum
from dataclasses import dataclass, replace
from typing import Callable, List

from kiosk.core import messages


class SyncStage(str, enum.Enum):
    """Sync run stages, in order."""

    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"


# Share of the overall bar owned by each working stage
STAGE_WEIGHTS = {
    SyncStage.FETCHING: 0.4,
    SyncStage.PROCESSING: 0.3,
    SyncStage.UPLOADING: 0.3,
}

_STAGE_OFFSETS = {
    SyncStage.FETCHING: 0.0,
    SyncStage.PROCESSING: 0.4,
    SyncStage.UPLOADING: 0.7,
}


def weighted_percentage(stage: SyncStage, current: int, total: int) -> int:
    """Map (stage, current, total) to an overall 0-100 percentage."""
    if stage == SyncStage.IDLE:
        return 0
    if stage == SyncStage.COMPLETED:
        return 100

    fraction = current / total if total > 0 else 0.0
    fraction = min(max(fraction, 0.0), 1.0)
    overall = _STAGE_OFFSETS[stage] + fraction * STAGE_WEIGHTS[stage]
    return int(round(overall * 100))


@dataclass(frozen=True)
class SyncProgress:
    stage: SyncStage = SyncStage.IDLE
    percent: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        return {"status": self.stage.value, "percent": self.percent, "message": self.message}


ProgressListener = Callable[[SyncProgress], None]


class ProgressTracker:
    """Holds the progress of the current run and notifies listeners.

    The percentage never goes backwards between ``start()`` calls; ``reset()``
    is the only way back to zero.
    """

    def __init__(self):
        self._progress = SyncProgress()
        self._listeners: List[ProgressListener] = []

    @property
    def current(self) -> SyncProgress:
        return self._progress

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        self._set(SyncProgress(SyncStage.IDLE, 0, messages.SYNC_PREPARING))

    def stage(self, stage: SyncStage, message: str) -> None:
        """Enter ``stage`` without moving the bar."""
        self._set(replace(self._progress, stage=stage, message=message))

    def update(self, stage: SyncStage, current: int, total: int, message: str) -> None:
        percent = max(self._progress.percent, weighted_percentage(stage, current, total))
        self._set(SyncProgress(stage, percent, message))

    def complete(self, message: str) -> None:
        self._set(SyncProgress(SyncStage.COMPLETED, 100, message))

    def reset(self, message: str = "") -> None:
        self._set(SyncProgress(SyncStage.IDLE, 0, message))

    def _set(self, progress: SyncProgress) -> None:
        if progress == self._progress:
            return
        self._progress = progress
        for listener in self._listeners:
            listener(progress)
