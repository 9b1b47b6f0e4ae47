"""
CSV backup of tickets about to leave the local store.

The export goes to an operator-chosen directory when a DirectoryPermission
collaborator grants one. If it is denied, or writing there fails, the file is
written to the app-private backup directory and offered to a ShareHandler so
the operator can move it elsewhere. A backup that cannot be written at all is
logged and reported as None; callers never block on it.
"""

import csv
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from kiosk.core import clock, messages
from kiosk.core.config import settings
from kiosk.models import RosterUser, Ticket

logger = logging.getLogger(__name__)

CSV_HEADER = ["Codigo", "Comida", "Fecha"]
CSV_MIME_TYPE = "text/csv"


class DirectoryPermission(Protocol):
    def request_directory(self) -> Optional[str]:
        """Return a writable directory, or None when the operator denies access."""


class ShareHandler(Protocol):
    def share(self, path: str, mime_type: str, title: str) -> None:
        ...


class ConfiguredDirectoryPermission:
    """Grants the export directory from settings, if one is configured."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory if directory is not None else settings.backup_export_dir

    def request_directory(self) -> Optional[str]:
        return self.directory or None


@dataclass(frozen=True)
class BackupRow:
    code: str
    meal_name: str
    created_at: str


@dataclass(frozen=True)
class BackupResult:
    path: str
    external: bool
    shared: bool = False

    @property
    def message(self) -> str:
        return messages.BACKUP_SAVED if self.external else messages.BACKUP_DENIED


def backup_filename(moment: datetime) -> str:
    return f"backup_sincronizacion_{moment:%Y-%m-%d_%H-%M-%S}.csv"


def format_backup_timestamp(value: str) -> str:
    moment = clock.parse_timestamp(value)
    if moment is None:
        return value or ""
    if moment.tzinfo is not None:
        zone = clock.local_zone()
        moment = moment.astimezone(zone) if zone else moment.astimezone()
    return f"{moment:%Y-%m-%d %H:%M:%S}"


def build_rows(
    tickets: Iterable[Ticket],
    users: Iterable[RosterUser],
    meal_names: Dict[int, str],
) -> List[BackupRow]:
    codes = {u.external_id: u.code for u in users}
    return [
        BackupRow(
            code=codes.get(t.user_external_id, "") or "",
            meal_name=meal_names.get(t.meal_external_id) or messages.MEAL_NOT_FOUND,
            created_at=format_backup_timestamp(t.created_at),
        )
        for t in tickets
    ]


class CsvBackupWriter:
    def __init__(
        self,
        permission: Optional[DirectoryPermission] = None,
        share_handler: Optional[ShareHandler] = None,
        private_dir: Optional[str] = None,
        now=clock.now,
    ):
        self.permission = permission or ConfiguredDirectoryPermission()
        self.share_handler = share_handler
        self.private_dir = private_dir or settings.backup_private_dir
        self._now = now

    def write(self, rows: List[BackupRow]) -> Optional[BackupResult]:
        """Write ``rows`` and return where they landed, or None on failure."""
        filename = backup_filename(self._now())

        try:
            directory = self.permission.request_directory()
        except Exception as e:
            logger.warning(f"Directory permission request failed: {e}")
            directory = None

        if directory:
            try:
                path = self._write_file(directory, filename, rows)
                logger.info(f"Backup of {len(rows)} tickets written to {path}")
                return BackupResult(path=path, external=True)
            except OSError as e:
                logger.warning(f"Could not write backup to {directory}, using private storage: {e}")
        else:
            logger.info(messages.BACKUP_DENIED)

        try:
            path = self._write_file(self.private_dir, filename, rows)
        except OSError as e:
            logger.error(messages.BACKUP_FAILED.format(detail=e))
            return None
        logger.info(f"Backup of {len(rows)} tickets written to private storage {path}")
        return BackupResult(path=path, external=False, shared=self._offer_share(path))

    def _offer_share(self, path: str) -> bool:
        if self.share_handler is None:
            return False
        try:
            self.share_handler.share(path, CSV_MIME_TYPE, messages.BACKUP_SHARE_TITLE)
            return True
        except Exception as e:
            logger.warning(f"Sharing backup {path} failed: {e}")
            return False

    @staticmethod
    def _write_file(directory: str, filename: str, rows: List[BackupRow]) -> str:
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, filename)
        with open(path, "w", newline="", encoding="utf-8") as f:
            csv.writer(f, lineterminator="\n").writerow(CSV_HEADER)
            writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
            for row in rows:
                writer.writerow([row.code, row.meal_name, row.created_at])
        return path
