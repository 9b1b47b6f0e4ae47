"""Tests for the CSV backup writer."""

import os

from kiosk.core import messages
from kiosk.models import RosterUser
from kiosk.services.backup import (
    BackupRow,
    CsvBackupWriter,
    backup_filename,
    build_rows,
    format_backup_timestamp,
)

from conftest import LUNCH_ID, NOW, make_ticket

ROWS = [BackupRow("1234", "Almuerzo", "2024-03-15 12:00:00")]


class StaticPermission:
    def __init__(self, directory):
        self.directory = directory

    def request_directory(self):
        return self.directory


class RecordingShare:
    def __init__(self):
        self.calls = []

    def share(self, path, mime_type, title):
        self.calls.append((path, mime_type, title))


def read(path):
    with open(path, encoding="utf-8") as f:
        return f.read()


class TestRows:

    def test_filename(self):
        assert backup_filename(NOW) == "backup_sincronizacion_2024-03-15_12-30-00.csv"

    def test_timestamp_formatting(self):
        assert format_backup_timestamp("2024-03-15T12:00:00.000Z") == "2024-03-15 12:00:00"
        assert format_backup_timestamp("not a date") == "not a date"

    def test_build_rows_resolves_code_and_meal(self):
        users = [RosterUser(external_id=77, code="1234", first_name="Ana", last_name="Quispe")]
        tickets = [make_ticket("a"), make_ticket("b", user_id=99, meal_id=42)]

        rows = build_rows(tickets, users, {LUNCH_ID: "Almuerzo"})

        assert rows[0] == BackupRow("1234", "Almuerzo", "2024-03-15 12:00:00")
        assert rows[1].code == ""
        assert rows[1].meal_name == messages.MEAL_NOT_FOUND


class TestCsvBackupWriter:
    """Tests for where backups land."""

    def test_granted_directory(self, tmp_path):
        share = RecordingShare()
        writer = CsvBackupWriter(StaticPermission(str(tmp_path / "usb")), share, now=lambda: NOW)

        result = writer.write(ROWS)

        assert result.external is True
        assert result.message == messages.BACKUP_SAVED
        assert result.path == str(tmp_path / "usb" / "backup_sincronizacion_2024-03-15_12-30-00.csv")
        assert read(result.path) == 'Codigo,Comida,Fecha\n"1234","Almuerzo","2024-03-15 12:00:00"\n'
        assert share.calls == []

    def test_denied_falls_back_to_private_and_shares(self, tmp_path):
        share = RecordingShare()
        writer = CsvBackupWriter(StaticPermission(None), share, now=lambda: NOW)

        result = writer.write(ROWS)

        assert result.external is False
        assert result.shared is True
        assert result.message == messages.BACKUP_DENIED
        assert os.path.dirname(result.path) == str(tmp_path / "private")
        assert share.calls == [(result.path, "text/csv", messages.BACKUP_SHARE_TITLE)]

    def test_unwritable_directory_falls_back(self, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory")
        writer = CsvBackupWriter(StaticPermission(str(blocker)), now=lambda: NOW)

        result = writer.write(ROWS)

        assert result.external is False
        assert result.shared is False
        assert os.path.exists(result.path)

    def test_permission_error_is_a_denial(self, tmp_path):
        class BrokenPermission:
            def request_directory(self):
                raise RuntimeError("picker crashed")

        result = CsvBackupWriter(BrokenPermission(), now=lambda: NOW).write(ROWS)
        assert result.external is False

    def test_share_failure_is_tolerated(self, tmp_path):
        class BrokenShare:
            def share(self, path, mime_type, title):
                raise RuntimeError("no share sheet")

        result = CsvBackupWriter(StaticPermission(None), BrokenShare(), now=lambda: NOW).write(ROWS)
        assert result.shared is False
        assert os.path.exists(result.path)

    def test_total_failure_returns_none(self, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory")
        writer = CsvBackupWriter(StaticPermission(None), private_dir=str(blocker), now=lambda: NOW)

        assert writer.write(ROWS) is None
