"""Tests for per-device state persistence."""

import os
import stat
from pathlib import Path

import pytest

from hddsuspend.core.state import (
    NO_STATS,
    DeviceState,
    FileStateStore,
    InsecureStorageError,
    ensure_storage_dir,
    sanitize_device_id,
)

SNAPSHOT = "   8       0 sda 4217 1200 392822 3143 1022 1410 19768 2337 0 3180 5480"


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


class TestSanitizeDeviceId:
    def test_full_path(self) -> None:
        assert sanitize_device_id("/dev/sda") == "_dev_sda"

    def test_short_name_unchanged(self) -> None:
        assert sanitize_device_id("sda") == "sda"

    def test_keeps_underscore_and_hyphen(self) -> None:
        assert sanitize_device_id("/dev/disk/by-id/ata-WDC_WD40.1") == "_dev_disk_by-id_ata-WDC_WD40_1"

    def test_distinct_ids_can_collide(self) -> None:
        # Known limitation: the mapping is not injective.
        assert sanitize_device_id("/dev/sda") == sanitize_device_id("_dev_sda")


class TestEnsureStorageDir:
    def test_creates_owner_only_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "state"
        ensure_storage_dir(path)
        assert path.is_dir()
        assert _mode(path) == 0o700

    def test_accepts_existing_owner_only_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "state"
        path.mkdir()
        os.chmod(path, 0o300)
        assert ensure_storage_dir(path) == path

    def test_rejects_group_readable_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "state"
        path.mkdir()
        os.chmod(path, 0o750)
        with pytest.raises(InsecureStorageError) as exc_info:
            ensure_storage_dir(path)
        assert exc_info.value.mode == 0o750
        assert "0750" in str(exc_info.value)

    def test_rejects_world_writable_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "state"
        path.mkdir()
        os.chmod(path, 0o703)
        with pytest.raises(InsecureStorageError):
            ensure_storage_dir(path)

    def test_rejects_file(self, tmp_path: Path) -> None:
        path = tmp_path / "state"
        path.write_text("")
        with pytest.raises(NotADirectoryError):
            ensure_storage_dir(path)


class TestLoad:
    def test_missing_record_gives_first_run_defaults(self, tmp_path: Path) -> None:
        state = FileStateStore(tmp_path).load("/dev/sda", now=5000)
        assert state == DeviceState(
            device_id="/dev/sda",
            last_checked_at=0,
            last_active_at=5000,
            last_counter_snapshot=NO_STATS,
        )

    def test_partial_record_defaults_missing_fields(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.path_for("/dev/sda").write_text("device_last_active='500'\n")
        state = store.load("/dev/sda", now=5000)
        assert state.last_active_at == 500
        assert state.last_checked_at == 0
        assert state.last_counter_snapshot == NO_STATS

    def test_truncated_snapshot_line_is_ignored(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.path_for("/dev/sda").write_text(
            "device_last_checked='1100'\ndevice_last_active='1000'\ndevice_last_diskstat='   8  0 sd"
        )
        state = store.load("/dev/sda", now=5000)
        assert state.last_checked_at == 1100
        assert state.last_active_at == 1000
        assert state.last_counter_snapshot == NO_STATS

    def test_non_numeric_timestamp_falls_back(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.path_for("sda").write_text("device_last_checked=soon\ndevice_last_active=1000\n")
        state = store.load("sda", now=5000)
        assert state.last_checked_at == 0
        assert state.last_active_at == 1000

    def test_reads_double_quoted_shell_assignments(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.path_for("/dev/sda").write_text(
            'device_last_checked="1100"\n'
            'device_last_active="1000"\n'
            f'device_last_diskstat="{SNAPSHOT}"\n'
        )
        state = store.load("/dev/sda", now=5000)
        assert (state.last_checked_at, state.last_active_at) == (1100, 1000)
        assert state.last_counter_snapshot == SNAPSHOT

    def test_garbage_file_gives_defaults(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.path_for("sda").write_bytes(b"\x00\xff not a record \n===\n")
        state = store.load("sda", now=42)
        assert state.last_active_at == 42
        assert state.last_counter_snapshot == NO_STATS


class TestSave:
    def test_round_trip_preserves_snapshot_whitespace(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        saved = DeviceState(
            "/dev/sda", last_checked_at=1100, last_active_at=1000, last_counter_snapshot=SNAPSHOT
        )
        assert store.save("/dev/sda", saved) is True
        assert store.load("/dev/sda", now=9999) == saved

    def test_record_is_keyed_by_sanitized_id(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.save("/dev/sda", DeviceState("/dev/sda", 1, 1, "x"))
        assert (tmp_path / "_dev_sda.status").exists()
        assert not list(tmp_path.glob("*.tmp"))

    def test_overwrites_previous_record(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.save("sda", DeviceState("sda", 1, 1, "old"))
        store.save("sda", DeviceState("sda", 2, 2, "new"))
        state = store.load("sda", now=3)
        assert state.last_counter_snapshot == "new"
        assert state.last_checked_at == 2

    def test_snapshot_with_quotes_survives(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        snapshot = "8 0 it's \"odd\" 1 2 3"
        store.save("sda", DeviceState("sda", 1, 1, snapshot))
        assert store.load("sda", now=2).last_counter_snapshot == snapshot

    def test_returns_false_when_directory_missing(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path / "missing")
        assert store.save("sda", DeviceState("sda", 1, 1, "x")) is False


class TestKnownDevices:
    def test_lists_recorded_keys(self, tmp_path: Path) -> None:
        store = FileStateStore(tmp_path)
        store.save("/dev/sdb", DeviceState("/dev/sdb", 1, 1, "x"))
        store.save("sda", DeviceState("sda", 1, 1, "x"))
        assert store.known_devices() == ["_dev_sdb", "sda"]

    def test_empty_directory(self, tmp_path: Path) -> None:
        assert FileStateStore(tmp_path).known_devices() == []


class TestDeviceState:
    def test_idle_seconds(self) -> None:
        assert DeviceState("sda", 1100, 1000, "A").idle_seconds(1100) == 100

    def test_idle_seconds_never_negative(self) -> None:
        assert DeviceState("sda", 1100, 2000, "A").idle_seconds(1100) == 0
