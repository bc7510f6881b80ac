"""
Per-device state records persisted between invocations.

Each device gets one small ``<storage>/<key>.status`` file holding three
shell-style assignments::

    device_last_checked='1100'
    device_last_active='1000'
    device_last_diskstat='   8       0 sda 4217 ...'

The file is read fully and rewritten fully on every invocation.  A missing or
damaged file is never an error: every field that cannot be recovered falls
back to its first-run default.
"""

import logging
import os
import re
import shlex
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_STORAGE = Path("/var/run/hddsuspend")
STORAGE_MODE = 0o700
NO_STATS = "NO STATS"

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")

_KEY_CHECKED = "device_last_checked"
_KEY_ACTIVE = "device_last_active"
_KEY_DISKSTAT = "device_last_diskstat"


class InsecureStorageError(Exception):
    """Raised when the storage directory is accessible to anyone but its owner."""

    def __init__(self, path: Path, mode: int) -> None:
        self.path = path
        self.mode = mode
        super().__init__(
            f"Storage directory '{path}' has mode {mode:04o}; "
            "it must not grant any group or other permissions"
        )


@dataclass
class DeviceState:
    """What one device looked like the last time it was checked."""

    device_id: str
    last_checked_at: int = 0
    last_active_at: int = 0
    last_counter_snapshot: str = NO_STATS

    @classmethod
    def first_seen(cls, device_id: str, now: int) -> "DeviceState":
        # Active "now" so a fresh device is never judged idle since the epoch.
        return cls(device_id=device_id, last_checked_at=0, last_active_at=now)

    def idle_seconds(self, now: int) -> int:
        return max(0, now - self.last_active_at)


class StateStore(Protocol):
    def load(self, device_id: str, now: int) -> DeviceState: ...

    def save(self, device_id: str, state: DeviceState) -> bool: ...


def sanitize_device_id(device_id: str) -> str:
    """
    Map a device identifier onto a filesystem-safe key.

    Every character outside ``[A-Za-z0-9_-]`` becomes ``_``, so ``/dev/sda``
    maps to ``_dev_sda``.  Distinct identifiers may share a key.
    """
    return _UNSAFE_RE.sub("_", device_id)


def ensure_storage_dir(path: Path) -> Path:
    """
    Create the storage directory owner-only if missing, then verify its mode.

    Raises:
        InsecureStorageError: If the directory grants group or other access
        NotADirectoryError: If ``path`` exists but is not a directory
    """
    if not path.exists():
        logger.info("Creating storage directory %s", path)
        path.mkdir(parents=True, mode=STORAGE_MODE)
        # mkdir's mode is filtered through the umask; set it explicitly.
        os.chmod(path, STORAGE_MODE)

    if not path.is_dir():
        raise NotADirectoryError(f"Storage path '{path}' is not a directory")

    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & 0o077:
        raise InsecureStorageError(path, mode)
    return path


def _parse_record(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        try:
            tokens = shlex.split(line, comments=True)
        except ValueError:
            # Unbalanced quotes, typically a write cut short.
            logger.debug("Skipping unparseable state line: %r", line)
            continue
        if len(tokens) != 1 or "=" not in tokens[0]:
            continue
        key, value = tokens[0].split("=", 1)
        values[key] = value
    return values


def _int_field(values: dict[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.debug("Ignoring non-numeric %s=%r", key, raw)
        return default


class FileStateStore:
    """
    Flat-file :class:`StateStore`, one ``.status`` file per sanitized device key.

    The directory is assumed to have passed :func:`ensure_storage_dir`.
    """

    suffix = ".status"

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, device_id: str) -> Path:
        return self.directory / f"{sanitize_device_id(device_id)}{self.suffix}"

    def load(self, device_id: str, now: int) -> DeviceState:
        default = DeviceState.first_seen(device_id, now)
        path = self.path_for(device_id)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.debug("[%s] No state at %s, first run", device_id, path)
            return default
        except OSError as exc:
            logger.warning("[%s] Could not read %s, using defaults: %s", device_id, path, exc)
            return default

        values = _parse_record(text)
        return DeviceState(
            device_id=device_id,
            last_checked_at=_int_field(values, _KEY_CHECKED, default.last_checked_at),
            last_active_at=_int_field(values, _KEY_ACTIVE, default.last_active_at),
            last_counter_snapshot=values.get(_KEY_DISKSTAT, default.last_counter_snapshot),
        )

    def save(self, device_id: str, state: DeviceState) -> bool:
        """
        Replace the device's record with ``state``.

        Writes to a temp file and renames it over the record so readers never
        see a half-written file.  Returns False (and logs) on failure.
        """
        path = self.path_for(device_id)
        tmp = path.with_suffix(self.suffix + ".tmp")
        text = (
            f"{_KEY_CHECKED}={shlex.quote(str(state.last_checked_at))}\n"
            f"{_KEY_ACTIVE}={shlex.quote(str(state.last_active_at))}\n"
            f"{_KEY_DISKSTAT}={shlex.quote(state.last_counter_snapshot)}\n"
        )
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp, path)
        except OSError as exc:
            logger.error("[%s] Failed to write state to %s: %s", device_id, path, exc)
            tmp.unlink(missing_ok=True)
            return False
        return True

    def known_devices(self) -> list[str]:
        """Sanitized keys with a record on disk (identifiers cannot be recovered)."""
        try:
            records = self.directory.glob("*" + self.suffix)
            return sorted(p.name[: -len(self.suffix)] for p in records)
        except OSError as exc:
            logger.debug("Cannot list %s: %s", self.directory, exc)
            return []

