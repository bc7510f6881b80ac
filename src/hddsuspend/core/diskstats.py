"""
Per-device I/O counter snapshots read from ``/proc/diskstats``.

Each line of the feed is whitespace separated with the device name in the
third field::

       8       0 sda 4217 1200 392822 3143 ...

The line is returned verbatim and only ever compared for equality; the
column layout differs between kernel versions so nothing here parses it.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_DISKSTATS = Path("/proc/diskstats")

_NAME_FIELD = 2


class CounterFeedError(Exception):
    """Raised when the counter feed itself cannot be read."""


class DeviceNotFoundError(Exception):
    """Raised when no feed entry matches a device, even by its basename."""

    def __init__(self, device: str) -> None:
        self.device = device
        super().__init__(f"No diskstat entry for device '{device}' could be found.")


class CounterSource(Protocol):
    def snapshot(self, device: str) -> str: ...


def find_line(lines: list[str], name: str) -> Optional[str]:
    """Return the first line whose device-name field equals ``name``."""
    for line in lines:
        fields = line.split()
        if len(fields) > _NAME_FIELD and fields[_NAME_FIELD] == name:
            return line
    return None


def lookup_snapshot(lines: list[str], device: str) -> str:
    """
    Locate the counter line for ``device``.

    Tries the identifier as given, then, if it looks like a path, only its
    final component (``/dev/sda`` → ``sda``).

    Raises:
        DeviceNotFoundError: If neither form matches
    """
    line = find_line(lines, device)
    if line is not None:
        return line

    basename = device.rsplit("/", 1)[-1]
    if basename != device:
        line = find_line(lines, basename)
        if line is not None:
            logger.debug("[%s] Matched diskstats entry '%s'", device, basename)
            return line

    raise DeviceNotFoundError(device)


class DiskstatsSource:
    """:class:`CounterSource` backed by a diskstats-format file."""

    def __init__(self, path: Path = DEFAULT_DISKSTATS) -> None:
        self.path = Path(path)

    def read_lines(self) -> list[str]:
        try:
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise CounterFeedError(f"Cannot read counter feed '{self.path}': {exc}") from exc
        return [line.rstrip("\n") for line in text.splitlines()]

    def snapshot(self, device: str) -> str:
        return lookup_snapshot(self.read_lines(), device)
