"""
Drive power-state queries and standby commands via ``hdparm``.

``hdparm -C`` asks the drive for its power mode using CHECK POWER MODE,
which a drive in standby answers without spinning up.  ``hdparm -y`` puts
the drive into standby immediately.

Typical call sequence::

    actuator = HdparmActuator()
    if actuator.query_power_state("/dev/sda") is PowerState.ACTIVE:
        actuator.suspend("/dev/sda")
"""

import logging
import subprocess
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class PowerState(Enum):
    ACTIVE = "active"
    STANDBY = "standby"
    UNKNOWN = "unknown"


class PowerActuator(Protocol):
    def query_power_state(self, device: str) -> PowerState: ...

    def suspend(self, device: str) -> bool: ...


# Raw ``drive state is:`` values as printed by hdparm.
_STATE_MAP = {
    "active/idle": PowerState.ACTIVE,
    "active": PowerState.ACTIVE,
    "idle": PowerState.ACTIVE,
    "standby": PowerState.STANDBY,
    "sleeping": PowerState.STANDBY,
}


def parse_drive_state(output: str) -> PowerState:
    """
    Map ``hdparm -C`` output to a :class:`PowerState`.

    Example input::

        /dev/sda:
         drive state is:  active/idle
    """
    for line in output.splitlines():
        if "drive state is:" in line.lower():
            raw = line.split(":", 1)[-1].strip().lower()
            return _STATE_MAP.get(raw, PowerState.UNKNOWN)
    return PowerState.UNKNOWN


class HdparmActuator:
    """:class:`PowerActuator` that shells out to ``hdparm``."""

    def __init__(self, hdparm_bin: str = "hdparm", timeout: int = 30) -> None:
        self.hdparm_bin = hdparm_bin
        self.timeout = timeout

    def query_power_state(self, device: str) -> PowerState:
        """
        Return the power mode of ``device``.

        Any failure to run or interpret hdparm is logged and reported as
        :attr:`PowerState.UNKNOWN`.
        """
        try:
            result = subprocess.run(
                [self.hdparm_bin, "-C", device],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            logger.error("[%s] %s not found, cannot query power state", device, self.hdparm_bin)
            return PowerState.UNKNOWN
        except subprocess.TimeoutExpired:
            logger.error("[%s] Power state query timed out after %ds", device, self.timeout)
            return PowerState.UNKNOWN
        except OSError as exc:
            logger.error("[%s] Power state query failed: %s", device, exc)
            return PowerState.UNKNOWN

        if result.returncode != 0:
            logger.warning(
                "[%s] hdparm -C returned %d: %s", device, result.returncode, result.stderr.strip()
            )
            return PowerState.UNKNOWN

        state = parse_drive_state(result.stdout)
        logger.debug("[%s] Power state: %s", device, state.value)
        return state

    def suspend(self, device: str) -> bool:
        """
        Send ``device`` to standby.

        Returns:
            True if hdparm exited successfully, False otherwise
        """
        try:
            result = subprocess.run(
                [self.hdparm_bin, "-y", device],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            logger.error("[%s] %s not found, cannot suspend", device, self.hdparm_bin)
            return False
        except subprocess.TimeoutExpired:
            logger.error("[%s] Standby command timed out after %ds", device, self.timeout)
            return False
        except OSError as exc:
            logger.error("[%s] Standby command failed: %s", device, exc)
            return False

        if result.returncode != 0:
            logger.error(
                "[%s] hdparm -y returned %d: %s", device, result.returncode, result.stderr.strip()
            )
            return False
        return True
