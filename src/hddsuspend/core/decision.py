"""Suspend decisions for idle devices."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from hddsuspend.core.power import PowerActuator, PowerState
from hddsuspend.core.state import DeviceState

logger = logging.getLogger(__name__)


class Action(Enum):
    NONE = "none"
    SUSPEND = "suspend"


@dataclass
class Decision:
    """Outcome of evaluating one device against its timeout."""

    device: str
    action: Action
    idle_seconds: int
    timeout_seconds: int
    # Only queried once the timeout has been reached.
    power_state: Optional[PowerState] = None

    @property
    def reason(self) -> str:
        if self.action is Action.SUSPEND:
            return f"idle {self.idle_seconds}s >= {self.timeout_seconds}s and drive active"
        if self.power_state is None:
            return f"idle {self.idle_seconds}s < {self.timeout_seconds}s"
        return f"drive {self.power_state.value}"


def evaluate(
    state: DeviceState,
    now: int,
    timeout_seconds: int,
    actuator: PowerActuator,
) -> Decision:
    """
    Decide whether ``state.device_id`` should be sent to standby.

    The actuator is consulted only when the idle duration has reached the
    timeout (inclusive), and only a confirmed ``active`` drive is eligible:
    standby and unknown both yield :attr:`Action.NONE`.
    """
    idle = state.idle_seconds(now)
    if idle < timeout_seconds:
        return Decision(
            device=state.device_id,
            action=Action.NONE,
            idle_seconds=idle,
            timeout_seconds=timeout_seconds,
        )

    power = actuator.query_power_state(state.device_id)
    action = Action.SUSPEND if power is PowerState.ACTIVE else Action.NONE
    return Decision(
        device=state.device_id,
        action=action,
        idle_seconds=idle,
        timeout_seconds=timeout_seconds,
        power_state=power,
    )


def execute(decision: Decision, actuator: PowerActuator, dry_run: bool = False) -> Optional[bool]:
    """
    Carry out a decision.

    Returns:
        None when no standby command was sent (nothing due, or a dry run),
        otherwise whether the standby command succeeded.
    """
    if decision.action is not Action.SUSPEND:
        logger.debug("[%s] No action: %s", decision.device, decision.reason)
        return None

    if dry_run:
        logger.info("[%s] Would suspend (%s), dry run", decision.device, decision.reason)
        return None

    logger.info("[%s] Suspending: %s", decision.device, decision.reason)
    ok = actuator.suspend(decision.device)
    if not ok:
        logger.error("[%s] Suspend failed; will retry on the next run", decision.device)
    return ok
