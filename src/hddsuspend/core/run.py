"""Single-invocation orchestration over a list of devices."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from hddsuspend.core.decision import Action, Decision, evaluate, execute
from hddsuspend.core.diskstats import CounterSource, DeviceNotFoundError
from hddsuspend.core.power import PowerActuator
from hddsuspend.core.state import DeviceState, StateStore
from hddsuspend.core.tracker import track

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 30

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_USAGE = 2
EXIT_LOOKUP = 3
EXIT_DEVICE_FAILURE = 4
EXIT_INSECURE_STORAGE = 127


@dataclass
class DeviceTarget:
    """A device to watch and how long it may stay idle."""

    device: str
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES

    @property
    def timeout_seconds(self) -> int:
        return self.timeout_minutes * 60


@dataclass
class DeviceResult:
    """What happened to one device during an invocation."""

    device: str
    state: Optional[DeviceState] = None
    decision: Optional[Decision] = None
    # None when no standby command was sent.
    suspended: Optional[bool] = None
    would_suspend: bool = False
    saved: bool = True
    lookup_failed: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class RunResult:
    """Result of one invocation over all requested devices."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    devices: list[DeviceResult] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return all(d.success for d in self.devices)

    @property
    def suspended_devices(self) -> list[str]:
        return [d.device for d in self.devices if d.suspended]

    @property
    def would_suspend_devices(self) -> list[str]:
        return [d.device for d in self.devices if d.would_suspend]

    @property
    def failed_devices(self) -> list[DeviceResult]:
        return [d for d in self.devices if not d.success]

    @property
    def lookup_failures(self) -> list[str]:
        return [d.device for d in self.devices if d.lookup_failed]

    @property
    def exit_code(self) -> int:
        if self.lookup_failures:
            return EXIT_LOOKUP
        if self.failed_devices:
            return EXIT_DEVICE_FAILURE
        return EXIT_OK


def run_devices(
    targets: list[DeviceTarget],
    store: StateStore,
    source: CounterSource,
    actuator: PowerActuator,
    now: Optional[int] = None,
    dry_run: bool = False,
) -> RunResult:
    """
    Track every target and suspend those idle past their timeout.

    Devices are handled strictly in order.  A device missing from the counter
    feed is skipped and recorded as a lookup failure; the remaining devices
    are still processed.

    Workflow per device:
        1. Load the persisted state
        2. Compare the current counter snapshot and update the state
        3. Save the state
        4. Evaluate the idle duration and, if due, suspend

    Args:
        targets: Devices with their timeouts
        store: Persisted per-device state
        source: Counter snapshot feed
        actuator: Power state query / standby command
        now: Invocation timestamp (epoch seconds); sampled once if omitted
        dry_run: Evaluate but never issue a standby command

    Returns:
        RunResult with one DeviceResult per target

    Raises:
        CounterFeedError: If the counter feed cannot be read at all
    """
    if now is None:
        now = int(time.time())

    result = RunResult(started_at=datetime.now(timezone.utc), dry_run=dry_run)

    for target in targets:
        device = target.device
        outcome = DeviceResult(device=device)
        result.devices.append(outcome)

        try:
            state, saved = track(device, store, source, now)
        except DeviceNotFoundError as exc:
            logger.error("[%s] %s", device, exc)
            outcome.lookup_failed = True
            outcome.error = str(exc)
            continue

        outcome.state = state
        outcome.saved = saved
        if not saved:
            outcome.error = "failed to save state"

        decision = evaluate(state, now, target.timeout_seconds, actuator)
        outcome.decision = decision
        outcome.suspended = execute(decision, actuator, dry_run=dry_run)
        outcome.would_suspend = dry_run and decision.action is Action.SUSPEND

        if decision.action is Action.SUSPEND and outcome.suspended is False:
            failure = "standby command failed"
            outcome.error = f"{outcome.error}; {failure}" if outcome.error else failure

    result.finished_at = datetime.now(timezone.utc)
    logger.debug(
        "Checked %d device(s): %d suspended, %d failed",
        len(result.devices),
        len(result.suspended_devices),
        len(result.failed_devices),
    )
    return result
