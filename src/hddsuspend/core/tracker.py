"""Activity tracking: compare the current counter snapshot with the last one."""

import logging

from hddsuspend.core.diskstats import CounterSource
from hddsuspend.core.state import DeviceState, StateStore

logger = logging.getLogger(__name__)


def update(device_id: str, previous: DeviceState, current_snapshot: str, now: int) -> DeviceState:
    """
    Produce the state record for this run.

    A snapshot that differs in any byte from the stored one counts as
    activity at ``now``; otherwise the last activity time and snapshot are
    carried forward unchanged.  ``last_checked_at`` always becomes ``now``.
    After the clock steps backwards ``last_active_at`` may lie ahead of
    ``now``; idle time then reads as zero until the clock catches up.

    Args:
        device_id: Device identifier as given by the caller
        previous: State loaded from the store
        current_snapshot: Raw counter line for this run
        now: Run timestamp (epoch seconds)

    Returns:
        A new DeviceState; ``previous`` is not modified
    """
    if current_snapshot != previous.last_counter_snapshot:
        logger.debug("[%s] Counters changed, device active", device_id)
        return DeviceState(
            device_id=device_id,
            last_checked_at=now,
            last_active_at=now,
            last_counter_snapshot=current_snapshot,
        )

    logger.debug(
        "[%s] Counters unchanged, idle for %ds", device_id, previous.idle_seconds(now)
    )
    return DeviceState(
        device_id=device_id,
        last_checked_at=now,
        last_active_at=previous.last_active_at,
        last_counter_snapshot=previous.last_counter_snapshot,
    )


def track(
    device_id: str,
    store: StateStore,
    source: CounterSource,
    now: int,
) -> tuple[DeviceState, bool]:
    """
    Load, update and persist the state of one device.

    Returns:
        Tuple of (new state, whether it was saved)

    Raises:
        DeviceNotFoundError: If the counter feed has no entry for the device
        CounterFeedError: If the counter feed cannot be read
    """
    previous = store.load(device_id, now)
    snapshot = source.snapshot(device_id)
    state = update(device_id, previous, snapshot, now)
    saved = store.save(device_id, state)
    return state, saved
