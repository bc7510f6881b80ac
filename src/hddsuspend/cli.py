"""Command-line interface for hddsuspend."""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import click

from hddsuspend import __version__
from hddsuspend.config.loader import (
    DEFAULT_CONFIG,
    ConfigError,
    Settings,
    devices_from_config,
    read_config,
    settings_from_config,
)
from hddsuspend.core.run import (
    EXIT_CONFIG,
    EXIT_INSECURE_STORAGE,
    DeviceTarget,
)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_cfg(config: Optional[str]) -> Optional[dict[str, Any]]:
    # Only an explicitly named config file has to exist.
    path = Path(config) if config else DEFAULT_CONFIG
    try:
        return read_config(path, required=config is not None)
    except ConfigError as exc:
        click.echo(str(exc), err=True)
        sys.exit(EXIT_CONFIG)


def _resolve_targets(
    raw: Optional[dict[str, Any]],
    devices: tuple[str, ...],
    timeout: Optional[int],
    settings: Settings,
) -> list[DeviceTarget]:
    """
    Pick the devices to handle and their timeouts.

    Devices on the command line replace the configured list but keep a
    configured per-device timeout unless ``--timeout`` overrides it.
    """
    configured = devices_from_config(raw, default_timeout=settings.timeout_minutes)
    if not devices:
        if timeout is not None:
            return [DeviceTarget(t.device, timeout) for t in configured]
        return configured

    per_device = {t.device: t.timeout_minutes for t in configured}
    return [
        DeviceTarget(
            device=d,
            timeout_minutes=(
                timeout if timeout is not None else per_device.get(d, settings.timeout_minutes)
            ),
        )
        for d in devices
    ]


def _fmt_time(ts: int) -> str:
    if ts <= 0:
        return "never"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _fmt_duration(seconds: int) -> str:
    seconds = max(0, seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m {secs:02d}s"


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="hddsuspend")
@click.option(
    "--config",
    "-c",
    default=None,
    envvar="HDDSUSPEND_CONFIG",
    help=f"Path to config.yaml  [default: {DEFAULT_CONFIG}, if present]",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """Send hard drives to standby after a period without I/O.

    Meant to be run from cron once a minute.
    """
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


_timeout_option = click.option(
    "--timeout",
    "-t",
    type=click.IntRange(min=1),
    default=None,
    help="Minutes a drive may be inactive before it is sent to standby  [default: 30]",
)
_storage_option = click.option(
    "--storage",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding per-device state between runs  [default: /var/run/hddsuspend]",
)


# ── run command ───────────────────────────────────────────────────────────────


@main.command()
@click.argument("devices", nargs=-1)
@_timeout_option
@_storage_option
@click.option(
    "--diskstats",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Counter feed to read  [default: /proc/diskstats]",
)
@click.option("--hdparm", "hdparm_bin", default=None, help="hdparm binary  [default: hdparm]")
@click.option("--dry-run", is_flag=True, help="Track activity but never send standby commands")
@click.pass_context
def run(
    ctx: click.Context,
    devices: tuple[str, ...],
    timeout: Optional[int],
    storage: Optional[Path],
    diskstats: Optional[Path],
    hdparm_bin: Optional[str],
    dry_run: bool,
) -> None:
    """Check DEVICES for activity and suspend the ones idle too long."""
    from hddsuspend.core.diskstats import CounterFeedError, DiskstatsSource
    from hddsuspend.core.power import HdparmActuator
    from hddsuspend.core.run import run_devices
    from hddsuspend.core.state import FileStateStore, InsecureStorageError, ensure_storage_dir
    from hddsuspend.notifications.notify import send_notification

    raw = _load_cfg(ctx.obj["config"])
    settings = settings_from_config(raw)
    if storage is not None:
        settings.storage = storage
    if diskstats is not None:
        settings.diskstats = diskstats
    if hdparm_bin is not None:
        settings.hdparm = hdparm_bin

    targets = _resolve_targets(raw, devices, timeout, settings)
    if not targets:
        raise click.UsageError("No devices given and none configured.")

    try:
        ensure_storage_dir(settings.storage)
    except InsecureStorageError as exc:
        click.echo(str(exc), err=True)
        sys.exit(EXIT_INSECURE_STORAGE)
    except OSError as exc:
        click.echo(f"Cannot prepare storage directory {settings.storage}: {exc}", err=True)
        sys.exit(EXIT_CONFIG)

    try:
        result = run_devices(
            targets,
            store=FileStateStore(settings.storage),
            source=DiskstatsSource(settings.diskstats),
            actuator=HdparmActuator(settings.hdparm),
            dry_run=dry_run,
        )
    except CounterFeedError as exc:
        click.echo(str(exc), err=True)
        sys.exit(EXIT_CONFIG)

    send_notification(result, settings.notifications)

    for failed in result.failed_devices:
        click.echo(f"{failed.device}: {failed.error}", err=True)
    if result.exit_code:
        sys.exit(result.exit_code)


# ── status command ────────────────────────────────────────────────────────────


@main.command()
@click.argument("devices", nargs=-1)
@_timeout_option
@_storage_option
@click.pass_context
def status(
    ctx: click.Context,
    devices: tuple[str, ...],
    timeout: Optional[int],
    storage: Optional[Path],
) -> None:
    """Show recorded activity for DEVICES (all recorded devices if none given).

    Reads only the saved state, so it never wakes a sleeping drive.
    """
    from hddsuspend.core.state import FileStateStore

    raw = _load_cfg(ctx.obj["config"])
    settings = settings_from_config(raw)
    if storage is not None:
        settings.storage = storage

    if not settings.storage.is_dir():
        click.echo(f"No state recorded yet ({settings.storage} does not exist).")
        return

    store = FileStateStore(settings.storage)
    targets = _resolve_targets(raw, devices, timeout, settings)
    if not targets:
        minutes = timeout if timeout is not None else settings.timeout_minutes
        targets = [DeviceTarget(key, minutes) for key in store.known_devices()]
    if not targets:
        click.echo("No devices recorded.")
        return

    now = int(time.time())
    click.echo(
        f"{'DEVICE':<20} {'LAST CHECKED':<20} {'LAST ACTIVE':<20} {'IDLE':<10} STANDBY IN"
    )
    click.echo("─" * 84)
    for target in targets:
        state = store.load(target.device, now)
        if state.last_checked_at == 0:
            click.echo(f"{target.device:<20} {'never':<20}")
            continue
        idle = state.idle_seconds(now)
        remaining = target.timeout_seconds - idle
        due = "due" if remaining <= 0 else _fmt_duration(remaining)
        click.echo(
            f"{target.device:<20} {_fmt_time(state.last_checked_at):<20} "
            f"{_fmt_time(state.last_active_at):<20} {_fmt_duration(idle):<10} {due}"
        )


if __name__ == "__main__":
    main()
