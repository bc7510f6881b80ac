"""YAML configuration loader and validator."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from hddsuspend.core.diskstats import DEFAULT_DISKSTATS
from hddsuspend.core.run import DEFAULT_TIMEOUT_MINUTES, DeviceTarget
from hddsuspend.core.state import DEFAULT_STORAGE

DEFAULT_CONFIG = Path("/etc/hddsuspend/config.yaml")


class ConfigError(Exception):
    """Raised for invalid or missing configuration."""


@dataclass
class Settings:
    """Invocation-wide settings, after defaults are applied."""

    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES
    storage: Path = DEFAULT_STORAGE
    diskstats: Path = DEFAULT_DISKSTATS
    hdparm: str = "hdparm"
    notifications: dict[str, Any] = field(default_factory=dict)


def load_config(path: Path) -> Optional[dict[str, Any]]:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML config file

    Returns:
        Parsed configuration dictionary, or None if file is empty

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
    """
    with open(path) as f:
        result: Optional[dict[str, Any]] = yaml.safe_load(f)
        return result


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate_notifications(notifications: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    prefix = "settings.notifications"

    for key in ("ntfy_topic", "ntfy_server", "pushover_token", "pushover_user"):
        value = notifications.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"{prefix}.{key} must be a string")
    if "notify_on_suspend" in notifications and not isinstance(
        notifications["notify_on_suspend"], bool
    ):
        errors.append(f"{prefix}.notify_on_suspend must be true or false")

    smtp = notifications.get("smtp")
    if smtp is None:
        return errors
    if not isinstance(smtp, dict):
        errors.append(f"{prefix}.smtp must be a mapping")
        return errors
    if "port" in smtp and not _is_positive_int(smtp["port"]):
        errors.append(f"{prefix}.smtp.port must be a positive integer, got {smtp['port']!r}")
    for key in ("host", "user", "password", "from_addr", "to_addr"):
        value = smtp.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"{prefix}.smtp.{key} must be a string")
    if "use_tls" in smtp and not isinstance(smtp["use_tls"], bool):
        errors.append(f"{prefix}.smtp.use_tls must be true or false")
    return errors


def validate_config(config: dict[str, Any]) -> list[str]:
    """
    Validate a loaded configuration dictionary.

    Both sections are optional; only what is present is checked.

    Returns:
        List of validation error messages (empty list = valid)
    """
    errors: list[str] = []

    if not isinstance(config, dict):
        return ["Config root must be a YAML mapping"]

    settings = config.get("settings", {})
    if settings is None:
        settings = {}
    if not isinstance(settings, dict):
        errors.append("'settings' must be a mapping")
        settings = {}

    if "timeout" in settings and not _is_positive_int(settings["timeout"]):
        errors.append(
            f"settings.timeout must be a positive integer (minutes), got {settings['timeout']!r}"
        )
    for key in ("storage", "diskstats", "hdparm"):
        if key in settings and not (isinstance(settings[key], str) and settings[key]):
            errors.append(f"settings.{key} must be a non-empty string")
    notifications = settings.get("notifications")
    if notifications is not None:
        if isinstance(notifications, dict):
            errors.extend(_validate_notifications(notifications))
        else:
            errors.append("settings.notifications must be a mapping")

    devices = config.get("devices", [])
    if devices is None:
        devices = []
    if not isinstance(devices, list):
        errors.append("'devices' must be a list")
        return errors

    for i, entry in enumerate(devices):
        prefix = f"devices[{i}]"
        if isinstance(entry, str):
            if not entry:
                errors.append(f"{prefix}: device name must not be empty")
            continue
        if not isinstance(entry, dict):
            errors.append(f"{prefix}: must be a device name or a mapping")
            continue
        if not (isinstance(entry.get("device"), str) and entry["device"]):
            errors.append(f"{prefix}: missing required field 'device'")
        if "timeout" in entry and not _is_positive_int(entry["timeout"]):
            errors.append(f"{prefix}: timeout must be a positive integer (minutes)")

    return errors


def settings_from_config(config: Optional[dict[str, Any]]) -> Settings:
    """
    Build Settings from a validated config dict; ``None`` yields all defaults.
    """
    raw = (config or {}).get("settings") or {}
    defaults = Settings()
    return Settings(
        timeout_minutes=int(raw.get("timeout", defaults.timeout_minutes)),
        storage=Path(raw.get("storage", defaults.storage)),
        diskstats=Path(raw.get("diskstats", defaults.diskstats)),
        hdparm=str(raw.get("hdparm", defaults.hdparm)),
        notifications=dict(raw.get("notifications") or {}),
    )


def devices_from_config(
    config: Optional[dict[str, Any]],
    default_timeout: int = DEFAULT_TIMEOUT_MINUTES,
) -> list[DeviceTarget]:
    """
    Construct DeviceTarget objects from a validated config dict.

    Args:
        config: Parsed and validated config dictionary
        default_timeout: Minutes used for entries without their own timeout

    Returns:
        List of DeviceTarget instances, in config order
    """
    targets: list[DeviceTarget] = []
    for entry in (config or {}).get("devices") or []:
        if isinstance(entry, str):
            targets.append(DeviceTarget(device=entry, timeout_minutes=default_timeout))
        else:
            targets.append(
                DeviceTarget(
                    device=entry["device"],
                    timeout_minutes=int(entry.get("timeout", default_timeout)),
                )
            )
    return targets


def read_config(path: Path, required: bool = True) -> Optional[dict[str, Any]]:
    """
    Load and validate a config file.

    Args:
        path: Path to the YAML config file
        required: If False, a missing file yields None instead of an error

    Returns:
        Validated config dict, or None if the file is absent (and optional) or empty

    Raises:
        ConfigError: If the file is missing (and required), unreadable, or invalid
    """
    try:
        raw = load_config(path)
    except FileNotFoundError:
        if required:
            raise ConfigError(f"Config file not found: {path}")
        return None
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc

    if raw is None:
        return None

    errors = validate_config(raw)
    if errors:
        raise ConfigError("Config validation errors:\n" + "\n".join(f"  • {e}" for e in errors))
    return raw
