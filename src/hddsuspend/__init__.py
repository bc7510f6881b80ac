"""hddsuspend: send idle hard drives to standby from cron."""

__version__ = "0.1.0"
