"""Notification dispatchers for run results (ntfy.sh, Pushover, email)."""

import logging
import smtplib
import socket
from email.mime.text import MIMEText
from typing import Any, Optional

import httpx

from hddsuspend.core.run import RunResult

logger = logging.getLogger(__name__)


def should_notify(result: RunResult, notif_config: dict[str, Any]) -> bool:
    """Failures always notify; suspends only when ``notify_on_suspend`` is set."""
    if result.failed_devices:
        return True
    return bool(result.suspended_devices) and bool(notif_config.get("notify_on_suspend", True))


def send_notification(result: RunResult, notif_config: dict[str, Any]) -> None:
    """
    Send a notification about a run to every configured channel.

    Dispatches to:
      - ntfy.sh (if ``ntfy_topic`` is set)
      - Pushover (if ``pushover_token`` + ``pushover_user`` are set)
      - Email / SMTP (if ``smtp`` is configured)

    Nothing is sent for runs where nothing happened.

    Args:
        result: The RunResult of a completed invocation
        notif_config: The ``settings.notifications`` mapping
    """
    if not notif_config or not should_notify(result, notif_config):
        return

    subject = _build_subject(result)
    body = _build_body(result)

    ntfy_topic = notif_config.get("ntfy_topic")
    if ntfy_topic:
        _send_ntfy(
            topic=ntfy_topic,
            title=subject,
            message=body,
            success=result.success,
            server=notif_config.get("ntfy_server", "https://ntfy.sh"),
        )

    pushover_token = notif_config.get("pushover_token")
    pushover_user = notif_config.get("pushover_user")
    if pushover_token and pushover_user:
        _send_pushover(token=pushover_token, user=pushover_user, title=subject, message=body)

    smtp_cfg = notif_config.get("smtp")
    if smtp_cfg:
        _send_email(smtp_cfg=smtp_cfg, subject=subject, body=body)


# ── Formatters ────────────────────────────────────────────────────────────────


def _build_subject(result: RunResult) -> str:
    host = socket.gethostname()
    if not result.success:
        failed = ", ".join(d.device for d in result.failed_devices)
        return f"hddsuspend FAILED on {host}: {failed}"
    return f"hddsuspend on {host}: suspended {', '.join(result.suspended_devices)}"


def _build_body(result: RunResult) -> str:
    lines = [f"Run started: {result.started_at.isoformat()}"]
    if result.dry_run:
        lines.append("Dry run: no standby commands were sent")
    for d in result.devices:
        if d.error:
            lines.append(f"{d.device}: ERROR {d.error}")
        elif d.suspended:
            idle = d.decision.idle_seconds if d.decision else 0
            lines.append(f"{d.device}: suspended after {idle // 60} min idle")
        elif d.would_suspend:
            idle = d.decision.idle_seconds if d.decision else 0
            lines.append(f"{d.device}: would suspend after {idle // 60} min idle")
        elif d.decision is not None:
            lines.append(f"{d.device}: {d.decision.reason}")
    return "\n".join(lines)


# ── ntfy.sh ───────────────────────────────────────────────────────────────────


def _send_ntfy(
    topic: str,
    title: str,
    message: str,
    success: bool,
    server: str = "https://ntfy.sh",
) -> None:
    url = f"{server.rstrip('/')}/{topic}"
    priority = "low" if success else "high"
    tags = "zzz" if success else "warning"
    try:
        resp = httpx.post(
            url,
            content=message.encode("utf-8"),
            headers={
                "Title": title,
                "Priority": priority,
                "Tags": tags,
            },
            timeout=10,
        )
        resp.raise_for_status()
        logger.info("ntfy notification sent to topic '%s'", topic)
    except Exception as exc:
        logger.error("Failed to send ntfy notification: %s", exc)


# ── Pushover ──────────────────────────────────────────────────────────────────


def _send_pushover(token: str, user: str, title: str, message: str) -> None:
    try:
        resp = httpx.post(
            "https://api.pushover.net/1/messages.json",
            data={"token": token, "user": user, "title": title, "message": message},
            timeout=10,
        )
        resp.raise_for_status()
        logger.info("Pushover notification sent")
    except Exception as exc:
        logger.error("Failed to send Pushover notification: %s", exc)


# ── Email / SMTP ──────────────────────────────────────────────────────────────


def _send_email(smtp_cfg: dict[str, Any], subject: str, body: str) -> None:
    """
    smtp_cfg keys: host, port, user, password, from_addr, to_addr, use_tls
    """
    try:
        host: str = smtp_cfg.get("host", "localhost")
        port: int = int(smtp_cfg.get("port", 25))
        user: Optional[str] = smtp_cfg.get("user")
        password: Optional[str] = smtp_cfg.get("password")
        from_addr: str = smtp_cfg.get("from_addr", user or "hddsuspend@localhost")
        to_addr: str = smtp_cfg.get("to_addr", "")
        use_tls: bool = bool(smtp_cfg.get("use_tls", False))

        if not to_addr:
            logger.warning("SMTP configured but no 'to_addr' specified, skipping email")
            return

        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = to_addr

        with smtplib.SMTP(host, port, timeout=15) as smtp:
            if use_tls:
                smtp.ehlo()
                smtp.starttls()
                smtp.ehlo()
            if user and password:
                smtp.login(user, password)
            smtp.sendmail(from_addr, [to_addr], msg.as_string())
        logger.info("Email notification sent to %s", to_addr)
    except Exception as exc:
        logger.error("Failed to send email notification: %s", exc)
