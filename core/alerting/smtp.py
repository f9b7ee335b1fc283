"""SMTP delivery backend."""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Any

from core.alerting.notifier import (
    ALERT_TITLE,
    AlertNotifier,
    NotificationError,
    alert_message,
)


class EmailNotifier(AlertNotifier):
    """Sends the alert state change as a plain-text email."""

    def __init__(
        self,
        *,
        smtp_host: str,
        smtp_port: int,
        sender: str,
        recipients: list[str],
        smtp_factory: Any = smtplib.SMTP,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.recipients = recipients
        self.smtp_factory = smtp_factory

    def build_message(self, is_alert: bool) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[{'ALERT' if is_alert else 'RESOLVED'}] {ALERT_TITLE}"
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(alert_message(is_alert))
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with self.smtp_factory(self.smtp_host, self.smtp_port) as smtp:
            smtp.send_message(msg)

    async def notify(self, is_alert: bool) -> None:
        msg = self.build_message(is_alert)
        try:
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                f"failed to send email via {self.smtp_host}:{self.smtp_port}: {e}"
            ) from e
