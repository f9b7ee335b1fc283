"""Tests for the email notifier backend."""

import smtplib

import pytest

from core.alerting.notifier import NotificationError
from core.alerting.smtp import EmailNotifier


class FakeSMTP:
    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.sent_messages = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        _ = exc_type, exc, tb
        return False

    def send_message(self, msg):
        self.sent_messages.append(msg)


class SMTPFactory:
    def __init__(self):
        self.instances = []

    def __call__(self, host: str, port: int):
        instance = FakeSMTP(host, port)
        self.instances.append(instance)
        return instance


def make_notifier(smtp_factory):
    return EmailNotifier(
        smtp_host="localhost",
        smtp_port=2525,
        sender="deadman@example.com",
        recipients=["ops@example.com", "oncall@example.com"],
        smtp_factory=smtp_factory,
    )


@pytest.mark.asyncio
async def test_alert_email_is_sent():
    smtp_factory = SMTPFactory()

    await make_notifier(smtp_factory).notify(True)

    assert len(smtp_factory.instances) == 1
    smtp = smtp_factory.instances[0]
    assert (smtp.host, smtp.port) == ("localhost", 2525)
    sent = smtp.sent_messages[0]
    assert sent["Subject"] == "[ALERT] Deadman's Snitch"
    assert sent["To"] == "ops@example.com, oncall@example.com"
    assert "Stopped receiving Alertmanager alerts" in sent.get_content()


@pytest.mark.asyncio
async def test_recovery_email_is_sent():
    smtp_factory = SMTPFactory()

    await make_notifier(smtp_factory).notify(False)

    sent = smtp_factory.instances[0].sent_messages[0]
    assert sent["Subject"] == "[RESOLVED] Deadman's Snitch"
    assert "Receiving Alertmanager alerts again" in sent.get_content()


@pytest.mark.asyncio
async def test_smtp_failure_raises_notification_error():
    def failing_factory(host, port):
        raise smtplib.SMTPConnectError(421, "service not available")

    with pytest.raises(NotificationError, match="localhost:2525"):
        await make_notifier(failing_factory).notify(True)
