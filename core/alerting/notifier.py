"""Notifier capability used by the watchdog to announce state changes."""

from __future__ import annotations

ALERT_TITLE = "Deadman's Snitch"
ALERT_FIRING_MESSAGE = "Stopped receiving Alertmanager alerts"
ALERT_RESOLVED_MESSAGE = "Receiving Alertmanager alerts again"


def alert_message(is_alert: bool) -> str:
    return ALERT_FIRING_MESSAGE if is_alert else ALERT_RESOLVED_MESSAGE


class NotificationError(Exception):
    """A notification could not be delivered."""


class NoDeliveryTargetError(NotificationError):
    """No configured delivery target received the notification."""


class PartialDeliveryError(NotificationError):
    """Some delivery targets failed while others succeeded."""

    def __init__(self, errors: list[BaseException]):
        self.errors = list(errors)
        details = "; ".join(str(error) for error in self.errors)
        super().__init__(
            f"{len(self.errors)} notification(s) failed to deliver: {details}"
        )


class AlertNotifier:
    """Delivers alert-fired and recovery messages.

    ``notify`` returns on success and raises on failure. The watchdog treats
    any exception as a failed attempt and retries at the next relevant event.
    """

    async def notify(self, is_alert: bool) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:
        return None
