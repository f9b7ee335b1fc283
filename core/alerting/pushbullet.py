"""Pushbullet delivery backend."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from core.alerting.notifier import (
    ALERT_TITLE,
    AlertNotifier,
    NoDeliveryTargetError,
    NotificationError,
    PartialDeliveryError,
    alert_message,
)

logger = logging.getLogger(__name__)

PUSHBULLET_API_URL = "https://api.pushbullet.com"


class PushbulletNotifier(AlertNotifier):
    """
    Pushes a note to every Pushbullet device carrying the configured nickname.
    Devices are listed on every call so renamed or re-registered devices are
    picked up without a restart.
    """

    def __init__(
        self,
        *,
        access_token: str,
        device_nickname: str,
        base_url: str = PUSHBULLET_API_URL,
        timeout: float = 10.0,
    ):
        self.device_nickname = device_nickname
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={
                "Access-Token": access_token,
                "User-Agent": "Deadman-Snitch/1.0",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def list_devices(self) -> list[dict[str, Any]]:
        try:
            response = await self.client.get("/v2/devices")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"failed to list Pushbullet devices: {e}") from e
        return response.json().get("devices", [])

    async def push_note(self, device_iden: str, body: str) -> None:
        response = await self.client.post(
            "/v2/pushes",
            json={
                "type": "note",
                "title": ALERT_TITLE,
                "body": body,
                "device_iden": device_iden,
            },
        )
        response.raise_for_status()

    async def notify(self, is_alert: bool) -> None:
        message = alert_message(is_alert)
        devices = await self.list_devices()

        errors: list[BaseException] = []
        sent = 0
        for device in devices:
            if device.get("nickname") != self.device_nickname:
                continue
            try:
                await self.push_note(device["iden"], message)
            except httpx.HTTPError as e:
                logger.warning(
                    f"Pushbullet push to device {device['iden']} failed: {e}"
                )
                errors.append(e)
                continue
            sent += 1

        if sent == 0:
            raise NoDeliveryTargetError(
                "failed to send Pushbullet message to device with nickname "
                f"{self.device_nickname}"
            )
        if errors:
            raise PartialDeliveryError(errors)

        logger.debug(f"Pushbullet message delivered to {sent} device(s)")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
