"""
Unit tests for PushbulletNotifier.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio

from core.alerting.notifier import (
    ALERT_FIRING_MESSAGE,
    ALERT_RESOLVED_MESSAGE,
    ALERT_TITLE,
    NoDeliveryTargetError,
    NotificationError,
    PartialDeliveryError,
)
from core.alerting.pushbullet import PushbulletNotifier

BASE_URL = "https://test.pushbullet.com"

DEVICES = {
    "devices": [
        {"iden": "dev-1", "nickname": "phone", "active": True},
        {"iden": "dev-2", "nickname": "laptop", "active": True},
        {"iden": "dev-3", "nickname": "phone", "active": True},
    ]
}


def _response(status_code, method, path, json=None):
    return httpx.Response(
        status_code,
        json=json if json is not None else {},
        request=httpx.Request(method, f"{BASE_URL}{path}"),
    )


@pytest_asyncio.fixture
async def notifier():
    async with PushbulletNotifier(
        access_token="o.secret", device_nickname="phone", base_url=BASE_URL
    ) as n:
        yield n


@pytest.mark.asyncio
async def test_client_sends_access_token_header(notifier):
    assert notifier.client.headers["Access-Token"] == "o.secret"


@pytest.mark.asyncio
async def test_alert_pushed_to_every_matching_device(notifier):
    with patch.object(notifier.client, "get", new_callable=AsyncMock) as mock_get:
        with patch.object(notifier.client, "post", new_callable=AsyncMock) as mock_post:
            mock_get.return_value = _response(200, "GET", "/v2/devices", DEVICES)
            mock_post.return_value = _response(200, "POST", "/v2/pushes")

            await notifier.notify(True)

            mock_get.assert_called_once_with("/v2/devices")
            assert mock_post.call_count == 2
            idens = [c.kwargs["json"]["device_iden"] for c in mock_post.call_args_list]
            assert idens == ["dev-1", "dev-3"]
            payload = mock_post.call_args_list[0].kwargs["json"]
            assert payload["type"] == "note"
            assert payload["title"] == ALERT_TITLE
            assert payload["body"] == ALERT_FIRING_MESSAGE


@pytest.mark.asyncio
async def test_recovery_uses_resolved_message(notifier):
    with patch.object(notifier.client, "get", new_callable=AsyncMock) as mock_get:
        with patch.object(notifier.client, "post", new_callable=AsyncMock) as mock_post:
            mock_get.return_value = _response(200, "GET", "/v2/devices", DEVICES)
            mock_post.return_value = _response(200, "POST", "/v2/pushes")

            await notifier.notify(False)

            assert mock_post.call_args.kwargs["json"]["body"] == ALERT_RESOLVED_MESSAGE


@pytest.mark.asyncio
async def test_no_matching_device_raises(notifier):
    with patch.object(notifier.client, "get", new_callable=AsyncMock) as mock_get:
        with patch.object(notifier.client, "post", new_callable=AsyncMock) as mock_post:
            mock_get.return_value = _response(
                200, "GET", "/v2/devices", {"devices": [{"iden": "x", "nickname": "tv"}]}
            )

            with pytest.raises(NoDeliveryTargetError, match="nickname phone"):
                await notifier.notify(True)

            mock_post.assert_not_called()


@pytest.mark.asyncio
async def test_partial_failure_reports_all_errors(notifier):
    with patch.object(notifier.client, "get", new_callable=AsyncMock) as mock_get:
        with patch.object(notifier.client, "post", new_callable=AsyncMock) as mock_post:
            mock_get.return_value = _response(200, "GET", "/v2/devices", DEVICES)
            mock_post.side_effect = [
                _response(200, "POST", "/v2/pushes"),
                _response(500, "POST", "/v2/pushes"),
            ]

            with pytest.raises(PartialDeliveryError) as exc_info:
                await notifier.notify(True)

            assert len(exc_info.value.errors) == 1
            assert isinstance(exc_info.value.errors[0], httpx.HTTPStatusError)
            assert "1 notification(s) failed" in str(exc_info.value)


@pytest.mark.asyncio
async def test_all_pushes_failing_is_no_delivery(notifier):
    with patch.object(notifier.client, "get", new_callable=AsyncMock) as mock_get:
        with patch.object(notifier.client, "post", new_callable=AsyncMock) as mock_post:
            mock_get.return_value = _response(200, "GET", "/v2/devices", DEVICES)
            mock_post.side_effect = httpx.ConnectError("connection refused")

            with pytest.raises(NoDeliveryTargetError):
                await notifier.notify(True)

            assert mock_post.call_count == 2


@pytest.mark.asyncio
async def test_device_listing_failure_raises_notification_error(notifier):
    with patch.object(notifier.client, "get", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = _response(401, "GET", "/v2/devices")

        with pytest.raises(NotificationError, match="failed to list Pushbullet devices"):
            await notifier.notify(True)
