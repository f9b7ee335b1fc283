"""Command-line and environment configuration for the deadman service."""

from __future__ import annotations

import argparse
import os
import re
from collections.abc import Mapping, Sequence
from datetime import timedelta
from typing import Literal, Optional

import pydantic
from pydantic import BaseModel, Field

from core.watchdog.deadman import DEFAULT_WINDOW_TICKS

PUSHBULLET_ACCESS_TOKEN_ENV = "PUSHBULLET_ACCESS_TOKEN"

_DURATION_RE = re.compile(
    r"^(?:(\d+)y)?(?:(\d+)w)?(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?(?:(\d+)ms)?$"
)
_DURATION_UNITS = (
    timedelta(days=365),
    timedelta(weeks=1),
    timedelta(days=1),
    timedelta(hours=1),
    timedelta(minutes=1),
    timedelta(seconds=1),
    timedelta(milliseconds=1),
)


class ConfigError(Exception):
    """Raised when the process cannot be configured from flags and environment."""


def parse_duration(text: str) -> timedelta:
    """Parse a Prometheus style duration such as ``30s``, ``1m30s`` or ``500ms``."""
    text = text.strip()
    if text == "0":
        return timedelta(0)
    match = _DURATION_RE.match(text)
    if not text or match is None:
        raise ValueError(f"not a valid duration string: {text!r}")
    total = timedelta(0)
    for amount, unit in zip(match.groups(), _DURATION_UNITS):
        if amount is not None:
            total += int(amount) * unit
    return total


class DeadmanSettings(BaseModel):
    interval: timedelta = timedelta(seconds=30)
    notifier: Literal["pushbullet", "email"] = "pushbullet"
    pushbullet_access_token: Optional[str] = None
    pushbullet_device_nickname: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    smtp_sender: Optional[str] = None
    smtp_recipients: list[str] = Field(default_factory=list)
    listen_address: str = ":9095"
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    notify_timeout: Optional[float] = 10.0
    window_ticks: int = DEFAULT_WINDOW_TICKS

    @pydantic.field_validator("interval")
    @classmethod
    def validate_interval(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("interval must be positive")
        return v

    @pydantic.field_validator("notify_timeout")
    @classmethod
    def validate_notify_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("notify timeout must be positive")
        return v

    @pydantic.field_validator("window_ticks")
    @classmethod
    def validate_window_ticks(cls, v: int) -> int:
        if v < 1:
            raise ValueError("window_ticks must be >= 1")
        return v

    @pydantic.field_validator("listen_address")
    @classmethod
    def validate_listen_address(cls, v: str) -> str:
        _, sep, port = v.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"listen address must be [host]:port, got {v!r}")
        return v

    @pydantic.model_validator(mode="after")
    def validate_notifier_fields(self) -> "DeadmanSettings":
        if self.notifier == "pushbullet":
            if not self.pushbullet_access_token:
                raise ValueError(
                    f"Environment variable {PUSHBULLET_ACCESS_TOKEN_ENV} not set"
                )
            if not self.pushbullet_device_nickname:
                raise ValueError("--pushbullet-device-nickname is required")
        elif not (self.smtp_host and self.smtp_sender and self.smtp_recipients):
            raise ValueError("--smtp-host, --smtp-from and --smtp-to are required")
        return self

    @property
    def listen_host(self) -> str:
        host, _, _ = self.listen_address.rpartition(":")
        return host or "0.0.0.0"  # nosec

    @property
    def listen_port(self) -> int:
        _, _, port = self.listen_address.rpartition(":")
        return int(port)


def build_parser(prog: str | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description=(
            "A deadman's snitch for Prometheus Alertmanager compatible notifications."
        ),
    )
    parser.add_argument(
        "--interval",
        default="30s",
        help="The heartbeat interval. An alert is sent if no heartbeat is sent.",
    )
    parser.add_argument(
        "--notifier",
        choices=["pushbullet", "email"],
        default="pushbullet",
        help="Backend used to deliver alert and recovery notifications.",
    )
    parser.add_argument(
        "--pushbullet-device-nickname",
        help="The nickname for the device you want to receive Pushbullet notifications.",
    )
    parser.add_argument("--smtp-host", help="SMTP relay for the email notifier.")
    parser.add_argument("--smtp-port", type=int, default=25, help="SMTP relay port.")
    parser.add_argument("--smtp-from", help="Sender address for the email notifier.")
    parser.add_argument(
        "--smtp-to",
        action="append",
        default=[],
        help="Recipient address for the email notifier (repeatable).",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9095",
        help="Address to listen on for heartbeats and metrics.",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        choices=["debug", "info", "warn", "error"],
        default="info",
        help="Only log messages with the given severity or above.",
    )
    parser.add_argument(
        "--notify-timeout",
        default="10s",
        help="Upper bound for a single notification attempt.",
    )
    return parser


def parse_args(
    argv: Sequence[str] | None = None, prog: str | None = None
) -> argparse.Namespace:
    return build_parser(prog).parse_args(argv)


def load_settings(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
    prog: str | None = None,
) -> DeadmanSettings:
    """Build settings from command-line flags and the process environment."""
    environ = os.environ if environ is None else environ
    args = parse_args(argv, prog=prog)

    try:
        interval = parse_duration(args.interval)
        notify_timeout = parse_duration(args.notify_timeout)
    except ValueError as exc:
        raise ConfigError(f"Error parsing commandline arguments: {exc}") from exc

    try:
        return DeadmanSettings(
            interval=interval,
            notifier=args.notifier,
            pushbullet_access_token=environ.get(PUSHBULLET_ACCESS_TOKEN_ENV),
            pushbullet_device_nickname=args.pushbullet_device_nickname,
            smtp_host=args.smtp_host,
            smtp_port=args.smtp_port,
            smtp_sender=args.smtp_from,
            smtp_recipients=args.smtp_to,
            listen_address=args.listen_address,
            log_level=args.log_level,
            notify_timeout=notify_timeout.total_seconds() or None,
        )
    except pydantic.ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise ConfigError(messages) from exc
