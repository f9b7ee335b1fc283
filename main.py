"""
Deadman - a dead man's switch for Alertmanager compatible notification pipelines.

Every request to an unreserved path counts as a heartbeat. When heartbeats stop
arriving the watchdog sends an alert, and a recovery message once they resume.
"""

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.alerting.notifier import AlertNotifier
from core.alerting.pushbullet import PushbulletNotifier
from core.alerting.smtp import EmailNotifier
from core.config import ConfigError, DeadmanSettings, load_settings
from core.watchdog.deadman import Deadman, WatchdogConfig
from core.watchdog.metrics import WatchdogMetrics, get_default_metrics
from otel_init import attach_logging_handler, instrument_fastapi_app, setup_telemetry

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

HEARTBEAT_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]

router = APIRouter()


def build_notifier(settings: DeadmanSettings) -> AlertNotifier:
    """Create the delivery backend selected by ``--notifier``."""
    if settings.notifier == "email":
        return EmailNotifier(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            sender=settings.smtp_sender,
            recipients=settings.smtp_recipients,
        )
    return PushbulletNotifier(
        access_token=settings.pushbullet_access_token,
        device_nickname=settings.pushbullet_device_nickname,
        timeout=settings.notify_timeout or 10.0,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the watchdog loop for the lifetime of the server."""
    settings: DeadmanSettings = app.state.settings

    attach_logging_handler()

    deadman = Deadman(
        notifier=app.state.notifier,
        config=WatchdogConfig(
            interval=settings.interval, window_ticks=settings.window_ticks
        ),
        metrics=app.state.metrics,
        notify_timeout=settings.notify_timeout,
    )
    app.state.deadman = deadman
    task = asyncio.create_task(deadman.run(), name="deadman-loop")
    logger.info(f"Deadman listening for heartbeats on {settings.listen_address}")

    try:
        yield
    finally:
        await deadman.stop()
        await task
        await app.state.notifier.close()


@router.get("/metrics")
async def metrics(request: Request):
    """Prometheus scrape endpoint."""
    registry = request.app.state.metrics.registry
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


@router.get("/health/liveness")
async def liveness():
    """Liveness probe."""
    return {"status": "ok"}


@router.get("/status")
async def status(request: Request):
    """Current watchdog state."""
    deadman: Deadman | None = request.app.state.deadman
    if deadman is None:
        return {"status": "stopped"}
    return {
        "status": "stopped" if deadman.stopped else "running",
        "firing": deadman.state.firing,
        "tick_counter": deadman.state.tick_counter,
        "skip_next_tick": deadman.state.skip_next_tick,
        "window_ticks": deadman.config.window_ticks,
        "interval_seconds": deadman.config.interval.total_seconds(),
        "last_heartbeat_at": (
            deadman.last_heartbeat_at.isoformat()
            if deadman.last_heartbeat_at
            else None
        ),
        "counters": deadman.metrics.snapshot(),
    }


@router.api_route("/{path:path}", methods=HEARTBEAT_METHODS)
async def heartbeat(request: Request, path: str = ""):
    """Any other request is a heartbeat from the watched pipeline."""
    deadman: Deadman | None = request.app.state.deadman
    if deadman is not None:
        await deadman.heartbeat()
    return Response(status_code=200)


def create_app(
    settings: DeadmanSettings,
    notifier: AlertNotifier | None = None,
    metrics: WatchdogMetrics | None = None,
) -> FastAPI:
    """Build the HTTP app; the watchdog runs while the app is being served."""
    # No docs routes: every path apart from the ones below is a heartbeat.
    app = FastAPI(
        title="Deadman",
        description="A deadman's snitch for Prometheus Alertmanager compatible notifications",
        version=VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.notifier = notifier or build_notifier(settings)
    app.state.metrics = metrics or get_default_metrics()
    app.state.deadman = None
    app.include_router(router)
    instrument_fastapi_app(app)
    return app


def main(argv: list[str] | None = None) -> int:
    prog = os.path.basename(sys.argv[0])
    try:
        settings = load_settings(argv, prog=prog)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 2

    logging.basicConfig(
        level=LOG_LEVELS[settings.log_level],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    setup_telemetry(service_name="deadman", service_version=VERSION)
    app = create_app(settings)

    import uvicorn

    uvicorn.run(
        app,
        host=settings.listen_host,
        port=settings.listen_port,
        log_level="warning" if settings.log_level == "warn" else settings.log_level,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
