"""Syslog driven banlist daemon for RouterOS devices."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request

from fwban.core.config import get_settings
from fwban.device.fleet import Fleet
from fwban.ingest.syslog import OffenderMatcher, ban_worker, start_syslog_listener

DEBUG = os.getenv("FWBAN_DEBUG", "false").lower() == "true"
HTTP_HOST = os.getenv("FWBAN_HTTP_HOST", "127.0.0.1")
HTTP_PORT = int(os.getenv("FWBAN_HTTP_PORT", "8000"))

logging.basicConfig(
    level=logging.DEBUG if DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _install_dump_handler(fleet: Fleet) -> bool:
    """Dump every dynlist on SIGUSR1. Not available on every platform."""
    if not hasattr(signal, "SIGUSR1"):
        return False

    loop = asyncio.get_running_loop()

    def _dump() -> None:
        logger.info("Got signal, dumping dynlists")
        loop.create_task(fleet.dump())

    try:
        loop.add_signal_handler(signal.SIGUSR1, _dump)
    except (NotImplementedError, RuntimeError):
        return False
    return True


async def _start_ingest(app: FastAPI, fleet: Fleet, settings: Any) -> None:
    try:
        await fleet.sync_dynamic()
    except Exception:
        logger.exception("Dynamic banlist sync failed")

    workers = max(1, settings.BAN_WORKERS)
    for idx in range(workers):
        task = asyncio.create_task(
            ban_worker(fleet, app.state.ban_queue, idx, settings.block_time),
            name=f"ban-worker-{idx}",
        )
        app.state.worker_tasks.append(task)

    matcher = OffenderMatcher(settings.REGEXPS, verbose=settings.VERBOSE)
    app.state.syslog_transport = await start_syslog_listener(
        settings.SYSLOG_HOST,
        settings.SYSLOG_PORT,
        matcher,
        app.state.ban_queue,
    )
    app.state.dump_on_signal = _install_dump_handler(fleet)

    logger.info(
        "fwban started with devices=%s queue_size=%s workers=%s",
        ", ".join(fleet.devices),
        settings.BAN_QUEUE_SIZE,
        workers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    app.state.settings = settings
    app.state.syslog_transport = None
    app.state.worker_tasks = []
    app.state.ban_queue = asyncio.Queue(maxsize=settings.BAN_QUEUE_SIZE)
    app.state.dump_on_signal = False

    fleet = await Fleet.connect(settings)
    app.state.fleet = fleet

    try:
        await _start_ingest(app, fleet, settings)
        yield
    finally:
        if app.state.dump_on_signal:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGUSR1)

        transport = app.state.syslog_transport
        if transport is not None:
            transport.close()

        try:
            await asyncio.wait_for(app.state.ban_queue.join(), timeout=3)
        except asyncio.TimeoutError:
            logger.warning("Ban queue drain timed out during shutdown")

        for task in app.state.worker_tasks:
            task.cancel()
        await asyncio.gather(*app.state.worker_tasks, return_exceptions=True)

        await fleet.close()


app = FastAPI(title="fwban", version="1.0.0", lifespan=lifespan)


def _serialize_entry(entry: Any) -> dict[str, Any]:
    return {
        "network": str(entry.network),
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
        "row_id": entry.row_id,
    }


@app.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Per-device health; degraded as soon as one device has failed."""
    fleet: Fleet = request.app.state.fleet
    devices = fleet.health()
    degraded = any(report["status"] != "ok" for report in devices.values())
    return {"status": "degraded" if degraded else "ok", "devices": devices}


@app.get("/devices/{name}/dynlist")
async def device_dynlist(name: str, request: Request) -> dict[str, Any]:
    fleet: Fleet = request.app.state.fleet
    device = fleet.devices.get(name)
    if device is None:
        raise HTTPException(status_code=404, detail=f"Unknown device {name!r}")
    entries = await device.get_ips()
    return {"device": name, "ban_list": device.ban_list, "entries": [_serialize_entry(e) for e in entries]}


if __name__ == "__main__":
    uvicorn.run("fwban.app.server:app", host=HTTP_HOST, port=HTTP_PORT, workers=1)
