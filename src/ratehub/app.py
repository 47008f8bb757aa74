"""
Script: app.py
Created: 2026-10-16
Purpose: FastAPI application factory and lifespan management for RateHub
Keywords: fastapi, app, lifespan, tick, persistence, ratehub
Status: active
Prerequisites:
  - fastapi
Changelog:
  - 2026-10-16: Lifespan loads history, runs tick/save/status loops and saves
    on shutdown; app built per Hub instead of at import time
See-Also: config.py, endpoints.py
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .aggregator import AggregationMode
from .config import Hub, Settings, build_hub
from .endpoints import metrics_stream, router


logger = logging.getLogger(__name__)


async def tick_loop(hub: Hub):
    """Pull mode: flush counters and broadcast every tick."""
    interval = hub.settings.tick_interval
    while True:
        await asyncio.sleep(interval)
        hub.aggregator.flush()
        hub.publish()


async def save_loop(hub: Hub):
    while True:
        await asyncio.sleep(hub.settings.save_interval)
        await hub.persistence.save_async()


async def status_loop(hub: Hub):
    while True:
        await asyncio.sleep(hub.settings.status_interval)
        logger.info(
            "[RateHub] Subscribers: %d/%d, feeds: %d, reports: %d",
            hub.broadcaster.open_count, hub.settings.max_subscribers,
            len(hub.store.feeds()), hub.stats["reports_total"],
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load history on startup; stop loops, close subscribers and save on shutdown."""
    hub: Hub = app.state.hub
    await hub.persistence.load_async()

    tasks = []
    if hub.aggregator.mode is AggregationMode.PULL and hub.settings.tick_interval > 0:
        tasks.append(asyncio.create_task(tick_loop(hub)))
    if hub.settings.save_interval > 0:
        tasks.append(asyncio.create_task(save_loop(hub)))
    if hub.settings.status_interval > 0:
        tasks.append(asyncio.create_task(status_loop(hub)))

    logger.info(
        "[RateHub] Started: mode=%s history=%d max_subscribers=%d",
        hub.aggregator.mode.value, hub.settings.history_length, hub.settings.max_subscribers,
    )

    yield

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    await hub.broadcaster.close_all()
    result = await hub.persistence.save_async()
    if result.ok:
        logger.info("[RateHub] History saved to %s", result.path)


def create_app(hub: Optional[Hub] = None) -> FastAPI:
    """Build the app around a hub (a fresh one from the environment by default)."""
    if hub is None:
        hub = build_hub(Settings())

    app = FastAPI(
        title="RateHub",
        description="Feed throughput aggregation and live metrics streaming service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.add_api_websocket_route(hub.settings.ws_path, metrics_stream)
    return app
