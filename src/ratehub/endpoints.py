"""
Script: endpoints.py
Created: 2026-10-16
Purpose: WebSocket stream and HTTP route handlers for RateHub
Keywords: endpoints, routes, websocket, ingest, fastapi, ratehub
Status: active
Prerequisites:
  - fastapi
Changelog:
  - 2026-10-16: Rewritten for throughput reports: bidirectional metrics stream,
    batch ingest, snapshot, stats, health and forced save
See-Also: streaming.py, aggregator.py, app.py
"""

import json
import logging
import os
import time
from typing import Any, Mapping, Union

from fastapi import APIRouter, Depends, Request, WebSocket
from fastapi.responses import Response

from .aggregator import AggregationMode
from .config import Hub
from .models import IngestRequest, ParseResult, parse_report
from .streaming import INTERNAL_ERROR, PROBE_REPLY


logger = logging.getLogger(__name__)

router = APIRouter()


def get_hub(request: Request) -> Hub:
    return request.app.state.hub


async def process_report(hub: Hub, raw: Union[str, bytes, Mapping[str, Any]]) -> ParseResult:
    """
    Validate one report, feed it to the aggregator and log it.

    Invalid reports are dropped and logged. In push mode every accepted
    report triggers a broadcast; in pull mode the tick loop does.
    """
    result = parse_report(raw)
    if not result.ok:
        hub.stats["reports_dropped"] += 1
        logger.warning("[Ingest] Dropped report: %s payload=%s", result.error, result.payload)
        return result

    hub.aggregator.ingest(result.report)
    hub.stats["reports_total"] += 1
    if hub.aggregator.mode is AggregationMode.PUSH:
        hub.publish()

    await hub.persistence.append_log_async(result.payload)
    return result


def _peer(websocket: WebSocket) -> str:
    if websocket.client is None:
        return "unknown"
    return f"{websocket.client.host}:{websocket.client.port}"


async def metrics_stream(websocket: WebSocket):
    """
    Bidirectional metrics stream.

    Server → full snapshot on connect, then a snapshot on every update,
             plus {"type": "ping"} probes once the client has sent a frame.
    Client → throughput reports, {"type": "pong"} probe replies.
    """
    hub: Hub = websocket.app.state.hub
    broadcaster = hub.broadcaster

    async with broadcaster.session(websocket, hub.store.snapshot(), peer=_peer(websocket)) as subscriber:
        if subscriber is None:
            return
        try:
            while subscriber.is_open:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info(
                        "[Stream] Client disconnected: id=%s code=%s",
                        subscriber.id, message.get("code"),
                    )
                    break

                subscriber.mark_alive()
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""

                try:
                    data = json.loads(raw)
                except ValueError as e:
                    hub.stats["reports_dropped"] += 1
                    logger.warning("[Ingest] Dropped non-JSON frame: id=%s error=%s", subscriber.id, e)
                    continue

                if isinstance(data, dict) and data.get("type") == PROBE_REPLY:
                    continue
                await process_report(hub, data)
        except Exception as e:
            if not subscriber.is_open:
                # closed under us by the sender or probe task
                logger.debug("[Stream] Receive after close: id=%s error=%s", subscriber.id, e)
                return
            logger.exception("[Stream] Session error: id=%s error=%s", subscriber.id, e)
            await broadcaster.close(subscriber, code=INTERNAL_ERROR, reason="Internal error")


@router.post("/ingest", tags=["ingest"])
async def ingest_reports(request: IngestRequest, hub: Hub = Depends(get_hub)):
    """
    Ingest a batch of throughput reports over HTTP.

    Each report is validated on its own; invalid ones are dropped.
    """
    accepted = 0
    errors = []
    for raw in request.reports:
        result = await process_report(hub, raw)
        if result.ok:
            accepted += 1
        else:
            errors.append(result.error)

    return {
        "accepted": accepted,
        "dropped": len(request.reports) - accepted,
        "errors": errors,
    }


@router.get("/snapshot", tags=["query"])
async def get_snapshot(hub: Hub = Depends(get_hub)):
    """
    Current history and latest status, same shape as a broadcast frame.

    `timestamps[i]` pairs with index i of every feed series counted from the
    newest end; feeds first seen later have shorter series.
    """
    return Response(content=hub.store.snapshot().to_json(), media_type="application/json")


@router.get("/stats", tags=["admin"])
async def stats(hub: Hub = Depends(get_hub)):
    """Server stats for monitoring."""
    now = time.time()
    settings = hub.settings
    persistence = hub.persistence

    log_size = 0
    try:
        log_size = os.path.getsize(persistence.sample_log.path)
    except OSError:
        pass

    return {
        "uptime_seconds": int(now - hub.stats["started_at"]),
        "mode": hub.aggregator.mode.value,
        "subscribers": hub.broadcaster.stats(),
        "reports": {
            "total": hub.stats["reports_total"],
            "dropped": hub.stats["reports_dropped"],
            "broadcasts": hub.stats["broadcasts_total"],
            "pending_feeds": hub.aggregator.pending_feeds(),
        },
        "store": {
            "feeds": len(hub.store.feeds()),
            "points": len(hub.store.timestamps),
            "history_length": settings.history_length,
            "signals": len(hub.store.signals),
        },
        "persistence": {
            "data_file": str(persistence.data_file),
            "last_saved_at": persistence.last_saved_at,
            "log_file": str(persistence.sample_log.path),
            "log_size_bytes": log_size,
            "log_rotations": persistence.sample_log.rotations,
        },
    }


@router.get("/health", tags=["health"])
async def health(hub: Hub = Depends(get_hub)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "ratehub",
        "mode": hub.aggregator.mode.value,
        "subscribers": hub.broadcaster.open_count,
    }


@router.post("/persist", tags=["admin"])
async def force_save(hub: Hub = Depends(get_hub)):
    """Force a history save."""
    result = await hub.persistence.save_async()
    return {"saved": result.ok, "error": result.error, "path": result.path}
