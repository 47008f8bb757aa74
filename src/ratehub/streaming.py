"""
Script: streaming.py
Created: 2026-10-16
Purpose: WebSocket subscriber management and snapshot fan-out for RateHub
Keywords: streaming, websocket, subscribers, broadcast, heartbeat
Status: active
Prerequisites:
  - asyncio
Changelog:
  - 2026-10-16: Rewritten from per-correlation SSE queues to snapshot broadcast
    with admission control and liveness probing
See-Also: endpoints.py, store.py
"""

import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from .models import BroadcastMessage


logger = logging.getLogger(__name__)

PROBE_FRAME = json.dumps({"type": "ping"})
PROBE_REPLY = "pong"

NORMAL_CLOSURE = 1000
GOING_AWAY = 1001
REJECT_CODE = 1008  # policy violation
INTERNAL_ERROR = 1011
REJECT_REASON = "Subscriber limit reached"


class SubscriberState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Subscriber:
    """
    One live connection.

    Outbound frames go through a small bounded queue drained by the
    subscriber's own sender task, so a slow peer never blocks a broadcast.
    """

    def __init__(self, websocket: Any, queue_size: int = 8, peer: str = ""):
        self.id = uuid.uuid4().hex[:8]
        self.websocket = websocket
        self.peer = peer
        self.state = SubscriberState.CONNECTING
        self.connected_at = time.time()
        self.missed_probes = 0
        self.two_way = False  # set once the peer sends anything
        self.sent_frames = 0
        self.dropped_frames = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_size))
        self._send_lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []

    @property
    def is_open(self) -> bool:
        return self.state is SubscriberState.OPEN

    def offer(self, frame: str) -> bool:
        """Queue a frame without waiting. When full, the oldest pending frame is dropped."""
        if not self.is_open:
            return False
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self.dropped_frames += 1
            self._queue.put_nowait(frame)
        return True

    def mark_alive(self) -> None:
        self.two_way = True
        self.missed_probes = 0

    async def send(self, frame: str) -> None:
        async with self._send_lock:
            await self.websocket.send_text(frame)
        self.sent_frames += 1

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "peer": self.peer,
            "state": self.state.value,
            "connected_seconds": int(time.time() - self.connected_at),
            "sent_frames": self.sent_frames,
            "dropped_frames": self.dropped_frames,
            "missed_probes": self.missed_probes,
            "two_way": self.two_way,
        }


class SnapshotBroadcaster:
    """Fans snapshots out to every open subscriber, isolated per connection."""

    def __init__(
        self,
        max_subscribers: int = 10,
        heartbeat_interval: float = 30.0,
        max_missed_probes: int = 2,
        queue_size: int = 8,
    ):
        self.max_subscribers = max_subscribers
        self.heartbeat_interval = heartbeat_interval
        self.max_missed_probes = max_missed_probes
        self.queue_size = queue_size
        self.rejected_total = 0
        self._subscribers: Dict[str, Subscriber] = {}

    # -------------------------
    # MEMBERSHIP
    # -------------------------

    @property
    def open_count(self) -> int:
        return sum(1 for s in self._subscribers.values() if s.is_open)

    def subscribers(self) -> List[Subscriber]:
        return list(self._subscribers.values())

    def try_admit(self, subscriber: Subscriber) -> bool:
        """Check the ceiling and register in one step (no await in between)."""
        if len(self._subscribers) >= self.max_subscribers:
            self.rejected_total += 1
            return False
        self._subscribers[subscriber.id] = subscriber
        return True

    @asynccontextmanager
    async def session(
        self,
        websocket: Any,
        initial: Union[BroadcastMessage, str],
        peer: str = "",
    ) -> AsyncIterator[Optional[Subscriber]]:
        """
        Admit a connection for the duration of the block.

        Yields None when the subscriber ceiling is reached; the socket has
        then already been closed with REJECT_CODE. Otherwise the subscriber
        is open, has its initial snapshot queued and its sender and probe
        tasks running. Leaving the block closes it exactly once.
        """
        subscriber = Subscriber(websocket, queue_size=self.queue_size, peer=peer)

        if not self.try_admit(subscriber):
            logger.warning(
                "[Stream] Subscriber limit reached (%d), rejecting peer=%s",
                self.max_subscribers, peer,
            )
            try:
                await websocket.accept()
                await websocket.close(code=REJECT_CODE, reason=REJECT_REASON)
            except Exception as exc:
                logger.debug("[Stream] Reject close failed: peer=%s error=%s", peer, exc)
            yield None
            return

        try:
            await websocket.accept()
            subscriber.state = SubscriberState.OPEN
            subscriber.offer(_frame(initial))
            subscriber._tasks = [
                asyncio.create_task(self._sender(subscriber)),
                asyncio.create_task(self._heartbeat(subscriber)),
            ]
            logger.info(
                "[Stream] Subscriber connected: id=%s peer=%s open=%d",
                subscriber.id, peer, self.open_count,
            )
            yield subscriber
        finally:
            await self.close(subscriber)

    async def close(
        self,
        subscriber: Subscriber,
        code: int = NORMAL_CLOSURE,
        reason: str = "",
    ) -> bool:
        """Close and unregister. Only the first call does anything."""
        if subscriber.state is SubscriberState.CLOSED:
            return False
        subscriber.state = SubscriberState.CLOSED
        self._subscribers.pop(subscriber.id, None)

        current = asyncio.current_task()
        pending = [t for t in subscriber._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            await subscriber.websocket.close(code=code, reason=reason or None)
        except Exception as exc:
            # peer already gone
            logger.debug("[Stream] Close on dead socket: id=%s error=%s", subscriber.id, exc)

        logger.info(
            "[Stream] Subscriber closed: id=%s code=%d sent=%d dropped=%d open=%d",
            subscriber.id, code, subscriber.sent_frames, subscriber.dropped_frames, self.open_count,
        )
        return True

    async def close_all(self, code: int = GOING_AWAY, reason: str = "Server shutting down") -> int:
        closed = 0
        for subscriber in self.subscribers():
            if await self.close(subscriber, code=code, reason=reason):
                closed += 1
        return closed

    # -------------------------
    # DELIVERY
    # -------------------------

    def broadcast(self, message: Union[BroadcastMessage, str]) -> int:
        """Offer one frame to every open subscriber. Returns how many took it."""
        frame = _frame(message)
        delivered = 0
        for subscriber in self.subscribers():
            if subscriber.offer(frame):
                delivered += 1
        return delivered

    async def _sender(self, subscriber: Subscriber) -> None:
        while subscriber.is_open:
            frame = await subscriber._queue.get()
            try:
                await subscriber.send(frame)
            except Exception as exc:
                logger.warning("[Stream] Send failed: id=%s error=%s", subscriber.id, exc)
                await self.close(subscriber, code=INTERNAL_ERROR, reason="Send failed")
                return

    async def _heartbeat(self, subscriber: Subscriber) -> None:
        """
        Application-level probing for peers that talk back.

        Receive-only peers never see probe frames; their liveness is left to
        the transport ping/pong configured on the server.
        """
        while subscriber.is_open:
            await asyncio.sleep(self.heartbeat_interval)
            if not subscriber.two_way:
                continue
            if self.max_missed_probes > 0 and subscriber.missed_probes >= self.max_missed_probes:
                logger.warning(
                    "[Stream] Peer unresponsive after %d probes: id=%s",
                    subscriber.missed_probes, subscriber.id,
                )
                await self.close(subscriber, code=GOING_AWAY, reason="Probe timeout")
                return
            subscriber.missed_probes += 1
            try:
                await subscriber.send(PROBE_FRAME)
            except Exception as exc:
                logger.warning("[Stream] Probe failed: id=%s error=%s", subscriber.id, exc)
                await self.close(subscriber, code=INTERNAL_ERROR, reason="Probe failed")
                return

    def stats(self) -> Dict[str, Any]:
        return {
            "open": self.open_count,
            "max": self.max_subscribers,
            "rejected_total": self.rejected_total,
            "subscribers": [s.info() for s in self.subscribers()],
        }


def _frame(message: Union[BroadcastMessage, str]) -> str:
    return message if isinstance(message, str) else message.to_json()
