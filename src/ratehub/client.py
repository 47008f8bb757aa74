"""
Script: client.py
Created: 2026-10-16
Purpose: RateHub client SDK: batched report sender for feed producers and a
         query/stream client for viewers
Keywords: client, sdk, http, websocket, batch, reports
Status: active
Prerequisites:
  - httpx (HTTP client)
  - websockets (stream client)
Changelog:
  - 2026-10-16: Reworked from trace sender to throughput report sender;
    added snapshot streaming over the metrics WebSocket
See-Also: endpoints.py
"""

import atexit
import json
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass
from queue import Empty, Queue
from typing import Any, Callable, Dict, List, Optional

import httpx
from websockets.sync.client import connect as ws_connect


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

RATEHUB_URL = os.getenv("RATEHUB_URL", "")  # e.g. "http://monitor:3001"
RATEHUB_BATCH_SIZE = int(os.getenv("RATEHUB_BATCH_SIZE", "10"))
RATEHUB_FLUSH_INTERVAL = float(os.getenv("RATEHUB_FLUSH_INTERVAL", "1.0"))
RATEHUB_TIMEOUT = float(os.getenv("RATEHUB_TIMEOUT", "5.0"))
RATEHUB_RETRY_COUNT = int(os.getenv("RATEHUB_RETRY_COUNT", "2"))


# =============================================================================
# Report
# =============================================================================

@dataclass
class ThroughputReport:
    """One throughput report, as sent to /ingest or over the stream."""
    exchange: str
    channel: str
    timestamp: float  # Unix ms
    msg_sec: Optional[float] = None
    bytes_sec: Optional[float] = None
    status: Optional[str] = None
    signal_type: Optional[str] = None
    msg_count: Optional[int] = None
    msg_bytes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def create_report(
    exchange: str,
    channel: str,
    msg_sec: Optional[float] = None,
    bytes_sec: Optional[float] = None,
    signal_type: Optional[str] = None,
    status: Optional[str] = None,
    timestamp_ms: Optional[float] = None,
) -> ThroughputReport:
    """Create a push-mode report stamped with the current time."""
    return ThroughputReport(
        exchange=exchange,
        channel=channel,
        timestamp=timestamp_ms if timestamp_ms is not None else time.time() * 1000,
        msg_sec=msg_sec,
        bytes_sec=bytes_sec,
        status=status,
        signal_type=signal_type,
    )


# =============================================================================
# Batch Sender
# =============================================================================

class RateHubClient:
    """
    Client for sending reports to RateHub.

    Uses a background thread with a queue for non-blocking sends.
    Batches reports and flushes periodically or when the batch is full.

    Usage:
        client = RateHubClient("http://ratehub:3001")
        client.send(create_report("binance", "trade", msg_sec=120))

        # On shutdown
        client.flush()
        client.close()
    """

    def __init__(
        self,
        base_url: str,
        batch_size: int = RATEHUB_BATCH_SIZE,
        flush_interval: float = RATEHUB_FLUSH_INTERVAL,
        timeout: float = RATEHUB_TIMEOUT,
        retry_count: int = RATEHUB_RETRY_COUNT,
        start: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.timeout = timeout
        self.retry_count = retry_count

        self._queue: "Queue[ThroughputReport]" = Queue()
        self._running = True
        self._thread: Optional[threading.Thread] = None

        if start and self.base_url:
            self._start_sender()

    def _start_sender(self):
        self._thread = threading.Thread(target=self._sender_loop, daemon=True)
        self._thread.start()
        atexit.register(self._shutdown)

    def _sender_loop(self):
        batch: List[ThroughputReport] = []
        last_flush = time.time()

        while self._running or not self._queue.empty():
            try:
                try:
                    batch.append(self._queue.get(timeout=0.1))
                except Empty:
                    pass

                now = time.time()
                should_flush = (
                    len(batch) >= self.batch_size or
                    (batch and now - last_flush >= self.flush_interval)
                )
                if should_flush and batch:
                    self.send_batch(batch)
                    batch = []
                    last_flush = now
            except Exception as e:
                # keep the sender thread alive
                logger.error("[RateHub] Sender error: %s", e)

        if batch:
            self.send_batch(batch)

    def send_batch(self, batch: List[ThroughputReport]) -> bool:
        """POST a batch to /ingest. Returns True once the server accepted it."""
        if not batch:
            return True

        payload = {"reports": [r.to_dict() for r in batch]}
        for attempt in range(self.retry_count + 1):
            try:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(f"{self.base_url}/ingest", json=payload)
                if response.status_code == 200:
                    dropped = response.json().get("dropped", 0)
                    if dropped:
                        logger.warning("[RateHub] Server dropped %d report(s)", dropped)
                    return True
                if 400 <= response.status_code < 500:
                    logger.error("[RateHub] Ingest rejected: %s", response.status_code)
                    return False  # retrying will not help
                logger.warning("[RateHub] Ingest failed: %s", response.status_code)
            except httpx.HTTPError as e:
                if attempt == self.retry_count:
                    logger.error("[RateHub] Failed after %d attempts: %s", self.retry_count + 1, e)
                    return False
            if attempt < self.retry_count:
                time.sleep(0.1 * (attempt + 1))
        return False

    def send(self, report: ThroughputReport):
        """Queue a report for sending."""
        if self._running and self.base_url:
            self._queue.put(report)

    def flush(self, timeout: float = 5.0):
        """Wait for the queue to drain (blocking)."""
        if not self._thread:
            return
        deadline = time.time() + timeout
        while not self._queue.empty() and time.time() < deadline:
            time.sleep(0.1)

    def close(self):
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)

    def _shutdown(self):
        self.flush()
        self.close()


# =============================================================================
# Global Client Instance
# =============================================================================

_client: Optional[RateHubClient] = None


def get_ratehub_client() -> Optional[RateHubClient]:
    """Get or create the process-wide sender (only when RATEHUB_URL is set)."""
    global _client

    if _client is None and RATEHUB_URL:
        _client = RateHubClient(RATEHUB_URL)

    return _client


def send_report(report: ThroughputReport):
    client = get_ratehub_client()
    if client:
        client.send(report)


def is_ratehub_enabled() -> bool:
    return bool(RATEHUB_URL)


# =============================================================================
# Query / Stream Client
# =============================================================================

class RateHubQueryClient:
    """Sync client for reading snapshots and stats, and for following the stream."""

    def __init__(self, base_url: str, timeout: float = 10.0, ws_path: str = "/ws/metrics"):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.ws_path = ws_path

    @property
    def ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + self.ws_path
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):] + self.ws_path
        return self.base_url + self.ws_path

    def get_snapshot(self) -> Dict[str, Any]:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.get(f"{self.base_url}/snapshot")
            response.raise_for_status()
            return response.json()

    def get_stats(self) -> Dict[str, Any]:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.get(f"{self.base_url}/stats")
            response.raise_for_status()
            return response.json()

    def stream_snapshots(
        self,
        callback: Callable[[Dict[str, Any]], None],
        max_frames: Optional[int] = None,
    ) -> int:
        """
        Follow the metrics stream, calling `callback` with each snapshot.

        Transport pings are answered by the websockets library. Returns the
        number of snapshots delivered when the server closes the stream or `max_frames` is hit.
        """
        delivered = 0
        with ws_connect(self.ws_url, open_timeout=self.timeout) as ws:
            for raw in ws:
                callback(json.loads(raw))
                delivered += 1
                if max_frames is not None and delivered >= max_frames:
                    break
        return delivered
