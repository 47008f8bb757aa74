"""
Script: config.py
Created: 2026-10-16
Purpose: RateHub server configuration and the per-process hub context
Keywords: config, environment, settings, state, ratehub
Status: active
Prerequisites:
  - None
Changelog:
  - 2026-10-16: Environment settings collected in Settings; runtime state moved
    from module globals into the Hub context
See-Also: app.py, cli.py
"""

import os
import time
from dataclasses import dataclass, field
from typing import Dict

from .aggregator import AggregationMode, RateAggregator
from .persistence import PersistenceManager
from .store import TimeSeriesStore
from .streaming import SnapshotBroadcaster


# =============================================================================
# Configuration
# =============================================================================

RATEHUB_HOST = os.getenv("RATEHUB_HOST", "0.0.0.0")
RATEHUB_PORT = int(os.getenv("RATEHUB_PORT", "3001"))
RATEHUB_WS_PATH = os.getenv("RATEHUB_WS_PATH", "/ws/metrics")
RATEHUB_MODE = os.getenv("RATEHUB_MODE", "push")  # push | pull
RATEHUB_HISTORY_LENGTH = int(os.getenv("RATEHUB_HISTORY_LENGTH", "40"))
RATEHUB_SIGNAL_HISTORY = int(os.getenv("RATEHUB_SIGNAL_HISTORY", "5"))
RATEHUB_TICK_INTERVAL = float(os.getenv("RATEHUB_TICK_INTERVAL", "15"))
RATEHUB_MAX_SUBSCRIBERS = int(os.getenv("RATEHUB_MAX_SUBSCRIBERS", "10"))
RATEHUB_HEARTBEAT_INTERVAL = float(os.getenv("RATEHUB_HEARTBEAT_INTERVAL", "30"))
RATEHUB_MAX_MISSED_PROBES = int(os.getenv("RATEHUB_MAX_MISSED_PROBES", "2"))  # 0 = never time out
RATEHUB_SEND_QUEUE = int(os.getenv("RATEHUB_SEND_QUEUE", "8"))
RATEHUB_DATA_FILE = os.getenv("RATEHUB_DATA_FILE", "data/history.json")
RATEHUB_LOG_DIR = os.getenv("RATEHUB_LOG_DIR", "data/logs")
RATEHUB_LOG_MAX_BYTES = int(os.getenv("RATEHUB_LOG_MAX_BYTES", str(50 * 1024 * 1024)))
RATEHUB_SAVE_INTERVAL = float(os.getenv("RATEHUB_SAVE_INTERVAL", "60"))  # 0 = only at shutdown
RATEHUB_STATUS_INTERVAL = float(os.getenv("RATEHUB_STATUS_INTERVAL", "30"))
RATEHUB_LOG_LEVEL = os.getenv("RATEHUB_LOG_LEVEL", "INFO")


@dataclass
class Settings:
    host: str = RATEHUB_HOST
    port: int = RATEHUB_PORT
    ws_path: str = RATEHUB_WS_PATH
    mode: AggregationMode = RATEHUB_MODE  # type: ignore[assignment]  # coerced below
    history_length: int = RATEHUB_HISTORY_LENGTH
    signal_history: int = RATEHUB_SIGNAL_HISTORY
    tick_interval: float = RATEHUB_TICK_INTERVAL
    max_subscribers: int = RATEHUB_MAX_SUBSCRIBERS
    heartbeat_interval: float = RATEHUB_HEARTBEAT_INTERVAL
    max_missed_probes: int = RATEHUB_MAX_MISSED_PROBES
    send_queue: int = RATEHUB_SEND_QUEUE
    data_file: str = RATEHUB_DATA_FILE
    log_dir: str = RATEHUB_LOG_DIR
    log_max_bytes: int = RATEHUB_LOG_MAX_BYTES
    save_interval: float = RATEHUB_SAVE_INTERVAL
    status_interval: float = RATEHUB_STATUS_INTERVAL

    def __post_init__(self):
        try:
            self.mode = AggregationMode(self.mode)
        except ValueError:
            choices = ", ".join(m.value for m in AggregationMode)
            raise ValueError(
                f"Invalid aggregation mode {self.mode!r} (RATEHUB_MODE), expected one of: {choices}"
            ) from None


# =============================================================================
# Hub context (one per process, passed to every component)
# =============================================================================

@dataclass
class Hub:
    settings: Settings
    store: TimeSeriesStore
    aggregator: RateAggregator
    broadcaster: SnapshotBroadcaster
    persistence: PersistenceManager
    stats: Dict[str, float] = field(default_factory=lambda: {
        "reports_total": 0,
        "reports_dropped": 0,
        "broadcasts_total": 0,
        "started_at": time.time(),
    })

    def publish(self) -> int:
        """Broadcast a fresh snapshot to every open subscriber."""
        delivered = self.broadcaster.broadcast(self.store.snapshot())
        self.stats["broadcasts_total"] += 1
        return delivered


def build_hub(settings: Settings) -> Hub:
    store = TimeSeriesStore(
        history_length=settings.history_length,
        signal_history=settings.signal_history,
    )
    return Hub(
        settings=settings,
        store=store,
        aggregator=RateAggregator(store, mode=settings.mode),
        broadcaster=SnapshotBroadcaster(
            max_subscribers=settings.max_subscribers,
            heartbeat_interval=settings.heartbeat_interval,
            max_missed_probes=settings.max_missed_probes,
            queue_size=settings.send_queue,
        ),
        persistence=PersistenceManager(
            store,
            data_file=settings.data_file,
            log_dir=settings.log_dir,
            log_max_bytes=settings.log_max_bytes,
        ),
    )
