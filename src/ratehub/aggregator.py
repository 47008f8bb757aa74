"""
Script: aggregator.py
Created: 2026-10-16
Purpose: Turn ingestion reports into rate samples (push and pull modes)
Keywords: aggregator, rate, tick, push, pull, counters
Status: active
Prerequisites:
  - None
Changelog:
  - 2026-10-16: Initial version
See-Also: store.py, app.py
"""

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .models import DEFAULT_STATUS, PERIODIC, FeedStatus, IngestReport, SignalEvent, iso_from_epoch_ms
from .store import FeedKey, TimeSeriesStore


logger = logging.getLogger(__name__)


class AggregationMode(str, Enum):
    PUSH = "push"  # reports carry msg_sec / bytes_sec
    PULL = "pull"  # reports carry raw counts, flushed on a tick


def compute_rate(count: float, elapsed_seconds: float) -> int:
    """Per-second rate rounded to int. Zero for a non-positive interval."""
    if elapsed_seconds <= 0:
        return 0
    rate = count / elapsed_seconds
    if not math.isfinite(rate):
        return 0
    return int(round(rate))


@dataclass
class FeedCounter:
    msg_count: int = 0
    bytes_count: int = 0
    last_flush: float = 0.0
    status: str = DEFAULT_STATUS
    signal_type: str = PERIODIC

    @property
    def pending(self) -> bool:
        return self.msg_count > 0 or self.bytes_count > 0

    def reset(self, now: float) -> None:
        self.msg_count = 0
        self.bytes_count = 0
        self.last_flush = now


class RateAggregator:
    """
    Feeds the store from ingestion reports.

    Push mode records an aligned point per report. Pull mode accumulates raw counts
    per feed and records them when `flush()` is called by the tick loop.
    The aggregator is the only writer of the store outside of startup.
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        mode: AggregationMode = AggregationMode.PUSH,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.mode = AggregationMode(mode)
        self._clock = clock
        self._counters: Dict[FeedKey, FeedCounter] = {}
        self._last_tick = clock()

    def ingest(self, report: IngestReport) -> FeedKey:
        """Apply one validated report. Returns the feed it belongs to."""
        key = FeedKey(report.exchange, report.channel)
        timestamp = report.iso_timestamp
        status = report.status or DEFAULT_STATUS
        signal_type = report.signal_type or PERIODIC

        if self.mode is AggregationMode.PUSH:
            rate = int(round(report.msg_sec or 0))
            nbytes = int(round(report.bytes_sec or 0))
            # other feeds repeat their last rate so every series stays index-aligned
            self.store.record_tick(timestamp, {key: (rate, nbytes)}, hold_last=True)
            self.store.set_current(key, FeedStatus(
                msg_rate=rate,
                bytes_per_sec=nbytes,
                status=status,
                signal_type=signal_type,
                timestamp=timestamp,
            ))
        else:
            self.store.ensure_feed(key)
            counter = self._counters.get(key)
            if counter is None:
                counter = FeedCounter(last_flush=self._last_tick)
                self._counters[key] = counter
            counter.msg_count += report.msg_count
            counter.bytes_count += report.msg_bytes
            counter.status = status
            counter.signal_type = signal_type

        if report.is_signal:
            self.store.record_signal(SignalEvent(
                time=timestamp,
                type=signal_type,
                exchange=key.source,
                channel=key.channel,
            ))
            logger.info("[Ingest] Signal %s on %s", signal_type, key)

        return key

    def flush(self, now: Optional[float] = None) -> Dict[FeedKey, Tuple[int, int]]:
        """
        Pull mode tick: turn pending counters into one aligned store point.

        Feeds without pending counts are not computed; nothing is recorded
        when no feed has pending counts. Returns the computed samples.
        """
        now = self._clock() if now is None else now
        self._last_tick = now
        samples: Dict[FeedKey, Tuple[int, int]] = {}
        if self.mode is not AggregationMode.PULL:
            return samples

        timestamp = iso_from_epoch_ms(now * 1000.0)
        for key, counter in self._counters.items():
            if not counter.pending:
                counter.last_flush = now
                continue
            elapsed = now - counter.last_flush
            rate = compute_rate(counter.msg_count, elapsed)
            nbytes = compute_rate(counter.bytes_count, elapsed)
            samples[key] = (rate, nbytes)
            self.store.set_current(key, FeedStatus(
                msg_rate=rate,
                bytes_per_sec=nbytes,
                status=counter.status,
                signal_type=counter.signal_type,
                timestamp=timestamp,
            ))
            counter.reset(now)

        if samples:
            self.store.record_tick(timestamp, samples)
            logger.debug("[Ingest] Tick recorded %d feed(s)", len(samples))
        return samples

    def pending_feeds(self) -> int:
        return sum(1 for c in self._counters.values() if c.pending)
