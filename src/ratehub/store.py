"""
Script: store.py
Created: 2026-10-16
Purpose: Bounded in-memory time-series store for per-feed throughput history
Keywords: store, timeseries, ring, snapshot, hydrate
Status: active
Prerequisites:
  - pydantic (snapshot records)
Changelog:
  - 2026-10-16: Initial version
See-Also: ring.py, aggregator.py, persistence.py
"""

from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from .models import (
    PERIODIC,
    BroadcastMessage,
    CurrentStatus,
    FeedSeries,
    FeedStatus,
    History,
    SignalEvent,
)
from .ring import RingBuffer


DEFAULT_HISTORY_LENGTH = 40  # 10 minutes at one point every 15s
DEFAULT_SIGNAL_HISTORY = 5
SEEDED_CHANNELS = ("trade", "inc")


class FeedKey(NamedTuple):
    source: str
    channel: str

    def __str__(self) -> str:
        return f"{self.source}/{self.channel}"


class FeedHistory:
    """Rate and byte series of one feed."""

    __slots__ = ("msg_rates", "bytes_per_sec")

    def __init__(self, capacity: int):
        self.msg_rates: RingBuffer[int] = RingBuffer(capacity)
        self.bytes_per_sec: RingBuffer[int] = RingBuffer(capacity)

    def push(self, rate: int, nbytes: int) -> None:
        self.msg_rates.push(rate)
        self.bytes_per_sec.push(nbytes)

    def freeze(self) -> FeedSeries:
        return FeedSeries(msg_rates=tuple(self.msg_rates), bytes_per_sec=tuple(self.bytes_per_sec))


class TimeSeriesStore:
    """
    Keyed collection of bounded series.

    One shared timestamp ring, a (rate, bytes) ring pair per feed, a small
    signal ring and the latest status of each feed. Feeds are created on
    first observation and kept for the life of the process.
    """

    def __init__(
        self,
        history_length: int = DEFAULT_HISTORY_LENGTH,
        signal_history: int = DEFAULT_SIGNAL_HISTORY,
        seeded_channels: Iterable[str] = SEEDED_CHANNELS,
    ):
        self.history_length = history_length
        self.signal_history = signal_history
        self.seeded_channels = tuple(seeded_channels)

        self.timestamps: RingBuffer[str] = RingBuffer(history_length)
        self.signals: RingBuffer[SignalEvent] = RingBuffer(signal_history)
        self._feeds: Dict[str, Dict[str, FeedHistory]] = {}
        self._current: Dict[FeedKey, FeedStatus] = {}

    # -------------------------
    # FEEDS
    # -------------------------

    def ensure_feed(self, key: FeedKey) -> FeedHistory:
        channels = self._feeds.get(key.source)
        if channels is None:
            channels = {ch: FeedHistory(self.history_length) for ch in self.seeded_channels}
            self._feeds[key.source] = channels
        feed = channels.get(key.channel)
        if feed is None:
            feed = FeedHistory(self.history_length)
            channels[key.channel] = feed
        return feed

    def feeds(self) -> List[FeedKey]:
        return [
            FeedKey(source, channel)
            for source, channels in self._feeds.items()
            for channel in channels
        ]

    def series(self, key: FeedKey) -> Optional[FeedHistory]:
        return self._feeds.get(key.source, {}).get(key.channel)

    # -------------------------
    # MUTATION
    # -------------------------

    def record_sample(self, key: FeedKey, timestamp: str, rate: int, nbytes: int) -> None:
        feed = self.ensure_feed(key)
        self.timestamps.push(timestamp)
        feed.push(rate, nbytes)

    def record_tick(
        self,
        timestamp: str,
        samples: Mapping[FeedKey, Tuple[int, int]],
        hold_last: bool = False,
    ) -> None:
        """
        Record one aligned point: every known feed gets a value for `timestamp`.

        Feeds missing from `samples` get 0, or their previous value when
        `hold_last` is set.
        """
        for key in samples:
            self.ensure_feed(key)
        self.timestamps.push(timestamp)
        for source, channels in self._feeds.items():
            for channel, feed in channels.items():
                sample = samples.get(FeedKey(source, channel))
                if sample is None:
                    sample = (0, 0)
                    if hold_last:
                        sample = (feed.msg_rates.last(0), feed.bytes_per_sec.last(0))
                rate, nbytes = sample
                feed.push(rate, nbytes)

    def record_signal(self, event: SignalEvent) -> bool:
        if event.type == PERIODIC:
            return False
        self.signals.push(event)
        return True

    def set_current(self, key: FeedKey, status: FeedStatus) -> None:
        self._current[key] = status

    def current(self, key: FeedKey) -> Optional[FeedStatus]:
        return self._current.get(key)

    # -------------------------
    # SNAPSHOT / HYDRATE
    # -------------------------

    def history(self) -> History:
        return History(
            timestamps=tuple(self.timestamps),
            exchanges={
                source: {channel: feed.freeze() for channel, feed in channels.items()}
                for source, channels in self._feeds.items()
            },
            signals=tuple(self.signals),
        )

    def snapshot(self) -> BroadcastMessage:
        """Independent copy of everything a subscriber sees."""
        current: Dict[str, Dict[str, FeedStatus]] = {}
        for key, status in self._current.items():
            current.setdefault(key.source, {})[key.channel] = status
        return BroadcastMessage(
            history=self.history(),
            current=CurrentStatus(exchanges=current),
        )

    def hydrate(self, serialized: Union[History, Mapping[str, Any]]) -> None:
        """
        Load persisted history, keeping only what fits current capacities.

        Raises pydantic.ValidationError for a payload that is not a history.
        """
        history = serialized if isinstance(serialized, History) else History.model_validate(serialized)

        for ts in _tail(history.timestamps, self.history_length):
            self.timestamps.push(ts)

        for source, channels in history.exchanges.items():
            for channel, series in channels.items():
                feed = self.ensure_feed(FeedKey(source, channel))
                for value in _tail(series.msg_rates, self.history_length):
                    feed.msg_rates.push(value)
                for value in _tail(series.bytes_per_sec, self.history_length):
                    feed.bytes_per_sec.push(value)

        for event in _tail(history.signals, self.signal_history):
            self.record_signal(event)

    def reset(self) -> None:
        self.timestamps.clear()
        self.signals.clear()
        self._feeds.clear()
        self._current.clear()


def _tail(values: Tuple[Any, ...], n: int) -> Tuple[Any, ...]:
    return values[-n:] if len(values) > n else values
