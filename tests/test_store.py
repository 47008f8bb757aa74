import json

from ratehub.models import FeedStatus, SignalEvent
from ratehub.store import FeedKey, TimeSeriesStore


def ts(i):
    return f"2024-05-01T12:00:{i:02d}.000Z"


def signal(i, kind="SIGINT"):
    return SignalEvent(time=ts(i), type=kind, exchange="X", channel="trade")


def test_first_sample_seeds_conventional_channels():
    store = TimeSeriesStore(history_length=4)
    store.record_sample(FeedKey("X", "book"), ts(0), 10, 100)

    assert set(store.feeds()) == {FeedKey("X", "trade"), FeedKey("X", "inc"), FeedKey("X", "book")}
    assert store.series(FeedKey("X", "book")).msg_rates.to_list() == [10]
    assert store.series(FeedKey("X", "trade")).msg_rates.to_list() == []
    assert store.timestamps.to_list() == [ts(0)]


def test_series_are_bounded_by_history_length():
    store = TimeSeriesStore(history_length=3)
    key = FeedKey("X", "trade")
    for i in range(10):
        store.record_sample(key, ts(i), i, i * 10)

    assert store.timestamps.to_list() == [ts(7), ts(8), ts(9)]
    assert store.series(key).msg_rates.to_list() == [7, 8, 9]
    assert store.series(key).bytes_per_sec.to_list() == [70, 80, 90]


def test_record_tick_keeps_every_feed_aligned():
    store = TimeSeriesStore(history_length=5)
    a, b = FeedKey("X", "trade"), FeedKey("Y", "trade")
    store.record_tick(ts(0), {a: (5, 50)})
    store.record_tick(ts(1), {a: (6, 60), b: (1, 10)})
    store.record_tick(ts(2), {b: (2, 20)})

    assert len(store.timestamps) == 3
    assert store.series(a).msg_rates.to_list() == [5, 6, 0]
    # b appeared at the second tick; aligned from the newest end
    assert store.series(b).msg_rates.to_list() == [1, 2]
    assert store.series(FeedKey("X", "inc")).msg_rates.to_list() == [0, 0, 0]


def test_signal_ring_keeps_last_five():
    store = TimeSeriesStore()
    for i in range(8):
        assert store.record_signal(signal(i))

    assert [s.time for s in store.signals] == [ts(i) for i in range(3, 8)]


def test_periodic_signal_is_not_stored():
    store = TimeSeriesStore()
    assert not store.record_signal(signal(0, kind="periodic"))
    assert len(store.signals) == 0


def test_snapshot_is_independent_of_later_mutation():
    store = TimeSeriesStore(history_length=3)
    key = FeedKey("X", "trade")
    store.record_sample(key, ts(0), 1, 10)
    store.set_current(key, FeedStatus(msg_rate=1, bytes_per_sec=10, timestamp=ts(0)))

    snap = store.snapshot()
    before = snap.to_json()

    for i in range(1, 6):
        store.record_sample(key, ts(i), i + 1, 10)
    store.set_current(key, FeedStatus(msg_rate=99))
    store.record_signal(signal(5))

    assert snap.to_json() == before
    assert snap.history.exchanges["X"]["trade"].msg_rates == (1,)
    assert snap.current.exchanges["X"]["trade"].msg_rate == 1


def test_snapshot_wire_shape():
    store = TimeSeriesStore()
    key = FeedKey("X", "trade")
    store.record_sample(key, ts(0), 100, 2048)
    store.set_current(key, FeedStatus(msg_rate=100, bytes_per_sec=2048, timestamp=ts(0)))
    store.record_signal(signal(0))

    data = json.loads(store.snapshot().to_json())
    assert data["history"]["timestamps"] == [ts(0)]
    assert data["history"]["exchanges"]["X"]["trade"] == {"msgRates": [100], "bytesPerSec": [2048]}
    assert data["history"]["signals"] == [
        {"time": ts(0), "type": "SIGINT", "exchange": "X", "channel": "trade"}
    ]
    assert data["current"]["exchanges"]["X"]["trade"] == {
        "msg_rate": 100,
        "bytes_per_sec": 2048,
        "status": "running",
        "signal_type": "periodic",
        "timestamp": ts(0),
    }


def test_hydrate_truncates_to_current_capacity():
    store = TimeSeriesStore(history_length=3, signal_history=5)
    store.hydrate({
        "timestamps": [ts(i) for i in range(6)],
        "exchanges": {"X": {"trade": {"msgRates": [1, 2, 3, 4, 5, 6], "bytesPerSec": [6, 5, 4, 3, 2, 1]}}},
        "signals": [signal(i).model_dump() for i in range(7)],
    })

    assert store.timestamps.to_list() == [ts(3), ts(4), ts(5)]
    feed = store.series(FeedKey("X", "trade"))
    assert feed.msg_rates.to_list() == [4, 5, 6]
    assert feed.bytes_per_sec.to_list() == [3, 2, 1]
    assert [s.time for s in store.signals] == [ts(i) for i in range(2, 7)]


def test_hydrate_accepts_arbitrary_channels():
    store = TimeSeriesStore()
    store.hydrate({"exchanges": {"X": {"depth": {"msgRates": [3], "bytesPerSec": [30]}}}})
    assert store.series(FeedKey("X", "depth")).msg_rates.to_list() == [3]


def test_history_round_trip():
    original = TimeSeriesStore(history_length=4)
    for i in range(6):
        original.record_sample(FeedKey("X", "trade"), ts(i), i, i * 2)
        original.record_sample(FeedKey("Y", "inc"), ts(i), i * 3, i * 4)
    original.record_signal(signal(1))

    restored = TimeSeriesStore(history_length=4)
    restored.hydrate(json.loads(original.history().to_json()))

    assert restored.history() == original.history()


def test_record_tick_can_hold_last_value():
    store = TimeSeriesStore(history_length=5)
    a, b = FeedKey("X", "trade"), FeedKey("Y", "trade")
    store.record_tick(ts(0), {a: (5, 50)}, hold_last=True)
    store.record_tick(ts(1), {b: (1, 10)}, hold_last=True)
    store.record_tick(ts(2), {a: (7, 70)}, hold_last=True)

    assert store.series(a).msg_rates.to_list() == [5, 5, 7]
    assert store.series(a).bytes_per_sec.to_list() == [50, 50, 70]
    assert store.series(b).msg_rates.to_list() == [1, 1]
