import json
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from ratehub.app import create_app
from ratehub.config import Settings, build_hub
from ratehub.streaming import REJECT_CODE, REJECT_REASON


WS_PATH = "/ws/metrics"
T_MS = 1714564800000


def report(exchange="X", channel="trade", **fields):
    return {"exchange": exchange, "channel": channel, "timestamp": T_MS, **fields}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        ws_path=WS_PATH,
        mode="push",
        data_file=str(tmp_path / "history.json"),
        log_dir=str(tmp_path / "logs"),
        save_interval=0,
        status_interval=0,
        heartbeat_interval=60,
        max_subscribers=3,
    )


@pytest.fixture
def hub(settings):
    return build_hub(settings)


@pytest.fixture
def client(hub):
    with TestClient(create_app(hub)) as c:
        yield c


def trade_rates(frame, exchange="X"):
    return frame["history"]["exchanges"][exchange]["trade"]["msgRates"]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "ratehub", "mode": "push", "subscribers": 0}


def test_http_ingest_accepts_and_drops(client, hub):
    resp = client.post("/ingest", json={"reports": [report(msg_sec=12), {"channel": "trade"}, "junk"]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["accepted"] == 1
    assert body["dropped"] == 2
    assert len(body["errors"]) == 2
    assert hub.stats["reports_dropped"] == 2

    snapshot = client.get("/snapshot").json()
    assert trade_rates(snapshot) == [12]
    assert snapshot["current"]["exchanges"]["X"]["trade"]["msg_rate"] == 12

    log_lines = hub.persistence.sample_log.path.read_text().splitlines()
    assert len(log_lines) == 1
    assert json.loads(log_lines[0])["msg_sec"] == 12


def test_report_over_websocket_reaches_viewers(client):
    with client.websocket_connect(WS_PATH) as viewer:
        initial = viewer.receive_json()
        assert initial["history"]["timestamps"] == []

        with client.websocket_connect(WS_PATH) as producer:
            producer.receive_json()
            producer.send_text("{not json")
            producer.send_text(json.dumps(report(msg_sec=100, bytes_sec=4096)))

            update = viewer.receive_json()
            assert trade_rates(update)[-1] == 100
            assert update["history"]["exchanges"]["X"]["trade"]["bytesPerSec"][-1] == 4096
            assert update["current"]["exchanges"]["X"]["trade"]["msg_rate"] == 100

            # the bad frame did not end the producer's session
            producer.send_text(json.dumps({"type": "pong"}))
            producer.send_text(json.dumps(report(msg_sec=50)))
            assert trade_rates(viewer.receive_json())[-1] == 50

    with client.websocket_connect(WS_PATH) as late:
        assert trade_rates(late.receive_json()) == [100, 50]


def test_signal_report_appears_in_history(client):
    with client.websocket_connect(WS_PATH) as ws:
        ws.receive_json()
        ws.send_text(json.dumps(report(msg_sec=1, signal_type="SIGTERM", status="stopped")))
        frame = ws.receive_json()

    assert frame["history"]["signals"] == [
        {"time": "2024-05-01T12:00:00.000Z", "type": "SIGTERM", "exchange": "X", "channel": "trade"}
    ]
    assert frame["current"]["exchanges"]["X"]["trade"]["status"] == "stopped"


def test_connection_over_limit_is_rejected(tmp_path, settings):
    settings.max_subscribers = 1
    hub = build_hub(settings)

    with TestClient(create_app(hub)) as client:
        with client.websocket_connect(WS_PATH) as first:
            first.receive_json()

            with pytest.raises(WebSocketDisconnect) as exc:
                with client.websocket_connect(WS_PATH) as second:
                    second.receive_json()

            assert exc.value.code == REJECT_CODE
            assert exc.value.reason == REJECT_REASON
            assert hub.broadcaster.rejected_total == 1

        assert client.get("/stats").json()["subscribers"]["rejected_total"] == 1


def test_stats(client):
    client.post("/ingest", json={"reports": [report(msg_sec=3)]})
    stats = client.get("/stats").json()

    assert stats["mode"] == "push"
    assert stats["reports"]["total"] == 1
    assert stats["store"]["feeds"] == 2  # trade plus the seeded inc channel
    assert stats["store"]["points"] == 1
    assert stats["persistence"]["log_size_bytes"] > 0


def test_persist_endpoint_writes_history(client, hub):
    client.post("/ingest", json={"reports": [report(msg_sec=7)]})
    resp = client.post("/persist")

    assert resp.json()["saved"] is True
    data = json.loads(hub.persistence.data_file.read_text())
    assert data["exchanges"]["X"]["trade"]["msgRates"] == [7]


def test_shutdown_saves_history(hub):
    with TestClient(create_app(hub)) as client:
        client.post("/ingest", json={"reports": [report(msg_sec=9)]})

    data = json.loads(hub.persistence.data_file.read_text())
    assert data["exchanges"]["X"]["trade"]["msgRates"] == [9]


def test_startup_hydrates_saved_history(settings):
    with open(settings.data_file, "w") as f:
        json.dump({
            "timestamps": ["2024-05-01T11:59:45.000Z"],
            "exchanges": {"Y": {"trade": {"msgRates": [42], "bytesPerSec": [420]}}},
            "signals": [],
        }, f)

    with TestClient(create_app(build_hub(settings))) as client:
        snapshot = client.get("/snapshot").json()

    assert trade_rates(snapshot, exchange="Y") == [42]
    assert snapshot["history"]["timestamps"] == ["2024-05-01T11:59:45.000Z"]


def test_pull_mode_waits_for_tick(settings):
    settings.mode = "pull"
    settings.tick_interval = 0
    hub = build_hub(settings)

    with TestClient(create_app(hub)) as client:
        client.post("/ingest", json={"reports": [report(msg_count=10), report(msg_count=5)]})
        assert client.get("/snapshot").json()["history"]["timestamps"] == []
        assert hub.aggregator.pending_feeds() == 1

        hub.aggregator.flush()
        snapshot = client.get("/snapshot").json()

    assert len(snapshot["history"]["timestamps"]) == 1
    assert len(trade_rates(snapshot)) == 1


def test_silent_viewer_stays_open_across_heartbeats(settings):
    settings.heartbeat_interval = 0.05
    hub = build_hub(settings)

    with TestClient(create_app(hub)) as client:
        with client.websocket_connect(WS_PATH) as viewer:
            viewer.receive_json()
            time.sleep(0.4)  # several heartbeat intervals without a word

            client.post("/ingest", json={"reports": [report(msg_sec=5)]})
            frame = viewer.receive_json()

            assert trade_rates(frame) == [5]
            assert hub.broadcaster.open_count == 1


def test_talking_peer_gets_probe_frames(settings):
    settings.heartbeat_interval = 0.05
    settings.max_missed_probes = 0
    hub = build_hub(settings)

    with TestClient(create_app(hub)) as client:
        with client.websocket_connect(WS_PATH) as producer:
            producer.receive_json()
            producer.send_text(json.dumps({"type": "pong"}))
            assert producer.receive_json() == {"type": "ping"}
