"""
HTTP and WebSocket surface tests.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import record
from livefeed.main import create_app
from livefeed.routes_feed import QUEUE_SIZE, ConnectionManager, manager
from livefeed.services.feed_engine import NO_DATA_MESSAGE, FeedEngine


@pytest.fixture
def engine(stream_config, scheduler, stream_factory):
    return FeedEngine(stream_config, scheduler=scheduler, transport_factory=stream_factory)


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine=engine)) as test_client:
        yield test_client


class TestFeedRoutes:
    """Test the read-only feed endpoints."""

    def test_lifespan_starts_and_stops_engine(self, engine, stream_factory):
        app = create_app(engine=engine)
        with TestClient(app):
            assert app.state.feed_engine is engine
            assert len(stream_factory.created) == 1
        assert app.state.feed_engine is None
        assert engine.channel_state.value == "closed"

    def test_snapshot(self, client, stream_factory):
        stream_factory.latest.accept()
        stream_factory.latest.push({"data": [record(1, 100, tradingsymbol="NIFTY24JANFUT")]})

        response = client.get("/feed/snapshot")

        assert response.status_code == 200
        body = response.json()
        assert body["error"] == ""
        assert body["records"][0]["token"] == 1
        assert body["records"][0]["symbol"] == "NIFTY24JANFUT"
        assert body["records"][0]["last_price"] == 100

    def test_snapshot_no_data(self, client, stream_factory):
        stream_factory.latest.accept()
        stream_factory.latest.push(404)

        body = client.get("/feed/snapshot").json()
        assert body["records"] == []
        assert body["error"] == NO_DATA_MESSAGE

    def test_tokens(self, client, stream_factory):
        stream_factory.latest.accept()
        stream_factory.latest.push([record("B", 1), record("A", 2)])

        assert client.get("/feed/tokens").json() == {"tokens": ["B", "A"]}

    def test_health(self, client, stream_factory):
        stream_factory.latest.accept()
        stream_factory.latest.push([record(1, 1)])

        health = client.get("/feed/health").json()

        assert health["state"] == "live"
        assert health["mode"] == "stream"
        assert health["messages"] == 1
        assert health["snapshot_sequence"] == 2  # live restamp, then data
        assert health["dashboards"] == 0

    def test_metrics(self, client, stream_factory):
        stream_factory.latest.accept()
        stream_factory.latest.push([record(1, 1)])

        response = client.get("/ops/metrics")

        assert response.status_code == 200
        assert "feed_snapshots 2" in response.text
        assert "feed_connect_attempts" in response.text

    def test_no_engine_is_unavailable(self):
        app = create_app()
        test_client = TestClient(app)  # lifespan not entered

        response = test_client.get("/feed/snapshot")

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "ENGINE_STATE"


class TestFeedSocket:
    """Test the dashboard WebSocket."""

    def test_initial_snapshot(self, client, stream_factory):
        stream_factory.latest.accept()
        stream_factory.latest.push([record(1, 100)])

        with client.websocket_connect("/ws/feed") as ws:
            payload = ws.receive_json()

        assert payload["records"][0]["token"] == 1
        assert payload["sequence"] == 2
        assert manager.connection_count == 0

    def test_no_engine_closes(self):
        test_client = TestClient(create_app())

        with pytest.raises(WebSocketDisconnect) as exc:
            with test_client.websocket_connect("/ws/feed") as ws:
                ws.receive_json()
        assert exc.value.code == 1013


class TestConnectionManager:
    """Test snapshot fan-out queues."""

    def test_publish_drops_oldest_when_full(self, engine):
        fanout = ConnectionManager()
        queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        fanout.active_connections[object()] = queue

        for _ in range(QUEUE_SIZE + 3):
            fanout.publish(engine.snapshot)

        assert queue.qsize() == QUEUE_SIZE
