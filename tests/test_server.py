import json
import queue
import socket
import threading
import time
import urllib.request

import pytest
from werkzeug.test import Client

from thermofridge import metrics
from thermofridge.database import Database
from thermofridge.model import Mode, TargetState
from thermofridge.server import Server


class RecordingPubSub:
    def __init__(self):
        self.published = []

    def publish_target_state(self, state):
        self.published.append(state)


@pytest.fixture
def database(tmp_path):
    with Database(tmp_path / "db.json", {"mode": "OFF", "targetTemperature": "20"}) as db:
        yield db


@pytest.fixture
def pubsub():
    return RecordingPubSub()


@pytest.fixture
def server(database, pubsub):
    return Server("127.0.0.1", 0, database, pubsub)


@pytest.fixture
def client(server):
    return Client(server)


def _json(response):
    return json.loads(response.get_data(as_text=True))


def test_health_route(client):
    response = client.get("/_healthz")
    assert response.status_code == 200
    assert _json(response) == {"status": "OK"}


def test_get_target_state_route(client):
    response = client.get("/api/v1/target-state")
    assert response.status_code == 200
    assert _json(response) == {"mode": "OFF", "targetTemperature": 20}


def test_post_target_state_route(client, database, pubsub):
    response = client.post(
        "/api/v1/target-state",
        data=b'{"mode": "AUTO", "targetTemperature": 18}',
        content_type="application/json",
    )
    assert response.status_code == 200
    assert _json(response) == {"mode": "AUTO", "targetTemperature": 18}
    assert pubsub.published == [TargetState(Mode.AUTO, 18)]
    assert database.fetch_target_state() == TargetState(Mode.AUTO, 18)


def test_current_state_route_not_found_before_report(client):
    response = client.get("/api/v1/current-state")
    assert response.status_code == 404
    assert _json(response)["statusCode"] == 404


def test_unknown_path(client):
    response = client.get("/nowhere")
    assert response.status_code == 404
    assert response.get_data() == b"404 page not found\n"


def test_wrong_method(client):
    response = client.delete("/api/v1/target-state")
    assert response.status_code == 405
    allowed = {method.strip() for method in response.headers["Allow"].split(",")}
    assert {"GET", "POST"} <= allowed


def test_api_requests_are_counted(client):
    before = metrics.REQUESTS_HANDLED.get("GET /api/v1/target-state", "200")
    durations = metrics.REQUESTS_DURATION.count()
    client.get("/api/v1/target-state")
    assert metrics.REQUESTS_HANDLED.get("GET /api/v1/target-state", "200") == before + 1
    assert metrics.REQUESTS_DURATION.count() == durations + 1


def test_failed_api_requests_are_counted_with_status(client):
    before = metrics.REQUESTS_HANDLED.get("POST /api/v1/target-state", "400")
    client.post("/api/v1/target-state", data=b"{", content_type="application/json")
    assert metrics.REQUESTS_HANDLED.get("POST /api/v1/target-state", "400") == before + 1


def test_health_requests_are_not_counted(client):
    before = metrics.REQUESTS_HANDLED.get("GET /_healthz", "200")
    client.get("/_healthz")
    assert metrics.REQUESTS_HANDLED.get("GET /_healthz", "200") == before


def test_metrics_route_exposes_default_registry(client):
    probe = metrics.Gauge("server_test_probe", "Probe gauge")
    metrics.DEFAULT_REGISTRY.register(probe)
    probe.set(7)
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["Content-Type"].startswith("text/plain")
    assert "server_test_probe 7\n" in response.get_data(as_text=True)


def test_serves_over_network_until_stopped(server):
    errors = queue.Queue()
    thread = threading.Thread(target=server.start, args=(errors,), daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    while server.port == 0 and time.monotonic() < deadline:
        time.sleep(0.01)

    with urllib.request.urlopen(f"http://127.0.0.1:{server.port}/_healthz", timeout=5) as resp:
        body = json.loads(resp.read())

    server.stop(5)
    thread.join(5)
    assert body == {"status": "OK"}
    assert not thread.is_alive()
    assert errors.empty()


def test_stop_before_start_prevents_serving(server):
    server.stop(1)
    errors = queue.Queue()
    server.start(errors)
    assert errors.empty()
    assert server.port == 0


def test_start_reports_address_in_use(database, pubsub):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        port = blocker.getsockname()[1]
        server = Server("127.0.0.1", port, database, pubsub)
        errors = queue.Queue()
        server.start(errors)
        error = errors.get_nowait()
    assert "Error listening and serving" in str(error)