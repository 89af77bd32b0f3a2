import logging
import threading

import pytest

from thermofridge import app
from thermofridge.app import App, Clients, create_app, main, setup_clients, setup_services
from thermofridge.config import Config
from thermofridge.database import DatabaseError
from thermofridge.errors import MultipleError
from thermofridge.processor import Processor
from thermofridge.server import Server


class FakeClient:
    def __init__(self, error=None):
        self.closed = 0
        self.error = error

    def close(self):
        self.closed += 1
        if self.error is not None:
            raise self.error


class FakeService:
    def __init__(self, fail_with=None, stop_error=None):
        self.started = threading.Event()
        self.stop_timeouts = []
        self.fail_with = fail_with
        self.stop_error = stop_error

    def start(self, errors):
        self.started.set()
        if self.fail_with is not None:
            errors.put(self.fail_with)

    def stop(self, timeout=None):
        self.stop_timeouts.append(timeout)
        if self.stop_error is not None:
            raise self.stop_error


def test_clients_close_closes_both():
    database, pubsub = FakeClient(), FakeClient()
    Clients(database=database, pubsub=pubsub).close()
    assert (database.closed, pubsub.closed) == (1, 1)


def test_clients_close_reports_every_failure():
    database = FakeClient(RuntimeError("db stuck"))
    pubsub = FakeClient(RuntimeError("broker gone"))
    with pytest.raises(MultipleError) as info:
        Clients(database=database, pubsub=pubsub).close()
    assert len(info.value.errors) == 2
    assert "db stuck" in str(info.value)
    assert "broker gone" in str(info.value)
    assert (database.closed, pubsub.closed) == (1, 1)


def test_launch_stops_services_when_stop_requested():
    services = [FakeService(), FakeService()]
    clients = Clients(database=FakeClient(), pubsub=FakeClient())
    stop = threading.Event()
    stop.set()

    App(services, clients).launch(stop)

    for service in services:
        assert service.started.wait(5)
        assert len(service.stop_timeouts) == 1
        assert 0 <= service.stop_timeouts[0] <= app.SHUTDOWN_TIMEOUT
    assert clients.database.closed == 1
    assert clients.pubsub.closed == 1


def test_launch_shuts_down_on_critical_error():
    failing = FakeService(fail_with=RuntimeError("cannot listen"))
    healthy = FakeService()
    clients = Clients(database=FakeClient(), pubsub=FakeClient())

    App([failing, healthy], clients).launch(threading.Event())

    assert len(failing.stop_timeouts) == 1
    assert len(healthy.stop_timeouts) == 1
    assert clients.database.closed == 1


def test_launch_logs_shutdown_failures(caplog):
    caplog.set_level(logging.DEBUG)
    service = FakeService(stop_error=RuntimeError("stuck"))
    clients = Clients(database=FakeClient(RuntimeError("locked")), pubsub=FakeClient())
    stop = threading.Event()
    stop.set()

    App([service], clients).launch(stop)

    messages = [record.getMessage() for record in caplog.records]
    shutdown = [m for m in messages if m.startswith("Error gracefully shutting down")]
    assert len(shutdown) == 1
    assert "error stopping a service: stuck" in shutdown[0]
    assert "error closing app clients: locked" in shutdown[0]


def test_setup_services_builds_server_and_processor():
    config = Config(host="127.0.0.1", port=8081)
    clients = Clients(database=FakeClient(), pubsub=FakeClient())
    server, processor = setup_services(config, clients)
    assert isinstance(server, Server)
    assert (server.host, server.port) == ("127.0.0.1", 8081)
    assert isinstance(processor, Processor)
    assert processor.pubsub is clients.pubsub
    assert processor.database is clients.database


def test_setup_clients_reports_database_failure(tmp_path):
    config = Config(database_filename=str(tmp_path / "missing" / "db.json"))
    with pytest.raises(DatabaseError, match="error creating new database client"):
        setup_clients(config)


def test_create_app_reports_client_failure(tmp_path):
    config = Config(database_filename=str(tmp_path / "missing" / "db.json"))
    with pytest.raises(DatabaseError, match="^error setting up clients: error creating new database client"):
        create_app(config)


def test_main_fails_on_invalid_environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PORT", "not-a-port")
    assert main([]) == 1