"""Wires the clients and services together and runs them until shutdown."""

from __future__ import annotations

import argparse
import logging
import queue
import signal
import sys
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .config import Config, ConfigError, load_config
from .database import MODE_KEY, TARGET_TEMPERATURE_KEY, Database, DatabaseError
from .errors import MultipleError
from .logsetup import init_logging
from .metrics import register_collectors
from .processor import Processor
from .pubsub import PubSub, PubSubError
from .server import Server

log = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 5.0
_POLL_INTERVAL = 0.1


@dataclass
class Clients:
    """The storage and messaging clients shared by the services."""

    database: Any
    pubsub: Any

    def close(self) -> None:
        """Close every client, raising MultipleError if any of them failed."""
        failures: list[BaseException] = []
        for client in (self.pubsub, self.database):
            try:
                client.close()
            except Exception as exc:
                failures.append(exc)
        if failures:
            raise MultipleError(failures)


def setup_clients(config: Config) -> Clients:
    """Open the database and connect to the broker."""
    defaults = {
        MODE_KEY: config.default_mode,
        TARGET_TEMPERATURE_KEY: str(config.default_target_temperature),
    }
    try:
        database = Database(config.database_filename, defaults)
    except DatabaseError as exc:
        raise DatabaseError(f"error creating new database client: {exc}") from exc

    pubsub = PubSub(config.pubsub_host, config.pubsub_port, config.pubsub_client_id, config.pubsub_qos)
    try:
        pubsub.connect()
    except PubSubError as exc:
        database.close()
        raise PubSubError(f"error creating new pubsub client: {exc}") from exc
    return Clients(database=database, pubsub=pubsub)


def setup_services(config: Config, clients: Clients) -> list[Any]:
    """Create the HTTP server and the PubSub event processor."""
    return [
        Server(config.host, config.port, clients.database, clients.pubsub),
        Processor(clients.pubsub, clients.database),
    ]


class App:
    """Runs services until interrupted or until one of them fails."""

    def __init__(self, services: Sequence[Any], clients: Clients) -> None:
        self.services = list(services)
        self.clients = clients

    def launch(self, stop_event: threading.Event | None = None) -> None:
        """Start every service, wait for a stop request or a critical error, then shut down."""
        stop = threading.Event() if stop_event is None else stop_event
        errors: queue.Queue[BaseException] = queue.Queue()

        previous = {}
        if threading.current_thread() is threading.main_thread():
            for sig in (signal.SIGINT, signal.SIGTERM):
                previous[sig] = signal.signal(sig, lambda signum, frame: stop.set())
        try:
            for service in self.services:
                threading.Thread(target=service.start, args=(errors,), daemon=True).start()
            while not stop.is_set():
                try:
                    error = errors.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                log.error("Critical service error: %s", error)
                break
            else:
                log.debug("Stop requested")
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, signal.SIG_DFL if handler is None else handler)

        self._shutdown()

    def _shutdown(self) -> None:
        failures: list[BaseException] = []
        deadline = time.monotonic() + SHUTDOWN_TIMEOUT
        for service in self.services:
            try:
                service.stop(max(0.0, deadline - time.monotonic()))
            except Exception as exc:
                failures.append(RuntimeError(f"error stopping a service: {exc}"))
        try:
            self.clients.close()
        except Exception as exc:
            failures.append(RuntimeError(f"error closing app clients: {exc}"))

        if failures:
            log.error("Error gracefully shutting down: %s", MultipleError(failures))
        else:
            log.debug("App has been gracefully shut down")


def create_app(config: Config) -> App:
    """Set up clients and services from the configuration."""
    try:
        clients = setup_clients(config)
    except (DatabaseError, PubSubError) as exc:
        raise type(exc)(f"error setting up clients: {exc}") from exc
    return App(setup_services(config, clients), clients)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the thermofridge API until interrupted; returns the exit status."""
    argparse.ArgumentParser(
        prog="thermofridge", description="Thermofridge HTTP API and PubSub event processor."
    ).parse_args(argv)

    try:
        config = load_config()
    except ConfigError as exc:
        log.error("Error loading env config: %s", exc)
        return 1

    init_logging(config.log_level, config.log_format)

    try:
        register_collectors()
    except ValueError as exc:
        log.error("Error initializing metrics: %s", exc)

    try:
        app = create_app(config)
    except (DatabaseError, PubSubError) as exc:
        log.error("Error creating app: %s", exc)
        return 1

    app.launch()
    return 0


if __name__ == "__main__":
    sys.exit(main())