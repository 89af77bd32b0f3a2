"""Subscribes event handlers to PubSub topics and records event metrics."""

from __future__ import annotations

import json
import logging
import queue
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from . import metrics
from .model import CurrentState, ValidationError

log = logging.getLogger(__name__)

Handler = Callable[[bytes], None]
Middleware = Callable[[str, Handler], Handler]

CURRENT_STATE_TOPIC = "thermofridge/current-state"


class EventError(Exception):
    """An event could not be subscribed to or handled."""


class CurrentStateUpdater(Protocol):
    def update_current_state(self, state: CurrentState) -> CurrentState: ...


class Subscriber(Protocol):
    def subscribe(self, topic: str, handler: Handler) -> None: ...


@dataclass
class Event:
    """A topic with its handler and the middlewares specific to it."""

    topic: str
    handler: Handler
    middlewares: list[Middleware] = field(default_factory=list)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON number {name}")


def current_state_handler(updater: CurrentStateUpdater) -> Handler:
    """Build a handler that decodes, validates and stores a reported current state."""

    def handle(payload: bytes) -> None:
        try:
            data = json.loads(payload, parse_constant=_reject_constant)
            state = CurrentState() if data is None else CurrentState.from_dict(data)
        except ValueError as exc:
            raise EventError(f"error unmarshalling current state: {exc}") from exc

        try:
            state.validate()
        except ValidationError as exc:
            raise EventError(f"error validating current state: {exc}") from exc

        try:
            updater.update_current_state(state)
        except Exception as exc:
            raise EventError(f"error updating current state: {exc}") from exc

    return handle


def metrics_middleware(event_name: str, next_handler: Handler) -> Handler:
    """Count each handled event as OK or ERR and record how long it took."""

    def handle(payload: bytes) -> None:
        start = time.perf_counter()
        status = "ERR"
        try:
            next_handler(payload)
            status = "OK"
        finally:
            metrics.add_event_processed(event_name, status)
            metrics.observe_event_duration(event_name, time.perf_counter() - start)

    return handle


class Processor:
    """Routes PubSub events to their handlers."""

    def __init__(self, pubsub: Subscriber, database: CurrentStateUpdater) -> None:
        self.pubsub = pubsub
        self.database = database
        self.events: list[Event] = []
        self.middlewares: list[Middleware] = []
        self.subscribed_topics: list[str] = []
        self._setup_events()

    def _setup_events(self) -> None:
        self.use(metrics_middleware)
        self.handle(Event(CURRENT_STATE_TOPIC, current_state_handler(self.database)))

    def handle(self, event: Event) -> None:
        self.events.append(event)

    def use(self, *args: Middleware) -> None:
        self.middlewares.extend(args)

    def start(self, errors: queue.Queue[BaseException]) -> None:
        """Subscribe every event; a failure is put on the errors queue."""
        for event in self.events:
            handler = event.handler
            for middleware in (*self.middlewares, *event.middlewares):
                handler = middleware(event.topic, handler)
            try:
                self.pubsub.subscribe(event.topic, handler)
            except Exception as exc:
                errors.put(EventError(f"error subscribing to topic {event.topic}: {exc}"))
                return
            self.subscribed_topics.append(event.topic)

        log.info("PubSub event processor listening to %d events", len(self.events))

    def stop(self, timeout: float | None = None) -> None:
        """Forget the subscribed topics; the subscriptions end with the PubSub connection."""
        count = len(self.subscribed_topics)
        self.subscribed_topics.clear()
        log.debug("PubSub event processor stopped listening to %d events", count)