import queue

import pytest

from thermofridge import metrics
from thermofridge.model import CurrentState, OperatingState
from thermofridge.processor import (
    CURRENT_STATE_TOPIC,
    Event,
    EventError,
    Processor,
    current_state_handler,
    metrics_middleware,
)


class RecordingUpdater:
    def __init__(self, fail=False):
        self.fail = fail
        self.states = []

    def update_current_state(self, state):
        if self.fail:
            raise RuntimeError("disk full")
        self.states.append(state)
        return state


class FakePubSub:
    def __init__(self, fail=False):
        self.fail = fail
        self.subscriptions = {}

    def subscribe(self, topic, handler):
        if self.fail:
            raise RuntimeError("broker gone")
        self.subscriptions[topic] = handler


VALID = b'{"operatingState":"COOLING","currentTemperature":4.5}'


def started(updater=None, pubsub=None):
    pubsub = pubsub or FakePubSub()
    updater = updater or RecordingUpdater()
    errors = queue.Queue()
    processor = Processor(pubsub, updater)
    processor.start(errors)
    return processor, pubsub, updater, errors


def test_processor_registers_current_state_event():
    processor = Processor(FakePubSub(), RecordingUpdater())
    assert [event.topic for event in processor.events] == [CURRENT_STATE_TOPIC]
    assert processor.middlewares == [metrics_middleware]


def test_start_subscribes_and_handler_updates_state():
    _, pubsub, updater, errors = started()
    pubsub.subscriptions[CURRENT_STATE_TOPIC](VALID)
    assert updater.states == [CurrentState(OperatingState.COOLING, 4.5)]
    assert errors.empty()


def test_successful_event_counted_as_ok():
    _, pubsub, _, _ = started()
    before = metrics.EVENTS_PROCESSED.get(CURRENT_STATE_TOPIC, "OK")
    durations = metrics.EVENTS_DURATION.count(CURRENT_STATE_TOPIC)
    pubsub.subscriptions[CURRENT_STATE_TOPIC](VALID)
    assert metrics.EVENTS_PROCESSED.get(CURRENT_STATE_TOPIC, "OK") == before + 1
    assert metrics.EVENTS_DURATION.count(CURRENT_STATE_TOPIC) == durations + 1


def test_failed_event_counted_as_err_and_reraised():
    _, pubsub, _, _ = started()
    before = metrics.EVENTS_PROCESSED.get(CURRENT_STATE_TOPIC, "ERR")
    with pytest.raises(EventError):
        pubsub.subscriptions[CURRENT_STATE_TOPIC](b"not json")
    assert metrics.EVENTS_PROCESSED.get(CURRENT_STATE_TOPIC, "ERR") == before + 1


def test_subscribe_failure_is_reported_on_queue():
    _, _, _, errors = started(pubsub=FakePubSub(fail=True))
    error = errors.get_nowait()
    assert isinstance(error, EventError)
    assert CURRENT_STATE_TOPIC in str(error)


def test_middlewares_wrap_in_order_and_event_stays_unchanged():
    calls = []

    def recorder(name):
        def middleware(topic, next_handler):
            def handle(payload):
                calls.append(name)
                next_handler(payload)
            return handle
        return middleware

    def handler(payload):
        calls.append("handler")

    pubsub = FakePubSub()
    processor = Processor(pubsub, RecordingUpdater())
    processor.use(recorder("first"), recorder("second"))
    processor.handle(Event("custom/topic", handler, [recorder("own")]))
    processor.start(queue.Queue())
    pubsub.subscriptions["custom/topic"](b"")
    assert calls == ["own", "second", "first", "handler"]
    assert processor.events[-1].handler is handler


@pytest.mark.parametrize(
    "payload",
    [b"not json", b"[]", b'{"currentTemperature":"warm"}', b'{"currentTemperature":NaN}'],
)
def test_handler_rejects_undecodable_payloads(payload):
    updater = RecordingUpdater()
    with pytest.raises(EventError, match="error unmarshalling current state"):
        current_state_handler(updater)(payload)
    assert updater.states == []


@pytest.mark.parametrize(
    "payload",
    [b'{"operatingState":"MELTING"}', b'{"currentTemperature":500}'],
)
def test_handler_rejects_invalid_states(payload):
    updater = RecordingUpdater()
    with pytest.raises(EventError, match="error validating current state"):
        current_state_handler(updater)(payload)
    assert updater.states == []


def test_handler_wraps_update_failure():
    with pytest.raises(EventError, match="error updating current state: disk full"):
        current_state_handler(RecordingUpdater(fail=True))(VALID)


def test_handler_accepts_null_payload_as_empty_state():
    updater = RecordingUpdater()
    current_state_handler(updater)(b"null")
    assert updater.states == [CurrentState()]


def test_metrics_middleware_passes_payload_through():
    received = []
    wrapped = metrics_middleware("custom/metrics", received.append)
    wrapped(b"payload")
    assert received == [b"payload"]
    assert metrics.EVENTS_PROCESSED.get("custom/metrics", "OK") >= 1