"""HTTP request handlers for the thermofridge API."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.wrappers import Request, Response

from .errors import NotFoundError
from .model import CurrentState, TargetState

log = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"

RequestHandler = Callable[[Request], Response]


class TargetStateFetcher(Protocol):
    def fetch_target_state(self) -> TargetState: ...


class TargetStateUpdater(Protocol):
    def update_target_state(self, state: TargetState) -> TargetState: ...


class TargetStatePublisher(Protocol):
    def publish_target_state(self, state: TargetState) -> None: ...


class CurrentStateFetcher(Protocol):
    def fetch_current_state(self) -> CurrentState: ...


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON number {name}")


_DECODER = json.JSONDecoder(parse_constant=_reject_constant)


def _decode_json(body: bytes) -> Any:
    """Decode the first JSON value of a request body."""
    text = body.decode("utf-8")
    value, _ = _DECODER.raw_decode(text.lstrip(" \t\r\n"))
    return value


def _plain_number(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def _json_response(payload: dict[str, Any], status_code: int = 200) -> Response:
    body = {key: _plain_number(value) for key, value in payload.items()}
    text = json.dumps(body, separators=(",", ":"), ensure_ascii=False) + "\n"
    return Response(text, status=status_code, content_type=JSON_CONTENT_TYPE)


def handle_error(handler_error: object, status_code: int, should_log: bool) -> Response:
    """Build a JSON error response; server errors only reveal their status."""
    if should_log:
        log.error("Handler error: %s", handler_error, extra={"status": status_code})

    message = str(handler_error)
    if status_code >= 500:
        message = f"{HTTP_STATUS_CODES.get(status_code, '')}: {status_code}"

    return _json_response({"error": message, "statusCode": status_code}, status_code)


def health(request: Request) -> Response:
    """Report that the server is up."""
    return _json_response({"status": HTTP_STATUS_CODES[200]})


def get_target_state(fetcher: TargetStateFetcher) -> RequestHandler:
    """Build a handler that returns the stored target state."""

    def handle(request: Request) -> Response:
        try:
            state = fetcher.fetch_target_state()
        except Exception as exc:
            return handle_error(f"error fetching target state: {exc}", 500, True)
        return _json_response(state.to_dict())

    return handle


def update_target_state(
    updater: TargetStateUpdater, publisher: TargetStatePublisher
) -> RequestHandler:
    """Build a handler that stores a requested target state and publishes the result."""

    def handle(request: Request) -> Response:
        try:
            data = _decode_json(request.get_data())
            state = TargetState() if data is None else TargetState.from_dict(data)
        except ValueError as exc:
            return handle_error(f"error decoding target state: {exc}", 400, False)

        try:
            state.validate()
        except ValueError as exc:
            return handle_error(f"error validating target state: {exc}", 400, False)

        try:
            updated = updater.update_target_state(state)
        except Exception as exc:
            return handle_error(f"error updating target state: {exc}", 500, True)

        try:
            publisher.publish_target_state(updated)
        except Exception as exc:
            return handle_error(f"error publishing target state: {exc}", 500, True)

        return _json_response(updated.to_dict())

    return handle


def get_current_state(fetcher: CurrentStateFetcher) -> RequestHandler:
    """Build a handler that returns the last reported current state."""

    def handle(request: Request) -> Response:
        try:
            state = fetcher.fetch_current_state()
        except NotFoundError as exc:
            return handle_error(f"current state not found: {exc}", 404, True)
        except Exception as exc:
            return handle_error(f"error fetching current state: {exc}", 500, True)
        return _json_response(state.to_dict())

    return handle