"""HTTP server exposing the thermofridge API, health check and metrics."""

from __future__ import annotations

import logging
import queue
import threading
import time
from socketserver import ThreadingMixIn
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from werkzeug.exceptions import HTTPException, MethodNotAllowed, NotFound
from werkzeug.routing import Map, Rule
from werkzeug.wrappers import Request, Response

from . import handlers, metrics

log = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
IO_TIMEOUT = 5


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _RequestHandler(WSGIRequestHandler):
    timeout = IO_TIMEOUT

    def log_message(self, message_format: str, *args: Any) -> None:
        log.debug("%s - %s", self.address_string(), message_format % args)


def _expose_metrics(request: Request) -> Response:
    return Response(
        metrics.DEFAULT_REGISTRY.expose(), content_type="text/plain; version=0.0.4; charset=utf-8"
    )


class Server:
    """A WSGI application with the thermofridge routes and a server to run it."""

    def __init__(self, host: str, port: int, database: Any, pubsub: Any) -> None:
        self.host = host
        self.port = port
        self.database = database
        self.pubsub = pubsub
        self._httpd: _ThreadingWSGIServer | None = None
        self._closed = False
        self._lock = threading.Lock()

        routes = [
            ("/_healthz", "GET", handlers.health),
            ("/metrics", None, _expose_metrics),
            (f"{API_PREFIX}/target-state", "GET", handlers.get_target_state(database)),
            (f"{API_PREFIX}/target-state", "POST", handlers.update_target_state(database, pubsub)),
            (f"{API_PREFIX}/current-state", "GET", handlers.get_current_state(database)),
        ]
        self._handlers = [handler for _, _, handler in routes]
        self._url_map = Map(
            [
                Rule(path, endpoint=index, methods=None if method is None else [method])
                for index, (path, method, _) in enumerate(routes)
            ],
            strict_slashes=False,
            merge_slashes=False,
        )

    def _dispatch(self, request: Request) -> tuple[str | None, Response]:
        try:
            rule, _ = self._url_map.bind_to_environ(request.environ).match(return_rule=True)
        except MethodNotAllowed as exc:
            return None, Response(status=405, headers=[("Allow", ", ".join(exc.valid_methods or []))])
        except NotFound:
            return None, Response(
                "404 page not found\n", status=404, content_type="text/plain; charset=utf-8"
            )
        except HTTPException as exc:
            return None, exc.get_response(request.environ)
        return rule.rule, self._handlers[rule.endpoint](request)

    def wsgi_app(self, environ: dict[str, Any], start_response: Any) -> Any:
        request = Request(environ)
        start = time.perf_counter()
        pattern, response = self._dispatch(request)
        if request.path == API_PREFIX or request.path.startswith(API_PREFIX + "/"):
            route = pattern or f"{API_PREFIX}/*"
            metrics.add_request_handled(f"{request.method} {route}", response.status_code)
            metrics.observe_request_duration(time.perf_counter() - start)
        return response(environ, start_response)

    def __call__(self, environ: dict[str, Any], start_response: Any) -> Any:
        return self.wsgi_app(environ, start_response)

    def start(self, errors: queue.Queue[BaseException]) -> None:
        """Listen and serve until stopped; a failure is put on the errors queue."""
        with self._lock:
            if self._closed:
                return
            try:
                httpd = make_server(
                    self.host, self.port, self,
                    server_class=_ThreadingWSGIServer, handler_class=_RequestHandler,
                )
            except OSError as exc:
                errors.put(RuntimeError(f"Error listening and serving: {exc}"))
                return
            self._httpd = httpd
            self.port = httpd.server_address[1]

        log.info("Server is listening at %s:%d", self.host, self.port)
        try:
            httpd.serve_forever()
        except Exception as exc:
            errors.put(RuntimeError(f"Error listening and serving: {exc}"))
        finally:
            httpd.server_close()

    def stop(self, timeout: float | None = None) -> None:
        """Stop serving, waiting at most timeout seconds."""
        with self._lock:
            self._closed = True
            httpd = self._httpd
        if httpd is None:
            return
        worker = threading.Thread(target=httpd.shutdown, daemon=True)
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            raise RuntimeError("error shutting down http server: timed out")