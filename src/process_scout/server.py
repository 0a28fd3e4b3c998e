"""HTTP exposition endpoint.

Every ``GET /metrics`` runs a full collection pass synchronously and renders
the result; there is no caching between requests. Content negotiation
(OpenMetrics, gzip) is handled by ``prometheus_client.make_wsgi_app``.
"""

import signal
import socket
import threading
from collections.abc import Callable, Iterable
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

import structlog
from prometheus_client import make_wsgi_app
from prometheus_client.exposition import ThreadingWSGIServer

from process_scout.collector import ProcessCollector

log = structlog.get_logger()

METRICS_PATH = "/metrics"

_TEXT_PLAIN = ("Content-Type", "text/plain; charset=utf-8")


class _ThreadingWSGIServerV6(ThreadingWSGIServer):
    address_family = socket.AF_INET6


class _QuietHandler(WSGIRequestHandler):
    """Route wsgiref's access log through structlog instead of stderr."""

    def log_message(self, format: str, *args: object) -> None:
        log.debug("http_request", client=self.client_address[0], request=format % args)


def make_app(collector: ProcessCollector) -> Callable:
    """Build the WSGI application serving ``/metrics`` from the collector's registry."""
    metrics_app = make_wsgi_app(collector.registry)

    def app(environ: dict, start_response: Callable) -> Iterable[bytes]:
        if environ.get("PATH_INFO", "") != METRICS_PATH:
            start_response("404 Not Found", [_TEXT_PLAIN])
            return [b"Not Found\n"]

        if environ.get("REQUEST_METHOD") != "HEAD":
            return metrics_app(environ, start_response)

        # make_wsgi_app only answers GET; render as GET and drop the body
        response: dict = {}

        def capture(status: str, headers: list, exc_info: object = None) -> None:
            response["status"] = status
            response["headers"] = headers

        body = b"".join(metrics_app({**environ, "REQUEST_METHOD": "GET"}, capture))
        start_response(
            response["status"], [*response["headers"], ("Content-Length", str(len(body)))]
        )
        return [b""]

    return app


class MetricsServer:
    """Threaded HTTP server for the exporter.

    ``start()`` binds the socket (raising OSError if the address is taken)
    and serves from a daemon thread. ``wait()`` blocks until SIGINT/SIGTERM
    or ``stop()``.
    """

    def __init__(self, collector: ProcessCollector, host: str, port: int):
        self.collector = collector
        self.host = host
        self.port = port
        self._httpd: WSGIServer | None = None
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self.stop_signal: signal.Signals | None = None

    @property
    def is_running(self) -> bool:
        """Check if the serving thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def url(self) -> str:
        """URL of the metrics endpoint."""
        host = self.host or "0.0.0.0"
        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{self.port}{METRICS_PATH}"

    def start(self) -> None:
        """Bind and start serving in a background thread."""
        if self.is_running:
            return

        server_class = _ThreadingWSGIServerV6 if ":" in self.host else ThreadingWSGIServer
        self._httpd = make_server(
            self.host,
            self.port,
            make_app(self.collector),
            server_class=server_class,
            handler_class=_QuietHandler,
        )
        # Port 0 binds an ephemeral port
        self.port = self._httpd.server_port
        self._shutdown_event.clear()
        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            daemon=True,
            name="MetricsServer",
        )
        self._thread.start()
        log.info("server_started", url=self.url)

    def install_signal_handlers(self) -> None:
        """Stop waiting on SIGINT/SIGTERM. Must be called from the main thread."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum: int, frame: object) -> None:
        """Handle shutdown signals."""
        self.stop_signal = signal.Signals(signum)
        log.info("signal_received", signal=self.stop_signal.name)
        self._shutdown_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a shutdown is requested. Returns True if it was."""
        return self._shutdown_event.wait(timeout)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop serving and close the socket."""
        self._shutdown_event.set()
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        log.info("server_stopped")
