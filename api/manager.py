"""
reef-pi - Listener Manager
===========================
Runs the HTTP listener for the bound application.

The uvicorn server runs in a separate daemon thread so the main thread
stays free to wait for the interrupt signal. uvicorn only installs its own
signal handlers on the main thread, so SIGINT always reaches the supervisor.

States:
    - "idle"     : Not started
    - "running"  : Thread launched, uvicorn serving (or starting up)
    - "stopping" : Exit requested, waiting for in-flight requests
    - "stopped"  : Thread exited after a stop request
    - "error"    : uvicorn exited on its own (e.g. port already bound)

A listener error is reported through the log and the status dict only; the
supervisor keeps waiting for the interrupt and the controller keeps running.

Usage:
    listener = Listener(app, host="0.0.0.0", port=8080)
    listener.start()   # Returns immediately
    listener.stop()    # Ask uvicorn to exit and join the thread
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable

import uvicorn

logger = logging.getLogger(__name__)


def _uvicorn_server(app: Any, host: str, port: int, log_level: str) -> uvicorn.Server:
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level)
    return uvicorn.Server(config)


class Listener:
    """
    Controls the network listener lifecycle.

    Attributes:
        app:        ASGI application returned by setup_server().
        host, port: Bind address.
        state:      Current state string.
        error:      Description of the failure when state is "error".
        start_time: When the listener was started.
    """

    def __init__(
        self,
        app: Any,
        host: str = "0.0.0.0",
        port: int = 8080,
        log_level: str = "info",
        server_factory: Callable[..., Any] = _uvicorn_server,
    ):
        self.app = app
        self.host = host
        self.port = port
        self.log_level = log_level
        self.state: str = "idle"
        self.error: str | None = None
        self.start_time: str | None = None

        self._server_factory = server_factory
        self._server: Any = None
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def status(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "address": f"{self.host}:{self.port}",
            "started": bool(getattr(self._server, "started", False)),
            "start_time": self.start_time,
            "error": self.error,
        }

    def start(self) -> None:
        """
        Launch the server thread and return immediately.

        Raises:
            RuntimeError: The listener was already started.
        """
        if self._thread is not None:
            raise RuntimeError("Listener already started")

        self._server = self._server_factory(self.app, self.host, self.port, self.log_level)
        self.state = "running"
        self.start_time = datetime.now(timezone.utc).isoformat()

        self._thread = threading.Thread(
            target=self._serve,
            daemon=True,
            name="reef-pi-listener",
        )
        self._thread.start()
        logger.info("Starting http server at: %s:%d", self.host, self.port)

    def _serve(self) -> None:
        """Thread target: run uvicorn until it exits."""
        try:
            self._server.run()
        except SystemExit as e:
            # uvicorn calls sys.exit() when it cannot bind the socket
            self._fail(f"server exited with status {e.code}")
            return
        except Exception as e:
            self._fail(str(e))
            return

        if self.state == "stopping":
            self.state = "stopped"
        elif not getattr(self._server, "started", False):
            self._fail("server failed to start")
        else:
            self._fail("server exited unexpectedly")

    def _fail(self, reason: str) -> None:
        self.state = "error"
        self.error = reason
        logger.error("HTTP listener on %s:%d stopped: %s", self.host, self.port, reason)

    def stop(self, timeout: float = 10.0) -> dict[str, Any]:
        """
        Ask uvicorn to exit and wait for the thread.

        uvicorn stops accepting connections first, then finishes in-flight
        requests. After the timeout it is forced to exit.

        Returns:
            Current status dict.
        """
        if self._thread is None:
            return self.status

        if self._thread.is_alive():
            self.state = "stopping"
            self._server.should_exit = True
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Listener did not stop within %.1fs, forcing exit", timeout)
                self._server.force_exit = True
                self._thread.join(timeout)

        if self.state == "stopping":
            self.state = "stopped"
        logger.info("HTTP listener stopped")
        return self.status
