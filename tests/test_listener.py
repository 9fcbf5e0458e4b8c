import sys
import threading

import pytest

from api.manager import Listener


class _FakeServer:
    """Stands in for uvicorn.Server: serves until should_exit is set."""

    def __init__(self, fail_bind=False, crash=None):
        self.fail_bind = fail_bind
        self.crash = crash
        self.started = False
        self.should_exit = False
        self.force_exit = False
        self.running = threading.Event()
        self._exit = threading.Event()

    def run(self):
        if self.fail_bind:
            sys.exit(1)
        if self.crash:
            raise self.crash
        self.started = True
        self.running.set()
        while not self.should_exit:
            self._exit.wait(0.01)


def _listener(server):
    calls = []

    def factory(app, host, port, log_level):
        calls.append((app, host, port, log_level))
        return server

    listener = Listener("app", host="127.0.0.1", port=9090, server_factory=factory)
    return listener, calls


def test_start_returns_immediately_and_stop_joins():
    server = _FakeServer()
    listener, calls = _listener(server)

    listener.start()
    assert server.running.wait(2)
    assert listener.is_running
    assert calls == [("app", "127.0.0.1", 9090, "info")]
    assert listener.status["started"] is True

    status = listener.stop(timeout=2)

    assert status["state"] == "stopped"
    assert server.should_exit is True
    assert not listener.is_running


def test_start_twice_rejected():
    listener, _ = _listener(_FakeServer())
    listener.start()
    try:
        with pytest.raises(RuntimeError):
            listener.start()
    finally:
        listener.stop(timeout=2)


def test_bind_failure_reported_as_error():
    listener, _ = _listener(_FakeServer(fail_bind=True))

    listener.start()
    listener._thread.join(2)

    assert listener.state == "error"
    assert "status 1" in listener.error
    assert listener.stop()["state"] == "error"


def test_crash_reported_as_error():
    listener, _ = _listener(_FakeServer(crash=OSError("address in use")))

    listener.start()
    listener._thread.join(2)

    assert listener.state == "error"
    assert listener.error == "address in use"


def test_stop_before_start_is_noop():
    listener, _ = _listener(_FakeServer())

    assert listener.stop()["state"] == "idle"


def test_default_factory_builds_uvicorn_server():
    import uvicorn

    listener = Listener(app=object(), host="127.0.0.1", port=8123, log_level="warning")
    server = listener._server_factory(listener.app, listener.host, listener.port, listener.log_level)

    assert isinstance(server, uvicorn.Server)
    assert server.config.port == 8123
    assert server.config.host == "127.0.0.1"
