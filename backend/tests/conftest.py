"""Shared pytest fixtures for all tests."""

import logging
import os
import socket
import tempfile
import threading
from datetime import UTC, datetime, timedelta
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from clock import Clock, TimerHandle
from config import reload_settings


class FakeClock(Clock):
    """Manually advanced clock. Due timers fire on the thread calling advance()."""

    def __init__(self, start: float = 1000.0):
        self._now = start
        self._lock = threading.RLock()
        self._timers = []
        self._seq = 0

    def monotonic(self) -> float:
        return self._now

    def now(self) -> datetime:
        return datetime(2024, 1, 1, tzinfo=UTC) + timedelta(seconds=self._now)

    def sleep(self, seconds: float) -> None:
        self.advance(seconds)

    def call_later(self, delay, callback, name="timer"):
        return self._add(delay, callback, name, None)

    def call_every(self, period, callback, name="interval"):
        if period <= 0:
            raise ValueError("period must be positive")
        return self._add(period, callback, name, period)

    def _add(self, delay, callback, name, period):
        handle = TimerHandle(name)
        with self._lock:
            self._seq += 1
            self._timers.append({
                "due": self._now + max(0.0, delay),
                "seq": self._seq,
                "handle": handle,
                "callback": callback,
                "period": period,
            })
        return handle

    def advance(self, seconds: float = 0.0) -> None:
        target = self._now + seconds
        while True:
            with self._lock:
                self._timers = [t for t in self._timers if not t["handle"].cancelled]
                due = [t for t in self._timers if t["due"] <= target]
                if not due:
                    # a callback may have advanced further already
                    self._now = max(self._now, target)
                    return
                timer = min(due, key=lambda t: (t["due"], t["seq"]))
                self._now = max(self._now, timer["due"])
                if timer["period"]:
                    timer["due"] += timer["period"]
                else:
                    self._timers.remove(timer)
            timer["callback"]()

    def pending(self) -> list:
        """Names of armed timers, soonest first."""
        with self._lock:
            live = [t for t in self._timers if not t["handle"].cancelled]
            return [t["handle"].name for t in sorted(live, key=lambda t: (t["due"], t["seq"]))]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    os.environ["PLAYARR_DB_PATH"] = db_path
    os.environ["PLAYARR_LOG_LEVEL"] = "ERROR"  # Reduce log noise in tests
    os.environ["PLAYARR_LOG_FILE"] = ""

    reload_settings()
    root_level = logging.getLogger().level

    yield db_path

    # create_app sets the root logger level; don't leak it into later tests
    logging.getLogger().setLevel(root_level)

    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)
    for key in ("PLAYARR_DB_PATH", "PLAYARR_LOG_LEVEL", "PLAYARR_LOG_FILE"):
        os.environ.pop(key, None)
    reload_settings()


@pytest.fixture
def fake_clients():
    """Provider type -> MagicMock client, used through create_app(client_factory=...)."""
    from unittest.mock import MagicMock

    clients = {}

    def factory(provider_type):
        if provider_type not in clients:
            client = MagicMock(name=f"{provider_type}_client")
            client.details_per_title = provider_type == "xtream"
            client.fetch_catalog.return_value = []
            clients[provider_type] = client
        return clients[provider_type]

    factory.clients = clients
    return factory


@pytest.fixture
def app(temp_db, fake_clients):
    """Flask app on a temp database with the scheduler stopped."""
    from app import create_app

    application = create_app(testing=True, client_factory=fake_clients)
    application.config["TESTING"] = True
    yield application
    application.job_engine.stop(grace=1)

    from extensions import db
    with application.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    """Create a test client for Flask app."""
    with app.test_client() as client:
        yield client


@pytest.fixture
def add_provider(app):
    """Factory fixture: insert a provider row and return its dict."""
    from db.repositories.providers import ProviderRepository

    def _add(provider_id, provider_type="xtream", **fields):
        data = {
            "id": provider_id,
            "type": provider_type,
            "enabled": True,
            "api_url": f"http://{provider_id}.example",
            "username": "user",
            "password": "pass",
            "streams_urls": [f"http://{provider_id}.example"],
        }
        data.update(fields)
        with app.app_context():
            return ProviderRepository().upsert(data)

    return _add


class _StreamHandler(BaseHTTPRequestHandler):
    """Routes for prober tests.

    /ok            200 with a large body
    /bad-gateway   502
    /missing       404
    /redirect      302 -> /ok
    /loop          302 -> /loop
    /slow          sleeps before answering
    /head-only     200 for HEAD, 405 for GET
    """

    protocol_version = "HTTP/1.1"
    requests_seen = []

    def log_message(self, format, *args):
        pass

    def _send(self, status, body=b"", headers=None):
        self.send_response(status)
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body and self.command != "HEAD":
            try:
                self.wfile.write(body)
            except (BrokenPipeError, ConnectionResetError):
                pass

    def _route(self):
        type(self).requests_seen.append((self.command, self.path))
        path = self.path.split("?", 1)[0]
        if path == "/ok":
            self._send(200, b"x" * 100_000, {"Content-Type": "video/mp2t"})
        elif path == "/bad-gateway":
            self._send(502, b"bad gateway")
        elif path == "/missing":
            self._send(404, b"not found")
        elif path == "/redirect":
            self._send(302, headers={"Location": "/ok"})
        elif path == "/loop":
            self._send(302, headers={"Location": "/loop"})
        elif path == "/slow":
            import time
            time.sleep(2)
            self._send(200, b"late")
        elif path == "/head-only":
            self._send(200 if self.command == "HEAD" else 405)
        else:
            self._send(404)

    do_GET = _route
    do_HEAD = _route


@pytest.fixture
def http_server():
    """Local HTTP server; yields its base URL."""
    _StreamHandler.requests_seen = []
    server = ThreadingHTTPServer(("127.0.0.1", 0), _StreamHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address
    try:
        yield f"http://{host}:{port}"
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def closed_port_url():
    """Base URL of a local port nothing listens on."""
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}"
