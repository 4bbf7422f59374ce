"""Stream URL validation.

A probe answers "would a player get bytes from this URL right now?" without
downloading the stream: HEAD where the provider supports it, otherwise a
streaming GET that reads at most a few bytes and drops the connection.
Redirects are followed by hand so the hop limit and the overall deadline
cover the whole chain.
"""

import logging
import socket
import threading
import time
from dataclasses import dataclass
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import HTTPError as Urllib3HTTPError

import metrics
from cancellation import CancellationToken
from providers.http_session import redact_url

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
}

DEFAULT_TIMEOUT_SECONDS = 7.5
DEFAULT_MAX_BYTES = 100
DEFAULT_MAX_REDIRECTS = 3

_REDIRECT_CODES = (301, 302, 303, 307, 308)

# Error kinds that count against a provider like an upstream 502
MATERIAL_ERRORS = frozenset({"timeout", "connection_refused", "dns", "connection_error"})


@dataclass(frozen=True)
class ProbeResult:
    url: str
    is_valid: bool
    status_code: int | None = None
    response_time: float = 0.0
    error: str | None = None
    final_url: str | None = None
    bytes_read: int = 0

    @property
    def is_material_failure(self) -> bool:
        return self.status_code == 502 or self.error in MATERIAL_ERRORS

    @property
    def outcome(self) -> str:
        """Label for metrics and logs: status code or error kind."""
        if self.error:
            return self.error
        return str(self.status_code)


def _connection_error_kind(error: Exception) -> str:
    text = str(error).lower()
    if "refused" in text:
        return "connection_refused"
    if "name or service not known" in text or "nodename nor servname" in text \
            or "name resolution" in text or "getaddrinfo" in text:
        return "dns"
    return "connection_error"


def _tracked_pool(pool_cls, on_connect):
    """pool_cls whose connections report themselves once connected."""

    class TrackedConnection(pool_cls.ConnectionCls):
        def connect(self):
            super().connect()
            on_connect(self)

    return type(f"Tracked{pool_cls.__name__}", (pool_cls,), {"ConnectionCls": TrackedConnection})


class _TrackingAdapter(HTTPAdapter):
    """Adapter that hands every opened connection to on_connect.

    A cancel can then shut the socket down while the request is still
    waiting for headers; closing the session alone does not interrupt a
    blocked read.
    """

    def __init__(self, on_connect, **kwargs):
        self._on_connect = on_connect
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": _tracked_pool(HTTPConnectionPool, self._on_connect),
            "https": _tracked_pool(HTTPSConnectionPool, self._on_connect),
        }


def _shutdown(conn) -> None:
    sock = getattr(conn, "sock", None)
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already closed by the peer
    conn.close()


class URLProber:
    """Probe stream URLs with bounded time and bounded reads."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 max_bytes: int = DEFAULT_MAX_BYTES,
                 max_redirects: int = DEFAULT_MAX_REDIRECTS,
                 headers: dict = None):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.max_redirects = max_redirects
        self.headers = dict(headers or STREAM_HEADERS)

    def probe(self, url: str, method: str = "GET", provider_id: str = "",
              token: CancellationToken = None) -> ProbeResult:
        """Probe one URL. Never raises; failures are described in the result.

        Cancelling token (or reaching the timeout) shuts down the open
        connection, so a blocked request returns at once.
        """
        probe_token = CancellationToken(parent=token) if token is not None else CancellationToken()
        connections = []
        lock = threading.Lock()

        def _register(conn):
            with lock:
                connections.append(conn)
            if probe_token.cancelled:
                _shutdown(conn)

        def _abort():
            with lock:
                opened = list(connections)
            for conn in opened:
                _shutdown(conn)

        session = requests.Session()
        session.headers.update(self.headers)
        adapter = _TrackingAdapter(_register)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        probe_token.on_cancel(_abort)
        deadline_timer = threading.Timer(self.timeout, probe_token.cancel, args=("timeout",))
        deadline_timer.daemon = True
        deadline_timer.start()

        started = time.monotonic()
        try:
            result = self._follow(session, url, method.upper(), probe_token, started)
        finally:
            deadline_timer.cancel()
            session.close()

        if provider_id:
            metrics.record_probe_outcome(provider_id, result.outcome)
        logger.debug("Probe %s %s -> %s in %.0fms", method, redact_url(url), result.outcome,
                     result.response_time * 1000)
        return result

    def _follow(self, session, url, method, token, started) -> ProbeResult:
        current = url
        status = None

        def done(**kwargs) -> ProbeResult:
            return ProbeResult(url=url, response_time=time.monotonic() - started,
                               final_url=current, **kwargs)

        def cancelled() -> ProbeResult:
            return done(is_valid=False, status_code=status, error=_cancel_kind(token))

        try:
            for _hop in range(self.max_redirects + 1):
                if token.cancelled:
                    return cancelled()
                remaining = self.timeout - (time.monotonic() - started)
                if remaining <= 0:
                    return done(is_valid=False, status_code=status, error="timeout")

                response = session.request(method, current, stream=True,
                                           allow_redirects=False, timeout=remaining)
                try:
                    if token.cancelled:
                        return cancelled()
                    status = response.status_code
                    location = response.headers.get("Location")
                    if status in _REDIRECT_CODES and location:
                        current = urljoin(current, location)
                        continue
                    bytes_read = 0
                    if method != "HEAD" and 200 <= status < 400:
                        chunk = response.raw.read(self.max_bytes, decode_content=False)
                        if token.cancelled:
                            return cancelled()
                        bytes_read = len(chunk or b"")
                    return done(is_valid=200 <= status < 400, status_code=status,
                                bytes_read=bytes_read)
                finally:
                    response.close()

            return done(is_valid=False, status_code=status, error="too_many_redirects")
        except requests.Timeout:
            return done(is_valid=False, status_code=status, error="timeout")
        except requests.ConnectionError as e:
            if token.cancelled:
                return cancelled()
            return done(is_valid=False, status_code=status, error=_connection_error_kind(e))
        except (requests.RequestException, Urllib3HTTPError, OSError, ValueError) as e:
            if token.cancelled:
                return cancelled()
            logger.debug("Probe of %s failed: %s", redact_url(current), type(e).__name__)
            return done(is_valid=False, status_code=status, error="request_error")


def _cancel_kind(token: CancellationToken) -> str:
    return "timeout" if token.reason == "timeout" else "cancelled"
