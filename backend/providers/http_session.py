"""HTTP session for provider APIs with retry, backoff and rate-limit awareness.

Catalog endpoints of IPTV panels are slow and flaky; transient 5xx answers
are retried by urllib3, 429 answers pause the session for Retry-After
seconds. Stream probing does NOT use this session (see selection.prober).
"""

import logging
import re
import time
from urllib.parse import urlsplit, urlunsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_WAIT = 60

# AGTV lists and Xtream stream paths carry /{user}/{pass}/ after these prefixes
_PATH_CREDENTIALS = re.compile(r"/(api/list|movie|series|live)/[^/]+/[^/]+/")


def create_session(
    max_retries: int = 2,
    backoff_factor: float = 1.0,
    timeout: int = 30,
    user_agent: str = "Playarr/1.0",
) -> "RetryingSession":
    """Create a configured RetryingSession."""
    session = RetryingSession(timeout=timeout)
    session.headers["User-Agent"] = user_agent
    session.headers["Accept"] = "*/*"

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


class RetryingSession(requests.Session):
    """Session with a default timeout and Retry-After handling."""

    def __init__(self, timeout: int = 30):
        super().__init__()
        self.default_timeout = timeout
        self._rate_limit_until: float | None = None

    def request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.default_timeout)

        if self._rate_limit_until and time.time() < self._rate_limit_until:
            wait = self._rate_limit_until - time.time()
            logger.debug("Rate limited, waiting %.1fs", wait)
            time.sleep(wait)

        try:
            resp = super().request(method, url, **kwargs)
        except requests.ConnectionError as e:
            logger.warning("Connection error for %s %s: %s", method, redact_url(url),
                           type(e).__name__)
            raise
        except requests.Timeout:
            logger.warning("Timeout for %s %s", method, redact_url(url))
            raise

        if resp.status_code == 429:
            from providers.base import ProviderRateLimitError
            wait_seconds = _retry_after(resp.headers.get("Retry-After"))
            self._rate_limit_until = time.time() + wait_seconds
            logger.warning("Rate limited by %s, waiting %ds", redact_url(url), wait_seconds)
            raise ProviderRateLimitError(
                f"Rate limited by {redact_url(url)}, retry after {wait_seconds}s"
            )

        if resp.status_code in (401, 403):
            from providers.base import ProviderAuthError
            raise ProviderAuthError(
                f"Authentication failed for {redact_url(url)}: HTTP {resp.status_code}"
            )

        return resp


def _retry_after(header) -> int:
    if not header:
        return DEFAULT_RATE_LIMIT_WAIT
    try:
        return max(0, int(header))
    except ValueError:
        return DEFAULT_RATE_LIMIT_WAIT


def redact_url(url: str) -> str:
    """URL fit for logs and error text.

    Drops the query and any userinfo, and masks path credentials.
    """
    parts = urlsplit(url)
    netloc = parts.netloc.rsplit("@", 1)[-1]
    path = _PATH_CREDENTIALS.sub(r"/\1/***/***/", parts.path)
    return urlunsplit((parts.scheme, netloc, path, "", ""))
