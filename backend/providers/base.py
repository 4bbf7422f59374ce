"""Abstract base class for IPTV provider clients and shared data models.

Every provider dialect implements the same capability: list a catalog,
fetch per-title details, and report account details. Clients are stateless
apart from their HTTP session; provider credentials arrive per call as a
ProviderConfig.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field

import requests

from cancellation import CancellationToken
from error_handler import ProviderUnavailableError
from providers.http_session import create_session, redact_url

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("movies", "tvshows")


class ProviderError(ProviderUnavailableError):
    """Base exception for provider errors (auth, rate-limit, network)."""


class ProviderAuthError(ProviderError):
    """Authentication or authorization failed."""

    code = "PROV_002"


class ProviderRateLimitError(ProviderError):
    """Provider rate limit exceeded."""

    code = "PROV_003"


class ProviderTimeoutError(ProviderError):
    """Provider request timed out."""

    code = "PROV_004"


@dataclass(frozen=True)
class ProviderConfig:
    """Snapshot of one iptv_providers row."""

    id: str
    type: str
    enabled: bool = True
    deleted: bool = False
    priority: int | None = None
    api_url: str = ""
    username: str = ""
    password: str = ""
    streams_urls: tuple[str, ...] = ()
    details: dict = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderConfig":
        return cls(
            id=data["id"],
            type=data["type"],
            enabled=bool(data.get("enabled", True)),
            deleted=bool(data.get("deleted", False)),
            priority=data.get("priority"),
            api_url=(data.get("api_url") or "").rstrip("/"),
            username=data.get("username") or "",
            password=data.get("password") or "",
            streams_urls=tuple(data.get("streams_urls") or ()),
            details=dict(data.get("provider_details") or {}),
        )

    @property
    def usable(self) -> bool:
        return self.enabled and not self.deleted

    @property
    def max_connections(self) -> int:
        return _as_int(self.details.get("max_connections"))

    @property
    def active_connections(self) -> int:
        return _as_int(self.details.get("active_connections"))

    @property
    def availability(self) -> float:
        """Free connection share in [0, 1]; 0 when max_connections is unknown."""
        if self.max_connections <= 0:
            return 0.0
        return (self.max_connections - self.active_connections) / self.max_connections

    @property
    def utilization(self) -> float:
        if self.max_connections <= 0:
            return 0.0
        return self.active_connections / self.max_connections


def _as_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class CatalogItem:
    """One catalog entry. Episodes carry season/episode and their show's parent_id."""

    external_id: str
    name: str
    media_type: str
    title_id: str | None = None
    stream_path: str | None = None
    season: int | None = None
    episode: int | None = None
    parent_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class EpisodeInfo:
    season: int
    episode: int
    external_id: str
    stream_path: str
    name: str = ""


@dataclass
class TitleDetails:
    external_id: str
    media_type: str
    title_id: str | None = None
    name: str = ""
    stream_path: str | None = None
    episodes: list[EpisodeInfo] = field(default_factory=list)


@dataclass
class AccountDetails:
    expiration_date: int | None = None
    max_connections: int = 0
    active_connections: int = 0
    active: bool | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class ProviderClient(ABC):
    """Abstract base class for IPTV provider clients.

    Class-level attributes:
        provider_type: Registry key, matches iptv_providers.type.
        probe_method: HTTP method the stream prober uses for this dialect.
        details_per_title: True if episodes are only available through
            fetch_details (False when the catalog already lists them).
    """

    provider_type: str = "unknown"
    probe_method: str = "GET"
    details_per_title: bool = True

    def __init__(self, session=None):
        if session is None:
            from config import get_settings
            settings = get_settings()
            session = create_session(
                max_retries=settings.provider_max_retries,
                timeout=settings.provider_request_timeout,
                user_agent=settings.provider_user_agent,
            )
        self.session = session

    @abstractmethod
    def fetch_catalog(self, token: CancellationToken, provider: ProviderConfig,
                      media_type: str) -> list[CatalogItem]:
        """List every title of one media type ('movies' or 'tvshows')."""

    @abstractmethod
    def fetch_details(self, token: CancellationToken, provider: ProviderConfig,
                      media_type: str, external_id: str) -> TitleDetails:
        """Fetch one title's details (episodes for shows)."""

    @abstractmethod
    def authenticate(self, token: CancellationToken, provider: ProviderConfig) -> AccountDetails:
        """Log in and report account details.

        Raises:
            ProviderAuthError: credentials rejected.
            ProviderError: upstream unreachable or malformed answer.
        """

    def _request(self, token: CancellationToken, method: str, url: str,
                 provider: ProviderConfig, **kwargs) -> requests.Response:
        """Issue one request with cancellation checks and error translation."""
        token.raise_if_cancelled()
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.Timeout as e:
            raise ProviderTimeoutError(
                f"[{provider.id}] Timeout calling {self.provider_type} API", context={"provider": provider.id}
            ) from e
        except requests.RequestException as e:
            raise ProviderError(
                f"[{provider.id}] {self.provider_type} API request failed: "
                f"{type(e).__name__} ({redact_url(url)})",
                context={"provider": provider.id},
            ) from e
        token.raise_if_cancelled()
        if resp.status_code >= 400:
            raise ProviderError(
                f"[{provider.id}] {self.provider_type} API returned HTTP {resp.status_code}",
                context={"provider": provider.id, "status": resp.status_code},
            )
        return resp

    def _get_json(self, token: CancellationToken, url: str, provider: ProviderConfig, **kwargs):
        resp = self._request(token, "GET", url, provider, **kwargs)
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(
                f"[{provider.id}] {self.provider_type} API returned invalid JSON",
                context={"provider": provider.id},
            ) from e

    @staticmethod
    def _check_media_type(media_type: str) -> None:
        if media_type not in MEDIA_TYPES:
            raise ValueError(f"Unsupported media type: {media_type}")
