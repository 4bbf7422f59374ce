"""Apollo Group TV (AGTV) provider client.

Account: POST ``/api/login`` for a bearer token, then GET ``/api/user``.
The API reports neither connection limit nor usage, so every account is
treated as 5 connections with none in use.

Catalog: M3U8 playlists at ``/api/list/{user}/{pass}/m3u8/{movies|tvshows}``;
the tvshows list is paginated (``.../tvshows/{page}``) and lists every
episode with an absolute stream URL.
"""

import logging
import re

from cancellation import CancellationToken
from providers import register_provider
from providers.base import (
    AccountDetails,
    CatalogItem,
    EpisodeInfo,
    ProviderAuthError,
    ProviderClient,
    ProviderConfig,
    TitleDetails,
)

logger = logging.getLogger(__name__)

AGTV_MAX_CONNECTIONS = 5
MAX_TVSHOW_PAGES = 500

_ATTR_RE = re.compile(r'([\w-]+)="([^"]*)"')
_EPISODE_RE = re.compile(r"^(?P<show>.*?)[\s._-]*S(?P<season>\d{1,2})\s*E(?P<episode>\d{1,4})\b", re.I)


def parse_m3u(text: str) -> list[dict]:
    """Parse an extended M3U playlist into {name, url, attrs} entries."""
    entries = []
    pending = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#EXTINF"):
            header, _, name = line.partition(",")
            pending = {"name": name.strip(), "attrs": dict(_ATTR_RE.findall(header))}
        elif line.startswith("#"):
            continue
        elif pending is not None:
            pending["url"] = line
            entries.append(pending)
            pending = None
    return entries


def _title_id(attrs: dict) -> str | None:
    for key in ("tmdb", "tmdb-id", "tvg-id"):
        value = attrs.get(key, "").strip()
        if value.isdigit():
            return value
    return None


def _stream_key(url: str) -> str:
    return url.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0]


@register_provider
class AGTVClient(ProviderClient):
    """Client for AGTV panels."""

    provider_type = "agtv"
    probe_method = "HEAD"
    details_per_title = False

    def _list_url(self, provider: ProviderConfig, media_type: str, page: int = None) -> str:
        url = f"{provider.api_url}/api/list/{provider.username}/{provider.password}/m3u8/{media_type}"
        if page:
            url += f"/{page}"
        return url

    def _fetch_playlist(self, token, provider, media_type, page=None) -> list[dict]:
        resp = self._request(token, "GET", self._list_url(provider, media_type, page), provider)
        return parse_m3u(resp.text)

    def fetch_catalog(self, token: CancellationToken, provider: ProviderConfig,
                      media_type: str) -> list[CatalogItem]:
        self._check_media_type(media_type)
        if media_type == "movies":
            entries = self._fetch_playlist(token, provider, media_type)
            items = [self._movie_item(entry) for entry in entries if entry.get("url")]
        else:
            items = []
            for page in range(1, MAX_TVSHOW_PAGES + 1):
                entries = self._fetch_playlist(token, provider, media_type, page)
                if not entries:
                    break
                items.extend(filter(None, (self._episode_item(e) for e in entries)))
            else:
                logger.warning("[%s] AGTV tvshows list truncated at %d pages",
                               provider.id, MAX_TVSHOW_PAGES)
        logger.info("[%s] AGTV %s catalog: %d entries", provider.id, media_type, len(items))
        return items

    def _movie_item(self, entry: dict) -> CatalogItem:
        attrs = entry["attrs"]
        return CatalogItem(
            external_id=attrs.get("tvg-id") or _stream_key(entry["url"]),
            name=attrs.get("tvg-name") or entry["name"],
            media_type="movies",
            title_id=_title_id(attrs),
            stream_path=entry["url"],
        )

    def _episode_item(self, entry: dict) -> CatalogItem | None:
        attrs = entry["attrs"]
        match = _EPISODE_RE.match(attrs.get("tvg-name") or entry["name"])
        if not match:
            return None
        show = match.group("show").strip() or entry["name"]
        title_id = _title_id(attrs)
        return CatalogItem(
            external_id=_stream_key(entry["url"]),
            name=show,
            media_type="tvshows",
            title_id=title_id,
            stream_path=entry["url"],
            season=int(match.group("season")),
            episode=int(match.group("episode")),
            parent_id=title_id or show.lower(),
        )

    def fetch_details(self, token: CancellationToken, provider: ProviderConfig,
                      media_type: str, external_id: str) -> TitleDetails:
        """Details for AGTV come from the catalog itself (episodes of one show)."""
        self._check_media_type(media_type)
        items = [i for i in self.fetch_catalog(token, provider, media_type)
                 if (i.parent_id or i.external_id) == external_id]
        if media_type == "movies":
            first = items[0] if items else None
            return TitleDetails(
                external_id=external_id,
                media_type=media_type,
                title_id=first.title_id if first else None,
                name=first.name if first else "",
                stream_path=first.stream_path if first else None,
            )
        episodes = sorted(
            (EpisodeInfo(i.season, i.episode, i.external_id, i.stream_path, i.name) for i in items),
            key=lambda e: (e.season, e.episode),
        )
        return TitleDetails(
            external_id=external_id,
            media_type=media_type,
            title_id=items[0].title_id if items else None,
            name=items[0].name if items else "",
            episodes=episodes,
        )

    def authenticate(self, token: CancellationToken, provider: ProviderConfig) -> AccountDetails:
        login = self._get_json_post(token, provider)
        bearer = login.get("token") if isinstance(login, dict) else None
        if not bearer:
            raise ProviderAuthError(f"[{provider.id}] No token received from AGTV login",
                                    context={"provider": provider.id})
        user = self._get_json(token, f"{provider.api_url}/api/user", provider,
                              headers={"Authorization": f"Bearer {bearer}"})
        if not isinstance(user, dict):
            user = {}
        return AccountDetails(
            expiration_date=user.get("expiration_date_timestamp") or None,
            max_connections=AGTV_MAX_CONNECTIONS,
            active_connections=0,
            active=user.get("active"),
        )

    def _get_json_post(self, token, provider):
        resp = self._request(
            token, "POST", f"{provider.api_url}/api/login", provider,
            json={"username": provider.username, "password": provider.password},
        )
        try:
            return resp.json()
        except ValueError:
            return None
