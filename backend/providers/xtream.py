"""Xtream Codes provider client.

All calls go to ``{api_url}/player_api.php`` with username/password query
parameters; ``action`` selects the endpoint. Without an action the panel
answers with account information (``user_info``).

Stream paths are stored relative (``/movie/{user}/{pass}/{id}.{ext}``) and
joined with the provider's streams_urls at playback time.
"""

import logging
from urllib.parse import urlencode

from cancellation import CancellationToken
from providers import register_provider
from providers.base import (
    AccountDetails,
    CatalogItem,
    EpisodeInfo,
    ProviderAuthError,
    ProviderClient,
    ProviderConfig,
    ProviderError,
    TitleDetails,
)

logger = logging.getLogger(__name__)

_TYPE_CONFIG = {
    "movies": {
        "catalog_action": "get_vod_streams",
        "details_action": "get_vod_info",
        "details_param": "vod_id",
        "id_field": "stream_id",
    },
    "tvshows": {
        "catalog_action": "get_series",
        "details_action": "get_series_info",
        "details_param": "series_id",
        "id_field": "series_id",
    },
}


def _tmdb_id(*sources) -> str | None:
    for source in sources:
        if not isinstance(source, dict):
            continue
        for key in ("tmdb", "tmdb_id"):
            value = source.get(key)
            if value not in (None, "", 0, "0"):
                return str(value)
    return None


def _int_or_none(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@register_provider
class XtreamClient(ProviderClient):
    """Client for Xtream Codes compatible panels."""

    provider_type = "xtream"
    probe_method = "GET"
    details_per_title = True

    def _api_url(self, provider: ProviderConfig, **params) -> str:
        query = {"username": provider.username, "password": provider.password, **params}
        return f"{provider.api_url}/player_api.php?{urlencode(query)}"

    def _movie_path(self, provider: ProviderConfig, stream_id, extension) -> str:
        return f"/movie/{provider.username}/{provider.password}/{stream_id}.{extension or 'mp4'}"

    def _episode_path(self, provider: ProviderConfig, episode_id, extension) -> str:
        return f"/series/{provider.username}/{provider.password}/{episode_id}.{extension or 'mp4'}"

    def fetch_catalog(self, token: CancellationToken, provider: ProviderConfig,
                      media_type: str) -> list[CatalogItem]:
        self._check_media_type(media_type)
        config = _TYPE_CONFIG[media_type]
        logger.debug("[%s] Fetching %s catalog", provider.id, media_type)
        data = self._get_json(token, self._api_url(provider, action=config["catalog_action"]), provider)
        if not isinstance(data, list):
            user_info = data.get("user_info") if isinstance(data, dict) else None
            if isinstance(user_info, dict) and str(user_info.get("auth")) == "0":
                raise ProviderAuthError(f"[{provider.id}] Xtream credentials rejected")
            logger.warning("[%s] Unexpected %s catalog payload (%s)", provider.id, media_type,
                           type(data).__name__)
            return []

        items = []
        skipped = 0
        for index, entry in enumerate(data):
            if index % 100 == 0:
                token.raise_if_cancelled()
            if not isinstance(entry, dict):
                skipped += 1
                continue
            external_id = entry.get(config["id_field"])
            if external_id in (None, ""):
                continue
            stream_path = None
            if media_type == "movies":
                stream_path = self._movie_path(provider, external_id, entry.get("container_extension"))
            items.append(CatalogItem(
                external_id=str(external_id),
                name=str(entry.get("name") or ""),
                media_type=media_type,
                title_id=_tmdb_id(entry),
                stream_path=stream_path,
            ))
        if skipped:
            logger.warning("[%s] Skipped %d malformed %s catalog entries",
                           provider.id, skipped, media_type)
        logger.info("[%s] Xtream %s catalog: %d entries", provider.id, media_type, len(items))
        return items

    def fetch_details(self, token: CancellationToken, provider: ProviderConfig,
                      media_type: str, external_id: str) -> TitleDetails:
        self._check_media_type(media_type)
        config = _TYPE_CONFIG[media_type]
        url = self._api_url(provider, action=config["details_action"],
                            **{config["details_param"]: external_id})
        data = self._get_json(token, url, provider)
        if not isinstance(data, dict):
            raise ProviderError(f"[{provider.id}] Xtream details for {external_id} malformed",
                                context={"provider": provider.id})
        info = data.get("info") or {}
        if not isinstance(info, dict):
            info = {}

        if media_type == "movies":
            movie = data.get("movie_data") or {}
            if not isinstance(movie, dict):
                raise ProviderError(f"[{provider.id}] Xtream movie_data for {external_id} malformed",
                                    context={"provider": provider.id})
            return TitleDetails(
                external_id=str(external_id),
                media_type=media_type,
                title_id=_tmdb_id(info, movie),
                name=movie.get("name") or info.get("name") or "",
                stream_path=self._movie_path(provider, movie.get("stream_id") or external_id,
                                             movie.get("container_extension")),
            )

        episodes = []
        skipped = 0
        raw_episodes = data.get("episodes") or {}
        if isinstance(raw_episodes, list):
            # Some panels send a list of per-season lists
            raw_episodes = {str(i + 1): season for i, season in enumerate(raw_episodes)}
        if not isinstance(raw_episodes, dict):
            raise ProviderError(f"[{provider.id}] Xtream episodes for {external_id} malformed",
                                context={"provider": provider.id})
        for season_key, season_episodes in raw_episodes.items():
            if not isinstance(season_episodes, list):
                season_episodes = [season_episodes] if season_episodes else []
            for ep in season_episodes:
                if not isinstance(ep, dict):
                    skipped += 1
                    continue
                season = _int_or_none(ep.get("season")) or _int_or_none(season_key)
                number = _int_or_none(ep.get("episode_num"))
                if season is None or number is None or not ep.get("id"):
                    continue
                episodes.append(EpisodeInfo(
                    season=season,
                    episode=number,
                    external_id=str(ep["id"]),
                    stream_path=self._episode_path(provider, ep["id"], ep.get("container_extension")),
                    name=ep.get("title") or "",
                ))
        if skipped:
            logger.warning("[%s] Skipped %d malformed episodes of %s",
                           provider.id, skipped, external_id)
        episodes.sort(key=lambda e: (e.season, e.episode))
        return TitleDetails(
            external_id=str(external_id),
            media_type=media_type,
            title_id=_tmdb_id(info),
            name=info.get("name") or "",
            episodes=episodes,
        )

    def authenticate(self, token: CancellationToken, provider: ProviderConfig) -> AccountDetails:
        data = self._get_json(token, self._api_url(provider), provider)
        user_info = data.get("user_info") if isinstance(data, dict) else None
        if not isinstance(user_info, dict) or str(user_info.get("auth", "0")) != "1":
            raise ProviderAuthError(f"[{provider.id}] Xtream login failed",
                                    context={"provider": provider.id})
        status = user_info.get("status")
        return AccountDetails(
            expiration_date=_int_or_none(user_info.get("exp_date")),
            max_connections=_int_or_none(user_info.get("max_connections")) or 0,
            active_connections=_int_or_none(user_info.get("active_cons")) or 0,
            active=(status == "Active") if status is not None else None,
        )
