"""Consolidated titles repository.

Media entries and their sources live in a JSON column; see db.models.titles.
"""

import logging
from typing import Optional

from sqlalchemy import select

from db.models.titles import Title
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

MOVIE_MEDIA_NAME = "main"


def _matches(entry: dict, media_type: str, season, episode) -> bool:
    if media_type == "movies":
        return entry.get("name") == MOVIE_MEDIA_NAME
    return entry.get("season") == season and entry.get("episode") == episode


class TitleRepository(BaseRepository):
    """Repository for titles table operations."""

    def get(self, title_id: str, media_type: str) -> Optional[dict]:
        row = self._get_row(title_id, media_type)
        return self._row_to_dict(row) if row else None

    def find_media(self, title_id: str, media_type: str, season: int = None,
                   episode: int = None) -> list:
        """Get the sources of one media entry (movie 'main' or one episode).

        Returns an empty list when the title or entry does not exist.
        """
        row = self._get_row(title_id, media_type)
        if not row:
            return []
        for entry in self._loads(row.media_json, []):
            if _matches(entry, media_type, season, episode):
                return [dict(s) for s in entry.get("sources") or []]
        return []

    def attach_source(self, title_id: str, media_type: str, provider_id: str,
                      provider_url: str, name: str = "", season: int = None,
                      episode: int = None) -> bool:
        """Add a provider source to a title's media entry, creating both if needed.

        Returns True if the source was new.
        """
        row = self._get_row(title_id, media_type)
        now = self._now()
        if row is None:
            row = Title(title_id=title_id, media_type=media_type, name=name or "",
                        media_json="[]", updated_at=now)
            self.session.add(row)
        elif name and not row.name:
            row.name = name

        media = self._loads(row.media_json, [])
        entry = next((e for e in media if _matches(e, media_type, season, episode)), None)
        if entry is None:
            if media_type == "movies":
                entry = {"name": MOVIE_MEDIA_NAME, "season": None, "episode": None, "sources": []}
            else:
                entry = {"name": None, "season": season, "episode": episode, "sources": []}
            media.append(entry)

        sources = entry.setdefault("sources", [])
        if any(s.get("provider_id") == provider_id and s.get("provider_url") == provider_url
               for s in sources):
            return False
        sources.append({"provider_id": provider_id, "provider_url": provider_url})
        row.media_json = self._dumps(media)
        row.updated_at = now
        self._commit()
        return True

    def remove_provider_sources(self, provider_id: str) -> int:
        """Strip a provider's sources from every title. Returns titles changed."""
        changed = 0
        rows = self.session.execute(select(Title)).scalars().all()
        for row in rows:
            media = self._loads(row.media_json, [])
            touched = False
            for entry in media:
                before = entry.get("sources") or []
                after = [s for s in before if s.get("provider_id") != provider_id]
                if len(after) != len(before):
                    entry["sources"] = after
                    touched = True
            if touched:
                row.media_json = self._dumps(media)
                row.updated_at = self._now()
                changed += 1
        self._commit()
        return changed

    def _get_row(self, title_id: str, media_type: str) -> Optional[Title]:
        return self.session.execute(
            select(Title).where(Title.title_id == title_id, Title.media_type == media_type)
        ).scalar_one_or_none()

    def _row_to_dict(self, row: Title) -> dict:
        return {
            "title_id": row.title_id,
            "media_type": row.media_type,
            "name": row.name,
            "media": self._loads(row.media_json, []),
            "updated_at": row.updated_at,
        }
