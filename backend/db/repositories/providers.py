"""Provider configuration and provider catalog repositories."""

import logging
from typing import Optional

from sqlalchemy import select, delete, or_

from db.models.providers import IPTVProvider, ProviderTitle
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

PROVIDER_TYPES = ("xtream", "agtv")


class ProviderRepository(BaseRepository):
    """Repository for iptv_providers table operations."""

    def list_enabled(self, exclude_deleted: bool = True) -> list:
        """Get enabled providers ordered by priority (unset priority last)."""
        stmt = select(IPTVProvider).where(IPTVProvider.enabled == 1)
        if exclude_deleted:
            stmt = stmt.where(IPTVProvider.deleted == 0)
        rows = self.session.execute(stmt).scalars().all()
        return sorted((self._row_to_dict(r) for r in rows), key=_priority_key)

    def list_all(self, include_deleted: bool = False) -> list:
        stmt = select(IPTVProvider)
        if not include_deleted:
            stmt = stmt.where(IPTVProvider.deleted == 0)
        rows = self.session.execute(stmt).scalars().all()
        return sorted((self._row_to_dict(r) for r in rows), key=_priority_key)

    def list_unwanted(self) -> list:
        """Providers whose titles should be purged (disabled or deleted)."""
        stmt = select(IPTVProvider).where(
            or_(IPTVProvider.enabled == 0, IPTVProvider.deleted == 1)
        )
        rows = self.session.execute(stmt).scalars().all()
        return [self._row_to_dict(r) for r in rows]

    def get(self, provider_id: str) -> Optional[dict]:
        row = self.session.get(IPTVProvider, provider_id)
        return self._row_to_dict(row) if row else None

    def upsert(self, data: dict) -> dict:
        """Create or update a provider from a dict with model field names.

        streams_urls and provider_details are accepted as Python values.
        """
        provider_type = data.get("type")
        if provider_type is not None and provider_type not in PROVIDER_TYPES:
            raise ValueError(f"Unknown provider type: {provider_type}")

        now = self._now()
        row = self.session.get(IPTVProvider, data["id"])
        if row is None:
            if provider_type is None:
                raise ValueError("Provider type is required for new providers")
            row = IPTVProvider(id=data["id"], type=provider_type, created_at=now,
                               updated_at=now)
            self.session.add(row)

        for key in ("type", "api_url", "username", "password", "priority"):
            if key in data:
                setattr(row, key, data[key])
        for key in ("enabled", "deleted"):
            if key in data:
                setattr(row, key, int(bool(data[key])))
        if "streams_urls" in data:
            row.streams_urls_json = self._dumps(list(data["streams_urls"] or []))
        if "provider_details" in data:
            row.provider_details_json = self._dumps(data["provider_details"] or {})
        row.updated_at = now
        self._commit()
        return self._row_to_dict(row)

    def update_details(self, provider_id: str, details: dict) -> Optional[dict]:
        """Merge details into provider_details. Returns the updated provider."""
        row = self.session.get(IPTVProvider, provider_id)
        if not row:
            return None
        current = self._loads(row.provider_details_json, {})
        current.update(details)
        row.provider_details_json = self._dumps(current)
        row.updated_at = self._now()
        self._commit()
        return self._row_to_dict(row)

    def set_enabled(self, provider_id: str, enabled: bool) -> bool:
        row = self.session.get(IPTVProvider, provider_id)
        if not row:
            return False
        row.enabled = int(bool(enabled))
        row.updated_at = self._now()
        self._commit()
        return True

    def delete(self, provider_id: str) -> bool:
        """Soft-delete: the row stays so cleanup can find its titles."""
        row = self.session.get(IPTVProvider, provider_id)
        if not row:
            return False
        row.deleted = 1
        row.updated_at = self._now()
        self._commit()
        return True

    def _row_to_dict(self, row: IPTVProvider) -> dict:
        return {
            "id": row.id,
            "type": row.type,
            "enabled": bool(row.enabled),
            "deleted": bool(row.deleted),
            "priority": row.priority,
            "api_url": row.api_url or "",
            "username": row.username or "",
            "password": row.password or "",
            "streams_urls": self._loads(row.streams_urls_json, []),
            "provider_details": self._loads(row.provider_details_json, {}),
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }


def _priority_key(provider: dict):
    priority = provider.get("priority")
    return (priority if priority is not None else 999, provider["id"])


class ProviderTitleRepository(BaseRepository):
    """Repository for provider_titles table operations."""

    def upsert_many(self, provider_id: str, media_type: str, items: list) -> dict:
        """Insert or update catalog entries for one provider and media type.

        Args:
            items: dicts with external_id, name and optionally title_id,
                   stream_path, season, episode.

        Returns:
            {"inserted": int, "updated": int}
        """
        existing = {
            row.external_id: row
            for row in self.session.execute(
                select(ProviderTitle).where(
                    ProviderTitle.provider_id == provider_id,
                    ProviderTitle.media_type == media_type,
                )
            ).scalars().all()
        }
        now = self._now()
        inserted = updated = 0
        for item in items:
            external_id = str(item["external_id"])
            row = existing.get(external_id)
            if row is None:
                row = ProviderTitle(provider_id=provider_id, media_type=media_type,
                                    external_id=external_id, updated_at=now)
                self.session.add(row)
                existing[external_id] = row
                inserted += 1
            else:
                updated += 1
            row.name = item.get("name") or ""
            row.title_id = item.get("title_id")
            row.stream_path = item.get("stream_path") or ""
            row.season = item.get("season")
            row.episode = item.get("episode")
            row.updated_at = now
        self._commit()
        return {"inserted": inserted, "updated": updated}

    def list_for_provider(self, provider_id: str, media_type: str = None) -> list:
        stmt = select(ProviderTitle).where(ProviderTitle.provider_id == provider_id)
        if media_type:
            stmt = stmt.where(ProviderTitle.media_type == media_type)
        rows = self.session.execute(stmt.order_by(ProviderTitle.id)).scalars().all()
        return [_catalog_entry(r) for r in rows]

    def delete_for_provider(self, provider_id: str) -> int:
        """Delete every catalog entry of a provider. Returns count deleted."""
        result = self.session.execute(
            delete(ProviderTitle).where(ProviderTitle.provider_id == provider_id)
        )
        self._commit()
        return result.rowcount or 0


def _catalog_entry(row: ProviderTitle) -> dict:
    return {
        "id": row.id,
        "provider_id": row.provider_id,
        "media_type": row.media_type,
        "external_id": row.external_id,
        "title_id": row.title_id,
        "name": row.name,
        "stream_path": row.stream_path or "",
        "season": row.season,
        "episode": row.episode,
        "updated_at": row.updated_at,
    }
