"""Provider ORM models: IPTV provider configuration and per-provider catalog."""

from typing import Optional

from sqlalchemy import Index, Integer, Text, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from extensions import db


class IPTVProvider(db.Model):
    """Configured upstream IPTV provider (Xtream Codes or AGTV)."""

    __tablename__ = "iptv_providers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    enabled: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    priority: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    api_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    username: Mapped[str] = mapped_column(Text, nullable=False, default="")
    password: Mapped[str] = mapped_column(Text, nullable=False, default="")
    streams_urls_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    provider_details_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_iptv_providers_enabled", "enabled", "deleted"),
    )


class ProviderTitle(db.Model):
    """One catalog entry as reported by one provider."""

    __tablename__ = "provider_titles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    stream_path: Mapped[Optional[str]] = mapped_column(Text, default="")
    season: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    episode: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider_id", "media_type", "external_id",
                         name="uq_provider_titles_external"),
        Index("idx_provider_titles_provider", "provider_id"),
        Index("idx_provider_titles_title", "title_id", "media_type"),
    )
