"""Consolidated title model shared by all providers."""

from sqlalchemy import Integer, Text, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from extensions import db


class Title(db.Model):
    """A movie or show with the playable sources every provider offers for it.

    media_json holds a list of media entries:
    ``[{"name": "main"|None, "season": int|None, "episode": int|None,
        "sources": [{"provider_id": str, "provider_url": str}]}]``
    """

    __tablename__ = "titles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title_id: Mapped[str] = mapped_column(String(64), nullable=False)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    media_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("title_id", "media_type", name="uq_titles_title_media"),
    )
