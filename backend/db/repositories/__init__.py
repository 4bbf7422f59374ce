"""Repository pattern for Playarr database operations using SQLAlchemy ORM.

Repositories return plain dicts so callers never hold ORM instances outside
the application context that loaded them.
"""

from db.repositories.base import BaseRepository
from db.repositories.jobs import JobHistoryRepository
from db.repositories.providers import ProviderRepository, ProviderTitleRepository
from db.repositories.titles import TitleRepository

__all__ = [
    "BaseRepository",
    "JobHistoryRepository",
    "ProviderRepository",
    "ProviderTitleRepository",
    "TitleRepository",
]
