"""SQLAlchemy ORM models for Playarr database.

All models use Flask-SQLAlchemy's db.Model as the base class.
Import all models from here so db.create_all() registers every table.
"""

from db.models.core import JobHistory
from db.models.providers import IPTVProvider, ProviderTitle
from db.models.titles import Title

__all__ = [
    "IPTVProvider",
    "JobHistory",
    "ProviderTitle",
    "Title",
]
