"""Centralized configuration using Pydantic Settings.

All settings can be overridden via environment variables with the PLAYARR_ prefix,
or via a .env file. Example: PLAYARR_PORT=8080
"""

import os

from pydantic_settings import BaseSettings
from typing import Optional

_BUNDLED_JOBS_FILE = os.path.join(os.path.dirname(__file__), "jobs", "jobs.json")


class Settings(BaseSettings):
    """Playarr application settings."""

    # General
    port: int = 3000
    log_level: str = "INFO"
    log_format: str = "text"  # text | json
    log_file: str = "/config/logs/playarr.log"
    db_path: str = "/config/playarr.db"
    database_url: str = ""  # Empty = SQLite at db_path

    # Job engine
    jobs_file: str = ""  # Empty = bundled jobs/jobs.json
    job_stop_grace_seconds: float = 30.0

    # Source selection
    probe_timeout_ms: int = 7500
    probe_max_bytes: int = 100
    probe_max_redirects: int = 3
    race_width: int = 5
    decision_cache_ttl_seconds: float = 30.0
    decision_cache_max_entries: int = 1000
    error_window_seconds: float = 60.0
    health_retention_seconds: float = 300.0

    # Provider API access
    provider_request_timeout: int = 30
    provider_max_retries: int = 2
    provider_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36"
    )

    # Admin CLI
    api_url: str = "http://localhost:3000"

    model_config = {
        "env_prefix": "PLAYARR_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def get_database_url(self) -> str:
        """SQLAlchemy URL: explicit database_url or SQLite at db_path."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.db_path}"

    def get_jobs_file(self) -> str:
        """Path of the job descriptor file (bundled default if unset)."""
        return self.jobs_file or _BUNDLED_JOBS_FILE

    def get_safe_config(self) -> dict:
        """Get config dict without sensitive values (database credentials)."""
        data = self.model_dump()
        if data.get("database_url") and "@" in data["database_url"]:
            data["database_url"] = "***configured***"
        return data


# Singleton settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(overrides: dict = None) -> Settings:
    """Force reload settings from environment/file, with optional overrides.

    Args:
        overrides: Dict of key-value pairs to apply on top of the env/file
                   settings. String values are coerced to the field type;
                   unknown keys and unconvertible values are ignored.
    """
    global _settings
    base = Settings()

    if overrides:
        base_data = base.model_dump()
        update = {}
        for key, value in overrides.items():
            if key not in base_data:
                continue
            expected_type = type(base_data[key])
            try:
                if expected_type is bool:
                    update[key] = value.lower() in ("true", "1", "yes") if isinstance(value, str) else bool(value)
                elif expected_type is int:
                    update[key] = int(value)
                elif expected_type is float:
                    update[key] = float(value)
                else:
                    update[key] = str(value)
            except (ValueError, TypeError):
                continue  # Skip invalid values

        if update:
            _settings = base.model_copy(update=update)
        else:
            _settings = base
    else:
        _settings = base

    return _settings
