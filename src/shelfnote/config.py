"""Configuration module for the Shelfnote content store."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from shelfnote import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default database
_USER_ENV = Path.home() / ".shelfnote" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class ShelfnoteConfig(BaseModel):
    """Configuration for the Shelfnote store and server."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("SHELFNOTE_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("SHELFNOTE_DATABASE_PATH", "data/db/shelfnote.db")
        )
    )
    # When True, the store lives in an in-memory SQLite database that
    # disappears with the process (useful for demos and throwaway sessions).
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("SHELFNOTE_IN_MEMORY_DB", "false")
    )
    # Logging configuration
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("SHELFNOTE_LOG_DIR"))
            if os.getenv("SHELFNOTE_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("SHELFNOTE_LOG_LEVEL", "INFO").upper()
    )
    # Server configuration
    server_name: str = Field(
        default_factory=lambda: os.getenv("SHELFNOTE_SERVER_NAME", "shelfnote")
    )
    server_version: str = Field(default=__version__)
    # Default number of tags returned by the "most used" projection
    most_used_default_limit: int = Field(
        default_factory=lambda: int(
            os.getenv("SHELFNOTE_MOST_USED_DEFAULT_LIMIT", "10")
        )
    )

    @model_validator(mode="after")
    def _validate_settings(self) -> "ShelfnoteConfig":
        """Reject settings the store cannot run with."""
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {', '.join(_LOG_LEVELS)}, "
                f"got {self.log_level!r}"
            )
        if self.most_used_default_limit < 1:
            raise ValueError("most_used_default_limit must be >= 1")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = ShelfnoteConfig()
