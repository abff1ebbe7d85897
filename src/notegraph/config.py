"""Configuration module for the notegraph engine."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside the database
_USER_ENV = Path.home() / ".notegraph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes")


class NoteGraphConfig(BaseModel):
    """Configuration for the reference-graph engine."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEGRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_DATABASE_PATH", "data/db/notegraph.db")
        )
    )
    # When True, uses an in-memory SQLite database shared by every session
    # of the process. Nothing survives a restart.
    in_memory_db: bool = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_IN_MEMORY_DB", "false").lower()
        in _TRUE_VALUES
    )
    # Write-conflict handling: a diff+apply unit that loses a race is
    # recomputed from a fresh diff this many times before the error surfaces.
    write_retries: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_WRITE_RETRIES", "3"))
    )
    retry_delay: float = Field(
        default_factory=lambda: float(os.getenv("NOTEGRAPH_RETRY_DELAY", "0.05"))
    )
    # Auto-titling
    default_title: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_DEFAULT_TITLE", "Untitled Note")
    )
    max_title_length: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_MAX_TITLE_LENGTH", "100"))
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_LOG_LEVEL", "INFO").upper()
    )

    @model_validator(mode="after")
    def _validate_settings(self) -> "NoteGraphConfig":
        """Reject settings the engine cannot run with."""
        if self.write_retries < 0:
            raise ValueError("write_retries must be >= 0")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        if self.max_title_length < 1:
            raise ValueError("max_title_length must be >= 1")
        if not self.default_title.strip():
            raise ValueError("default_title cannot be empty")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log_level: {self.log_level}")
        if self.write_retries > 10:
            logger.warning(
                "write_retries=%d is unusually high; conflicting writers will "
                "wait a long time before an error is reported.",
                self.write_retries,
            )
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
config = NoteGraphConfig()
