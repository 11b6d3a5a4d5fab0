"""
Configuration management for reqgraph.

Loads configuration from environment variables and .env file.
"""

import getpass
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


def _default_actor() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class ReqGraphConfig(BaseSettings):
    """Configuration settings for reqgraph."""

    # Data locations
    data_dir: Path = Field(
        default_factory=Path.cwd,
        description="Base directory for project data"
    )
    requirements_path: Optional[Path] = Field(
        None, description="Requirements database (.yaml/.yml or .db/.sqlite/.sqlite3)"
    )
    mapping_path: Optional[Path] = Field(None, description="Alternate-key mapping file for external tools")
    registry_path: Path = Field(
        default_factory=lambda: Path.home() / ".requirements.config",
        description="Registry of named projects"
    )
    project: Optional[str] = Field(None, description="Registered project to open when no file is given")

    # Locking
    lock_timeout: float = Field(5.0, gt=0, description="Seconds to wait for the document lock")
    lock_poll_interval: float = Field(0.1, gt=0, description="Seconds between lock attempts")
    sqlite_busy_timeout_ms: int = Field(5000, ge=0, description="SQLite busy timeout for writers")

    # Defaults for new records
    default_actor: str = Field(default_factory=_default_actor, description="Actor recorded in history")
    default_feature: str = Field("Uncategorized", description="Feature for new requirements")

    # Logging
    log_level: str = Field("WARNING", description="Log level for the CLI")

    model_config = {
        "env_prefix": "REQGRAPH_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def model_post_init(self, __context) -> None:
        """Initialize derived paths after loading config."""
        if self.requirements_path is None:
            self.requirements_path = self.data_dir / "requirements.yaml"
        if self.mapping_path is None:
            self.mapping_path = self.data_dir / ".requirements-mapping.yaml"


# Global config instance - loaded from environment
config = ReqGraphConfig()
