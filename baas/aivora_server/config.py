"""
Configuration for the Aivora server.

Uses pydantic-settings for environment variable loading. Every setting
can be overridden with an AIVORA_-prefixed variable, e.g.
AIVORA_PORT=8000 or AIVORA_DEFINITIONS_DIR=/etc/aivora/entities.
"""

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

BUNDLED_DEFINITIONS_DIR = Path(__file__).parent / "definitions"


class Settings(BaseSettings):
    """Server configuration loaded from environment."""

    # HTTP
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=5000, description="Bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Entity definitions
    definitions_dir: Path = Field(
        default=BUNDLED_DEFINITIONS_DIR,
        description="Directory of entity descriptor files",
    )

    # Storage
    data_dir: Path = Field(default=Path("/var/lib/aivora"), description="Data directory")
    database_file: str = Field(default="aivora.db", description="SQLite file name")
    sqlite_wal_mode: bool = Field(default=True)
    sqlite_busy_timeout_ms: int = Field(default=5000)
    sqlite_cache_size_pages: int = Field(default=-64000)

    # Accounts
    jwt_secret: str = Field(default="change-me", description="HS256 signing secret")
    jwt_expire_days: int = Field(default=7, description="Access token lifetime in days")

    # Observability
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'text'")

    model_config = {"env_prefix": "AIVORA_"}

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_file

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "bind": f"{self.host}:{self.port}",
                "definitions_dir": str(self.definitions_dir),
                "database_path": str(self.database_path),
                "jwt_expire_days": self.jwt_expire_days,
                "log_level": self.log_level,
            },
        )
