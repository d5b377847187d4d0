"""
Aivora server entry point.

Usage:
    aivora-server
    python -m baas.aivora_server.main

All configuration comes from AIVORA_* environment variables.
"""

import logging
import sys

import json_log_formatter
import uvicorn
from pydantic import ValidationError as SettingsError

from .api.app import create_app
from .config import Settings

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Server settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("passlib").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        settings = Settings()
    except SettingsError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)
    settings.log_config()

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
