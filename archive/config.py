"""
Configuration
=============
Runtime settings for the archive service, the static exporter and the CLI.
Values come from ``ARCHIVE_*`` environment variables, falling back to
paths inside the project root.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Project root: one level up from /archive/ package
_PROJECT_ROOT = Path(__file__).parent.parent.absolute()

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class ArchiveConfig:
    """Configuration for the archive service."""

    # Persistence
    db_path: str = str(_PROJECT_ROOT / "database.sqlite")
    upload_dir: str = str(_PROJECT_ROOT / "uploads")

    # Static export
    export_dir: str = str(_PROJECT_ROOT / "export" / "api")
    static_mode: bool = False

    # HTTP
    max_content_length: int = 16 * 1024 * 1024  # 16MB

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "ArchiveConfig":
        """Build a config from ARCHIVE_* environment variables."""
        config = cls()
        env = os.environ
        if env.get("ARCHIVE_DB_PATH"):
            config.db_path = env["ARCHIVE_DB_PATH"]
        if env.get("ARCHIVE_UPLOAD_DIR"):
            config.upload_dir = env["ARCHIVE_UPLOAD_DIR"]
        if env.get("ARCHIVE_EXPORT_DIR"):
            config.export_dir = env["ARCHIVE_EXPORT_DIR"]
        if env.get("ARCHIVE_STATIC_MODE"):
            config.static_mode = env["ARCHIVE_STATIC_MODE"].lower() in _TRUTHY
        if env.get("ARCHIVE_LOG_LEVEL"):
            config.log_level = env["ARCHIVE_LOG_LEVEL"]
        if env.get("ARCHIVE_LOG_FILE"):
            config.log_file = env["ARCHIVE_LOG_FILE"]

        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config


def get_project_root() -> Path:
    return _PROJECT_ROOT


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure the ``archive`` package logger (console + optional file)."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    archive_logger = logging.getLogger("archive")
    archive_logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    # Console handler
    if not archive_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(log_level)
        console.setFormatter(formatter)
        archive_logger.addHandler(console)

    # File handler, once per target file
    if log_file and not any(
        isinstance(h, logging.FileHandler)
        and h.baseFilename == os.path.abspath(log_file)
        for h in archive_logger.handlers
    ):
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        archive_logger.addHandler(file_handler)
