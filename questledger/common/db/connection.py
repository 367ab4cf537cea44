"""
Database Configuration Loading

This module builds database connection settings from environment variables.
"""

import os
import urllib.parse
from typing import Dict, Any

from questledger.common.exceptions import ConfigurationError
from questledger.common.logger import app_logger

# Module logger
logger = app_logger.getChild("db.config")

# Environment variable names
DB_TYPE_ENV = "DB_TYPE"  # e.g., postgresql, sqlite
DB_HOST_ENV = "DB_HOST"
DB_PORT_ENV = "DB_PORT"
DB_NAME_ENV = "DB_NAME"
DB_USER_ENV = "DB_USER"
DB_PASSWORD_ENV = "DB_PASSWORD"
DB_PATH_ENV = "DB_PATH"  # For SQLite
DB_URL_ENV = "DATABASE_URL"
DB_POOL_SIZE_ENV = "DB_POOL_SIZE"

# Default values
DEFAULT_DB_TYPE = "sqlite"
DEFAULT_DB_HOST = "localhost"
DEFAULT_DB_PORT = 5432
DEFAULT_DB_NAME = "questledger"
DEFAULT_DB_USER = "questledger"
DEFAULT_DB_PASSWORD = "password"
DEFAULT_DB_PATH = "./questledger.db"
DEFAULT_DB_POOL_SIZE = 10


def get_database_settings() -> Dict[str, Any]:
    """
    Load database connection settings from environment variables.

    A direct DATABASE_URL wins over the individual DB_* components.

    Returns:
        A dictionary containing database settings including the connection URL.
    """
    settings: Dict[str, Any] = {}

    database_url = os.environ.get(DB_URL_ENV)
    if database_url:
        logger.info("Using direct DATABASE_URL from environment variable.")
        settings["database_url"] = database_url
        if database_url.startswith("postgresql"):
            settings["db_type"] = "postgresql"
        elif database_url.startswith("sqlite"):
            settings["db_type"] = "sqlite"
        else:
            settings["db_type"] = "unknown"
        settings["pool_size"] = int(os.environ.get(DB_POOL_SIZE_ENV, DEFAULT_DB_POOL_SIZE))
        return settings

    settings["db_type"] = os.environ.get(DB_TYPE_ENV, DEFAULT_DB_TYPE).lower()
    settings["host"] = os.environ.get(DB_HOST_ENV, DEFAULT_DB_HOST)
    settings["port"] = int(os.environ.get(DB_PORT_ENV, DEFAULT_DB_PORT))
    settings["database"] = os.environ.get(DB_NAME_ENV, DEFAULT_DB_NAME)
    settings["user"] = os.environ.get(DB_USER_ENV, DEFAULT_DB_USER)
    settings["password"] = os.environ.get(DB_PASSWORD_ENV, DEFAULT_DB_PASSWORD)
    settings["db_path"] = os.environ.get(DB_PATH_ENV, DEFAULT_DB_PATH)
    settings["pool_size"] = int(os.environ.get(DB_POOL_SIZE_ENV, DEFAULT_DB_POOL_SIZE))

    db_type = settings["db_type"]

    if db_type == "postgresql":
        password = urllib.parse.quote_plus(settings["password"])
        settings["database_url"] = (
            f"postgresql+asyncpg://{settings['user']}:{password}"
            f"@{settings['host']}:{settings['port']}/{settings['database']}"
        )
    elif db_type == "sqlite":
        settings["database_url"] = f"sqlite+aiosqlite:///{settings['db_path']}"
    else:
        logger.error(f"Unsupported DB_TYPE: {db_type}")
        raise ConfigurationError(f"Unsupported database type: {db_type}", config_key=DB_TYPE_ENV)

    logger.info(f"Constructed database URL for {db_type}")
    return settings
