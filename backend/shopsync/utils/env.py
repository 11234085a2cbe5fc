"""Environment helpers shared by settings, database and security modules."""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def require_env(name: str) -> str:
    """Return the value of a mandatory environment variable or raise RuntimeError.
    WHY: Fail-fast during startup when critical configuration is missing.
    """
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_env_file() -> None:
    """Load environment variables from .env file if not already set.

    WHAT:
        Loads variables from a local .env file into os.environ.
        Does NOT overwrite existing environment variables.
    WHY:
        Developers keep secrets (Shopify app secret, Fernet key) in backend/.env
        while production injects real env vars that must win.
    """
    loaded = load_dotenv(override=False)

    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")


def build_database_url() -> str:
    """Return DATABASE_URL, composing it from POSTGRES_* parts when unset.

    WHAT:
        docker-compose deployments export POSTGRES_HOST/PORT/USER/PASSWORD/DB
        instead of a single URL.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        load_env_file()
        database_url = os.getenv("DATABASE_URL")
    if database_url and database_url.strip():
        return database_url

    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    user = os.getenv("POSTGRES_USER", "shopsync")
    password = os.getenv("POSTGRES_PASSWORD", "shopsync")
    database = os.getenv("POSTGRES_DB", "shopsync")
    return f"postgresql://{user}:{password}@{host}:{port}/{database}"
