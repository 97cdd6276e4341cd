"""Database initialization script.

Creates the users and repositories tables used by the tracker.
"""
import sys
import logging
from repo_tracker.config import Settings, configure_logging, load_environment
from repo_tracker.infrastructure.postgres_repository import connect, create_schema

# Load environment variables from .env or env file
load_environment()


configure_logging()
logger = logging.getLogger(__name__)


def main():
    """Initialize the database."""
    try:
        settings = Settings.from_env(require_token=False)
        logger.info("Connecting to database...")

        conn = connect(settings.connection_string)
        try:
            create_schema(conn)
        finally:
            conn.close()

        logger.info("Database initialization completed successfully")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
