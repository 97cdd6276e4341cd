"""Environment-driven configuration."""
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from dotenv import load_dotenv
from repo_tracker.domain.errors import ConfigurationError


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def load_environment() -> None:
    """Load environment variables from .env or env file."""
    load_dotenv('.env') or load_dotenv('env')


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the entry point scripts."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def _number(env: Mapping[str, str], key: str, default: str, cast, minimum, inclusive: bool = True):
    raw = env.get(key, default)
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")

    if value < minimum or (not inclusive and value == minimum):
        bound = ">=" if inclusive else ">"
        raise ConfigurationError(f"{key} must be {bound} {minimum}, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the tracker."""
    github_token: str
    postgres_host: str = "localhost"
    postgres_port: str = "5432"
    postgres_db: str = "repo_tracker"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    db_pool_size: int = 5
    fetch_timeout: float = 10.0
    min_refresh_interval: float = 60.0
    log_level: str = "INFO"

    @property
    def connection_string(self) -> str:
        """Build PostgreSQL connection string."""
        return (
            f"host={self.postgres_host} port={self.postgres_port} "
            f"dbname={self.postgres_db} user={self.postgres_user} "
            f"password={self.postgres_password}"
        )

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        require_token: bool = True
    ) -> 'Settings':
        """Read settings from the environment.

        Args:
            env: Mapping to read instead of ``os.environ``
            require_token: Whether GITHUB_TOKEN must be set

        Raises:
            ConfigurationError: If a value is missing or invalid
        """
        env = os.environ if env is None else env

        github_token = env.get("GITHUB_TOKEN", "")
        if require_token and not github_token:
            raise ConfigurationError("GITHUB_TOKEN environment variable is required")

        return cls(
            github_token=github_token,
            postgres_host=env.get("POSTGRES_HOST", "localhost"),
            postgres_port=env.get("POSTGRES_PORT", "5432"),
            postgres_db=env.get("POSTGRES_DB", "repo_tracker"),
            postgres_user=env.get("POSTGRES_USER", "postgres"),
            postgres_password=env.get("POSTGRES_PASSWORD", "postgres"),
            db_pool_size=_number(env, "DB_POOL_SIZE", "5", int, 1),
            fetch_timeout=_number(env, "GITHUB_FETCH_TIMEOUT", "10", float, 0, inclusive=False),
            min_refresh_interval=_number(env, "REFRESH_MIN_INTERVAL_SECONDS", "60", float, 0),
            log_level=env.get("LOG_LEVEL", "INFO").upper()
        )
