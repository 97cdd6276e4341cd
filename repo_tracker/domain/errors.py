"""Domain exceptions.

Infrastructure adapters translate library errors into these so the
application layer never depends on psycopg2 or gql exception types.
"""


class RepoTrackerError(Exception):
    """Base class for all repository tracker errors."""
    pass


class ConfigurationError(RepoTrackerError, ValueError):
    """Exception raised when the environment configuration is invalid."""
    pass


class ValidationError(RepoTrackerError):
    """Exception raised for malformed input such as a bad repository path."""
    pass


class RepositoryNotFoundError(RepoTrackerError):
    """Exception raised when a record is missing or owned by another user."""

    def __init__(self, record_id, user_id=None):
        self.record_id = record_id
        self.user_id = user_id
        super().__init__(f"Repository not found: {record_id}")


class UserNotFoundError(RepoTrackerError):
    """Exception raised when a record references a user that does not exist."""

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class DuplicateRepositoryError(RepoTrackerError):
    """Exception raised when a user already tracks the repository."""

    def __init__(self, full_name: str):
        self.full_name = full_name
        super().__init__(f"Repository already exists: {full_name}")


class SourceError(RepoTrackerError):
    """Base class for failures of the external repository source."""
    pass


class SourceUnavailableError(SourceError):
    """Exception raised when GitHub cannot be reached or answers with an error."""
    pass


class SourceNotFoundError(SourceError):
    """Exception raised when GitHub has no repository at the given path."""
    pass


class RateLimitedError(SourceError):
    """Exception raised when the GitHub rate limit is exhausted."""
    pass
