"""GitHub API interface (port) for fetching repository data.

This is the anti-corruption layer that shields the domain from GitHub API specifics.
"""
from abc import ABC, abstractmethod
from repo_tracker.domain.models import RepositoryMetadata


class IGitHubClient(ABC):
    """Abstract interface for GitHub API operations."""

    @abstractmethod
    async def fetch_repository(self, owner: str, name: str) -> RepositoryMetadata:
        """Fetch the current metadata of one repository.

        Args:
            owner: Repository owner login
            name: Repository name

        Returns:
            RepositoryMetadata for the repository

        Raises:
            SourceNotFoundError: When the repository does not exist
            RateLimitedError: When the API rate limit is exhausted
            SourceUnavailableError: On any other API or network failure
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
