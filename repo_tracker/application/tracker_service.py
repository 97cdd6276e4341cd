"""Tracker service exposing the dashboard use cases."""
import logging
from typing import List
from repo_tracker.application.refresh_coordinator import RefreshCoordinator
from repo_tracker.domain.errors import RepositoryNotFoundError
from repo_tracker.domain.github_interface import IGitHubClient
from repo_tracker.domain.repository_interface import IRepositoryStorage
from repo_tracker.domain.models import RepositoryRecord, SourcePath


logger = logging.getLogger(__name__)


class RepositoryTrackerService:
    """Application service behind the list, add, refresh and delete requests.

    Request handlers call these methods and translate the domain errors
    into client error responses.
    """

    def __init__(
        self,
        github_client: IGitHubClient,
        storage: IRepositoryStorage,
        coordinator: RefreshCoordinator
    ):
        self._github_client = github_client
        self._storage = storage
        self._coordinator = coordinator

    async def list_repositories(self, user_id: int) -> List[RepositoryRecord]:
        """Return the user's repositories as currently stored.

        Starts a background sweep so the next listing shows fresher data;
        this listing does not wait for it.
        """
        self._coordinator.trigger_sweep(user_id)
        return await self._storage.find_by_user(user_id)

    async def add_repository(self, user_id: int, path: str) -> RepositoryRecord:
        """Start tracking a repository.

        Stores a placeholder record and fills in its metadata in the
        background.

        Args:
            user_id: User adding the repository
            path: Repository path in ``owner/name`` form

        Returns:
            The placeholder record

        Raises:
            ValidationError: If the path is malformed
            DuplicateRepositoryError: If the user already tracks it
            UserNotFoundError: If the user does not exist
        """
        source = SourcePath.parse(path)
        record = await self._storage.create(RepositoryRecord.placeholder(user_id, source))
        logger.info(f"Created initial repository record {record.repo_id} for {record.full_name}")

        self._coordinator.schedule_refresh(record)
        return record

    async def refresh_repository(
        self,
        user_id: int,
        record_id: int,
        strict: bool = False
    ) -> bool:
        """Refresh one repository and wait for it.

        Returns:
            True if fresh metadata was stored. False means the refresh was
            attempted but GitHub failed; the record keeps its previous data.

        Raises:
            RepositoryNotFoundError: If the user has no such record
        """
        return await self._coordinator.refresh_single(user_id, record_id, strict=strict)

    async def delete_repository(self, user_id: int, record_id: int) -> None:
        """Stop tracking a repository.

        Raises:
            RepositoryNotFoundError: If the user has no such record
        """
        deleted = await self._storage.delete_by_id(record_id, user_id)
        if deleted == 0:
            raise RepositoryNotFoundError(record_id, user_id)

        logger.info(f"Deleted repository {record_id} for user {user_id}")

    async def close(self) -> None:
        """Wait for background refreshes, then close connections."""
        await self._coordinator.drain()
        await self._github_client.close()
        await self._storage.close()
