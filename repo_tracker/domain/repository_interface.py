"""Repository interface (port) for data persistence.

This is the port in hexagonal architecture that the infrastructure layer implements.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from repo_tracker.domain.models import RepositoryRecord


class IRepositoryStorage(ABC):
    """Abstract interface for tracked repository storage.

    Every record is scoped to its owning user. Each write is independent;
    concurrent updates of the same record resolve as last write wins.
    """

    @abstractmethod
    async def create(self, record: RepositoryRecord) -> RepositoryRecord:
        """Insert a new record.

        Args:
            record: Record without an ID

        Returns:
            The stored record carrying its generated ID

        Raises:
            DuplicateRepositoryError: If the user already tracks this path
        """
        pass

    @abstractmethod
    async def find_by_user(self, user_id: int) -> List[RepositoryRecord]:
        """Get all records owned by a user."""
        pass

    @abstractmethod
    async def find_by_id_and_user(
        self,
        record_id: int,
        user_id: int
    ) -> Optional[RepositoryRecord]:
        """Get one record, or None if it is missing or owned by someone else."""
        pass

    @abstractmethod
    async def update_by_id(
        self,
        record_id: int,
        fields: Dict[str, Any]
    ) -> Optional[RepositoryRecord]:
        """Overwrite refreshable fields of a record.

        Args:
            record_id: ID of the record to update
            fields: Mapping of refreshable field names to new values

        Returns:
            The updated record, or None if it no longer exists
        """
        pass

    @abstractmethod
    async def delete_by_id(self, record_id: int, user_id: int) -> int:
        """Delete a user's record and return the number of records removed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
