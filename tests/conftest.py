"""Shared test fixtures."""
import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from repo_tracker.domain.errors import DuplicateRepositoryError, SourceNotFoundError
from repo_tracker.domain.github_interface import IGitHubClient
from repo_tracker.domain.models import (
    RepositoryMetadata,
    RepositoryRecord,
    SourcePath,
    check_refreshable_fields,
)
from repo_tracker.domain.repository_interface import IRepositoryStorage


def make_metadata(full_name: str, stars: int = 100, forks: int = 10, open_issues: int = 5) -> RepositoryMetadata:
    """Metadata as GitHub would return it for ``full_name``."""
    owner, name = full_name.split("/")
    return RepositoryMetadata(
        owner=owner,
        name=name,
        url=f"https://github.com/{full_name}",
        description=f"The {name} project",
        stars=stars,
        forks=forks,
        open_issues=open_issues,
        language="Python",
        default_branch="develop",
        source_created_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        source_updated_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


def make_record(user_id: int, path: str) -> RepositoryRecord:
    return RepositoryRecord.placeholder(user_id, SourcePath.parse(path))


class InMemoryRepositoryStorage(IRepositoryStorage):
    """Dict-backed storage yielding to the event loop on every operation."""

    def __init__(self):
        self.records: Dict[int, RepositoryRecord] = {}
        self.fail_find_by_user = False
        self.update_calls: List[int] = []
        self.closed = False
        self._next_id = 1

    async def create(self, record: RepositoryRecord) -> RepositoryRecord:
        await asyncio.sleep(0)
        for existing in self.records.values():
            if existing.user_id == record.user_id and existing.full_name.lower() == record.full_name.lower():
                raise DuplicateRepositoryError(record.full_name)
        stored = record.with_id(self._next_id)
        self._next_id += 1
        self.records[stored.repo_id] = stored
        return stored

    async def find_by_user(self, user_id: int) -> List[RepositoryRecord]:
        await asyncio.sleep(0)
        if self.fail_find_by_user:
            raise ConnectionError("database unavailable")
        return [r for r in self.records.values() if r.user_id == user_id]

    async def find_by_id_and_user(self, record_id: int, user_id: int) -> Optional[RepositoryRecord]:
        await asyncio.sleep(0)
        record = self.records.get(record_id)
        if record is None or record.user_id != user_id:
            return None
        return record

    async def update_by_id(self, record_id: int, fields: Dict[str, Any]) -> Optional[RepositoryRecord]:
        await asyncio.sleep(0)
        self.update_calls.append(record_id)
        record = self.records.get(record_id)
        if record is None:
            return None
        check_refreshable_fields(fields)
        updated = replace(record, **fields)
        self.records[record_id] = updated
        return updated

    async def delete_by_id(self, record_id: int, user_id: int) -> int:
        await asyncio.sleep(0)
        record = self.records.get(record_id)
        if record is None or record.user_id != user_id:
            return 0
        del self.records[record_id]
        return 1

    async def close(self) -> None:
        self.closed = True


class FakeGitHubClient(IGitHubClient):
    """Scripted GitHub client.

    ``responses`` maps full names to metadata or to an exception to raise.
    When ``gate`` is set, every fetch waits for it before answering.
    """

    def __init__(self):
        self.responses: Dict[str, Any] = {}
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def fetch_repository(self, owner: str, name: str) -> RepositoryMetadata:
        full_name = f"{owner}/{name}"
        self.calls.append(full_name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            result = self.responses.get(full_name)
            if result is None:
                raise SourceNotFoundError(f"Repository not found on GitHub: {full_name}")
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def storage():
    """An empty in-memory repository storage."""
    return InMemoryRepositoryStorage()


@pytest.fixture
def github():
    """A GitHub client with no scripted responses."""
    return FakeGitHubClient()
