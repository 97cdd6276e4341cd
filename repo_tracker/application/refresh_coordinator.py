"""Refresh coordinator keeping tracked repositories in sync with GitHub."""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Set
from repo_tracker.domain.errors import (
    RepositoryNotFoundError,
    SourceError,
    SourceUnavailableError
)
from repo_tracker.domain.github_interface import IGitHubClient
from repo_tracker.domain.repository_interface import IRepositoryStorage
from repo_tracker.domain.models import RepositoryRecord, SweepMetrics


logger = logging.getLogger(__name__)


class RefreshCoordinator:
    """Application service for refreshing cached repository metadata.

    Runs at most one background sweep per user at a time. A sweep fetches
    every repository the user tracks and writes the results back to storage.
    Failures are isolated per repository: a failed fetch or write leaves
    that record at its last known-good state and never stops the sweep.

    All methods must be called from the event loop thread; the in-flight
    set is not guarded by a lock.
    """

    def __init__(
        self,
        github_client: IGitHubClient,
        storage: IRepositoryStorage,
        fetch_timeout: float = 10.0,
        min_refresh_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize refresh coordinator.

        Args:
            github_client: GitHub API client implementation
            storage: Repository storage implementation
            fetch_timeout: Seconds allowed for a single GitHub fetch
            min_refresh_interval: Seconds after a finished sweep during
                which new sweeps for the same user are skipped
            clock: Monotonic time source
        """
        self._github_client = github_client
        self._storage = storage
        self._fetch_timeout = fetch_timeout
        self._min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._in_flight: Set[int] = set()
        self._last_completed: Dict[int, float] = {}
        self._tasks: Set[asyncio.Task] = set()

    def is_in_flight(self, user_id: int) -> bool:
        """Returns True while a sweep for the user is running."""
        return user_id in self._in_flight

    def trigger_sweep(self, user_id: int) -> Optional[asyncio.Task]:
        """Start a background sweep over the user's repositories.

        The sweep is not awaited. Calling this while a sweep for the same
        user is running, or within ``min_refresh_interval`` of the last one
        finishing, does nothing.

        Args:
            user_id: Owner of the repositories to refresh

        Returns:
            The task running the sweep, resolving to SweepMetrics, or None
            if no sweep was started
        """
        loop = asyncio.get_running_loop()

        if user_id in self._in_flight:
            logger.info(f"Repository refresh already in progress for user {user_id}")
            return None

        last_completed = self._last_completed.get(user_id)
        if (
            last_completed is not None
            and self._clock() - last_completed < self._min_refresh_interval
        ):
            logger.debug(f"Skipping refresh for user {user_id}: refreshed recently")
            return None

        self._in_flight.add(user_id)
        return self._track(loop.create_task(self._sweep(user_id)))

    def schedule_refresh(self, record: RepositoryRecord) -> asyncio.Task:
        """Refresh a single record in the background without awaiting it."""
        task = asyncio.get_running_loop().create_task(self.refresh_one(record))
        return self._track(task)

    async def refresh_one(self, record: RepositoryRecord, strict: bool = False) -> bool:
        """Fetch fresh metadata for a record and persist it.

        Args:
            record: Record to refresh
            strict: Re-raise GitHub errors instead of absorbing them

        Returns:
            True if the record was updated, False if the refresh failed

        Raises:
            SourceError: Only when ``strict`` is set and GitHub failed
        """
        try:
            source = record.source_path
            try:
                metadata = await asyncio.wait_for(
                    self._github_client.fetch_repository(source.owner, source.name),
                    timeout=self._fetch_timeout
                )
            except asyncio.TimeoutError:
                raise SourceUnavailableError(
                    f"GitHub did not answer within {self._fetch_timeout}s"
                )

            fields = metadata.as_fields()
            fields["last_refreshed"] = datetime.now(timezone.utc)

            updated = await self._storage.update_by_id(record.repo_id, fields)
            if updated is None:
                logger.warning(
                    f"Repository {record.repo_id} ({record.full_name}) "
                    f"was deleted during refresh"
                )
                return False

            logger.info(
                f"Updated repository {record.repo_id} ({updated.full_name}): "
                f"{updated.stars} stars, {updated.forks} forks, "
                f"{updated.open_issues} open issues"
            )
            return True

        except SourceError as e:
            logger.error(
                f"Error refreshing repository {record.repo_id} "
                f"({record.full_name}): {e}"
            )
            if strict:
                raise
            return False
        except Exception as e:
            logger.error(
                f"Error refreshing repository {record.repo_id} "
                f"({record.full_name}): {e}"
            )
            return False

    async def refresh_single(
        self,
        user_id: int,
        record_id: int,
        strict: bool = False
    ) -> bool:
        """Refresh one of the user's repositories and wait for the result.

        Args:
            user_id: Owner of the record
            record_id: ID of the record to refresh
            strict: Re-raise GitHub errors instead of absorbing them

        Returns:
            True if the record was updated

        Raises:
            RepositoryNotFoundError: If the user has no such record
        """
        record = await self._storage.find_by_id_and_user(record_id, user_id)
        if record is None:
            raise RepositoryNotFoundError(record_id, user_id)

        return await self.refresh_one(record, strict=strict)

    async def drain(self) -> None:
        """Wait until every background sweep and refresh has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _sweep(self, user_id: int) -> SweepMetrics:
        start_time = time.time()
        total = 0
        refreshed = 0
        errors = 0

        try:
            records = await self._storage.find_by_user(user_id)
            total = len(records)
            logger.info(f"Starting refresh of {total} repositories for user {user_id}")

            results = await asyncio.gather(
                *(self.refresh_one(record) for record in records),
                return_exceptions=True
            )
            refreshed = sum(1 for result in results if result is True)
            errors = total - refreshed

        except Exception as e:
            logger.error(f"Failed to fetch repositories for refresh of user {user_id}: {e}")
            errors += 1
        finally:
            self._in_flight.discard(user_id)
            self._last_completed[user_id] = self._clock()

        metrics = SweepMetrics(
            user_id=user_id,
            repositories_total=total,
            repositories_refreshed=refreshed,
            errors_encountered=errors,
            duration_seconds=time.time() - start_time
        )

        logger.info(
            f"Refresh completed for user {user_id}: {refreshed}/{total} repositories "
            f"in {metrics.duration_seconds:.2f} seconds"
        )

        return metrics

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
