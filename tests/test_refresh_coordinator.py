"""Tests for the refresh coordinator."""
import asyncio
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from conftest import make_metadata, make_record
from repo_tracker.application.refresh_coordinator import RefreshCoordinator
from repo_tracker.domain.errors import (
    RateLimitedError,
    RepositoryNotFoundError,
    SourceUnavailableError,
)
from repo_tracker.domain.models import RepositoryRecord


PATHS = ["facebook/react", "python/cpython", "torvalds/linux"]


async def seed(storage, github, user_id=1, paths=PATHS):
    records = []
    for path in paths:
        records.append(await storage.create(make_record(user_id, path)))
        github.responses[path] = make_metadata(path, stars=1000 + len(records))
    return records


def test_sweep_refreshes_every_repository(storage, github):
    """Test a sweep updates all of the user's records."""
    async def scenario():
        await seed(storage, github)
        coordinator = RefreshCoordinator(github, storage)
        metrics = await coordinator.trigger_sweep(1)
        return coordinator, metrics

    coordinator, metrics = asyncio.run(scenario())

    assert metrics.user_id == 1
    assert metrics.repositories_total == 3
    assert metrics.repositories_refreshed == 3
    assert metrics.errors_encountered == 0
    assert sorted(github.calls) == sorted(PATHS)
    assert all(r.last_refreshed is not None for r in storage.records.values())
    assert not coordinator.is_in_flight(1)


def test_second_trigger_while_running_is_noop(storage, github):
    """Test rapid repeated triggers produce a single pass over the records."""
    async def scenario():
        github.gate = asyncio.Event()
        await seed(storage, github)
        coordinator = RefreshCoordinator(github, storage)

        first = coordinator.trigger_sweep(1)
        await asyncio.sleep(0.01)
        second = coordinator.trigger_sweep(1)
        third = coordinator.trigger_sweep(1)
        in_flight = coordinator.is_in_flight(1)

        github.gate.set()
        metrics = await first
        return first, second, third, in_flight, metrics

    first, second, third, in_flight, metrics = asyncio.run(scenario())

    assert first is not None
    assert second is None
    assert third is None
    assert in_flight
    assert len(github.calls) == 3
    assert metrics.repositories_refreshed == 3


def test_sweeps_never_overlap_for_a_user(storage, github):
    """Test no two fetch phases for the same user run at once."""
    async def scenario():
        await seed(storage, github, paths=["facebook/react"])
        coordinator = RefreshCoordinator(github, storage)
        tasks = []
        for _ in range(20):
            tasks.append(coordinator.trigger_sweep(1))
            await asyncio.sleep(0)
        await coordinator.drain()
        return [t for t in tasks if t is not None]

    started = asyncio.run(scenario())

    # Each started sweep fetches the single repository once; overlap would
    # show up as concurrent fetches.
    assert github.max_active == 1
    assert len(github.calls) == len(started)


def test_users_are_refreshed_independently(storage, github):
    """Test a running sweep for one user does not block another user."""
    async def scenario():
        github.gate = asyncio.Event()
        await seed(storage, github, user_id=1, paths=["facebook/react"])
        await seed(storage, github, user_id=2, paths=["python/cpython"])
        coordinator = RefreshCoordinator(github, storage)

        first = coordinator.trigger_sweep(1)
        second = coordinator.trigger_sweep(2)
        github.gate.set()
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first.repositories_refreshed == 1
    assert second.repositories_refreshed == 1


def test_failed_record_load_clears_in_flight_marker(storage, github):
    """Test the marker is cleared even when listing the records fails."""
    async def scenario():
        storage.fail_find_by_user = True
        coordinator = RefreshCoordinator(github, storage)
        metrics = await coordinator.trigger_sweep(1)
        return coordinator, metrics

    coordinator, metrics = asyncio.run(scenario())

    assert not coordinator.is_in_flight(1)
    assert metrics.repositories_total == 0
    assert metrics.errors_encountered == 1
    assert github.calls == []


def test_partial_failure_is_isolated(storage, github):
    """Test one rate-limited repository does not affect the others."""
    async def scenario():
        records = await seed(storage, github)
        github.responses["python/cpython"] = RateLimitedError("GitHub rate limit exceeded")
        coordinator = RefreshCoordinator(github, storage)
        metrics = await coordinator.trigger_sweep(1)
        return coordinator, records, metrics

    coordinator, records, metrics = asyncio.run(scenario())
    failed = next(r for r in records if r.full_name == "python/cpython")

    assert metrics.repositories_refreshed == 2
    assert metrics.errors_encountered == 1
    assert storage.records[failed.repo_id] == failed
    for record in records:
        if record is not failed:
            assert storage.records[record.repo_id].stars > 1000
    assert not coordinator.is_in_flight(1)


def test_refresh_one_failure_leaves_record_unchanged(storage, github):
    """Test a failed fetch leaves the stored record untouched."""
    async def scenario():
        record = await storage.create(make_record(1, "facebook/react"))
        github.responses["facebook/react"] = SourceUnavailableError("connection reset")
        coordinator = RefreshCoordinator(github, storage)
        refreshed = await coordinator.refresh_one(record)
        return record, refreshed

    record, refreshed = asyncio.run(scenario())

    assert refreshed is False
    assert storage.records[record.repo_id] == record
    assert storage.update_calls == []


def test_refresh_one_updates_documented_fields(storage, github):
    """Test a successful refresh writes the metadata and a fresh timestamp."""
    async def scenario():
        record = await storage.create(make_record(7, "facebook/react"))
        metadata = make_metadata("facebook/react", stars=220000, forks=45000, open_issues=900)
        github.responses["facebook/react"] = metadata
        coordinator = RefreshCoordinator(github, storage)
        started = datetime.now(timezone.utc)
        refreshed = await coordinator.refresh_one(record)
        return record, metadata, started, refreshed

    record, metadata, started, refreshed = asyncio.run(scenario())
    updated = storage.records[record.repo_id]

    assert refreshed is True
    assert updated.repo_id == record.repo_id
    assert updated.user_id == 7
    assert updated.stars == 220000
    assert updated.forks == 45000
    assert updated.open_issues == 900
    assert updated.description == metadata.description
    assert updated.language == "Python"
    assert updated.default_branch == "develop"
    assert updated.source_created_at == metadata.source_created_at
    assert updated.source_updated_at == metadata.source_updated_at
    assert updated.last_refreshed >= started


def test_refresh_one_is_idempotent(storage, github):
    """Test refreshing an unchanged repository twice stores the same data."""
    async def scenario():
        record = await storage.create(make_record(1, "facebook/react"))
        github.responses["facebook/react"] = make_metadata("facebook/react")
        coordinator = RefreshCoordinator(github, storage)
        await coordinator.refresh_one(record)
        first = storage.records[record.repo_id]
        await coordinator.refresh_one(first)
        return first, storage.records[record.repo_id]

    first, second = asyncio.run(scenario())

    assert replace(first, last_refreshed=None) == replace(second, last_refreshed=None)


def test_refresh_one_with_malformed_path(storage, github):
    """Test a record with an unusable path is skipped without fetching."""
    async def scenario():
        record = await storage.create(RepositoryRecord(
            user_id=1, owner="broken", name="", full_name="broken", url="https://github.com/broken"
        ))
        coordinator = RefreshCoordinator(github, storage)
        return await coordinator.refresh_one(record)

    assert asyncio.run(scenario()) is False
    assert github.calls == []


def test_refresh_one_times_out(storage, github):
    """Test a hanging fetch is abandoned after the fetch timeout."""
    async def scenario():
        github.gate = asyncio.Event()
        record = await storage.create(make_record(1, "facebook/react"))
        coordinator = RefreshCoordinator(github, storage, fetch_timeout=0.01)
        absorbed = await coordinator.refresh_one(record)
        with pytest.raises(SourceUnavailableError):
            await coordinator.refresh_one(record, strict=True)
        return absorbed

    assert asyncio.run(scenario()) is False
    assert storage.update_calls == []


def test_refresh_single_rejects_other_users_record(storage, github):
    """Test an explicit refresh of someone else's record is not found."""
    async def scenario():
        record = await storage.create(make_record(1, "facebook/react"))
        github.responses["facebook/react"] = make_metadata("facebook/react")
        coordinator = RefreshCoordinator(github, storage)
        with pytest.raises(RepositoryNotFoundError):
            await coordinator.refresh_single(2, record.repo_id)
        return record

    record = asyncio.run(scenario())

    assert storage.records[record.repo_id] == record
    assert github.calls == []


def test_refresh_single_absorbs_or_raises_source_errors(storage, github):
    """Test explicit refresh reports GitHub failures only in strict mode."""
    async def scenario():
        record = await storage.create(make_record(1, "facebook/react"))
        github.responses["facebook/react"] = RateLimitedError("GitHub rate limit exceeded")
        coordinator = RefreshCoordinator(github, storage)
        absorbed = await coordinator.refresh_single(1, record.repo_id)
        with pytest.raises(RateLimitedError):
            await coordinator.refresh_single(1, record.repo_id, strict=True)
        return absorbed

    assert asyncio.run(scenario()) is False


def test_min_refresh_interval_suppresses_repeat_sweeps(storage, github):
    """Test a finished sweep is not repeated before the interval elapses."""
    now = [100.0]

    async def scenario():
        await seed(storage, github, paths=["facebook/react"])
        coordinator = RefreshCoordinator(
            github, storage, min_refresh_interval=60, clock=lambda: now[0]
        )
        await coordinator.trigger_sweep(1)

        now[0] = 130.0
        too_soon = coordinator.trigger_sweep(1)

        now[0] = 161.0
        later = coordinator.trigger_sweep(1)
        await later
        return too_soon, later

    too_soon, later = asyncio.run(scenario())

    assert too_soon is None
    assert later is not None
    assert len(github.calls) == 2


def test_cancelled_sweep_clears_in_flight_marker(storage, github):
    """Test cancelling a sweep at shutdown still clears the marker."""
    async def scenario():
        github.gate = asyncio.Event()
        await seed(storage, github)
        coordinator = RefreshCoordinator(github, storage)
        task = coordinator.trigger_sweep(1)
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return coordinator

    coordinator = asyncio.run(scenario())

    assert not coordinator.is_in_flight(1)


def test_schedule_refresh_and_drain(storage, github):
    """Test background refreshes complete once drained."""
    async def scenario():
        record = await storage.create(make_record(1, "facebook/react"))
        github.responses["facebook/react"] = make_metadata("facebook/react", stars=5)
        coordinator = RefreshCoordinator(github, storage)
        coordinator.schedule_refresh(record)
        await coordinator.drain()
        return record

    record = asyncio.run(scenario())

    assert storage.records[record.repo_id].stars == 5


def test_trigger_sweep_requires_running_loop(storage, github):
    """Test triggering outside an event loop fails without marking the user."""
    coordinator = RefreshCoordinator(github, storage)

    with pytest.raises(RuntimeError):
        coordinator.trigger_sweep(1)

    assert not coordinator.is_in_flight(1)
