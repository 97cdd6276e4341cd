"""Main entry point for the repository tracker.

This script drives the dashboard use cases from the command line using the
application service.
"""
import argparse
import asyncio
import sys
import logging
from typing import List, Optional
from repo_tracker.config import Settings, configure_logging, load_environment
from repo_tracker.domain.errors import ConfigurationError, RepoTrackerError
from repo_tracker.domain.models import RepositoryRecord
from repo_tracker.infrastructure.github_client import GitHubGraphQLClient
from repo_tracker.infrastructure.postgres_repository import PostgresRepositoryStorage
from repo_tracker.application.refresh_coordinator import RefreshCoordinator
from repo_tracker.application.tracker_service import RepositoryTrackerService

# Load environment variables from .env or env file
load_environment()


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Track GitHub repositories for a user",
        epilog=(
            "Each invocation starts with no sweep history, so every list command "
            "refreshes. REFRESH_MIN_INTERVAL_SECONDS only spaces out sweeps inside "
            "one long-running process."
        )
    )
    parser.add_argument("--user-id", type=int, required=True, help="Owning user ID")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("list", help="List tracked repositories and refresh them")

    add_parser = subparsers.add_parser("add", help="Track a repository")
    add_parser.add_argument("path", help="Repository path as owner/name")

    refresh_parser = subparsers.add_parser("refresh", help="Refresh one repository now")
    refresh_parser.add_argument("id", type=int, help="Repository record ID")
    refresh_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail when GitHub cannot be queried"
    )

    delete_parser = subparsers.add_parser("delete", help="Stop tracking a repository")
    delete_parser.add_argument("id", type=int, help="Repository record ID")

    return parser


def print_repositories(repositories: List[RepositoryRecord]) -> None:
    """Print repositories as a fixed-width table."""
    print(f"{'ID':>6} {'Repository':<40} {'Stars':>10} {'Forks':>8} {'Issues':>8} {'Refreshed':<20}")
    print("-" * 96)
    for repo in repositories:
        refreshed = repo.last_refreshed.strftime("%Y-%m-%d %H:%M:%S") if repo.last_refreshed else "never"
        print(
            f"{repo.repo_id:>6} {repo.full_name:<40} {repo.stars:>10,} "
            f"{repo.forks:>8,} {repo.open_issues:>8,} {refreshed:<20}"
        )


async def run(args: argparse.Namespace, settings: Settings) -> None:
    """Execute one tracker command."""
    storage = PostgresRepositoryStorage(settings.connection_string, settings.db_pool_size)
    github_client = GitHubGraphQLClient(settings.github_token, timeout=settings.fetch_timeout)
    coordinator = RefreshCoordinator(
        github_client=github_client,
        storage=storage,
        fetch_timeout=settings.fetch_timeout,
        min_refresh_interval=settings.min_refresh_interval
    )
    service = RepositoryTrackerService(github_client, storage, coordinator)

    try:
        if args.command == "list":
            print_repositories(await service.list_repositories(args.user_id))

        elif args.command == "add":
            record = await service.add_repository(args.user_id, args.path)
            print(f"Tracking {record.full_name} as repository {record.repo_id}")

        elif args.command == "refresh":
            refreshed = await service.refresh_repository(args.user_id, args.id, strict=args.strict)
            if refreshed:
                print(f"Repository {args.id} refreshed")
            else:
                print(f"Repository {args.id} refresh attempted, GitHub data unavailable")

        elif args.command == "delete":
            await service.delete_repository(args.user_id, args.id)
            print(f"Repository {args.id} deleted")

    finally:
        await service.close()


def main(argv: Optional[List[str]] = None) -> None:
    """Parse arguments and run the requested command."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        configure_logging()
        logger.error(str(e))
        sys.exit(1)

    configure_logging(settings.log_level)

    try:
        asyncio.run(run(args, settings))
    except RepoTrackerError as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
