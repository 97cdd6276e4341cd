"""GitHub GraphQL API client implementation with rate limit tracking."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional
import aiohttp
from gql import gql, Client
from gql.client import AsyncClientSession
from gql.transport.aiohttp import AIOHTTPTransport
from gql.transport.exceptions import (
    TransportError,
    TransportQueryError,
    TransportServerError
)
from repo_tracker.domain.errors import (
    RateLimitedError,
    SourceError,
    SourceNotFoundError,
    SourceUnavailableError
)
from repo_tracker.domain.github_interface import IGitHubClient
from repo_tracker.domain.models import DEFAULT_BRANCH, RepositoryMetadata


logger = logging.getLogger(__name__)


GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"

# Below this many remaining points, requests are refused until the reset.
RATE_LIMIT_RESERVE = 10


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a GitHub ISO 8601 timestamp such as ``2024-01-01T12:00:00Z``."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def to_metadata(node: dict) -> RepositoryMetadata:
    """Transform a GraphQL ``repository`` node into RepositoryMetadata.

    The open issue count includes open pull requests, as in the REST API.
    """
    open_issues = (node.get("issues") or {}).get("totalCount", 0)
    open_pulls = (node.get("pullRequests") or {}).get("totalCount", 0)

    return RepositoryMetadata(
        owner=(node.get("owner") or {}).get("login"),
        name=node.get("name"),
        url=node.get("url"),
        description=node.get("description"),
        stars=node.get("stargazerCount", 0),
        forks=node.get("forkCount", 0),
        open_issues=open_issues + open_pulls,
        language=(node.get("primaryLanguage") or {}).get("name"),
        default_branch=(node.get("defaultBranchRef") or {}).get("name") or DEFAULT_BRANCH,
        source_created_at=parse_timestamp(node.get("createdAt")),
        source_updated_at=parse_timestamp(node.get("updatedAt"))
    )


def classify_error(error: Exception, full_name: str) -> SourceError:
    """Translate a gql or network exception into a domain SourceError."""
    if isinstance(error, TransportQueryError):
        error_types = {e.get("type") for e in (error.errors or []) if isinstance(e, dict)}
        if "NOT_FOUND" in error_types:
            return SourceNotFoundError(f"Repository not found on GitHub: {full_name}")
        if "RATE_LIMITED" in error_types:
            return RateLimitedError(f"GitHub rate limit exceeded: {error}")

    if isinstance(error, TransportServerError) and error.code in (403, 429):
        return RateLimitedError(f"GitHub rate limit exceeded: {error}")

    if "rate limit" in str(error).lower():
        return RateLimitedError(f"GitHub rate limit exceeded: {error}")

    return SourceUnavailableError(f"Failed to fetch repository data from GitHub: {error}")


class GitHubGraphQLClient(IGitHubClient):
    """GitHub GraphQL API client for single repository lookups.

    Implements the IGitHubClient port, providing an anti-corruption layer
    between the domain and GitHub's API. One session is opened lazily and
    shared by concurrent fetches.
    """

    REPOSITORY_QUERY = gql("""
        query RepositoryMetadata($owner: String!, $name: String!) {
            repository(owner: $owner, name: $name) {
                name
                owner {
                    login
                }
                url
                description
                stargazerCount
                forkCount
                issues(states: OPEN) {
                    totalCount
                }
                pullRequests(states: OPEN) {
                    totalCount
                }
                createdAt
                updatedAt
                primaryLanguage {
                    name
                }
                defaultBranchRef {
                    name
                }
            }
            rateLimit {
                remaining
                resetAt
            }
        }
    """)

    def __init__(self, access_token: str, timeout: float = 10):
        """Initialize GitHub client.

        Args:
            access_token: GitHub personal access token
            timeout: HTTP request timeout in seconds
        """
        self._access_token = access_token
        self._timeout = timeout
        self._client: Optional[Client] = None
        self._session: Optional[AsyncClientSession] = None
        self._connect_lock = asyncio.Lock()
        self._rate_limit_remaining: Optional[int] = None
        self._rate_limit_reset_at: Optional[datetime] = None

    async def _get_session(self) -> AsyncClientSession:
        """Open the GraphQL session (lazy initialization)."""
        async with self._connect_lock:
            if self._session is None:
                headers = {"Authorization": f"Bearer {self._access_token}"}
                transport = AIOHTTPTransport(
                    url=GITHUB_GRAPHQL_URL,
                    headers=headers,
                    timeout=self._timeout
                )
                self._client = Client(
                    transport=transport,
                    fetch_schema_from_transport=False,
                    execute_timeout=self._timeout
                )
                self._session = await self._client.connect_async(reconnecting=False)
            return self._session

    def _check_rate_limit(self, full_name: str) -> None:
        """Refuse requests while the rate limit is nearly exhausted."""
        if self._rate_limit_remaining is None or self._rate_limit_remaining > RATE_LIMIT_RESERVE:
            return
        if self._rate_limit_reset_at is None:
            return

        wait_time = (self._rate_limit_reset_at - datetime.now(timezone.utc)).total_seconds()
        if wait_time > 0:
            raise RateLimitedError(
                f"Rate limit nearly exhausted, not fetching {full_name}. "
                f"Resets in {wait_time:.0f} seconds at {self._rate_limit_reset_at}"
            )

    def _record_rate_limit(self, result: dict) -> None:
        rate_limit = result.get("rateLimit") or {}
        if "remaining" in rate_limit:
            self._rate_limit_remaining = rate_limit["remaining"]
        reset_at = parse_timestamp(rate_limit.get("resetAt"))
        if reset_at:
            self._rate_limit_reset_at = reset_at

        logger.debug(
            f"Rate limit remaining: {self._rate_limit_remaining}, "
            f"resets at: {self._rate_limit_reset_at}"
        )

    async def _execute_query(self, owner: str, name: str) -> dict:
        """Execute the repository query.

        Args:
            owner: Repository owner login
            name: Repository name

        Returns:
            Query result dictionary
        """
        session = await self._get_session()
        return await session.execute(
            self.REPOSITORY_QUERY,
            variable_values={"owner": owner, "name": name}
        )

    async def fetch_repository(self, owner: str, name: str) -> RepositoryMetadata:
        """Fetch the current metadata of one repository from GitHub.

        Args:
            owner: Repository owner login
            name: Repository name

        Returns:
            RepositoryMetadata domain value

        Raises:
            SourceNotFoundError: When the repository does not exist
            RateLimitedError: When the rate limit is exhausted
            SourceUnavailableError: On any other failure
        """
        full_name = f"{owner}/{name}"
        self._check_rate_limit(full_name)

        try:
            result = await self._execute_query(owner, name)
        except (TransportError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error executing GraphQL query for {full_name}: {e}")
            raise classify_error(e, full_name) from e

        self._record_rate_limit(result)

        node = result.get("repository")
        if not node:
            raise SourceNotFoundError(f"Repository not found on GitHub: {full_name}")

        return to_metadata(node)

    async def close(self) -> None:
        """Close the GraphQL client and transport."""
        async with self._connect_lock:
            if self._client is not None and self._session is not None:
                await self._client.close_async()
            self._session = None
            self._client = None
