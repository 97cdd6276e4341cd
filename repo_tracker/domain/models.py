"""Domain models representing core business entities."""
import re
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Dict, Optional

from repo_tracker.domain.errors import ValidationError


GITHUB_URL = "https://github.com"
DEFAULT_BRANCH = "main"

_OWNER_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?$")
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class SourcePath:
    """The ``owner/name`` identifier of a repository at GitHub."""
    owner: str
    name: str

    @classmethod
    def parse(cls, path: str) -> 'SourcePath':
        """Parse an ``owner/name`` path.

        Surrounding whitespace and slashes are ignored, as is a trailing
        ``.git`` on the name.

        Raises:
            ValidationError: If the path is not exactly two valid segments
        """
        if not isinstance(path, str) or not path.strip():
            raise ValidationError("Repository path is required")

        segments = path.strip().strip("/").split("/")
        if len(segments) != 2 or not all(segments):
            raise ValidationError(
                "Invalid repository path. Expected format: owner/repo"
            )

        owner, name = segments
        if name.endswith(".git"):
            name = name[:-len(".git")]

        if not _OWNER_PATTERN.match(owner):
            raise ValidationError(f"Invalid repository owner: {owner!r}")
        if not name or name in (".", "..") or not _NAME_PATTERN.match(name):
            raise ValidationError(f"Invalid repository name: {name!r}")

        return cls(owner=owner, name=name)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"{GITHUB_URL}/{self.full_name}"


@dataclass(frozen=True)
class RepositoryMetadata:
    """Current state of a repository as reported by GitHub."""
    owner: str
    name: str
    url: str
    stars: int
    forks: int
    open_issues: int
    default_branch: str
    description: Optional[str] = None
    language: Optional[str] = None
    source_created_at: Optional[datetime] = None
    source_updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def as_fields(self) -> Dict[str, Any]:
        """Returns the record fields a refresh overwrites."""
        return {
            "owner": self.owner,
            "name": self.name,
            "full_name": self.full_name,
            "url": self.url,
            "description": self.description,
            "stars": self.stars,
            "forks": self.forks,
            "open_issues": self.open_issues,
            "language": self.language,
            "default_branch": self.default_branch,
            "source_created_at": self.source_created_at,
            "source_updated_at": self.source_updated_at,
        }


# Columns a refresh may write; everything else on a record is fixed at creation.
REFRESHABLE_FIELDS = frozenset(
    [f.name for f in fields(RepositoryMetadata)] + ["full_name", "last_refreshed"]
)


def check_refreshable_fields(updates: Dict[str, Any]) -> None:
    """Reject updates touching fields a refresh may not change.

    Raises:
        ValidationError: If ``updates`` names an ownership or identity field
    """
    unknown = set(updates) - REFRESHABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")


@dataclass(frozen=True)
class RepositoryRecord:
    """Immutable domain entity for a repository tracked by a user.

    Counters are placeholders until the first successful refresh sets
    ``last_refreshed``.
    """
    user_id: int
    owner: str
    name: str
    full_name: str
    url: str
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    default_branch: str = DEFAULT_BRANCH
    description: Optional[str] = None
    language: Optional[str] = None
    source_created_at: Optional[datetime] = None
    source_updated_at: Optional[datetime] = None
    last_refreshed: Optional[datetime] = None
    repo_id: Optional[int] = None

    @classmethod
    def placeholder(cls, user_id: int, source: SourcePath) -> 'RepositoryRecord':
        """Returns a new, not yet refreshed record for ``source``."""
        return cls(
            user_id=user_id,
            owner=source.owner,
            name=source.name,
            full_name=source.full_name,
            url=source.url,
        )

    @property
    def source_path(self) -> SourcePath:
        """Returns the parsed source path of this record.

        Raises:
            ValidationError: If the stored full name is malformed
        """
        return SourcePath.parse(self.full_name)

    def with_id(self, repo_id: int) -> 'RepositoryRecord':
        """Returns a new RepositoryRecord instance with the provided ID."""
        return replace(self, repo_id=repo_id)


@dataclass(frozen=True)
class SweepMetrics:
    """Metrics for one refresh sweep over a user's repositories."""
    user_id: int
    repositories_total: int
    repositories_refreshed: int
    errors_encountered: int
    duration_seconds: float
