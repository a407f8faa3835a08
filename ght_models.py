"""ght_models.py

Read-only snapshots of the GitHub data that *ght* reports on, plus the error
taxonomy shared by every layer of the tool.

All records are decoded once at the gateway boundary (see *ght_github*) and
never mutated afterwards.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


# --- Errors --- #

class GhtError(Exception):
    """Base class for every error reported to the user."""


class ConfigurationError(GhtError):
    """Credential file missing, unreadable or empty, or bad settings."""


class ValidationError(GhtError):
    """Malformed command-line input. Raised before any network call."""


class TransportError(GhtError):
    """A remote call failed (network, authorization, rate limit, bad payload).

    *partial_results* holds whatever a paginated fetch accumulated before the
    failing page.
    """

    def __init__(self, message: str, partial_results: Optional[List] = None) -> None:
        super().__init__(message)
        self.partial_results: List = list(partial_results or [])


class NotFoundError(TransportError):
    """The user, organization or repository does not exist or is not visible."""


# --- Data model --- #

class OwnerKind(str, enum.Enum):
    ORGANIZATION = "organization"
    USER = "user"


@dataclass(frozen=True)
class RepositorySummary:
    name: str
    full_name: str
    url: str


@dataclass(frozen=True)
class BranchProtectionRule:
    """One branch protection rule and the branches it currently matches."""

    pattern: str
    branch_names: frozenset = field(default_factory=frozenset)
    requires_approving_reviews: bool = False
    required_approving_review_count: int = 0
    requires_status_checks: bool = False
    required_status_check_contexts: Tuple[str, ...] = ()

    @property
    def sorted_branch_names(self) -> List[str]:
        """Branch names in display order; the pattern when nothing matches."""
        return sorted(self.branch_names) or [self.pattern]


@dataclass(frozen=True)
class Release:
    tag_name: str
    title: str
    description: str
    author: str
    published_at: Optional[datetime]  # None while the release is a draft
    is_draft: bool
    is_prerelease: bool
    url: str


@dataclass(frozen=True)
class Tag:
    name: str
    commit_id: str


@dataclass(frozen=True)
class RepositoryDetail:
    """Aggregate for one repository, assembled fresh for each report."""

    full_name: str
    url: str
    default_branch: str
    protections: Tuple[BranchProtectionRule, ...] = ()
    releases: Tuple[Release, ...] = ()  # creation time, newest first
    tags: Tuple[Tag, ...] = ()  # commit date, oldest first


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a cursor-paginated collection."""

    items: Tuple[T, ...]
    end_cursor: Optional[str]
    has_next_page: bool
