"""ght_github.py

Everything that talks to GitHub: settings and credential loading, the GraphQL
gateway, the cursor paginator used to list repositories, and the single-call
repository detail aggregator.

Only the gateway knows the shape of GitHub's JSON; it decodes responses into
the records of *ght_models* before handing them back.
"""
from __future__ import annotations

import logging
import os
import textwrap
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

import requests

from ght_models import (
    BranchProtectionRule,
    ConfigurationError,
    NotFoundError,
    OwnerKind,
    Page,
    Release,
    RepositoryDetail,
    RepositorySummary,
    Tag,
    TransportError,
)

T = TypeVar("T")

GRAPHQL_ENDPOINT = "https://api.github.com/graphql"
TOKEN_HELP_URL = "https://blog.github.com/2013-05-16-personal-api-tokens/"
DEFAULT_TOKEN_FILE = Path("~/.ght")

REQUEST_TIMEOUT = (5, 30)  # (connect_timeout, read_timeout) in seconds
PAGE_SIZE = 100  # GitHub's maximum for `first:`
MAX_PROTECTION_RULES = 10
MAX_MATCHING_REFS = 10
TAG_PREFIX = "refs/tags/"

logger = logging.getLogger(__name__)


# --- Configuration --- #

@dataclass(frozen=True)
class Settings:
    token_file: Path = DEFAULT_TOKEN_FILE
    endpoint: str = GRAPHQL_ENDPOINT
    timeout: Tuple[float, float] = REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``GHT_*`` environment variables.

        Unset or blank variables fall back to the defaults.
        """
        env = os.environ if environ is None else environ
        token_file = Path(env.get("GHT_TOKEN_FILE") or DEFAULT_TOKEN_FILE).expanduser()
        endpoint = env.get("GHT_GRAPHQL_ENDPOINT") or GRAPHQL_ENDPOINT
        raw_timeout = env.get("GHT_REQUEST_TIMEOUT")
        timeout = REQUEST_TIMEOUT
        if raw_timeout:
            try:
                read_timeout = float(raw_timeout)
            except ValueError:
                raise ConfigurationError(
                    f"GHT_REQUEST_TIMEOUT must be a number of seconds, got '{raw_timeout}'"
                ) from None
            if read_timeout <= 0:
                raise ConfigurationError("GHT_REQUEST_TIMEOUT must be greater than zero")
            timeout = (REQUEST_TIMEOUT[0], read_timeout)
        return cls(token_file=token_file, endpoint=endpoint, timeout=timeout)


def load_token(path: Path) -> str:
    """Return the personal API token stored in *path*, whitespace trimmed."""
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigurationError(
            f"Missing '{path}' file. This should contain your GitHub Personal API token. "
            f"See {TOKEN_HELP_URL}"
        )
    try:
        token = path.read_text().strip()
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Error reading file '{path}', error: {exc}") from exc
    if not token:
        raise ConfigurationError(
            f"File '{path}' is empty. It should contain your GitHub Personal API token. "
            f"See {TOKEN_HELP_URL}"
        )
    return token


# --- Decoding --- #

def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 onwards
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _decode_repository(node: Dict[str, Any]) -> RepositorySummary:
    return RepositorySummary(
        name=node.get("name") or "",
        full_name=node.get("nameWithOwner") or "",
        url=node.get("url") or "",
    )


def _decode_protection_rule(node: Dict[str, Any]) -> BranchProtectionRule:
    refs = (node.get("matchingRefs") or {}).get("nodes") or []
    return BranchProtectionRule(
        pattern=node.get("pattern") or "",
        branch_names=frozenset(ref["name"] for ref in refs if ref and ref.get("name")),
        requires_approving_reviews=bool(node.get("requiresApprovingReviews")),
        required_approving_review_count=node.get("requiredApprovingReviewCount") or 0,
        requires_status_checks=bool(node.get("requiresStatusChecks")),
        required_status_check_contexts=tuple(node.get("requiredStatusCheckContexts") or ()),
    )


def _decode_release(node: Dict[str, Any]) -> Release:
    return Release(
        tag_name=(node.get("tag") or {}).get("name") or "",
        title=node.get("name") or "",
        description=node.get("description") or "",
        author=(node.get("author") or {}).get("login") or "",
        published_at=_parse_datetime(node.get("publishedAt")),
        is_draft=bool(node.get("isDraft")),
        is_prerelease=bool(node.get("isPrerelease")),
        url=node.get("url") or "",
    )


def _decode_tag(node: Dict[str, Any]) -> Tag:
    return Tag(name=node.get("name") or "", commit_id=(node.get("target") or {}).get("oid") or "")


def _nodes(connection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [node for node in ((connection or {}).get("nodes") or []) if node]


# --- Gateway --- #

class GitHubGateway:
    """Executes GraphQL queries against GitHub and decodes the results.

    Use as a context manager so the underlying HTTP session is closed::

        with GitHubGateway(token) as gateway:
            page = gateway.query_repositories_page(OwnerKind.USER, "octocat", None)
    """

    def __init__(
        self,
        token: str,
        *,
        endpoint: str = GRAPHQL_ENDPOINT,
        timeout: Tuple[float, float] = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.call_count = 0
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"bearer {token}",
            }
        )

    @classmethod
    def from_settings(cls, token: str, settings: Settings) -> "GitHubGateway":
        return cls(token, endpoint=settings.endpoint, timeout=settings.timeout)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "GitHubGateway":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _github_graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """POST one GraphQL query and return its ``data`` object.

        Single attempt: every failure surfaces as *TransportError* (or
        *NotFoundError* for GraphQL NOT_FOUND errors).
        """
        self.call_count += 1
        start = time.perf_counter()
        try:
            resp = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.HTTPError as exc:
            duration = time.perf_counter() - start
            logger.warning("GraphQL request failed after %.3fs: %s", duration, exc)
            raise TransportError(
                f"GitHub GraphQL error {exc.response.status_code}: {exc.response.text.strip()}"
            ) from exc
        except (requests.Timeout, requests.ConnectionError) as exc:
            duration = time.perf_counter() - start
            logger.warning("GraphQL connection error after %.3fs: %s", duration, exc)
            raise TransportError(f"GitHub connection error: {exc}") from exc
        except requests.JSONDecodeError as exc:
            raise TransportError(f"GitHub returned a malformed response: {exc}") from exc
        except requests.RequestException as exc:
            raise TransportError(f"GitHub request error: {exc}") from exc
        logger.debug("GraphQL request completed in %.3fs", time.perf_counter() - start)

        if not isinstance(payload, dict):
            raise TransportError("GitHub returned a malformed response: expected a JSON object")
        errors = [err if isinstance(err, dict) else {"message": err} for err in payload.get("errors") or []]
        if errors:
            messages = "; ".join(str(err.get("message", err)) for err in errors)
            if any(err.get("type") == "NOT_FOUND" for err in errors):
                raise NotFoundError(messages)
            raise TransportError(f"GitHub GraphQL errors: {messages}")
        return payload.get("data") or {}

    def query_repositories_page(
        self, kind: OwnerKind, login: str, after: Optional[str]
    ) -> Page[RepositorySummary]:
        """Fetch one page of repositories owned by an organization or a user."""
        root_field = kind.value
        query = textwrap.dedent(
            f"""
            query($login: String!, $after: String) {{
              {root_field}(login: $login) {{
                repositories(first: {PAGE_SIZE}, after: $after) {{
                  pageInfo {{ hasNextPage endCursor }}
                  nodes {{ name nameWithOwner url }}
                }}
              }}
            }}
            """
        )
        data = self._github_graphql(query, {"login": login, "after": after})
        root_obj = data.get(root_field)
        if root_obj is None:
            raise NotFoundError(f"Could not resolve to a {root_field} with the login of '{login}'.")
        repos_conn = root_obj.get("repositories") or {}
        page_info = repos_conn.get("pageInfo") or {}
        return Page(
            items=tuple(_decode_repository(node) for node in _nodes(repos_conn)),
            end_cursor=page_info.get("endCursor"),
            has_next_page=bool(page_info.get("hasNextPage")),
        )

    def query_repository_detail(
        self, owner: str, name: str, max_releases: int, max_tags: int
    ) -> RepositoryDetail:
        """Fetch protections, releases and tags of one repository in one call.

        Releases come newest first, tags oldest first; the last *max_tags*
        tags are requested so the window ends with the most recent tag.
        """
        query = textwrap.dedent(
            f"""
            query($owner: String!, $name: String!, $maxReleases: Int!, $maxTags: Int!, $tagPrefix: String!) {{
              repository(owner: $owner, name: $name) {{
                nameWithOwner
                url
                defaultBranchRef {{ name }}
                branchProtectionRules(first: {MAX_PROTECTION_RULES}) {{
                  nodes {{
                    pattern
                    matchingRefs(first: {MAX_MATCHING_REFS}) {{ nodes {{ name }} }}
                    requiresApprovingReviews
                    requiredApprovingReviewCount
                    requiresStatusChecks
                    requiredStatusCheckContexts
                  }}
                }}
                releases(first: $maxReleases, orderBy: {{field: CREATED_AT, direction: DESC}}) {{
                  nodes {{
                    name
                    description
                    isDraft
                    isPrerelease
                    publishedAt
                    url
                    author {{ login }}
                    tag {{ name }}
                  }}
                }}
                tags: refs(refPrefix: $tagPrefix, last: $maxTags, orderBy: {{field: TAG_COMMIT_DATE, direction: ASC}}) {{
                  nodes {{
                    name
                    target {{ oid }}
                  }}
                }}
              }}
            }}
            """
        )
        variables = {
            "owner": owner,
            "name": name,
            "maxReleases": max_releases,
            "maxTags": max_tags,
            "tagPrefix": TAG_PREFIX,
        }
        data = self._github_graphql(query, variables)
        repo = data.get("repository")
        if repo is None:
            raise NotFoundError(f"Could not resolve to a Repository with the name '{owner}/{name}'.")
        return RepositoryDetail(
            full_name=repo.get("nameWithOwner") or f"{owner}/{name}",
            url=repo.get("url") or "",
            default_branch=(repo.get("defaultBranchRef") or {}).get("name") or "",
            protections=tuple(
                _decode_protection_rule(node) for node in _nodes(repo.get("branchProtectionRules"))
            ),
            releases=tuple(_decode_release(node) for node in _nodes(repo.get("releases"))),
            tags=tuple(_decode_tag(node) for node in _nodes(repo.get("tags"))),
        )


# --- Pagination --- #

def fetch_all_pages(
    fetch_page: Callable[[Optional[str]], Page[T]],
    start_cursor: Optional[str] = None,
) -> List[T]:
    """
    Fetches every item of a cursor-paginated collection.

    Args:
        fetch_page: Takes an 'after' cursor (None for the first page) and
                    returns one *Page*.
        start_cursor: The cursor to start pagination from. Defaults to None.

    Returns:
        All items, in the order the pages delivered them.

    Raises:
        TransportError: A page fetch failed, or a page asked for a next page
                        without a fresh cursor. Items fetched so far are on
                        the exception's *partial_results*.
    """
    all_items: List[T] = []
    after_cursor: Optional[str] = start_cursor
    pages = 0

    while True:
        try:
            page = fetch_page(after_cursor)
        except TransportError as exc:
            exc.partial_results = list(all_items)
            raise
        pages += 1
        all_items.extend(page.items)

        if not page.has_next_page:
            break
        if not page.end_cursor or page.end_cursor == after_cursor:
            raise TransportError(
                f"GitHub returned a malformed response: page {pages} reports more results "
                "but no new cursor",
                partial_results=all_items,
            )
        after_cursor = page.end_cursor

    logger.debug("Fetched %d items in %d pages", len(all_items), pages)
    return all_items


# --- Detail aggregation --- #

def _protection_sort_key(rule: BranchProtectionRule) -> Tuple[str, str]:
    return rule.sorted_branch_names[0], rule.pattern


def fetch_repository_detail(
    gateway: GitHubGateway, owner: str, name: str, max_releases: int, max_tags: int
) -> RepositoryDetail:
    """One composite query for *owner*/*name*, bounded and ordered for display."""
    detail = gateway.query_repository_detail(owner, name, max_releases, max_tags)
    if len(detail.releases) > max_releases or len(detail.tags) > max_tags:
        logger.debug(
            "Server returned %d releases / %d tags, keeping %d / %d",
            len(detail.releases), len(detail.tags), max_releases, max_tags,
        )
    return RepositoryDetail(
        full_name=detail.full_name,
        url=detail.url,
        default_branch=detail.default_branch,
        protections=tuple(sorted(detail.protections, key=_protection_sort_key)),
        releases=detail.releases[:max_releases],
        tags=detail.tags[:max_tags],
    )
