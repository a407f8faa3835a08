import os
import sys
import time
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from ght_models import (  # noqa: E402
    NotFoundError,
    Page,
    Release,
    RepositoryDetail,
    RepositorySummary,
    Tag,
)


@pytest.fixture
def utc():
    """Pin the process time zone to UTC so local timestamps are predictable."""
    old_tz = os.environ.get("TZ")
    os.environ["TZ"] = "UTC"
    time.tzset()
    yield
    if old_tz is None:
        del os.environ["TZ"]
    else:
        os.environ["TZ"] = old_tz
    time.tzset()


@pytest.fixture
def token_file(tmp_path, monkeypatch):
    """A credential file in an isolated working directory."""
    path = tmp_path / "ght-token"
    path.write_text("  secret-token\n")
    monkeypatch.setenv("GHT_TOKEN_FILE", str(path))
    monkeypatch.chdir(tmp_path)
    return path


def make_release(tag="v1.0", title="Release", **overrides):
    fields = dict(
        tag_name=tag,
        title=title,
        description="",
        author="alice",
        published_at=datetime(2017, 7, 10, 16, 29, 40, tzinfo=timezone.utc),
        is_draft=False,
        is_prerelease=False,
        url=f"https://github.com/owner/repo/releases/tag/{tag}",
    )
    fields.update(overrides)
    return Release(**fields)


def make_detail(**overrides):
    fields = dict(
        full_name="owner/repo",
        url="https://github.com/owner/repo",
        default_branch="master",
        protections=(),
        releases=(make_release("v1.1.3", "The first release"),),
        tags=(Tag("v1.1.3", "7e3948ab12cd34ef56ab78cd90ef12ab34cd56ef"),),
    )
    fields.update(overrides)
    return RepositoryDetail(**fields)


class FakeGateway:
    """Stands in for GitHubGateway; records every query it answers."""

    def __init__(self, pages=None, detail=None, error=None):
        self.pages = list(pages or [])
        self.detail = detail
        self.error = error
        self.calls = []
        self.call_count = 0
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def query_repositories_page(self, kind, login, after):
        self.calls.append(("repositories", kind, login, after))
        self.call_count += 1
        if self.error:
            raise self.error
        return self.pages.pop(0)

    def query_repository_detail(self, owner, name, max_releases, max_tags):
        self.calls.append(("detail", owner, name, max_releases, max_tags))
        self.call_count += 1
        if self.error:
            raise self.error
        if self.detail is None:
            raise NotFoundError(f"Could not resolve to a Repository with the name '{owner}/{name}'.")
        return self.detail


def repo_pages(*names_per_page):
    """Build consecutive pages of RepositorySummary from lists of names."""
    pages = []
    for index, names in enumerate(names_per_page):
        last = index == len(names_per_page) - 1
        pages.append(
            Page(
                items=tuple(RepositorySummary(n, f"owner/{n}", f"https://github.com/owner/{n}") for n in names),
                end_cursor=None if last else f"cursor{index + 1}",
                has_next_page=not last,
            )
        )
    return pages


