"""ght_report.py

Turns fetched repository data into terminal output.

The presentation helpers (status, timestamps, placeholders) are pure
functions; the renderers only decide layout and print through a *rich*
console.  Two report modes share one *RepositoryDetail*:

* tabular summary: repository, branch protection, releases and tags;
* changelog: one section per release, newest first.
"""
from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Iterable, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.table import Table

from ght_models import Release, RepositoryDetail, RepositorySummary, ValidationError

DEFAULT_MAX_RELEASES = 20
DEFAULT_MAX_TAGS = 20
MAX_WINDOW = 100  # GitHub caps `first:` / `last:` at 100

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
UNTAGGED = "Untagged"
NO_RELEASE_TITLE = "_No release title_"
NO_PROTECTION = "n/a"


class ReleaseStatus(str, enum.Enum):
    DRAFT = "Draft"
    PRERELEASE = "Pre-release"
    PUBLISHED = "Published"

    def __str__(self) -> str:
        return self.value


class RenderMode(str, enum.Enum):
    TABULAR = "tabular"
    CHANGELOG = "changelog"


@dataclass(frozen=True)
class ReportOptions:
    """How `ght repo` fetches and renders one repository."""

    max_releases: int = DEFAULT_MAX_RELEASES
    max_tags: int = DEFAULT_MAX_TAGS
    show_description: bool = False
    render_changelog: bool = False
    use_color: bool = False

    @property
    def mode(self) -> RenderMode:
        return RenderMode.CHANGELOG if self.render_changelog else RenderMode.TABULAR

    def validate(self) -> "ReportOptions":
        for flag, value in (("maximum releases", self.max_releases), ("maximum tags", self.max_tags)):
            if not 0 <= value <= MAX_WINDOW:
                raise ValidationError(f"Invalid {flag} {value}: must be between 0 and {MAX_WINDOW}")
        return self


# --- Presentation helpers --- #

def derive_status(release: Release) -> ReleaseStatus:
    """Draft wins over pre-release, which wins over published."""
    if release.is_draft:
        return ReleaseStatus.DRAFT
    if release.is_prerelease:
        return ReleaseStatus.PRERELEASE
    return ReleaseStatus.PUBLISHED


def format_timestamp(value: Optional[datetime]) -> str:
    """Local time as ``YYYY-MM-DD HH:MM:SS``; drafts have no timestamp."""
    if value is None:
        return ""
    return value.astimezone().strftime(TIMESTAMP_FORMAT)


def display_tag_name(name: str) -> str:
    return name or UNTAGGED


def display_title(title: str, mode: RenderMode = RenderMode.TABULAR) -> str:
    # the tabular summary leaves the cell blank, the changelog needs a bullet text
    if title:
        return title
    return NO_RELEASE_TITLE if mode is RenderMode.CHANGELOG else ""


def collapse_description(text: str) -> str:
    return text.replace("\n", " ").strip()


def format_flag(value: bool) -> str:
    return "true" if value else "false"


def format_contexts(contexts: Sequence[str]) -> str:
    return ", ".join(contexts) if contexts else "-"


# --- Rendering --- #

def make_console(use_color: bool = False, file: Optional[IO[str]] = None, width: Optional[int] = None) -> Console:
    """Console that prints repository text literally.

    Markup and highlighting are off because release titles and descriptions
    are user content. Colour is forced on when requested, even into a pipe.
    """
    return Console(
        file=file,
        width=width,
        force_terminal=True if use_color else None,
        color_system="standard" if use_color else None,
        no_color=not use_color,
        markup=False,
        highlight=False,
        emoji=False,
    )


LABEL_COLUMNS = ({"no_wrap": True}, {"overflow": "fold"})
# a commit id is never split or dropped; long tag names fold instead
TAG_COLUMNS = ({"overflow": "fold"}, {"no_wrap": True, "min_width": 40})


def _grid(rows: Iterable[Tuple[str, ...]], columns: Sequence[dict] = LABEL_COLUMNS) -> Table:
    table = Table.grid(padding=(0, 1), pad_edge=False)
    for column in columns:
        table.add_column(**column)
    for row in rows:
        table.add_row(*row)
    return table


def _print_grid(console: Console, table: Table) -> None:
    # rich pads every cell to its column width; drop the padding at line ends
    for line in console.render_lines(table, pad=False):
        console.print("".join(segment.text for segment in line).rstrip(), soft_wrap=True)


def _heading(title: str) -> List[Tuple[str, ...]]:
    return [(title,), ("-" * len(title),)]


def _description_lines(description: str) -> List[str]:
    lines = []
    title = "Description "
    for line in description.split("\n"):
        lines.append(f"{title}:   {line}".rstrip())
        title = " " * len(title)
    return lines


def render_summary(detail: RepositoryDetail, options: ReportOptions, console: Console) -> None:
    """Tabular report: repository, branch protection, releases, tags."""
    _print_grid(console, _grid(_heading("Repository") + [
        ("Full name:", detail.full_name),
        ("Default branch:", detail.default_branch),
        ("URL:", detail.url),
    ]))
    console.print()

    rows = _heading("Branch Protection")
    if not detail.protections:
        rows.append((NO_PROTECTION,))
    for rule in detail.protections:
        for branch in rule.sorted_branch_names:
            rows.extend([
                ("Branch:", branch),
                ("- approving review:", format_flag(rule.requires_approving_reviews)),
                ("- approving review count:", str(rule.required_approving_review_count)),
                ("- status check:", format_flag(rule.requires_status_checks)),
                ("- status check contexts:", format_contexts(rule.required_status_check_contexts)),
            ])
    _print_grid(console, _grid(rows))
    console.print()

    _print_grid(console, _grid(_heading("Releases")))
    for release in detail.releases[:options.max_releases]:
        _print_grid(console, _grid([
            ("Tag:", release.tag_name),
            ("Release status:", str(derive_status(release))),
            ("Published at:", format_timestamp(release.published_at)),
            ("Author:", release.author),
            ("URL:", release.url),
            ("Name:", display_title(release.title, RenderMode.TABULAR)),
        ]))
        if options.show_description:
            for line in _description_lines(release.description):
                console.print(line, soft_wrap=True)
        console.print()
        console.print()

    rows = _heading("Tags") + [("Tag", "Sha")]
    rows.extend((tag.name, tag.commit_id) for tag in detail.tags[:options.max_tags])
    _print_grid(console, _grid(rows, TAG_COLUMNS))


def render_changelog(detail: RepositoryDetail, options: ReportOptions, console: Console) -> None:
    """Markdown-ish changelog, releases in the order GitHub returned them."""
    console.print("# Change Log", soft_wrap=True)
    console.print()
    for release in detail.releases[:options.max_releases]:
        console.print(f"## {display_tag_name(release.tag_name)}", style="green", soft_wrap=True)
        console.print()
        console.print(f"- {display_title(release.title, RenderMode.CHANGELOG)}", style="yellow", soft_wrap=True)
        description = collapse_description(release.description)
        if description:
            console.print(f"  - {description}", soft_wrap=True)
        console.print()


def render(detail: RepositoryDetail, options: ReportOptions, console: Console) -> None:
    if options.mode is RenderMode.CHANGELOG:
        render_changelog(detail, options, console)
    else:
        render_summary(detail, options, console)


def render_repository_list(repos: Sequence[RepositorySummary], console: Console, as_json: bool = False) -> None:
    if as_json:
        payload = [{"name": r.name, "nameWithOwner": r.full_name, "url": r.url} for r in repos]
        console.print(json.dumps(payload, indent=2), soft_wrap=True)
        return
    for repo in repos:
        console.print(repo.full_name, soft_wrap=True)
