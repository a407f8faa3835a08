#!/usr/bin/env python3
"""ght.py

ght, the 'GitHub Tool': a read only command line tool for displaying
information about GitHub repositories through the GraphQL v4 API.

Usage:
  ght repos -o my-org                 # every repository of an organization
  ght repos -u octocat --json         # every repository of a user, as JSON
  ght repo owner/name                 # default branch, protection, releases, tags
  ght repo owner/name --desc          # ... including release descriptions
  ght repo owner/name --changelog     # releases as a changelog
  ght help [command]

Requires a GitHub Personal API token in ~/.ght (override the location with
GHT_TOKEN_FILE, in the environment or in a .env file in the working
directory) with rights to access the repositories in question.
"""
from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv
from rich.console import Console

from ght_github import (
    GitHubGateway,
    Settings,
    fetch_all_pages,
    fetch_repository_detail,
    load_token,
)
from ght_models import GhtError, OwnerKind, RepositorySummary, ValidationError
from ght_report import (
    DEFAULT_MAX_RELEASES,
    DEFAULT_MAX_TAGS,
    MAX_WINDOW,
    ReportOptions,
    make_console,
    render,
    render_repository_list,
)

logger = logging.getLogger(__name__)

OVERVIEW = """\
ght is a tool for interacting with github repos from the command line.

The commands are:

  repos           list the repositories
  repo            summarise a single repository
  help            show this help
  help [command]  show help for command
"""

CONFIG_HELP = """\
Configuration:

  Requires a GitHub Personal API token (https://blog.github.com/2013-05-16-personal-api-tokens/)
  in file ~/.ght with rights to access the repositories in question.
  Set GHT_TOKEN_FILE to read the token from another file.
"""


# --- Core entry points --- #

def resolve_owner(org: Optional[str], user: Optional[str]) -> Tuple[OwnerKind, str]:
    """Exactly one of *org* / *user* must be given."""
    if bool(org) == bool(user):
        raise ValidationError("Invalid arguments. Provide one of '-o organisation' or '-u user'")
    if org:
        return OwnerKind.ORGANIZATION, org
    return OwnerKind.USER, user


def parse_repo_slug(slug: str) -> Tuple[str, str]:
    parts = slug.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValidationError(f"Error parsing '{slug}' as 'owner/repo'")
    return parts[0], parts[1]


def list_repositories(gateway: GitHubGateway, kind: OwnerKind, login: str) -> List[RepositorySummary]:
    """Every repository of an organization or user, all pages."""
    logger.info("Listing repositories for %s: %s", kind.value, login)
    repos = fetch_all_pages(lambda after: gateway.query_repositories_page(kind, login, after))
    if not repos:
        logger.warning("No repositories found for %s: %s", kind.value, login)
    return repos


def summarize_repository(gateway: GitHubGateway, slug: str, options: ReportOptions, console: Console) -> None:
    """Fetch one repository in a single query and render it."""
    owner, name = parse_repo_slug(slug)
    options.validate()
    detail = fetch_repository_detail(gateway, owner, name, options.max_releases, options.max_tags)
    render(detail, options, console)


def open_gateway(token: str, settings: Settings) -> GitHubGateway:
    return GitHubGateway.from_settings(token, settings)


# --- Command handlers --- #

def load_settings() -> Settings:
    """Settings from the environment, after a .env in the working directory."""
    load_dotenv(Path.cwd() / ".env", override=True)
    return Settings.from_env()


def do_list_repos(args: argparse.Namespace) -> int:
    kind, login = resolve_owner(args.org, args.user)
    settings = load_settings()
    token = load_token(settings.token_file)
    with open_gateway(token, settings) as gateway:
        repos = list_repositories(gateway, kind, login)
        logger.info("Total GitHub API calls: %d", gateway.call_count)
    render_repository_list(repos, make_console(), as_json=args.json)
    return 0


def do_repo(args: argparse.Namespace) -> int:
    options = ReportOptions(
        max_releases=args.max_releases,
        max_tags=args.max_tags,
        show_description=args.desc,
        render_changelog=args.changelog,
        use_color=args.color,
    ).validate()
    parse_repo_slug(args.slug)
    settings = load_settings()
    token = load_token(settings.token_file)
    with open_gateway(token, settings) as gateway:
        summarize_repository(gateway, args.slug, options, make_console(options.use_color))
        logger.info("Total GitHub API calls: %d", gateway.call_count)
    return 0


def do_help(args: argparse.Namespace, parser: argparse.ArgumentParser, commands: Dict[str, argparse.ArgumentParser]) -> int:
    if not args.topic:
        parser.print_help()
        return 0
    if args.topic not in commands:
        print(f"Help unknown command '{args.topic}'", file=sys.stderr)
        parser.print_help(sys.stderr)
        return 1
    commands[args.topic].print_help()
    return 0


# --- CLI plumbing --- #

def build_parser() -> Tuple[argparse.ArgumentParser, Dict[str, argparse.ArgumentParser]]:
    parser = argparse.ArgumentParser(
        prog="ght",
        description=OVERVIEW,
        epilog=CONFIG_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose debug logging")
    parser.add_argument("--log-dir", help="Directory to save timestamped debug logs")
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    repos = subparsers.add_parser(
        "repos",
        help="list the repositories",
        description="List github repositories for an organisation or user.",
    )
    repos.add_argument("-o", "--org", default="", help="Specify the GitHub organisation")
    repos.add_argument("-u", "--user", default="", help="Specify the GitHub user")
    repos.add_argument("--json", action="store_true", help="Output result as JSON")

    repo = subparsers.add_parser(
        "repo",
        help="summarise a single repository",
        description="Summarise a single repository.",
    )
    repo.add_argument("slug", metavar="owner/repo", help="Repository to summarise")
    repo.add_argument(
        "--maxr", "--max-releases", dest="max_releases", type=int, default=DEFAULT_MAX_RELEASES,
        help=f"Specify the maximum number of Releases to display, up to {MAX_WINDOW}.",
    )
    repo.add_argument(
        "--maxt", "--max-tags", dest="max_tags", type=int, default=DEFAULT_MAX_TAGS,
        help=f"Specify the maximum number of Tags to display, up to {MAX_WINDOW}.",
    )
    repo.add_argument("--desc", action="store_true", help="Display the Release description")
    repo.add_argument(
        "--changelog", action="store_true",
        help="Change the output format to display something like a traditional changelog",
    )
    repo.add_argument("--color", action="store_true", help="Print the changelog in color")

    help_cmd = subparsers.add_parser("help", help="show help for a command")
    help_cmd.add_argument("topic", nargs="?", help="Command to describe")

    return parser, {"repos": repos, "repo": repo, "help": help_cmd}


def configure_logging(verbose: bool, log_dir: Optional[str]) -> List[logging.Handler]:
    """Attach console (and optional file) handlers to the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%dT%H:%M:%S%z")
    handlers: List[logging.Handler] = []

    if log_dir:
        debug_log_dir = Path(log_dir)
        debug_log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        file_handler = logging.FileHandler(debug_log_dir / f"ght_{timestamp}.log")
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    # stdout carries the report, diagnostics go to stderr
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handlers.append(console_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    return handlers


def cli(argv: Optional[List[str]] = None) -> int:
    parser, commands = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1
    if args.command == "help":
        return do_help(args, parser, commands)

    handlers = configure_logging(args.verbose, args.log_dir)
    start_time = time.perf_counter()
    try:
        if args.command == "repos":
            return do_list_repos(args)
        return do_repo(args)
    except GhtError as exc:
        logger.debug("'%s' command failed", args.command, exc_info=True)
        print(f"ght: {exc}", file=sys.stderr)
        return 1
    finally:
        logger.info("Total runtime: %.2f seconds", time.perf_counter() - start_time)
        root_logger = logging.getLogger()
        for handler in handlers:
            root_logger.removeHandler(handler)
            handler.close()


def main() -> None:
    sys.exit(cli())


if __name__ == "__main__":
    main()
