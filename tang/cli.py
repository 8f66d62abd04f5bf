"""Command-line entry point for tang."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .app import create_app
from .config import Settings, split_list
from .errors import CommandError, GitError, ListenerError
from .git import setup_credential_helper
from .github import GithubClient
from .listener import ListenerHandoff
from .logs import setup_logging
from .pipeline import Pipeline
from .server import Supervisor, resolve_self

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments. Unset flags fall back to the environment."""
    p = argparse.ArgumentParser(prog="tang", description="Self-hosted CI relay for GitHub")
    p.add_argument("--version", "-v", action="version", version=f"tang {__version__}")
    p.add_argument("--address", help="address to listen on (default :8080)")
    p.add_argument("--repositories", help="colon separated list of repositories to watch")
    p.add_argument("--allowed-pushers", help="colon separated list of people allowed to build")
    p.add_argument("--root", type=Path, help="directory holding repo/ and logs/")
    p.add_argument("--qa-domain", help="domain under which <ref>.<repo> previews are served")
    p.add_argument("--hook-timeout", type=float, metavar="SECONDS", help="kill tang.hook after this long")
    p.add_argument(
        "--graceful-timeout", type=float, metavar="SECONDS",
        help="on reload, wait this long for running requests and builds",
    )
    p.add_argument("--no-configure-hooks", action="store_true", help="don't install GitHub webhooks")
    return p.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env().with_overrides(
        address=args.address,
        repositories=tuple(split_list(args.repositories)) if args.repositories is not None else None,
        allowed_pushers=frozenset(split_list(args.allowed_pushers)) if args.allowed_pushers is not None else None,
        root=args.root.resolve() if args.root else None,
        qa_domain=args.qa_domain,
        hook_timeout=args.hook_timeout,
        graceful_timeout=args.graceful_timeout,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    exe, exec_argv = resolve_self()

    args = parse_args(argv)
    settings = build_settings(args)
    setup_logging(settings.logs_dir)

    try:
        listener = ListenerHandoff().acquire(settings.address)
    except ListenerError as e:
        logger.error(str(e))
        sys.exit(1)

    github = GithubClient(settings)
    if not args.no_configure_hooks:
        github.configure_hooks(settings.repositories, settings.hook_url)

    if settings.github_user:
        try:
            setup_credential_helper()
        except (CommandError, GitError) as e:
            logger.warning(f"Could not configure git credential helper: {e}")

    app = create_app(settings, pipeline=Pipeline(settings, github))
    supervisor = Supervisor(app, listener, exe, exec_argv, graceful_timeout=settings.graceful_timeout)
    if sys.stdin.isatty():
        supervisor.watch_stdin()
    supervisor.serve()
