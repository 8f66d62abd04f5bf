"""Build pipeline for a single push event.

mirror -> hook presence check -> checkout -> pending -> hook -> outcome.
"""

import logging
import sys
import threading
from pathlib import Path
from typing import IO, Optional

from . import git
from .config import CHECKOUT_DIR, HOOK_NAME, LOGS_DIR, Settings
from .errors import (
    CheckoutError,
    EmptyRepoName,
    EmptyRepoOrganization,
    MirrorError,
    UserNotAllowed,
)
from .github import GithubClient
from .hook import run_hook
from .models import BuildStatus, PushEvent

logger = logging.getLogger(__name__)


class Pipeline:
    """Runs push events through the build pipeline.

    Pushes to different repositories run concurrently; pushes to the same
    repository wait for each other, since they share a mirror directory.
    """

    def __init__(
        self,
        settings: Settings,
        reporter: Optional[GithubClient] = None,
        stdout: Optional[IO[str]] = None,
    ):
        self.settings = settings
        self.reporter = reporter or GithubClient(settings)
        self.stdout = stdout
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def repo_lock(self, organization: str, name: str) -> threading.Lock:
        """The lock serializing all work on one repository."""
        with self._locks_guard:
            return self._locks.setdefault((organization, name), threading.Lock())

    def validate(self, event: PushEvent) -> None:
        """Raise a ValidationError if `event` must not be built."""
        if not event.repository.name:
            raise EmptyRepoName()
        if not event.repository.organization:
            raise EmptyRepoOrganization()
        if event.pusher.name not in self.settings.allowed_pushers:
            logger.info(f"Ignoring {event.pusher.name!r}, not allowed")
            raise UserNotAllowed(event.pusher.name)

    def mirror_dir(self, event: PushEvent) -> Path:
        return self.settings.git_base_dir / event.repository.organization / event.repository.name

    def run(self, event: PushEvent) -> Optional[BuildStatus]:
        """
        Build `event`.

        Returns the final status reported to GitHub, or None if there was
        nothing to build.

        Raises ValidationError before doing anything, MirrorError after
        reporting the failure, and CheckoutError or GitError without
        reporting.
        """
        self.validate(event)
        logger.info(f"Push to {event.repository.url} {event.ref} after {event.after}")

        with self.repo_lock(event.repository.organization, event.repository.name):
            return self._build(event)

    def _report(self, event: PushEvent, state: str, target_url: str, description: str) -> BuildStatus:
        status = BuildStatus(state=state, target_url=target_url, description=description)
        self.reporter.update_status(event.full_name, event.after, status)
        return status

    def _build(self, event: PushEvent) -> Optional[BuildStatus]:
        mirror_dir = self.mirror_dir(event)
        short_sha = event.short_sha

        try:
            git.mirror(event.repository.url, mirror_dir, timeout=self.settings.fetch_timeout)
        except MirrorError as e:
            self._report(
                event, "failure", self.settings.info_url, f"Failed to update git mirror: {e}"
            )
            raise

        if not git.has_file(mirror_dir, event.after, HOOK_NAME):
            logger.info(f"No {HOOK_NAME} in {event.full_name}@{short_sha}, exiting.")
            return None

        checkout_dir = mirror_dir / CHECKOUT_DIR / short_sha
        try:
            git.checkout(mirror_dir, checkout_dir, event.after)
        except CheckoutError as e:
            logger.error(f"Checkout of {event.full_name}@{short_sha} failed: {e}")
            raise
        logger.info(f"Created {checkout_dir}")

        if event.nongithub.nobuild:
            logger.info(f"nobuild set, not running {HOOK_NAME} for {event.full_name}@{short_sha}")
            return None

        log_rel = f"{LOGS_DIR}/{short_sha}/log.txt"
        log_path = (self.settings.root / log_rel).resolve()
        info_url = self.settings.info_url + log_rel

        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            build_log = open(log_path, "w")
        except OSError as e:
            self._report(event, "failure", info_url, f"Failed to create build log: {e}")
            raise

        with build_log:
            # Yellow in a GitHub pull request.
            self._report(event, "pending", info_url, "Running")
            try:
                result = run_hook(
                    checkout_dir,
                    sha=event.after,
                    ref=event.ref,
                    log_path=log_path,
                    sinks=[build_log, self.stdout or sys.stdout],
                    timeout=self.settings.hook_timeout,
                )
            except OSError as e:
                self._report(event, "failure", info_url, f"Failed to write build log: {e}")
                raise

        if result.success:
            return self._report(event, "success", info_url, "Tests passed")
        return self._report(event, "failure", info_url, result.error)
