"""GitHub API client: commit statuses and webhook registration."""

import logging
from typing import Iterable, Optional

import requests

from .config import Settings
from .models import BuildStatus

logger = logging.getLogger(__name__)

# GitHub answers 422 when an identical hook is already installed.
ALREADY_HOOKED = 422

HOOK_EVENTS = [
    "push", "issues", "issue_comment", "commit_comment", "create", "delete",
    "pull_request", "pull_request_review_comment", "gollum", "watch",
    "release", "fork", "member", "public", "team_add", "status",
]


class GithubClient:
    """Posts to the GitHub REST API. Never raises on API or network errors."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    def endpoint(self, *parts: str) -> str:
        return "/".join([self.settings.github_api.rstrip("/")] + [p.strip("/") for p in parts])

    def post(self, payload: dict, *parts: str) -> Optional[requests.Response]:
        """
        POST `payload` as JSON to the endpoint built from `parts`.

        Returns the response, or None if the call was skipped or could not be
        made.
        """
        if self.settings.test_mode:
            # Don't touch the API during tests.
            return None
        if not self.settings.github_user:
            logger.info(f"github_user not specified, not querying endpoint {parts!r}")
            return None

        url = self.endpoint(*parts)
        try:
            resp = self.session.post(
                url,
                json=payload,
                auth=(self.settings.github_user, self.settings.github_password),
                headers={"Accept": "application/vnd.github.v3+json", "User-Agent": "tang"},
                timeout=30,
            )
        except requests.RequestException as e:
            logger.error(f"POST {url} failed: {e}")
            return None

        logger.info(f"Querying {url} -> {resp.status_code}")
        logger.info(f"Rate Limit: {resp.headers.get('X-RateLimit-Remaining', 'unknown')}")
        return resp

    def update_status(self, repo: str, sha: str, status: BuildStatus) -> bool:
        """Set the status of commit `sha` in `repo` (`org/name`).

        Returns True if GitHub accepted it or if reporting is switched off.
        """
        if self.settings.test_mode:
            logger.info(f"Test mode, not reporting {status.state} for {repo}@{sha}")
            return True

        resp = self.post(status.model_dump(), "repos", repo, "statuses", sha)
        if resp is None:
            return False
        if not resp.ok:
            logger.warning(
                f"Status {status.state} for {repo}@{sha} rejected: {resp.status_code} {resp.text}"
            )
            return False
        return True

    def configure_hooks(self, repositories: Iterable[str], hook_url: str) -> None:
        """Install our webhook on every watched repository."""
        payload = {
            "name": "web",
            "config": {"url": hook_url, "content_type": "json"},
            "events": HOOK_EVENTS,
            "active": True,
        }
        for repo in repositories:
            resp = self.post(payload, "repos", repo, "hooks")
            if resp is None:
                continue
            if resp.status_code == ALREADY_HOOKED:
                logger.info(f"Already hooked for {repo}")
            elif not resp.ok:
                logger.warning(f"Failed to hook {repo}: {resp.status_code} {resp.text}")
            else:
                logger.info(f"Hooked {repo}")
