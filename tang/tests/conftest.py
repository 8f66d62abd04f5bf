"""Shared test fixtures."""

import os
import shutil
import stat
import subprocess
import time
from pathlib import Path

import pytest

from tang.config import Settings

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

HOOK_SCRIPT = """#!/bin/sh
echo "building $TANG_SHA on $TANG_REF"
echo "log at $TANG_LOG"
echo "to stderr" >&2
exit {exit_code}
"""

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@example.com",
}


class FakeReporter:
    """Records statuses instead of posting them."""

    def __init__(self):
        self.statuses = []

    def update_status(self, repo, sha, status):
        self.statuses.append((repo, sha, status))
        return True

    @property
    def states(self):
        return [status.state for _, _, status in self.statuses]


class OriginRepo:
    """A plain git repository standing in for the GitHub remote."""

    def __init__(self, path: Path):
        self.path = path
        path.mkdir(parents=True)
        self.git("init", "-q")

    def git(self, *args: str) -> str:
        env = os.environ.copy()
        env.update(GIT_ENV)
        result = subprocess.run(
            ["git", "-c", "commit.gpgsign=false", *args],
            cwd=self.path,
            env=env,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout

    def commit(self, files: dict, executable=()) -> str:
        """Write `files` (name -> content), commit them, return the sha."""
        for name, content in files.items():
            target = self.path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
            if name in executable:
                target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.git("add", "-A")
        self.git("commit", "-q", "-m", "test commit")
        return self.git("rev-parse", "HEAD").strip()

    def tree(self, sha: str) -> set[str]:
        return set(self.git("ls-tree", "-r", "--name-only", sha).split())

    @property
    def url(self) -> str:
        return str(self.path)


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temp directory, with `testuser` allowed."""
    root = tmp_path / "root"
    root.mkdir()
    return Settings(
        root=root,
        allowed_pushers=frozenset({"testuser"}),
        test_mode=True,
        qa_domain="qa.example.com",
    )


@pytest.fixture
def reporter():
    return FakeReporter()


@pytest.fixture
def origin(tmp_path):
    """An origin repository with no commits yet."""
    return OriginRepo(tmp_path / "origin" / "tang")


@pytest.fixture
def hooked_origin(origin):
    """Origin whose HEAD has a passing tang.hook. Returns (origin, sha)."""
    sha = origin.commit(
        {
            "README": "hello\n",
            "src/main.txt": "code\n",
            "tang.hook": HOOK_SCRIPT.format(exit_code=0),
        },
        executable=("tang.hook",),
    )
    return origin, sha


def push_payload(origin_url: str, sha: str, pusher: str = "testuser", **nongithub) -> dict:
    """A push webhook payload for example/tang."""
    return {
        "ref": "refs/heads/master",
        "repository": {"name": "tang", "organization": "example", "url": origin_url},
        "after": sha,
        "pusher": {"name": pusher},
        "nongithub": nongithub,
    }


def wait_for(predicate, timeout: float = 10.0) -> bool:
    """Poll `predicate` until it is true or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
