"""Git mirror and checkout management."""

import logging
import os
from pathlib import Path
from typing import IO, Iterable, Optional

from .config import FETCH_TIMEOUT
from .errors import CheckoutError, GitError, MirrorError, MirrorTimeout
from .process import describe_failure, run

logger = logging.getLogger(__name__)

# `git fetch` exits 1 when there was nothing new to fetch.
FETCH_NOTHING_TO_DO = 1
# `git cat-file -e` exits 128 on any fatal error, a missing commit or path included.
NOT_FOUND = 128
# `git rev-parse --verify --quiet` exits 1 for an unknown object.
COMMIT_MISSING = 1


def _git_env() -> dict:
    """Get environment variables for git execution."""
    env = os.environ.copy()
    # Never block a build on a credential prompt.
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def mirror(
    url: str,
    mirror_dir: Path,
    timeout: float = FETCH_TIMEOUT,
    sinks: Iterable[IO[str]] = (),
) -> None:
    """
    Create or update a bare mirror of `url` at `mirror_dir`.

    A missing mirror is cloned with `git clone --mirror`; an existing one is
    refreshed with `git fetch`, which is killed after `timeout` seconds.

    Raises MirrorTimeout if the fetch was killed, MirrorError on any other
    failure.
    """
    mirror_dir = Path(mirror_dir)

    if not mirror_dir.exists():
        mirror_dir.parent.mkdir(parents=True, exist_ok=True)
        result = run(
            ["git", "clone", "-q", "--mirror", url, str(mirror_dir)],
            cwd=str(mirror_dir.parent),
            env=_git_env(),
            sinks=sinks,
        )
        if result.exit_code != 0:
            raise MirrorError(
                f"git clone --mirror {url}: {describe_failure(result)}: {result.output.strip()}"
            )
        logger.info(f"Cloned {url}")
        return

    result = run(
        ["git", "fetch"],
        cwd=str(mirror_dir),
        env=_git_env(),
        timeout=timeout,
        sinks=sinks,
    )
    if result.timed_out:
        raise MirrorTimeout(f"git fetch in {mirror_dir} timed out after {timeout}s")
    if result.exit_code not in (0, FETCH_NOTHING_TO_DO):
        raise MirrorError(
            f"git fetch in {mirror_dir}: {describe_failure(result)}: {result.output.strip()}"
        )
    logger.info(f"Remote updated {url}")


def has_file(mirror_dir: Path, commit: str, path: str) -> bool:
    """
    Check whether `path` exists in the tree of `commit`.

    Nothing is checked out. A missing commit or path gives False; any other
    git failure, such as `mirror_dir` not being a repository, raises GitError.
    """
    mirror_dir = Path(mirror_dir)
    env = _git_env()
    # Don't let a broken mirror fall back to an enclosing repository.
    env["GIT_CEILING_DIRECTORIES"] = str(mirror_dir.resolve().parent)

    result = run(["git", "cat-file", "-e", f"{commit}:{path}"], cwd=str(mirror_dir), env=env)
    if result.exit_code == 0:
        return True
    if result.exit_code != NOT_FOUND:
        raise GitError(
            f"git cat-file {commit}:{path}: {describe_failure(result)}: {result.output.strip()}"
        )

    # 128 is every fatal error, so tell "no such commit or path" apart from
    # a mirror git cannot read at all.
    verify = run(
        ["git", "rev-parse", "--verify", "--quiet", f"{commit}^{{commit}}"],
        cwd=str(mirror_dir),
        env=env,
    )
    if verify.exit_code in (0, COMMIT_MISSING):
        return False
    raise GitError(
        f"git rev-parse {commit} in {mirror_dir}: {describe_failure(verify)}: {verify.output.strip()}"
    )


def checkout(
    mirror_dir: Path,
    checkout_dir: Path,
    commit: str,
    sinks: Iterable[IO[str]] = (),
) -> None:
    """Populate `checkout_dir` with the full tree of `commit`.

    Raises CheckoutError on failure.
    """
    checkout_dir = Path(checkout_dir).resolve()
    try:
        checkout_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CheckoutError(f"Failed to create {checkout_dir}: {e}") from e

    logger.info(f"Populating {checkout_dir}")
    result = run(
        ["git", "--work-tree", str(checkout_dir), "checkout", commit, "--", "."],
        cwd=str(mirror_dir),
        env=_git_env(),
        sinks=sinks,
    )
    if result.exit_code != 0:
        raise CheckoutError(
            f"Failed to checkout {commit}: {describe_failure(result)}: {result.output.strip()}"
        )


def setup_credential_helper(env: Optional[dict] = None) -> bool:
    """
    Install a global credential helper answering with GITHUB_USER/GITHUB_PASSWORD.

    Does nothing if a helper is already configured. Returns True if one was
    installed.
    """
    env = env if env is not None else _git_env()
    result = run(["git", "config", "--global", "--get", "credential.helper"], cwd=".", env=env)
    if result.exit_code == 0:
        return False
    # `git config --get` exits 1 when the key is unset.
    if result.exit_code != 1:
        raise GitError(f"git config --get credential.helper: {describe_failure(result)}")

    helper = "!f() { echo username=$GITHUB_USER; echo password=$GITHUB_PASSWORD; }; f"
    result = run(["git", "config", "--global", "credential.helper", helper], cwd=".", env=env)
    if result.exit_code != 0:
        raise GitError(f"git config credential.helper: {describe_failure(result)}")
    logger.info("Configured git credential helper")
    return True
