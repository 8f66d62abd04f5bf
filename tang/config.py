"""Configuration for the tang relay."""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional


HOOK_NAME = "tang.hook"
GIT_BASE_DIR = "repo"
CHECKOUT_DIR = "checkout"
LOGS_DIR = "logs"
LISTEN_FD_ENV = "TANG_LISTEN_FD"

DEFAULT_ADDRESS = ":8080"
DEFAULT_REPOSITORIES = "scraperwiki/tang"
DEFAULT_ALLOWED_PUSHERS = "drj11:pwaller"
DEFAULT_INFO_URL = "http://services.scraperwiki.com/tang/"
DEFAULT_HOOK_URL = "http://services.scraperwiki.com/hook"
DEFAULT_QA_DOMAIN = "qa.scraperwiki.com"
DEFAULT_GITHUB_API = "https://api.github.com"

# Placeholder preview backend: answers every request with the current date.
DEFAULT_BACKEND_COMMAND = (
    'while :; do printf "HTTP/1.1 200 OK\\n\\n$(date)" | nc -l {port}; done'
)

BACKEND_CAPACITY = 5
FETCH_TIMEOUT = 20.0
# Seconds a reload waits for in-flight requests and builds before re-exec.
GRACEFUL_TIMEOUT = 5.0


def split_list(value: str) -> list[str]:
    """Split a colon separated list, dropping empty entries."""
    return [item.strip() for item in value.split(":") if item.strip()]


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass(frozen=True)
class Settings:
    """Typed configuration shared by the pipeline, reporter and app."""

    root: Path = field(default_factory=Path.cwd)
    address: str = DEFAULT_ADDRESS
    repositories: tuple[str, ...] = ()
    allowed_pushers: frozenset[str] = frozenset()
    github_user: str = ""
    github_password: str = ""
    github_api: str = DEFAULT_GITHUB_API
    test_mode: bool = False
    info_url: str = DEFAULT_INFO_URL
    hook_url: str = DEFAULT_HOOK_URL
    qa_domain: str = DEFAULT_QA_DOMAIN
    backend_command: str = DEFAULT_BACKEND_COMMAND
    backend_capacity: int = BACKEND_CAPACITY
    fetch_timeout: float = FETCH_TIMEOUT
    hook_timeout: Optional[float] = None
    graceful_timeout: float = GRACEFUL_TIMEOUT

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            root=Path(env.get("TANG_ROOT") or os.getcwd()),
            address=env.get("TANG_ADDRESS", DEFAULT_ADDRESS),
            repositories=tuple(split_list(env.get("TANG_REPOSITORIES", DEFAULT_REPOSITORIES))),
            allowed_pushers=frozenset(
                split_list(env.get("TANG_ALLOWED_PUSHERS", DEFAULT_ALLOWED_PUSHERS))
            ),
            github_user=env.get("GITHUB_USER", ""),
            github_password=env.get("GITHUB_PASSWORD", ""),
            github_api=env.get("GITHUB_API", DEFAULT_GITHUB_API),
            test_mode=bool(env.get("TANG_TEST")),
            info_url=env.get("TANG_INFO_URL", DEFAULT_INFO_URL),
            hook_url=env.get("TANG_HOOK_URL", DEFAULT_HOOK_URL),
            qa_domain=env.get("TANG_QA_DOMAIN", DEFAULT_QA_DOMAIN),
            backend_command=env.get("TANG_BACKEND_COMMAND", DEFAULT_BACKEND_COMMAND),
            backend_capacity=int(env.get("TANG_BACKEND_CAPACITY", BACKEND_CAPACITY)),
            fetch_timeout=float(env.get("TANG_FETCH_TIMEOUT", FETCH_TIMEOUT)),
            hook_timeout=_optional_float(env.get("TANG_HOOK_TIMEOUT")),
            graceful_timeout=float(env.get("TANG_GRACEFUL_TIMEOUT", GRACEFUL_TIMEOUT)),
        )

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with the non-None values in `changes` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def git_base_dir(self) -> Path:
        return self.root / GIT_BASE_DIR

    @property
    def logs_dir(self) -> Path:
        return self.root / LOGS_DIR
