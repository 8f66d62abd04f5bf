"""Event and status models."""

from typing import Literal, NamedTuple

from pydantic import BaseModel, ConfigDict


class Repository(BaseModel):
    """Repository section of a GitHub push payload."""
    model_config = ConfigDict(frozen=True)

    name: str = ""
    url: str = ""
    organization: str = ""


class Pusher(BaseModel):
    """Who pushed."""
    model_config = ConfigDict(frozen=True)

    name: str = ""


class NonGithub(BaseModel):
    """Out-of-band flags that GitHub never sends; used by tests and tooling.

    nobuild: update the mirror and checkout but do not run the hook.
    wait: handle the event before responding to the webhook request.
    """
    model_config = ConfigDict(frozen=True)

    nobuild: bool = False
    wait: bool = False


class PushEvent(BaseModel):
    """A GitHub push event, reduced to the fields tang uses."""
    model_config = ConfigDict(frozen=True)

    ref: str = ""
    after: str = ""
    deleted: bool = False
    repository: Repository = Repository()
    pusher: Pusher = Pusher()
    nongithub: NonGithub = NonGithub()
    html_url: str = ""

    @property
    def full_name(self) -> str:
        """`organization/name` as used by the GitHub API."""
        return f"{self.repository.organization}/{self.repository.name}"

    @property
    def short_sha(self) -> str:
        return self.after[:6]


class JustNonGithub(BaseModel):
    """Just the side channel of any payload, whatever its event type."""

    nongithub: NonGithub = NonGithub()


class BuildStatus(BaseModel):
    """Commit status posted to GitHub."""

    state: Literal["pending", "success", "failure"]
    target_url: str
    description: str


class CommandResult(BaseModel):
    """Result of running an external command."""
    exit_code: int
    output: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class BackendKey(NamedTuple):
    """Routing key of a preview backend."""
    ref: str
    repository: str
