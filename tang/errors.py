"""Custom exceptions for tang."""


class TangError(Exception):
    """Base exception for all tang errors."""
    pass


class ValidationError(TangError):
    """A push event was rejected before any work was done."""
    pass


class EmptyRepoName(ValidationError):
    """Push event has no repository name."""

    def __init__(self):
        super().__init__("Empty repository name")


class EmptyRepoOrganization(ValidationError):
    """Push event has no repository organization."""

    def __init__(self):
        super().__init__("Empty repository organization")


class UserNotAllowed(ValidationError):
    """Pusher is not in the allowed set."""

    def __init__(self, pusher: str = ""):
        self.pusher = pusher
        super().__init__("User not in the allowed set")


class CommandError(TangError):
    """An external command could not be started."""
    pass


class GitError(TangError):
    """Git operation failed."""
    pass


class MirrorError(GitError):
    """Creating or updating a mirror failed."""
    pass


class MirrorTimeout(MirrorError):
    """Updating a mirror took too long and was killed."""
    pass


class CheckoutError(GitError):
    """Populating a checkout directory failed."""
    pass


class BackendError(TangError):
    """A preview backend failed to start."""
    pass


class ListenerError(TangError):
    """Listening socket could not be acquired."""
    pass
