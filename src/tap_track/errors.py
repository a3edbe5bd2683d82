"""Exception hierarchy for the tracker."""

from __future__ import annotations


class TapTrackError(Exception):
    """Base class for errors surfaced to callers."""


class AuthenticationRequiredError(TapTrackError):
    """An operation needing a signed-in identity was called without one."""

    def __init__(self, message: str = "Sign in to track time.") -> None:
        super().__init__(message)


class ClockSanityError(TapTrackError):
    """A computed duration was non-positive or the start lies in the future."""


class RemoteStoreError(Exception):
    """Base class for failures reported by a remote session store."""


class RemoteUnavailableError(RemoteStoreError):
    """The remote store could not be reached or did not answer successfully."""


class ActiveSessionConflictError(RemoteStoreError):
    """The remote store already holds a different active session for the user."""

    def __init__(self, user_id: str, active_id: str | None = None) -> None:
        self.user_id = user_id
        self.active_id = active_id
        super().__init__(
            f"User {user_id} already has an active session"
            + (f" ({active_id})" if active_id else "")
        )


class SessionNotFoundError(RemoteStoreError):
    """No session with the given id exists for the owner."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"No session found for id={session_id}")


class SessionAlreadyCompletedError(RemoteStoreError):
    """The session was already completed with a different end."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} is already completed")
