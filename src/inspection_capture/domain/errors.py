"""Error taxonomy for sessions, drafts and batch commits."""

from collections.abc import Sequence
from enum import StrEnum

from inspection_capture.domain.uploads import UploadFailure


class AuthErrorReason(StrEnum):
    """Why a sign-in attempt was refused."""

    INVALID_CREDENTIALS = "invalid_credentials"
    NETWORK_FAILURE = "network_failure"
    LOCK_NOT_CONFIRMED = "lock_not_confirmed"
    SIGN_IN_IN_PROGRESS = "sign_in_in_progress"


class AuthError(Exception):
    """Sign-in failure surfaced at the sign-in form."""

    def __init__(self, reason: AuthErrorReason, message: str | None = None) -> None:
        self.reason = reason
        self.message = message or _AUTH_MESSAGES[reason]
        super().__init__(self.message)


_AUTH_MESSAGES = {
    AuthErrorReason.INVALID_CREDENTIALS: "Invalid username or password.",
    AuthErrorReason.NETWORK_FAILURE: "Could not reach the server, please try again.",
    AuthErrorReason.LOCK_NOT_CONFIRMED: (
        "Sign-in could not be verified, please sign in again."
    ),
    AuthErrorReason.SIGN_IN_IN_PROGRESS: "A sign-in is already in progress.",
}


class PersistenceError(Exception):
    """Local draft storage failed to read or write."""


class SubmissionInProgressError(Exception):
    """A batch commit is already in flight."""

    def __init__(self) -> None:
        super().__init__("A save is already in progress.")


class CommitValidationError(Exception):
    """A commit request is incomplete and was rejected before any upload."""


class UploadTaskError(Exception):
    """One or more photos failed to upload; the batch was not written."""

    def __init__(self, failures: Sequence[UploadFailure]) -> None:
        self.failures = list(failures)
        detail = "\n".join(
            f"{failure.item} ({failure.filename or 'unnamed'})"
            for failure in self.failures
        )
        super().__init__(f"These photos failed to upload, please retry:\n{detail}")


class CommitWriteError(Exception):
    """The report write was rejected after all uploads succeeded."""

    def __init__(self, remote_message: str) -> None:
        self.remote_message = remote_message
        super().__init__(
            f"Saving to the server failed: {remote_message}. No changes were written."
        )
