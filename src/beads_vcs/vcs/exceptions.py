"""
VCS Exceptions
==============

Exception hierarchy for VCS operations. Every error raised by a backend,
the detector, the factory or the agent lifecycle derives from VCSError, so
callers can catch broadly or classify with the predicates at the bottom of
this module.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence


class VCSError(Exception):
    """Base exception for VCS operations."""


class NotInVCSError(VCSError):
    """Path is not inside a git or jj repository."""


class VCSNotFoundError(VCSError):
    """The required VCS tool is not installed or not runnable."""


class WorkspaceExistsError(VCSError):
    """A workspace with this name or reference already exists."""


class WorkspaceNotFoundError(VCSError):
    """The workspace is missing or no longer healthy."""


class RefExistsError(VCSError):
    """A reference with this name already exists."""


class RefNotFoundError(VCSError):
    """The named reference does not exist."""


class NoRemoteError(VCSError):
    """No remote is configured for the operation."""


class VCSConflictError(VCSError):
    """The operation produced or ran into conflicts."""


class DirtyWorkspaceError(VCSError):
    """The working copy has uncommitted changes."""


class VCSCapabilityError(VCSError):
    """The backend does not support the requested operation."""


NotSupportedError = VCSCapabilityError


class DetachedError(VCSError):
    """HEAD is detached where a branch is required."""


class AbortedError(VCSError):
    """The operation was cancelled before it finished."""


class PushRejectedError(VCSError):
    """The remote rejected the push."""


class MergeRequiredError(VCSError):
    """Histories diverged; a merge or rebase is needed."""


class VCSTimeoutError(VCSError):
    """A VCS subprocess exceeded its timeout."""


class RegistryError(VCSError, ValueError):
    """Programmer error while registering a backend constructor."""


class CommandError(VCSError):
    """A VCS command failed in a way no other exception describes."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stderr: str = "",
        stdout: str = "",
    ) -> None:
        self.argv = list(args)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        message = f"{' '.join(self.argv)} failed with exit code {returncode}"
        detail = stderr.strip() or stdout.strip()
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


# =============================================================================
# Classification
# =============================================================================

_RETRYABLE = (
    VCSTimeoutError,
    PushRejectedError,
    MergeRequiredError,
)

_USER_ACTION_REQUIRED = (
    VCSConflictError,
    MergeRequiredError,
    PushRejectedError,
)

_FATAL = (
    NotInVCSError,
    VCSNotFoundError,
)


def _error_chain(err: BaseException | None) -> Iterator[BaseException]:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__ or err.__context__


def _matches(err: BaseException | None, kinds: tuple[type[VCSError], ...]) -> bool:
    return any(isinstance(link, kinds) for link in _error_chain(err))


def is_retryable(err: BaseException | None) -> bool:
    """Return True if retrying (possibly after a sync) may succeed."""
    return _matches(err, _RETRYABLE)


def is_user_action_required(err: BaseException | None) -> bool:
    """Return True if a human must intervene before the operation can succeed."""
    return _matches(err, _USER_ACTION_REQUIRED)


def is_fatal(err: BaseException | None) -> bool:
    """Return True if the environment itself rules out the operation."""
    return _matches(err, _FATAL)
