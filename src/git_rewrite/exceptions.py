"""Error taxonomy and user-facing error reporting for git-rewrite.

Every error raised on purpose by this package derives from
:class:`GitRewriteError`. Each class carries the process exit code the CLI
uses for it, so the exit-code boundary in :mod:`git_rewrite.main` does not
need to know about individual error kinds:

* ``0``   - an intentional pause (``PausedForOperator`` with ``requested``)
* ``1``   - usage, resolution, divergence and session-state errors
* ``2``   - unrecoverable failures of the git process itself
* ``130`` - interrupted by the operator
"""

from typing import TYPE_CHECKING, List, Optional, Sequence

from git_rewrite import console

if TYPE_CHECKING:
    from git_rewrite.session import RewriteSession


class GitRewriteError(Exception):
    """Base class for all git-rewrite errors."""

    exit_code = 1

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """Initialize error.

        Args:
            message: Primary error message
            current_state: Description of the commit or step that was active
            recovery_suggestion: What the operator can do about it
        """
        super().__init__(message)
        self.message = message
        self.current_state = current_state
        self.recovery_suggestion = recovery_suggestion


class UsageError(GitRewriteError):
    """Bad flag combination or argument. Nothing was changed."""


class RepositoryStateError(GitRewriteError):
    """git is missing or the working directory is not a repository."""


class InvalidActionError(UsageError):
    """A plan names a commit or action that cannot be applied."""


class ResolutionError(GitRewriteError):
    """A revision could not be resolved. Nothing was changed."""


class NotFoundError(ResolutionError):
    """git could not verify the requested revision."""

    def __init__(self, revision: str) -> None:
        super().__init__(
            f"unknown revision {revision!r}",
            recovery_suggestion="Check the branch name or commit hash and try again",
        )
        self.revision = revision


class DivergenceError(GitRewriteError):
    """No replay range could be computed. Nothing was changed."""


class NoUpstreamError(DivergenceError):
    """No base can be inferred because the branch has no upstream."""

    def __init__(self, branch: Optional[str]) -> None:
        where = f"branch {branch}" if branch else "detached HEAD"
        super().__init__(
            f"no upstream configured for {where}",
            current_state=where,
            recovery_suggestion="Pass -base/-dst explicitly or set an upstream with "
            "'git branch --set-upstream-to'",
        )
        self.branch = branch


class EmptyRangeError(DivergenceError):
    """The replay range is empty: there is nothing to rewrite."""

    def __init__(self, base: str, tip: str) -> None:
        super().__init__(
            f"nothing to rebase: {tip} has no commits after {base}",
            current_state=f"base {base}",
        )
        self.base = base
        self.tip = tip


class SessionStateError(GitRewriteError):
    """A continue/abort request does not match what is on disk."""


class NoSessionInProgressError(SessionStateError):
    """-continue or -abort was requested but no rewrite is paused."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"no rebase in progress; nothing to {operation}",
            recovery_suggestion="Start a rewrite with 'git-rewrite rebase' or "
            "'git-rewrite histedit'",
        )
        self.operation = operation


class EmptyMessageError(GitRewriteError):
    """An edited commit message was empty once comments were removed."""


class PausedForOperator(GitRewriteError):
    """Not a failure: the rewrite stopped and waits for the operator.

    ``requested`` is true when the pause is the one the invocation asked for
    (an ``edit`` stop), in which case the CLI exits successfully.
    """

    def __init__(
        self,
        message: str,
        session: "RewriteSession",
        requested: bool,
        command: str,
    ) -> None:
        super().__init__(
            message,
            current_state=session.describe_step(),
            recovery_suggestion=f"Run 'git-rewrite {command} -continue' when ready, "
            f"or 'git-rewrite {command} -abort' to restore the original branch",
        )
        self.session = session
        self.requested = requested
        self.exit_code = 0 if requested else 1


class EngineFailure(GitRewriteError):
    """git exited abnormally for a reason that is not a recognized pause."""

    exit_code = 2

    def __init__(
        self,
        message: str,
        stderr: str = "",
        returncode: Optional[int] = None,
        current_state: Optional[str] = None,
    ) -> None:
        super().__init__(message, current_state=current_state)
        self.stderr = stderr
        self.returncode = returncode


class UserCancelledError(GitRewriteError):
    """The operator interrupted the command."""

    exit_code = 130

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"{operation} interrupted",
            recovery_suggestion="Any paused rewrite was left as-is; use -continue or "
            "-abort to finish it",
        )


class UnexpectedError(GitRewriteError):
    """Wraps an exception that none of the other classes describe."""

    exit_code = 2


def handle_unexpected_error(
    error: Exception, operation: str, recovery_suggestion: Optional[str] = None
) -> UnexpectedError:
    """Wrap an unexpected exception for reporting.

    Args:
        error: The original exception
        operation: What was being done when it happened
        recovery_suggestion: Optional hint for the operator

    Returns:
        UnexpectedError describing the failure
    """
    wrapped = UnexpectedError(
        f"{operation} failed: {type(error).__name__}: {error}",
        recovery_suggestion=recovery_suggestion,
    )
    wrapped.__cause__ = error
    return wrapped


class ErrorReporter:
    """Formats errors for the terminal."""

    @staticmethod
    def report_error(error: GitRewriteError) -> None:
        """Print an error with its context and recovery hint.

        git's own diagnostics are written through unmodified, since they
        usually contain the conflict guidance the operator needs.
        """
        if isinstance(error, PausedForOperator):
            report = console.info if error.requested else console.warning
            report(error.message)
        else:
            console.error(f"error: {error.message}")

        if isinstance(error, EngineFailure):
            console.passthrough(error.stderr)

        if error.current_state:
            console.hint(f"  at: {error.current_state}")
        if error.recovery_suggestion:
            console.hint(f"  {error.recovery_suggestion}")

    @staticmethod
    def format_paths(paths: Sequence[str], limit: int = 10) -> List[str]:
        """Format a list of paths for display, truncating long lists."""
        lines = [f"  {path}" for path in paths[:limit]]
        if len(paths) > limit:
            lines.append(f"  ... and {len(paths) - limit} more")
        return lines
