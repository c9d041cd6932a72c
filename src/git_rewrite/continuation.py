"""Resuming and aborting a paused rewrite from a later invocation."""

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from git_rewrite.driver import Outcome, OutcomeStatus, PauseReason, RewriteDriver
from git_rewrite.exceptions import (
    EngineFailure,
    ErrorReporter,
    NoSessionInProgressError,
    SessionStateError,
)
from git_rewrite.git_ops import GitOps
from git_rewrite.hooks import EMPTY_MESSAGE_MARKER
from git_rewrite.reconcile import DiffStatusEntry, amended_status
from git_rewrite.session import RewriteSession, SessionKind, SessionStore

_CONFLICT_MARKERS = ("<<<<<<< ", ">>>>>>> ")


def has_conflict_markers(path: Path) -> bool:
    """Report whether a file still contains unresolved conflict markers."""
    try:
        with open(path, "rb") as f:
            for raw in f:
                line = raw.decode("utf-8", "replace")
                if line.startswith(_CONFLICT_MARKERS) or line.rstrip("\r\n") == "=======":
                    return True
    except (FileNotFoundError, IsADirectoryError):
        return False
    return False


class ContinuationStateMachine:
    """Validates -continue/-abort against git's session and delegates to git.

    Which step comes next is git's business: the session directory is read
    fresh for every decision and the original plan is never rebuilt.
    """

    def __init__(
        self,
        git_ops: GitOps,
        store: SessionStore,
        driver: RewriteDriver,
        kind: SessionKind = SessionKind.REBASE,
    ) -> None:
        self.git_ops = git_ops
        self.store = store
        self.driver = driver
        self.kind = kind
        self.logger = logging.getLogger(__name__)

    def _require_session(self, operation: str) -> RewriteSession:
        session = self.store.read_session()
        if session is None:
            raise NoSessionInProgressError(operation)
        if session.kind is not None and session.kind is not self.kind:
            self.logger.info(
                f"Session was started by {session.kind.value}; "
                f"handling {operation} from {self.kind.value}"
            )
        return session

    def continue_(self, pathspecs: Sequence[str] = ()) -> Outcome:
        """Advance a paused rewrite.

        Resolved conflicts and modified tracked files are staged first, so
        an edit stop with local changes amends the stopped commit. Untracked
        files are left alone. A step whose message was left empty gets its
        message editor once more before git moves on.

        Args:
            pathspecs: Restrict which modified files are folded in

        Raises:
            NoSessionInProgressError: If nothing is paused
            SessionStateError: If conflicts remain unresolved
            EngineFailure: If git fails outright
        """
        session = self._require_session("continue")
        kind = session.kind or self.kind

        self._stage_resolved_conflicts(session)

        if session.message_rejected:
            retry = self._reopen_message(session)
            if retry is not None:
                return retry

        amended: List[DiffStatusEntry] = []
        modified = self.git_ops.modified_tracked_files(pathspecs)
        if modified:
            if session.awaiting_amend:
                amended = self._amended_summary(pathspecs)
            self.logger.info(f"Staging {len(modified)} modified file(s)")
            self.git_ops.stage_files(modified)

        if (self.git_ops.git_dir() / "CHERRY_PICK_HEAD").exists():
            # A flattened merge stopped on conflicts; record it before git moves on.
            self.logger.info("Committing flattened merge")
            self.git_ops.commit_no_edit(env=self.driver.hook_environment())

        outcome = self.driver.resume(kind)
        outcome.amended = amended
        return outcome

    def _reopen_message(self, session: RewriteSession) -> Optional[Outcome]:
        """Let the operator write the message they left empty.

        git committed the step with its old message before the editor ran,
        so the message is amended in place. Returns a pause if it comes
        back empty again.
        """
        if self.git_ops.get_working_tree_status()["has_staged"]:
            # Not committed yet: git asks for the message itself on --continue.
            self.store.mark_message_rejected(False)
            return None
        self.logger.info(f"Reopening the message of {session.describe_step()}")
        result = self.git_ops.amend_message(env=self.driver.hook_environment())
        if result.returncode != 0:
            if EMPTY_MESSAGE_MARKER in result.stderr:
                return Outcome(
                    OutcomeStatus.PAUSED,
                    session=session,
                    pause_reason=PauseReason.EMPTY_MESSAGE,
                    stderr=result.stderr,
                )
            raise EngineFailure(
                "git commit --amend failed",
                stderr=result.stderr,
                returncode=result.returncode,
                current_state=session.describe_step(),
            )
        self.store.mark_message_rejected(False)
        return None

    def _stage_resolved_conflicts(self, session: RewriteSession) -> None:
        conflicts = self.git_ops.get_conflicted_files()
        if not conflicts:
            return
        toplevel = self.git_ops.toplevel()
        unresolved = [
            path for path in conflicts if has_conflict_markers(toplevel / path)
        ]
        if unresolved:
            raise SessionStateError(
                "unresolved conflicts:\n" + "\n".join(ErrorReporter.format_paths(unresolved)),
                current_state=session.describe_step(),
                recovery_suggestion="Resolve the conflicts, then run -continue again",
            )
        self.logger.info(f"Marking {len(conflicts)} conflicted file(s) resolved")
        self.git_ops.stage_files(conflicts)

    def _amended_summary(self, pathspecs: Sequence[str]) -> List[DiffStatusEntry]:
        """What the stopped commit will change once local edits are folded in."""
        parent = "HEAD~1"
        if self.git_ops.rev_parse(parent) is None:
            return []
        base = self.git_ops.diff_status(parent, "HEAD")
        filtered = (
            self.git_ops.diff_status(parent, "HEAD", pathspecs) if pathspecs else base
        )
        local = self.git_ops.diff_status(parent, None, pathspecs)
        return amended_status(base, filtered, local)

    def abort(self) -> None:
        """Discard a paused rewrite and restore the original branch.

        Raises:
            NoSessionInProgressError: If nothing is paused
            EngineFailure: If git refuses
        """
        session = self._require_session("abort")
        self.logger.info(f"Aborting at {session.describe_step()}")
        result = self.git_ops.run_git_command(["rebase", "--abort"])
        if result.returncode != 0:
            raise EngineFailure(
                "git rebase --abort failed",
                stderr=result.stderr,
                returncode=result.returncode,
                current_state=session.describe_step(),
            )

    def edit_plan(self) -> RewriteSession:
        """Open the remaining steps of a paused session in the sequence editor.

        Raises:
            NoSessionInProgressError: If nothing is paused
            SessionStateError: If the session has no todo list
            EngineFailure: If git rejects the edited list
        """
        session = self._require_session("edit")
        if not session.is_merge_backend:
            raise SessionStateError(
                "the paused rebase has no editable plan",
                current_state=session.describe_step(),
            )
        result = self.git_ops.run_interactive(["rebase", "--edit-todo"])
        if result.returncode != 0:
            raise EngineFailure(
                "git rebase --edit-todo failed",
                stderr=result.stderr,
                returncode=result.returncode,
                current_state=session.describe_step(),
            )
        updated = self.store.read_session()
        return updated if updated is not None else session
