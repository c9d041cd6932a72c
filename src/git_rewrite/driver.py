"""Runs ``git rebase -i`` with a prepared plan and classifies how it ended."""

import logging
import os
import shlex
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from git_rewrite.exceptions import EngineFailure, SessionStateError, UsageError
from git_rewrite.git_ops import GitOps
from git_rewrite.hooks import COMMENT_CHAR_ENV, EDITOR_ENV, EMPTY_MESSAGE_MARKER
from git_rewrite.plan import RewritePlan
from git_rewrite.reconcile import DiffStatusEntry
from git_rewrite.revision import CommitRef
from git_rewrite.session import RewriteSession, SessionKind, SessionStore


class DriverState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


class OutcomeStatus(Enum):
    COMPLETED = "completed"
    PAUSED = "paused"


class PauseReason(Enum):
    """Why git handed control back before finishing the plan."""

    EDIT_STOP = "edit"
    CONFLICT = "conflict"
    DIRTY = "dirty"
    EMPTY_MESSAGE = "empty_message"
    UNKNOWN = "unknown"


@dataclass
class Outcome:
    """Result of one git rebase invocation."""

    status: OutcomeStatus
    session: Optional[RewriteSession] = None
    pause_reason: Optional[PauseReason] = None
    stderr: str = ""
    conflicts: List[str] = field(default_factory=list)
    amended: List[DiffStatusEntry] = field(default_factory=list)

    @property
    def paused(self) -> bool:
        return self.status is OutcomeStatus.PAUSED


class RewriteDriver:
    """Starts and resumes git's interactive rebase.

    git does all the work; the driver hands it the plan and the message
    hook through the environment, waits for it, and reads the session
    directory to tell a pause from a finish.
    """

    def __init__(
        self,
        git_ops: GitOps,
        store: SessionStore,
        editor_command: Optional[str] = None,
        auto_continue: bool = False,
        comment_char: str = "#",
    ) -> None:
        """Initialize the driver.

        Args:
            git_ops: Repository to rewrite
            store: Reader for the session directory
            editor_command: The operator's message editor; rewording is
                impossible without one
            auto_continue: Resume automatically after clean edit stops
            comment_char: Comment prefix of commit messages and todo lists
        """
        self.git_ops = git_ops
        self.store = store
        self.editor_command = editor_command
        self.auto_continue = auto_continue
        self.comment_char = comment_char
        self.state = DriverState.NOT_STARTED
        self.logger = logging.getLogger(__name__)

    def hook_environment(self, plan_file: Optional[Path] = None) -> Dict[str, str]:
        """Environment for git with our hooks in place of its editors."""
        env = dict(os.environ)
        hook = f"{shlex.quote(sys.executable)} -m git_rewrite.hooks"
        if plan_file is not None:
            env["GIT_SEQUENCE_EDITOR"] = f"{hook} plan {shlex.quote(str(plan_file))}"
        env["GIT_EDITOR"] = f"{hook} message"
        if self.editor_command:
            env[EDITOR_ENV] = self.editor_command
        else:
            env.pop(EDITOR_ENV, None)
        env[COMMENT_CHAR_ENV] = self.comment_char
        return env

    def check_can_start(self) -> None:
        """Refuse to start over a paused session or uncommitted changes.

        Raises:
            SessionStateError: If a rebase is already in progress
            UsageError: If tracked files have uncommitted changes
        """
        if self.store.is_in_progress():
            raise SessionStateError(
                "a rebase is already in progress",
                recovery_suggestion="Finish it with -continue or discard it with -abort",
            )
        if not self.git_ops.get_working_tree_status()["is_clean"]:
            raise UsageError(
                "working copy has uncommitted changes",
                recovery_suggestion="Commit or stash them first",
            )

    def execute(
        self, plan: RewritePlan, lower_bound: CommitRef, kind: SessionKind
    ) -> Outcome:
        """Replay a plan onto its target.

        The checked-out branch, or detached HEAD, is what git rewrites;
        git's own range ``lower_bound..HEAD`` is replaced by the plan.

        Raises:
            EngineFailure: If git fails without leaving a session behind
            KeyboardInterrupt: After git has been terminated
        """
        self.check_can_start()
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", prefix="git-rewrite-", suffix=".todo", delete=False
        ) as plan_file:
            plan_file.write(plan.to_todo(self.comment_char))
        try:
            args = [
                "-c",
                "rebase.missingCommitsCheck=ignore",
                "rebase",
                "-i",
                "--onto",
                plan.onto.commit_hash,
                lower_bound.commit_hash,
            ]
            result = self._run(args, self.hook_environment(Path(plan_file.name)))
        finally:
            os.unlink(plan_file.name)
        return self._finish(result, kind)

    def resume(self, kind: SessionKind) -> Outcome:
        """Let git continue a paused session from where it stopped."""
        result = self._run(["rebase", "--continue"], self.hook_environment())
        return self._finish(result, kind)

    def _run(self, args: List[str], env: Dict[str, str]) -> subprocess.CompletedProcess:
        self.state = DriverState.RUNNING
        try:
            result = self.git_ops.run_interactive(
                args, env=env, timeout=self.git_ops.settings.rebase_timeout
            )
        except BaseException:
            self.state = DriverState.FAILED
            raise
        if result.stderr:
            self.logger.debug(f"git {args[-1]} stderr:\n{result.stderr}")
        return result

    def _finish(self, result: subprocess.CompletedProcess, kind: SessionKind) -> Outcome:
        while True:
            session = self.store.read_session()
            if session is None:
                if result.returncode != 0:
                    self.state = DriverState.FAILED
                    raise EngineFailure(
                        f"git rebase failed (exit {result.returncode})",
                        stderr=result.stderr,
                        returncode=result.returncode,
                    )
                self.state = DriverState.COMPLETED
                return Outcome(OutcomeStatus.COMPLETED, stderr=result.stderr)

            self.store.mark(kind)
            session = self.store.read_session()
            reason, conflicts = self._classify(session, result.stderr)
            if (
                self.auto_continue
                and reason is PauseReason.EDIT_STOP
                and result.returncode == 0
            ):
                self.logger.info(f"Continuing past {session.describe_step()}")
                result = self._run(["rebase", "--continue"], self.hook_environment())
                continue

            if reason is PauseReason.EMPTY_MESSAGE:
                self.store.mark_message_rejected()
            self.state = DriverState.PAUSED
            self.logger.info(f"Paused ({reason.value}) at {session.describe_step()}")
            return Outcome(
                OutcomeStatus.PAUSED,
                session=session,
                pause_reason=reason,
                stderr=result.stderr,
                conflicts=conflicts,
            )

    def _classify(self, session: Optional[RewriteSession], stderr: str):
        """Tell a deliberate edit stop from a stop the operator must fix."""
        if EMPTY_MESSAGE_MARKER in (stderr or ""):
            return PauseReason.EMPTY_MESSAGE, []
        conflicts = self.git_ops.get_conflicted_files()
        if conflicts or (session is not None and session.cherry_pick_pending):
            return PauseReason.CONFLICT, conflicts
        if not self.git_ops.get_working_tree_status()["is_clean"]:
            return PauseReason.DIRTY, []
        if session is not None and session.awaiting_amend:
            return PauseReason.EDIT_STOP, []
        return PauseReason.UNKNOWN, []
