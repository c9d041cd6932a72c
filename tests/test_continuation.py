"""Tests for continuing, aborting and re-planning a paused rewrite."""

import logging
import subprocess
from unittest.mock import Mock

import pytest

from git_rewrite.continuation import ContinuationStateMachine, has_conflict_markers
from git_rewrite.driver import Outcome, OutcomeStatus, PauseReason, RewriteDriver
from git_rewrite.exceptions import (
    EngineFailure,
    NoSessionInProgressError,
    SessionStateError,
)
from git_rewrite.git_ops import GitOps
from git_rewrite.hooks import EMPTY_MESSAGE_MARKER
from git_rewrite.reconcile import DiffStatusCode, DiffStatusEntry
from git_rewrite.session import (
    APPLY_DIR,
    MERGE_DIR,
    RewriteSession,
    SessionKind,
    SessionStore,
)


def completed(returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(["git"], returncode, "", stderr)


class TestHasConflictMarkers:
    @pytest.mark.parametrize(
        "content, expected",
        [
            ("<<<<<<< HEAD\nours\n=======\ntheirs\n>>>>>>> topic\n", True),
            ("resolved\n", False),
            ("=======\n", True),
            ("text ======= inline\n", False),
            ("<<<<<<<no space\n", False),
        ],
    )
    def test_markers(self, tmp_path, content, expected) -> None:
        path = tmp_path / "file.txt"
        path.write_text(content)

        assert has_conflict_markers(path) is expected

    def test_deleted_file(self, tmp_path) -> None:
        assert not has_conflict_markers(tmp_path / "gone.txt")


class ContinuationTestCase:
    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        self.repo = tmp_path
        self.git_dir = tmp_path / ".git"
        self.git_dir.mkdir()
        self.git_ops = Mock(spec=GitOps)
        self.git_ops.repo_path = str(tmp_path)
        self.git_ops.git_dir.return_value = self.git_dir
        self.git_ops.get_conflicted_files.return_value = []
        self.git_ops.modified_tracked_files.return_value = []
        self.git_ops.toplevel.return_value = tmp_path
        self.git_ops.get_working_tree_status.return_value = {"has_staged": False}
        self.store = Mock(spec=SessionStore)
        self.driver = Mock(spec=RewriteDriver)
        self.driver.resume.return_value = Outcome(OutcomeStatus.COMPLETED)
        self.driver.hook_environment.return_value = {"GIT_EDITOR": "hook"}
        self.machine = ContinuationStateMachine(
            self.git_ops, self.store, self.driver, SessionKind.HISTEDIT
        )

    def session(self, **kwargs) -> RewriteSession:
        kwargs.setdefault("kind", SessionKind.HISTEDIT)
        kwargs.setdefault("directory", self.git_dir / MERGE_DIR)
        session = RewriteSession(**kwargs)
        self.store.read_session.return_value = session
        return session


class TestContinue(ContinuationTestCase):
    def test_no_session(self) -> None:
        self.store.read_session.return_value = None

        with pytest.raises(NoSessionInProgressError):
            self.machine.continue_()
        self.driver.resume.assert_not_called()

    def test_plain_continue(self) -> None:
        self.session()

        outcome = self.machine.continue_()

        assert outcome.status is OutcomeStatus.COMPLETED
        self.driver.resume.assert_called_once_with(SessionKind.HISTEDIT)
        self.git_ops.stage_files.assert_not_called()

    def test_resumes_with_session_kind(self, caplog) -> None:
        self.session(kind=SessionKind.REBASE)

        with caplog.at_level(logging.INFO):
            self.machine.continue_()

        self.driver.resume.assert_called_once_with(SessionKind.REBASE)
        assert "started by rebase" in caplog.text

    def test_unresolved_conflicts(self) -> None:
        self.session()
        (self.repo / "a.txt").write_text("<<<<<<< HEAD\nx\n=======\ny\n>>>>>>> b\n")
        self.git_ops.get_conflicted_files.return_value = ["a.txt"]

        with pytest.raises(SessionStateError, match="a.txt"):
            self.machine.continue_()
        self.driver.resume.assert_not_called()

    def test_conflicts_checked_from_working_tree_root(self) -> None:
        self.session()
        (self.repo / "sub").mkdir()
        (self.repo / "sub" / "a.txt").write_text("<<<<<<< HEAD\nx\n=======\ny\n>>>>>>> b\n")
        self.git_ops.repo_path = str(self.repo / "sub")
        self.git_ops.get_conflicted_files.return_value = ["sub/a.txt"]

        with pytest.raises(SessionStateError, match="sub/a.txt"):
            self.machine.continue_()
        self.git_ops.stage_files.assert_not_called()

    def test_resolved_conflicts_are_staged(self) -> None:
        self.session()
        (self.repo / "a.txt").write_text("merged\n")
        self.git_ops.get_conflicted_files.return_value = ["a.txt"]

        self.machine.continue_()

        self.git_ops.stage_files.assert_called_once_with(["a.txt"])

    def test_edit_stop_with_changes_reports_amend(self) -> None:
        self.session(awaiting_amend=True)
        self.git_ops.modified_tracked_files.return_value = ["foo.txt"]
        self.git_ops.rev_parse.return_value = "1" * 40
        base = [DiffStatusEntry(DiffStatusCode.ADDED, "foo.txt")]
        local = [DiffStatusEntry(DiffStatusCode.MODIFIED, "foo.txt")]
        self.git_ops.diff_status.side_effect = [base, local]

        outcome = self.machine.continue_()

        self.git_ops.stage_files.assert_called_once_with(["foo.txt"])
        assert outcome.amended == local
        self.git_ops.modified_tracked_files.assert_called_once_with(())

    def test_pathspecs_restrict_amend(self) -> None:
        self.session(awaiting_amend=True)
        self.git_ops.modified_tracked_files.return_value = ["foo.txt"]
        self.git_ops.rev_parse.return_value = "1" * 40
        base = [
            DiffStatusEntry(DiffStatusCode.ADDED, "foo.txt"),
            DiffStatusEntry(DiffStatusCode.ADDED, "bar.txt"),
        ]
        filtered = [DiffStatusEntry(DiffStatusCode.ADDED, "foo.txt")]
        local = [DiffStatusEntry(DiffStatusCode.MODIFIED, "foo.txt")]
        self.git_ops.diff_status.side_effect = [base, filtered, local]

        outcome = self.machine.continue_(["foo.txt"])

        assert [entry.describe() for entry in outcome.amended] == [
            "modified foo.txt",
            "added bar.txt",
        ]
        self.git_ops.diff_status.assert_called_with("HEAD~1", None, ["foo.txt"])

    def test_flattened_merge_committed_before_resume(self) -> None:
        self.session(cherry_pick_pending=True)
        (self.git_dir / "CHERRY_PICK_HEAD").write_text("2" * 40 + "\n")

        self.machine.continue_()

        self.git_ops.commit_no_edit.assert_called_once_with(env={"GIT_EDITOR": "hook"})
        self.driver.resume.assert_called_once()


class TestReopenMessage(ContinuationTestCase):
    def test_message_reopened_before_resume(self) -> None:
        self.session(message_rejected=True)
        self.git_ops.amend_message.return_value = completed()

        outcome = self.machine.continue_()

        assert outcome.status is OutcomeStatus.COMPLETED
        self.git_ops.amend_message.assert_called_once_with(env={"GIT_EDITOR": "hook"})
        self.store.mark_message_rejected.assert_called_once_with(False)
        self.driver.resume.assert_called_once_with(SessionKind.HISTEDIT)

    def test_empty_again_stays_paused(self) -> None:
        session = self.session(message_rejected=True)
        stderr = f"{EMPTY_MESSAGE_MARKER}: aborting commit due to empty message\n"
        self.git_ops.amend_message.return_value = completed(1, stderr)

        outcome = self.machine.continue_()

        assert outcome.pause_reason is PauseReason.EMPTY_MESSAGE
        assert outcome.session == session
        assert outcome.stderr == stderr
        self.store.mark_message_rejected.assert_not_called()
        self.driver.resume.assert_not_called()

    def test_amend_failure(self) -> None:
        self.session(message_rejected=True)
        self.git_ops.amend_message.return_value = completed(128, "fatal: no HEAD")

        with pytest.raises(EngineFailure):
            self.machine.continue_()
        self.driver.resume.assert_not_called()

    def test_uncommitted_step_left_to_git(self) -> None:
        self.session(message_rejected=True)
        self.git_ops.get_working_tree_status.return_value = {"has_staged": True}

        self.machine.continue_()

        self.git_ops.amend_message.assert_not_called()
        self.store.mark_message_rejected.assert_called_once_with(False)
        self.driver.resume.assert_called_once()

    def test_other_pauses_not_reopened(self) -> None:
        self.session(awaiting_amend=True)

        self.machine.continue_()

        self.git_ops.amend_message.assert_not_called()


class TestAbort(ContinuationTestCase):
    def test_abort(self) -> None:
        self.session()
        self.git_ops.run_git_command.return_value = completed()

        self.machine.abort()

        self.git_ops.run_git_command.assert_called_once_with(["rebase", "--abort"])

    def test_no_session(self) -> None:
        self.store.read_session.return_value = None

        with pytest.raises(NoSessionInProgressError):
            self.machine.abort()

    def test_git_refuses(self) -> None:
        self.session()
        self.git_ops.run_git_command.return_value = completed(128, "fatal: nope")

        with pytest.raises(EngineFailure) as exc_info:
            self.machine.abort()

        assert exc_info.value.stderr == "fatal: nope"


class TestEditPlan(ContinuationTestCase):
    def test_edit_todo(self) -> None:
        session = self.session()
        self.git_ops.run_interactive.return_value = completed()

        assert self.machine.edit_plan() == session

        self.git_ops.run_interactive.assert_called_once_with(["rebase", "--edit-todo"])

    def test_apply_backend_has_no_plan(self) -> None:
        self.session(directory=self.git_dir / APPLY_DIR)

        with pytest.raises(SessionStateError, match="no editable plan"):
            self.machine.edit_plan()

    def test_rejected_edit(self) -> None:
        self.session()
        self.git_ops.run_interactive.return_value = completed(1, "error: bad line")

        with pytest.raises(EngineFailure):
            self.machine.edit_plan()
