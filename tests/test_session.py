"""Tests for reading git's rebase session files."""

from unittest.mock import Mock

import pytest

from git_rewrite.git_ops import GitOps
from git_rewrite.plan import ActionKind
from git_rewrite.session import (
    APPLY_DIR,
    MARKER_FILE,
    MERGE_DIR,
    REJECTED_MESSAGE_FILE,
    RewriteSession,
    SessionKind,
    SessionStore,
)

C1 = "1" * 40
C2 = "2" * 40
C3 = "3" * 40


@pytest.fixture
def git_dir(tmp_path):
    path = tmp_path / ".git"
    path.mkdir()
    return path


def write_merge_session(git_dir, **files: str):
    directory = git_dir / MERGE_DIR
    directory.mkdir()
    defaults = {
        "git-rebase-todo": f"pick {C3} third\n\n# help\n",
        "done": f"pick {C1} first\nedit {C2} second\n",
        "msgnum": "2\n",
        "end": "3\n",
        "onto": "a" * 40 + "\n",
        "orig-head": "b" * 40 + "\n",
        "head-name": "refs/heads/feature\n",
        "stopped-sha": C2 + "\n",
    }
    defaults.update(files)
    for name, content in defaults.items():
        (directory / name).write_text(content)
    return directory


class TestSessionStore:
    def setup_method(self) -> None:
        self.git_ops = Mock(spec=GitOps)
        self.store = SessionStore(self.git_ops)

    def test_no_session(self, git_dir) -> None:
        self.git_ops.git_dir.return_value = git_dir

        assert not self.store.is_in_progress()
        assert self.store.read_session() is None

    def test_reads_merge_session(self, git_dir) -> None:
        self.git_ops.git_dir.return_value = git_dir
        directory = write_merge_session(git_dir)
        (directory / "amend").write_text(C2 + "\n")

        session = self.store.read_session()

        assert session.is_merge_backend
        assert session.kind is None
        assert session.step == 2
        assert session.total == 3
        assert [entry.commit_hash for entry in session.pending] == [C3]
        assert [entry.kind for entry in session.done] == [ActionKind.PICK, ActionKind.EDIT]
        assert session.current.commit_hash == C2
        assert session.onto == "a" * 40
        assert session.orig_head == "b" * 40
        assert session.branch == "feature"
        assert session.stopped_sha == C2
        assert session.awaiting_amend
        assert not session.cherry_pick_pending
        assert session.command_name == "rebase"

    def test_cherry_pick_pending(self, git_dir) -> None:
        self.git_ops.git_dir.return_value = git_dir
        write_merge_session(git_dir)
        (git_dir / "CHERRY_PICK_HEAD").write_text(C3 + "\n")

        assert self.store.read_session().cherry_pick_pending

    def test_reads_apply_session(self, git_dir) -> None:
        self.git_ops.git_dir.return_value = git_dir
        directory = git_dir / APPLY_DIR
        directory.mkdir()
        (directory / "next").write_text("1\n")
        (directory / "last").write_text("4\n")
        (directory / "head-name").write_text("detached HEAD\n")

        session = self.store.read_session()

        assert not session.is_merge_backend
        assert (session.step, session.total) == (1, 4)
        assert session.branch is None
        assert session.current is None

    def test_mark_records_kind_once(self, git_dir) -> None:
        self.git_ops.git_dir.return_value = git_dir
        directory = write_merge_session(git_dir)

        self.store.mark(SessionKind.HISTEDIT)
        self.store.mark(SessionKind.REBASE)

        assert (directory / MARKER_FILE).read_text() == "histedit\n"
        session = self.store.read_session()
        assert session.kind is SessionKind.HISTEDIT
        assert session.command_name == "histedit"

    def test_mark_without_session_is_noop(self, git_dir) -> None:
        self.git_ops.git_dir.return_value = git_dir

        self.store.mark(SessionKind.REBASE)

        assert list(git_dir.iterdir()) == []

    def test_message_rejected_marker(self, git_dir) -> None:
        self.git_ops.git_dir.return_value = git_dir
        directory = write_merge_session(git_dir)
        assert not self.store.read_session().message_rejected

        self.store.mark_message_rejected()

        assert (directory / REJECTED_MESSAGE_FILE).exists()
        assert self.store.read_session().message_rejected

        self.store.mark_message_rejected(False)
        self.store.mark_message_rejected(False)

        assert not self.store.read_session().message_rejected

    def test_unknown_marker_ignored(self, git_dir, caplog) -> None:
        self.git_ops.git_dir.return_value = git_dir
        write_merge_session(git_dir, **{MARKER_FILE: "something-else\n"})

        assert self.store.read_session().kind is None
        assert "something-else" in caplog.text

    def test_custom_comment_char(self, git_dir) -> None:
        self.git_ops.git_dir.return_value = git_dir
        write_merge_session(git_dir, **{"git-rebase-todo": f"; note\npick {C3} x\n"})

        session = SessionStore(self.git_ops, ";").read_session()

        assert [entry.commit_hash for entry in session.pending] == [C3]


class TestDescribeStep:
    def test_full_description(self, tmp_path) -> None:
        session = RewriteSession(
            directory=tmp_path / MERGE_DIR,
            kind=SessionKind.REBASE,
            step=2,
            total=5,
            head_name="refs/heads/main",
        )

        assert session.describe_step() == "step 2/5, rewriting main"

    def test_falls_back_to_stopped_commit(self, tmp_path) -> None:
        session = RewriteSession(
            directory=tmp_path / MERGE_DIR, kind=None, stopped_sha=C1
        )

        assert session.describe_step() == "commit 11111111"

    def test_nothing_known(self, tmp_path) -> None:
        session = RewriteSession(directory=tmp_path / APPLY_DIR, kind=None)

        assert session.describe_step() == str(tmp_path / APPLY_DIR)
