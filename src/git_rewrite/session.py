"""Read-only view of a paused rewrite, straight from git's session files."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from git_rewrite.git_ops import GitOps
from git_rewrite.plan import TodoEntry, parse_todo
from git_rewrite.revision import BRANCH_PREFIX

MERGE_DIR = "rebase-merge"
APPLY_DIR = "rebase-apply"
MARKER_FILE = "git-rewrite-kind"
REJECTED_MESSAGE_FILE = "git-rewrite-empty-message"


class SessionKind(Enum):
    """Which command started the session."""

    REBASE = "rebase"
    HISTEDIT = "histedit"


def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace").strip()
    except FileNotFoundError:
        return None


def _read_int(path: Path) -> Optional[int]:
    value = _read(path)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class RewriteSession:
    """Snapshot of git's rebase state directory.

    Never kept across decisions: callers ask :class:`SessionStore` again
    whenever they need to know where the rewrite stands.
    """

    directory: Path
    kind: Optional[SessionKind]
    pending: List[TodoEntry] = field(default_factory=list)
    done: List[TodoEntry] = field(default_factory=list)
    step: Optional[int] = None
    total: Optional[int] = None
    onto: Optional[str] = None
    orig_head: Optional[str] = None
    head_name: Optional[str] = None
    stopped_sha: Optional[str] = None
    awaiting_amend: bool = False
    cherry_pick_pending: bool = False
    message_rejected: bool = False

    @property
    def is_merge_backend(self) -> bool:
        return self.directory.name == MERGE_DIR

    @property
    def branch(self) -> Optional[str]:
        """Branch being rewritten, or None if the rewrite started detached."""
        if self.head_name and self.head_name.startswith(BRANCH_PREFIX):
            return self.head_name[len(BRANCH_PREFIX) :]
        return None

    @property
    def current(self) -> Optional[TodoEntry]:
        """The step git applied last, which is the one it stopped on."""
        return self.done[-1] if self.done else None

    @property
    def command_name(self) -> str:
        return (self.kind or SessionKind.REBASE).value

    def describe_step(self) -> str:
        parts = []
        if self.step is not None and self.total is not None:
            parts.append(f"step {self.step}/{self.total}")
        current = self.current
        if current is not None:
            parts.append(current.line)
        elif self.stopped_sha:
            parts.append(f"commit {self.stopped_sha[:8]}")
        if self.branch:
            parts.append(f"rewriting {self.branch}")
        return ", ".join(parts) if parts else str(self.directory)


class SessionStore:
    """Locates and reads git's rebase state for one repository."""

    def __init__(self, git_ops: GitOps, comment_char: str = "#") -> None:
        self.git_ops = git_ops
        self.comment_char = comment_char
        self.logger = logging.getLogger(__name__)

    def session_dir(self) -> Optional[Path]:
        git_dir = self.git_ops.git_dir()
        for name in (MERGE_DIR, APPLY_DIR):
            path = git_dir / name
            if path.is_dir():
                return path
        return None

    def is_in_progress(self) -> bool:
        return self.session_dir() is not None

    def read_session(self) -> Optional[RewriteSession]:
        """Read the session currently on disk, or None if git is not rebasing."""
        directory = self.session_dir()
        if directory is None:
            return None

        kind_text = _read(directory / MARKER_FILE)
        try:
            kind = SessionKind(kind_text) if kind_text else None
        except ValueError:
            self.logger.warning(f"Ignoring unknown session marker {kind_text!r}")
            kind = None

        if directory.name == MERGE_DIR:
            step = _read_int(directory / "msgnum")
            total = _read_int(directory / "end")
            pending = parse_todo(
                _read(directory / "git-rebase-todo") or "", self.comment_char
            )
            done = parse_todo(_read(directory / "done") or "", self.comment_char)
            onto = _read(directory / "onto")
            orig_head = _read(directory / "orig-head")
            stopped_sha = _read(directory / "stopped-sha")
        else:
            step = _read_int(directory / "next")
            total = _read_int(directory / "last")
            pending, done = [], []
            onto = _read(directory / "onto")
            orig_head = _read(directory / "orig-head")
            stopped_sha = None

        session = RewriteSession(
            directory=directory,
            kind=kind,
            pending=pending,
            done=done,
            step=step,
            total=total,
            onto=onto,
            orig_head=orig_head,
            head_name=_read(directory / "head-name"),
            stopped_sha=stopped_sha,
            awaiting_amend=(directory / "amend").exists(),
            cherry_pick_pending=(directory.parent / "CHERRY_PICK_HEAD").exists(),
            message_rejected=(directory / REJECTED_MESSAGE_FILE).exists(),
        )
        self.logger.debug(f"Read session: {session.describe_step()}")
        return session

    def mark(self, kind: SessionKind) -> None:
        """Record which command owns the session, inside git's own directory."""
        directory = self.session_dir()
        if directory is None:
            return
        marker = directory / MARKER_FILE
        if not marker.exists():
            marker.write_text(kind.value + "\n", encoding="utf-8")

    def mark_message_rejected(self, rejected: bool = True) -> None:
        """Record that the stopped step's message was left empty, or clear it."""
        directory = self.session_dir()
        if directory is None:
            return
        marker = directory / REJECTED_MESSAGE_FILE
        if rejected:
            marker.write_text("", encoding="utf-8")
        elif marker.exists():
            marker.unlink()
