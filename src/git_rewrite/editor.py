"""Launching the operator's editor and cleaning up what comes back."""

import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Mapping, Optional

from git_rewrite.config import GitConfig
from git_rewrite.exceptions import GitRewriteError, UsageError
from git_rewrite.git_ops import GitOps

logger = logging.getLogger(__name__)


class EditorError(GitRewriteError):
    """The editor could not be started or exited unsuccessfully."""


class Editor:
    """Runs an editor command the way git does, through the shell.

    The command is a shell snippet (``code --wait``, ``vim -f`` ...), so
    the file name is appended as a positional argument instead of being
    interpolated into the string.
    """

    def __init__(self, command: str, cwd: Optional[Path] = None) -> None:
        if not command.strip():
            raise UsageError("no editor configured")
        self.command = command
        self.cwd = cwd

    @classmethod
    def for_messages(cls, git_ops: GitOps) -> "Editor":
        """The editor git would use for commit messages."""
        command = git_ops.var("GIT_EDITOR")
        if not command:
            raise UsageError(
                "no editor configured",
                recovery_suggestion="Set core.editor or the EDITOR environment variable",
            )
        return cls(command, cwd=git_ops.repo_path)

    @classmethod
    def for_sequence(
        cls,
        git_ops: GitOps,
        config: GitConfig,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Editor":
        """The editor git would use for todo lists.

        GIT_SEQUENCE_EDITOR, then sequence.editor, then the message editor.
        """
        env = os.environ if environ is None else environ
        command = env.get("GIT_SEQUENCE_EDITOR") or config.value("sequence.editor")
        if command:
            return cls(command, cwd=git_ops.repo_path)
        return cls.for_messages(git_ops)

    def run(self, path: Path) -> None:
        """Open path in the editor and wait for it to exit.

        Raises:
            EditorError: If the editor fails to start or exits non-zero
        """
        args = ["sh", "-c", f'{self.command} "$@"', self.command, str(path)]
        logger.debug(f"Running editor: {self.command} {path}")
        try:
            result = subprocess.run(args, cwd=self.cwd)
        except OSError as e:
            raise EditorError(f"could not run editor {self.command!r}: {e}") from e
        if result.returncode != 0:
            raise EditorError(
                f"editor {self.command!r} exited with status {result.returncode}"
            )

    def edit(self, initial: str, name: str) -> str:
        """Let the operator edit text in a temporary file called name.

        Returns:
            The file's content after the editor exits
        """
        with tempfile.TemporaryDirectory(prefix="git-rewrite-") as tmpdir:
            path = Path(tmpdir) / name
            path.write_text(initial, encoding="utf-8")
            self.run(path)
            return path.read_text(encoding="utf-8")


def cleanup_message(text: str, comment_prefix: str = "#") -> str:
    """Normalize an edited commit message.

    Lines starting with comment_prefix are removed, trailing whitespace is
    stripped from every line, and trailing blank lines are dropped. Every
    remaining line ends with a newline; an empty result means the operator
    left no message.
    """
    lines = []
    for line in text.splitlines():
        if comment_prefix and line.startswith(comment_prefix):
            continue
        lines.append(line.rstrip())
    while lines and not lines[-1]:
        lines.pop()
    return "".join(line + "\n" for line in lines)
