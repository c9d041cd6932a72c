"""Git operations module for revision queries and rewrite commands."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from git_rewrite.config import RewriteSettings
from git_rewrite.exceptions import EngineFailure
from git_rewrite.reconcile import DiffStatusEntry, parse_name_status

TERMINATE_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class LogEntry:
    """A commit as listed by ``git log``."""

    commit_hash: str
    parents: List[str]
    subject: str

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


class GitOps:
    """Runs git commands against one repository."""

    def __init__(
        self,
        repo_path: Optional[Path] = None,
        settings: Optional[RewriteSettings] = None,
    ) -> None:
        """Initialize GitOps with optional repository path.

        Args:
            repo_path: Path to git repository. Defaults to current directory.
            settings: Process settings. Defaults to the environment.
        """
        self.repo_path = repo_path if repo_path is not None else Path.cwd()
        self.settings = settings if settings is not None else RewriteSettings.from_env()
        self.logger = logging.getLogger(__name__)

    def _run_git_command(self, *args: str) -> tuple[bool, str]:
        """Run a git command and return success status and output.

        Args:
            *args: Git command arguments

        Returns:
            Tuple of (success, output/error_message)
        """
        result = self.run_git_command(list(args))
        return (
            result.returncode == 0,
            result.stdout.strip() or result.stderr.strip(),
        )

    def run_git_command(
        self,
        args: List[str],
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = -1,
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command and return the complete result.

        Output is captured and never stripped, so porcelain formats keep
        their leading columns.

        Args:
            args: Git command arguments (without 'git')
            env: Optional environment variables
            timeout: Seconds before the command is killed; defaults to the
                configured timeout, ``None`` waits forever

        Returns:
            CompletedProcess with stdout, stderr, and return code
        """
        if timeout == -1:
            timeout = self.settings.timeout
        cmd = [self.settings.git_executable] + args
        self.logger.debug(f"Running {' '.join(cmd)}")
        try:
            return subprocess.run(
                cmd,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                env=env,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            return subprocess.CompletedProcess(
                args=cmd,
                returncode=124,  # timeout exit code
                stdout=e.stdout.decode() if isinstance(e.stdout, bytes) else "",
                stderr=f"Command timed out after {timeout} seconds: {e}",
            )
        except (OSError, PermissionError, FileNotFoundError) as e:
            return subprocess.CompletedProcess(
                args=cmd,
                returncode=1,
                stdout="",
                stderr=f"System error: {e}",
            )

    def run_interactive(
        self,
        args: List[str],
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command that may block on an editor.

        stdin and stdout stay attached to the terminal so editors work;
        stderr is captured so failures can be reported verbatim. An
        interrupt or timeout terminates git and leaves any on-disk rebase
        state exactly as git left it.

        Args:
            args: Git command arguments (without 'git')
            env: Environment for git and the editors it spawns
            timeout: Seconds to wait before terminating git

        Returns:
            CompletedProcess with stderr and return code (stdout is None)

        Raises:
            EngineFailure: If git could not be started or timed out
            KeyboardInterrupt: Re-raised after git has been terminated
        """
        cmd = [self.settings.git_executable] + args
        self.logger.debug(f"Running interactive {' '.join(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                cwd=self.repo_path,
                env=env,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise EngineFailure(f"could not start {' '.join(cmd)}: {e}") from e

        try:
            _, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._terminate(process)
            raise EngineFailure(
                f"{' '.join(cmd)} did not finish within {timeout} seconds",
                returncode=process.returncode,
            )
        except KeyboardInterrupt:
            self._terminate(process)
            raise

        return subprocess.CompletedProcess(
            args=cmd, returncode=process.returncode, stdout=None, stderr=stderr or ""
        )

    def _terminate(self, process: "subprocess.Popen[str]") -> None:
        """Stop a child git process, escalating to kill after a grace period."""
        if process.poll() is not None:
            return
        self.logger.warning(f"Terminating git process {process.pid}")
        process.terminate()
        try:
            process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _check(self, result: subprocess.CompletedProcess[str], what: str) -> str:
        if result.returncode != 0:
            raise EngineFailure(
                f"{what} failed (exit {result.returncode})",
                stderr=result.stderr,
                returncode=result.returncode,
            )
        return result.stdout

    def is_git_available(self) -> bool:
        """Check if git can be executed."""
        result = self.run_git_command(["--version"])
        return result.returncode == 0

    def is_git_repo(self) -> bool:
        """Check if current directory is inside a git repository.

        Returns:
            True if in a git repository, False otherwise
        """
        success, _ = self._run_git_command("rev-parse", "--git-dir")
        return success

    def git_dir(self) -> Path:
        """Absolute path of the repository's (per-worktree) git directory."""
        output = self._check(
            self.run_git_command(["rev-parse", "--git-dir"]), "git rev-parse --git-dir"
        ).strip()
        path = Path(output)
        if not path.is_absolute():
            path = Path(self.repo_path) / path
        return path

    def toplevel(self) -> Path:
        """Root of the working tree; git lists changed files relative to it."""
        output = self._check(
            self.run_git_command(["rev-parse", "--show-toplevel"]),
            "git rev-parse --show-toplevel",
        ).strip()
        return Path(output)

    def get_current_branch(self) -> Optional[str]:
        """Get the current branch name.

        Returns:
            Branch name if on a branch, None if detached HEAD
        """
        success, output = self._run_git_command("symbolic-ref", "--short", "-q", "HEAD")
        return output if success and output else None

    def rev_parse(self, revision: str) -> Optional[str]:
        """Resolve a revision to a full commit hash.

        Returns:
            The commit hash, or None if git cannot verify the revision
        """
        result = self.run_git_command(
            ["rev-parse", "-q", "--verify", "--revs-only", f"{revision}^{{commit}}"]
        )
        if result.returncode != 0:
            return None
        output = result.stdout.strip()
        return output or None

    def symbolic_full_name(self, revision: str) -> Optional[str]:
        """Full ref name a revision refers to, or None for a bare commit."""
        result = self.run_git_command(
            ["rev-parse", "-q", "--verify", "--revs-only", "--symbolic-full-name", revision]
        )
        if result.returncode != 0:
            return None
        output = result.stdout.strip()
        return output or None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Report whether ancestor is reachable from descendant.

        Raises:
            EngineFailure: If git reports anything other than yes or no
        """
        result = self.run_git_command(
            ["merge-base", "--is-ancestor", ancestor, descendant]
        )
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise EngineFailure(
            f"git merge-base --is-ancestor {ancestor} {descendant} failed",
            stderr=result.stderr,
            returncode=result.returncode,
        )

    def merge_base(self, first: str, second: str) -> Optional[str]:
        """Find the best common ancestor of two commits."""
        success, output = self._run_git_command("merge-base", first, second)
        return output if success and output else None

    def fork_point(self, upstream: str, commit: str) -> Optional[str]:
        """Find where commit forked from upstream, consulting upstream's reflog."""
        success, output = self._run_git_command(
            "merge-base", "--fork-point", upstream, commit
        )
        return output if success and output else None

    def first_parent_log(self, exclude: str, tip: str) -> List[LogEntry]:
        """List the first-parent chain in ``exclude..tip``, oldest first.

        Args:
            exclude: Commit whose history is excluded
            tip: Newest commit to list

        Returns:
            One entry per commit, merge commits included
        """
        output = self._check(
            self.run_git_command(
                [
                    "log",
                    "--first-parent",
                    "--reverse",
                    "-z",
                    "--format=%H%x1f%P%x1f%s",
                    f"{exclude}..{tip}",
                ]
            ),
            "git log",
        )
        entries = []
        for record in output.split("\0"):
            record = record.strip("\n")
            if not record:
                continue
            commit_hash, parents, subject = (record.split("\x1f", 2) + ["", ""])[:3]
            entries.append(LogEntry(commit_hash, parents.split(), subject))
        return entries

    def commit_subject(self, revision: str) -> str:
        success, output = self._run_git_command("show", "-s", "--format=%s", revision)
        return output if success else ""

    def read_config(self) -> str:
        """Return the raw ``git config -z --list`` output."""
        result = self.run_git_command(["config", "-z", "--list"])
        # An empty config exits non-zero on some versions.
        return result.stdout if result.returncode == 0 else ""

    def var(self, name: str) -> Optional[str]:
        """Read a logical git variable such as GIT_EDITOR."""
        success, output = self._run_git_command("var", name)
        return output if success and output else None

    def get_working_tree_status(self) -> Dict[str, bool]:
        """Get working tree status information.

        Returns:
            Dictionary with status flags: has_staged, has_unstaged,
            has_untracked, has_unmerged, is_clean (tracked files only)
        """
        result = self.run_git_command(["status", "--porcelain"])
        if result.returncode != 0:
            raise EngineFailure(
                "git status failed", stderr=result.stderr, returncode=result.returncode
            )

        lines = [line for line in result.stdout.split("\n") if line]
        tracked = [line for line in lines if not line.startswith("??")]
        has_unmerged = any(
            "U" in line[:2] or line[:2] in ("AA", "DD") for line in tracked
        )
        has_staged = any(line[0] not in "? " for line in tracked)
        has_unstaged = any(line[1] != " " for line in tracked)

        return {
            "has_staged": has_staged,
            "has_unstaged": has_unstaged,
            "has_untracked": len(tracked) != len(lines),
            "has_unmerged": has_unmerged,
            "is_clean": not tracked,
        }

    def modified_tracked_files(self, pathspecs: Sequence[str] = ()) -> List[str]:
        """Tracked files whose working copy differs from the index."""
        args = ["diff", "--name-only", "-z"]
        if pathspecs:
            args += ["--", *pathspecs]
        output = self._check(self.run_git_command(args), "git diff --name-only")
        return [name for name in output.split("\0") if name]

    def get_conflicted_files(self) -> List[str]:
        """Get list of files with merge conflicts.

        Returns:
            List of file paths with conflicts
        """
        result = self.run_git_command(["diff", "--name-only", "-z", "--diff-filter=U"])
        if result.returncode != 0:
            return []
        return sorted({name for name in result.stdout.split("\0") if name})

    def stage_files(self, paths: Sequence[str]) -> None:
        """Stage tracked paths, including deletions.

        Paths are relative to the top of the working tree, as git diff lists
        them, whichever directory the command runs from.
        """
        if not paths:
            return
        pathspecs = [f":(top,literal){path}" for path in paths]
        self._check(self.run_git_command(["add", "-u", "--", *pathspecs]), "git add")

    def diff_status(
        self,
        commit1: str,
        commit2: Optional[str] = None,
        pathspecs: Sequence[str] = (),
    ) -> List[DiffStatusEntry]:
        """Name-status diff of commit1 against commit2 or the working copy."""
        args = ["diff", "--name-status", "-z", "--find-renames", commit1]
        if commit2 is not None:
            args.append(commit2)
        if pathspecs:
            args += ["--", *pathspecs]
        return parse_name_status(self._check(self.run_git_command(args), "git diff"))

    def commit_no_edit(self, env: Optional[Mapping[str, str]] = None) -> None:
        """Commit the index using the prepared message (MERGE_MSG)."""
        result = self.run_git_command(["commit", "--no-edit", "--allow-empty"], env=env)
        self._check(result, "git commit")

    def amend_message(
        self, env: Optional[Mapping[str, str]] = None
    ) -> subprocess.CompletedProcess[str]:
        """Reopen HEAD's message in GIT_EDITOR and commit the index with it."""
        return self.run_interactive(["commit", "--amend", "--allow-empty"], env=env)

    def describe(self, revision: str) -> str:
        """Short hash and subject for messages, or the revision itself."""
        commit = self.rev_parse(revision)
        if commit is None:
            return revision
        return f"{commit[:8]} {self.commit_subject(commit)}".rstrip()
