"""Shared fixtures: throwaway git repositories driven through subprocess."""

import os
import shutil
import stat
import subprocess
from pathlib import Path
from typing import Optional

import pytest

SRC_DIR = Path(__file__).resolve().parent.parent / "src"

DUMMY_CONTENT = "Hello, World!\n"


class GitRepo:
    """A temporary repository with helpers for building history."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def git(self, *args: str, check: bool = True) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=check,
        )
        return result.stdout.strip()

    def write(self, name: str, content: str = DUMMY_CONTENT) -> Path:
        path = self.path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    def commit(self, message: str) -> str:
        self.git("commit", "-q", "-m", message)
        return self.head()

    def commit_file(
        self, name: str, message: str, content: str = DUMMY_CONTENT
    ) -> str:
        self.write(name, content)
        self.git("add", name)
        return self.commit(message)

    def head(self) -> str:
        return self.rev("HEAD")

    def rev(self, revision: str) -> str:
        return self.git("rev-parse", "--verify", f"{revision}^{{commit}}")

    def branch(self) -> Optional[str]:
        name = self.git("symbolic-ref", "-q", "HEAD", check=False)
        return name or None

    def has_file(self, revision: str, name: str) -> bool:
        result = subprocess.run(
            ["git", "cat-file", "-e", f"{revision}:{name}"],
            cwd=self.path,
            capture_output=True,
        )
        return result.returncode == 0

    def cat(self, revision: str, name: str) -> str:
        return subprocess.run(
            ["git", "cat-file", "blob", f"{revision}:{name}"],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
        ).stdout

    def message(self, revision: str) -> str:
        return subprocess.run(
            ["git", "show", "-s", "--format=%B", revision],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
        ).stdout.rstrip("\n") + "\n"

    def editor_cmd(self, content: str) -> str:
        """An editor command that replaces the edited file with content."""
        tools = self.path.parent / "tools"
        tools.mkdir(exist_ok=True)
        index = len(list(tools.glob("editor*.sh")))
        content_file = tools / f"content{index}.txt"
        content_file.write_text(content)
        script = tools / f"editor{index}.sh"
        script.write_text(f"#!/bin/sh\ncat '{content_file}' > \"$1\"\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
        return str(script)

    def set_config(self, key: str, value: str) -> None:
        self.git("config", key, value)

    def rebase_in_progress(self) -> bool:
        git_dir = Path(self.git("rev-parse", "--absolute-git-dir"))
        return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()


@pytest.fixture
def repo(tmp_path, monkeypatch) -> GitRepo:
    """A repository on branch main with one commit, used as the cwd."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    for name in ("GIT_EDITOR", "GIT_SEQUENCE_EDITOR", "VISUAL", "EDITOR"):
        monkeypatch.delenv(name, raising=False)
    for name in ("GIT_REWRITE_GIT", "GIT_REWRITE_TIMEOUT", "GIT_REWRITE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    # Hooks run as "python -m git_rewrite.hooks" in a child of git.
    pythonpath = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH", str(SRC_DIR) + (os.pathsep + pythonpath if pythonpath else "")
    )

    path = tmp_path / "repo"
    path.mkdir()
    git_repo = GitRepo(path)
    git_repo.git("init", "-q")
    git_repo.git("symbolic-ref", "HEAD", "refs/heads/main")
    git_repo.set_config("user.name", "Test User")
    git_repo.set_config("user.email", "test@example.com")
    git_repo.set_config("commit.gpgsign", "false")
    git_repo.commit_file("initial.txt", "initial import")
    monkeypatch.chdir(path)
    return git_repo
