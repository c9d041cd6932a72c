"""Editor hooks git calls back into while a rewrite runs.

git runs ``GIT_SEQUENCE_EDITOR`` and ``GIT_EDITOR`` as shell commands with
the file to edit as the last argument. The driver points both at this
module::

    python -m git_rewrite.hooks plan <plan-file> <todo-file>
    python -m git_rewrite.hooks message <message-file>
"""

import argparse
import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from git_rewrite import console
from git_rewrite.editor import Editor, EditorError, cleanup_message

EDITOR_ENV = "GIT_REWRITE_EDITOR"
COMMENT_CHAR_ENV = "GIT_REWRITE_COMMENT_CHAR"
EMPTY_MESSAGE_MARKER = "git-rewrite: EmptyMessage"


def replace_todo(plan_file: Path, todo_file: Path) -> int:
    """Overwrite git's generated todo list with the prepared plan."""
    shutil.copyfile(plan_file, todo_file)
    return 0


def edit_message(message_file: Path) -> int:
    """Show a commit message to the operator's editor.

    An unchanged message is restored byte for byte. A message that is
    empty once comments are removed is restored too, and the hook fails so
    git stops on the step instead of committing. Without an editor the
    message is kept as git prepared it.
    """
    command = os.environ.get(EDITOR_ENV)
    if not command:
        return 0
    comment_char = os.environ.get(COMMENT_CHAR_ENV) or "#"

    original = message_file.read_bytes()
    try:
        Editor(command).run(message_file)
    except EditorError as e:
        message_file.write_bytes(original)
        console.error(f"git-rewrite: {e.message}")
        return 1

    edited = message_file.read_bytes()
    before = cleanup_message(original.decode("utf-8", "replace"), comment_char)
    after = cleanup_message(edited.decode("utf-8", "replace"), comment_char)
    if not after:
        message_file.write_bytes(original)
        console.error(f"{EMPTY_MESSAGE_MARKER}: aborting commit due to empty message")
        return 1
    if after == before:
        message_file.write_bytes(original)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m git_rewrite.hooks")
    subparsers = parser.add_subparsers(dest="hook", required=True)

    plan_parser = subparsers.add_parser("plan", help="supply the rewrite plan")
    plan_parser.add_argument("plan_file", type=Path)
    plan_parser.add_argument("todo_file", type=Path)

    message_parser = subparsers.add_parser("message", help="edit a commit message")
    message_parser.add_argument("message_file", type=Path)

    args = parser.parse_args(argv)
    try:
        if args.hook == "plan":
            return replace_todo(args.plan_file, args.todo_file)
        return edit_message(args.message_file)
    except OSError as e:
        console.error(f"git-rewrite: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
