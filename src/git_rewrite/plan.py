"""Rewrite plans and the todo-list format git's sequencer reads."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from git_rewrite.exceptions import InvalidActionError
from git_rewrite.planner import DivergencePlan
from git_rewrite.revision import CommitRef

FLATTEN_COMMAND = "git cherry-pick --mainline=1 --allow-empty"

_FLATTEN_RE = re.compile(
    r"^git\s+cherry-pick\s+--mainline=1\s+--allow-empty\s+([0-9a-f]{4,64})\b"
)
_HEX_RE = re.compile(r"^[0-9a-f]{4,64}$")


class ActionKind(Enum):
    """What the sequencer does with one commit."""

    PICK = "pick"
    EDIT = "edit"
    REWORD = "reword"
    DROP = "drop"
    SQUASH = "squash"
    FIXUP = "fixup"
    FLATTEN = "exec"

    @property
    def keyword(self) -> str:
        return self.value

    @classmethod
    def from_keyword(cls, keyword: str) -> "ActionKind":
        """Look up a todo keyword, accepting git's one-letter aliases.

        Raises:
            InvalidActionError: If git would not understand the keyword
        """
        kind = _KEYWORDS.get(keyword.lower())
        if kind is None:
            raise InvalidActionError(f"unknown plan action {keyword!r}")
        return kind


_KEYWORDS: Dict[str, ActionKind] = {kind.value: kind for kind in ActionKind}
_KEYWORDS.update(
    {
        "p": ActionKind.PICK,
        "e": ActionKind.EDIT,
        "r": ActionKind.REWORD,
        "d": ActionKind.DROP,
        "s": ActionKind.SQUASH,
        "f": ActionKind.FIXUP,
        "x": ActionKind.FLATTEN,
    }
)

_HELP = """\
Commands:
 p, pick <commit> = use commit
 r, reword <commit> = use commit, but edit the commit message
 e, edit <commit> = use commit, but stop for amending
 s, squash <commit> = use commit, but meld into previous commit
 f, fixup <commit> = like squash, but discard this commit's message
 d, drop <commit> = remove commit
 x, exec git cherry-pick --mainline=1 --allow-empty <commit> = flatten a merge

These lines are executed from top to bottom.
Removing a line drops that commit."""


@dataclass(frozen=True)
class RewriteAction:
    """One step of a plan."""

    kind: ActionKind
    commit_hash: str
    subject: str = ""

    def to_line(self) -> str:
        if self.kind is ActionKind.FLATTEN:
            line = f"exec {FLATTEN_COMMAND} {self.commit_hash}"
            return f"{line} # {self.subject}" if self.subject else line
        return f"{self.kind.keyword} {self.commit_hash} {self.subject}".rstrip()


@dataclass(frozen=True)
class TodoEntry:
    """A line of a git todo or done file.

    ``kind`` is None for sequencer commands this tool never generates
    (``break``, ``label``, ``noop`` and the like); ``keyword`` keeps the
    original word either way.
    """

    keyword: str
    kind: Optional[ActionKind]
    commit_hash: Optional[str]
    line: str


def _strip_comment(line: str, comment_char: str) -> str:
    stripped = line.strip()
    if not stripped or stripped.startswith(comment_char):
        return ""
    return stripped


def _parse_line(line: str) -> TodoEntry:
    keyword, _, rest = line.partition(" ")
    rest = rest.strip()
    try:
        kind: Optional[ActionKind] = ActionKind.from_keyword(keyword)
    except InvalidActionError:
        return TodoEntry(keyword, None, None, line)

    if kind is ActionKind.FLATTEN:
        match = _FLATTEN_RE.match(rest)
        if match is None:
            # Arbitrary exec lines are git's business, not a flatten.
            return TodoEntry(keyword, None, None, line)
        return TodoEntry(keyword, kind, match.group(1), line)

    words = rest.split()
    # fixup may carry -C/-c before the commit.
    while words and words[0].startswith("-"):
        words.pop(0)
    commit_hash = words[0] if words and _HEX_RE.match(words[0]) else None
    return TodoEntry(keyword, kind, commit_hash, line)


def parse_todo(text: str, comment_char: str = "#") -> List[TodoEntry]:
    """Parse a todo or done file into entries.

    Only the keyword and commit are read; subjects are never parsed back.
    """
    entries = []
    for raw in text.splitlines():
        line = _strip_comment(raw, comment_char)
        if line:
            entries.append(_parse_line(line))
    return entries


@dataclass(frozen=True)
class RewritePlan:
    """An ordered list of actions replayed onto ``onto``."""

    onto: CommitRef
    actions: Tuple[RewriteAction, ...]

    def to_todo(self, comment_char: str = "#") -> str:
        """Serialize in git's todo format, with a trailing help block."""
        lines = [action.to_line() for action in self.actions]
        lines.append("")
        lines.extend(
            f"{comment_char} {help_line}".rstrip() for help_line in _HELP.splitlines()
        )
        return "\n".join(lines) + "\n"

    def kinds(self) -> List[ActionKind]:
        return [action.kind for action in self.actions]

    @property
    def stops(self) -> bool:
        """True if git will stop for the operator at an edit."""
        return any(action.kind is ActionKind.EDIT for action in self.actions)

    @classmethod
    def from_todo(
        cls, text: str, divergence_plan: DivergencePlan, comment_char: str = "#"
    ) -> "RewritePlan":
        """Validate an operator-edited todo list against the planned commits.

        Raises:
            InvalidActionError: For unknown keywords, commits outside the
                plan, or a squash/fixup with nothing before it
        """
        actions: List[RewriteAction] = []
        for raw in text.splitlines():
            line = _strip_comment(raw, comment_char)
            if not line:
                continue
            entry = _parse_line(line)
            if entry.kind is None:
                raise InvalidActionError(f"unsupported plan line: {line}")
            if entry.commit_hash is None:
                raise InvalidActionError(f"plan line names no commit: {line}")
            commit = _match_commit(divergence_plan, entry.commit_hash)
            if entry.kind in (ActionKind.SQUASH, ActionKind.FIXUP) and not any(
                action.kind is not ActionKind.DROP for action in actions
            ):
                raise InvalidActionError(
                    f"cannot {entry.kind.keyword} {commit.short_hash}: "
                    "no previous commit"
                )
            subject = divergence_plan.find(commit.commit_hash)
            actions.append(
                RewriteAction(
                    entry.kind, commit.commit_hash, subject.subject if subject else ""
                )
            )
        return cls(divergence_plan.target, tuple(actions))


def _match_commit(divergence_plan: DivergencePlan, prefix: str) -> CommitRef:
    prefix = prefix.lower()
    matches = [
        commit.ref
        for commit in divergence_plan.commits
        if commit.commit_hash.startswith(prefix)
    ]
    if not matches:
        raise InvalidActionError(
            f"{prefix} is not one of the commits being rewritten",
            recovery_suggestion="Only commits after "
            f"{divergence_plan.base.short_hash} can be named",
        )
    if len(matches) > 1:
        raise InvalidActionError(f"commit prefix {prefix} is ambiguous")
    return matches[0]


class PlanGenerator:
    """Builds rewrite plans from divergence plans."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)

    def generate(
        self,
        divergence_plan: DivergencePlan,
        edit_requests: Optional[Mapping[str, ActionKind]] = None,
    ) -> RewritePlan:
        """Produce the plan for a divergence plan.

        Every commit is picked, and merge commits flattened, unless
        edit_requests names it.

        Args:
            divergence_plan: Commits to replay and their target
            edit_requests: Full hashes or unique prefixes mapped to the
                action wanted for that commit

        Raises:
            InvalidActionError: If a request names a commit outside the plan
        """
        overrides: Dict[str, ActionKind] = {}
        for prefix, kind in (edit_requests or {}).items():
            commit = _match_commit(divergence_plan, prefix)
            if kind is ActionKind.FLATTEN:
                raise InvalidActionError(
                    f"{commit.short_hash}: merges are flattened automatically"
                )
            overrides[commit.commit_hash] = kind

        actions = []
        for commit in divergence_plan.commits:
            kind = overrides.get(commit.commit_hash)
            if kind is None:
                kind = ActionKind.FLATTEN if commit.is_merge else ActionKind.PICK
            elif commit.is_merge and kind is not ActionKind.DROP:
                # A merge can only be replayed as a flatten.
                self.logger.warning(
                    f"{commit.ref.short_hash} is a merge; it will be flattened "
                    f"instead of {kind.keyword}"
                )
                kind = ActionKind.FLATTEN
            actions.append(RewriteAction(kind, commit.commit_hash, commit.subject))

        first = next(
            (action for action in actions if action.kind is not ActionKind.DROP), None
        )
        if first is not None and first.kind in (ActionKind.SQUASH, ActionKind.FIXUP):
            raise InvalidActionError(
                f"cannot {first.kind.keyword} {first.commit_hash[:8]}: no previous commit"
            )
        self.logger.debug(f"Generated plan with {len(actions)} action(s)")
        return RewritePlan(divergence_plan.target, tuple(actions))

    def histedit_default(self, divergence_plan: DivergencePlan) -> RewritePlan:
        """Edit the first commit, pick the rest."""
        first = divergence_plan.commits[0]
        if first.is_merge:
            return self.generate(divergence_plan)
        return self.generate(divergence_plan, {first.commit_hash: ActionKind.EDIT})
