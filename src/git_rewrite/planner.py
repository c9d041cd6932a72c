"""Divergence planning: which commits to replay, and onto what."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from git_rewrite.exceptions import (
    DivergenceError,
    EmptyRangeError,
    NoUpstreamError,
    UsageError,
)
from git_rewrite.revision import CommitRef, RevisionResolver


@dataclass(frozen=True)
class PlannedCommit:
    """A commit on the first-parent chain that will be replayed."""

    ref: CommitRef
    subject: str
    is_merge: bool = False

    @property
    def commit_hash(self) -> str:
        return self.ref.commit_hash


@dataclass(frozen=True)
class DivergencePlan:
    """The replay range and its target.

    Attributes:
        base: Exclusive lower bound of the replay range
        commits: First-parent commits after base up to tip, oldest first
        target: Commit the range is replayed onto
        tip: Newest commit in the range
    """

    base: CommitRef
    commits: Tuple[PlannedCommit, ...]
    target: CommitRef
    tip: CommitRef

    @property
    def is_in_place(self) -> bool:
        return self.target.commit_hash == self.base.commit_hash

    def find(self, commit_hash: str) -> Optional[PlannedCommit]:
        for commit in self.commits:
            if commit.commit_hash == commit_hash:
                return commit
        return None


class DivergencePlanner:
    """Computes replay ranges from -src/-base/-dst requests."""

    def __init__(self, resolver: RevisionResolver) -> None:
        self.resolver = resolver
        self.logger = logging.getLogger(__name__)

    def plan(
        self,
        src: Optional[str] = None,
        base: Optional[str] = None,
        dst: Optional[str] = None,
        upstream: Optional[CommitRef] = None,
    ) -> DivergencePlan:
        """Plan a rebase of the current branch.

        Args:
            src: Oldest commit to move; everything after it on the first-parent
                chain up to the tip moves along with it
            base: Revision whose merge base with the tip bounds the range
            dst: Revision to replay onto; defaults to the upstream
            upstream: The current branch's upstream, if it has one

        Returns:
            DivergencePlan for the request

        Raises:
            UsageError: If both src and base are given
            NoUpstreamError: If neither base nor dst can be defaulted
            EmptyRangeError: If there is nothing to replay
        """
        if src is not None and base is not None:
            raise UsageError("-src and -base are mutually exclusive")

        head = self.resolver.head()
        dst_ref = self.resolver.resolve(dst) if dst is not None else None

        if src is not None:
            src_ref = self.resolver.resolve(src)
            tip = head if self.resolver.is_ancestor(src_ref, head) else src_ref
            lower = self.resolver.parent(src_ref)
            if lower is None:
                raise DivergenceError(f"cannot move root commit {src_ref.short_hash}")
        elif base is not None:
            tip = head
            lower = self._merge_base(self.resolver.resolve(base), tip)
        elif upstream is not None:
            tip = head
            lower = self.resolver.fork_point(upstream, tip)
            if lower is None:
                raise DivergenceError(f"{tip} has no history in common with {upstream}")
        elif dst_ref is not None:
            tip = head
            lower = self._merge_base(dst_ref, tip)
        else:
            raise NoUpstreamError(self._branch_name())

        self._check_range(lower, tip)
        target = dst_ref if dst_ref is not None else upstream
        if target is None:
            raise NoUpstreamError(self._branch_name())

        if not self.resolver.is_ancestor(lower, target):
            self.logger.warning(
                f"Base {lower.short_hash} is not an ancestor of {target}; "
                "commits may be duplicated"
            )
        return self._build(lower, tip, target)

    def plan_in_place(self, upstream: Optional[CommitRef]) -> DivergencePlan:
        """Plan a history edit: the local commits replayed onto their own base.

        Raises:
            NoUpstreamError: If upstream is None
            EmptyRangeError: If the branch has no commits of its own
        """
        if upstream is None:
            raise NoUpstreamError(self._branch_name())
        tip = self.resolver.head()
        lower = self.resolver.fork_point(upstream, tip)
        if lower is None:
            raise DivergenceError(f"{tip} has no history in common with {upstream}")
        return self._build(lower, tip, lower)

    def _merge_base(self, first: CommitRef, second: CommitRef) -> CommitRef:
        merge_base = self.resolver.merge_base(first, second)
        if merge_base is None:
            raise DivergenceError(f"{first} and {second} have no common ancestor")
        return merge_base

    def _branch_name(self) -> Optional[str]:
        branch = self.resolver.current_branch()
        return branch.name if branch else None

    def _check_range(self, lower: CommitRef, tip: CommitRef) -> None:
        if lower.commit_hash == tip.commit_hash:
            raise EmptyRangeError(lower.short_hash, str(tip))

    def _build(self, lower: CommitRef, tip: CommitRef, target: CommitRef) -> DivergencePlan:
        self._check_range(lower, tip)
        entries = self.resolver.git_ops.first_parent_log(lower.commit_hash, tip.commit_hash)
        if not entries:
            raise EmptyRangeError(lower.short_hash, str(tip))
        commits = tuple(
            PlannedCommit(CommitRef(entry.commit_hash), entry.subject, entry.is_merge)
            for entry in entries
        )
        self.logger.info(
            f"Planned {len(commits)} commit(s) after {lower.short_hash} "
            f"onto {target.short_hash}"
        )
        return DivergencePlan(base=lower, commits=commits, target=target, tip=tip)
