"""Revision resolution: refs, ancestry, and upstream inference."""

import logging
import re
from dataclasses import dataclass
from typing import Iterator, Optional

from git_rewrite.config import GitConfig
from git_rewrite.exceptions import NotFoundError, UsageError
from git_rewrite.git_ops import GitOps

BRANCH_PREFIX = "refs/heads/"

_HASH_RE = re.compile(r"^[0-9a-f]{40}([0-9a-f]{24})?$")


@dataclass(frozen=True)
class CommitRef:
    """A resolved commit, optionally reached through a symbolic ref."""

    commit_hash: str
    ref: Optional[str] = None

    def __post_init__(self) -> None:
        if not _HASH_RE.match(self.commit_hash):
            raise ValueError(f"not a full commit hash: {self.commit_hash!r}")

    @property
    def short_hash(self) -> str:
        return self.commit_hash[:8]

    @property
    def branch(self) -> Optional[str]:
        """Branch name if the ref is under refs/heads/, else None."""
        if self.ref and self.ref.startswith(BRANCH_PREFIX):
            return self.ref[len(BRANCH_PREFIX) :]
        return None

    def __str__(self) -> str:
        """Shortest symbolic name, falling back to the commit hash."""
        if self.branch:
            return self.branch
        if self.ref and self.ref != "HEAD":
            return self.ref
        return self.commit_hash


@dataclass(frozen=True)
class TrackingInfo:
    """Branch tracking configuration as found in git config."""

    remote: Optional[str] = None
    merge_ref: Optional[str] = None
    push_remote: Optional[str] = None


@dataclass(frozen=True)
class Branch:
    """A local branch and its tracking configuration."""

    name: str
    tracking: TrackingInfo = TrackingInfo()

    @property
    def ref(self) -> str:
        return BRANCH_PREFIX + self.name


class RevisionResolver:
    """Resolves revisions and computes ancestry for rewrite planning.

    Nothing returned here is cached: every call asks git again, so a ref
    that moves during one invocation is always seen at its live value.
    """

    def __init__(self, git_ops: GitOps, config: GitConfig) -> None:
        self.git_ops = git_ops
        self.config = config
        self.logger = logging.getLogger(__name__)

    def resolve(self, name_or_hash: str) -> CommitRef:
        """Resolve a revision to a commit.

        Args:
            name_or_hash: Branch, tag, hash or any git revision expression

        Returns:
            CommitRef with the symbolic ref the name refers to, if any

        Raises:
            UsageError: If the name could be mistaken for an option
            NotFoundError: If git cannot verify the revision
        """
        if not name_or_hash or name_or_hash.startswith("-"):
            raise UsageError(f"invalid revision {name_or_hash!r}")
        commit_hash = self.git_ops.rev_parse(name_or_hash)
        if commit_hash is None:
            raise NotFoundError(name_or_hash)
        ref = self.git_ops.symbolic_full_name(name_or_hash)
        return CommitRef(commit_hash, ref)

    def try_resolve(self, name_or_hash: str) -> Optional[CommitRef]:
        """Like resolve, but returns None when the revision does not verify."""
        try:
            return self.resolve(name_or_hash)
        except NotFoundError:
            return None

    def head(self) -> CommitRef:
        return self.resolve("HEAD")

    def is_ancestor(self, ancestor: CommitRef, descendant: CommitRef) -> bool:
        return self.git_ops.is_ancestor(ancestor.commit_hash, descendant.commit_hash)

    def merge_base(self, first: CommitRef, second: CommitRef) -> Optional[CommitRef]:
        commit_hash = self.git_ops.merge_base(first.commit_hash, second.commit_hash)
        return CommitRef(commit_hash) if commit_hash else None

    def parent(self, commit: CommitRef) -> Optional[CommitRef]:
        """First parent of a commit, or None for a root commit."""
        commit_hash = self.git_ops.rev_parse(f"{commit.commit_hash}~1")
        return CommitRef(commit_hash) if commit_hash else None

    def current_branch(self) -> Optional[Branch]:
        """The checked-out branch with its tracking config, None if detached."""
        name = self.git_ops.get_current_branch()
        if name is None:
            return None
        return self.branch(name)

    def branch(self, name: str) -> Branch:
        return Branch(
            name,
            TrackingInfo(
                remote=self.config.value(f"branch.{name}.remote"),
                merge_ref=self.config.value(f"branch.{name}.merge"),
                push_remote=self.config.value(f"branch.{name}.pushRemote"),
            ),
        )

    def push_remote_of(self, branch: Branch) -> Optional[str]:
        """Infer where a branch is pushed to.

        Order: branch.<name>.pushRemote, remote.pushDefault,
        branch.<name>.remote, then the only configured remote.
        """
        if branch.tracking.push_remote:
            return branch.tracking.push_remote
        push_default = self.config.value("remote.pushDefault")
        if push_default:
            return push_default
        if branch.tracking.remote:
            return branch.tracking.remote
        remotes = self.config.remotes()
        if len(remotes) == 1:
            return next(iter(remotes))
        return None

    def _map_to_tracking_ref(self, remote_name: Optional[str], ref: str) -> Optional[str]:
        if not remote_name:
            return None
        if remote_name == ".":
            return ref
        remote = self.config.remotes().get(remote_name)
        if remote is None:
            return None
        return remote.map_fetch(ref)

    def _upstream_candidates(self, branch: Branch) -> Iterator[str]:
        merge_ref = branch.tracking.merge_ref
        if merge_ref == branch.ref:
            # Upstream has the same name: its remote-tracking branch.
            candidate = self._map_to_tracking_ref(branch.tracking.remote, merge_ref)
            if candidate and candidate != branch.ref:
                yield candidate
        else:
            # Default: the push remote's branch of the same name.
            candidate = self._map_to_tracking_ref(self.push_remote_of(branch), branch.ref)
            if candidate and candidate != branch.ref:
                yield candidate
            # Finally whatever the branch is configured to pull from.
            if merge_ref:
                candidate = self._map_to_tracking_ref(branch.tracking.remote, merge_ref)
                if candidate and candidate != branch.ref:
                    yield candidate

    def upstream_of(self, branch: Optional[Branch]) -> Optional[CommitRef]:
        """Compute the rewrite target a branch tracks.

        If the branch's configured merge ref has the branch's own name, the
        upstream remote-tracking branch is used. Otherwise the push remote's
        branch of the same name is tried, then the configured merge ref.

        Returns:
            The live upstream commit, or None when no candidate is
            configured or none currently verifies (e.g. never fetched)
        """
        if branch is None:
            return None
        for candidate in self._upstream_candidates(branch):
            resolved = self.try_resolve(candidate)
            if resolved is not None:
                self.logger.debug(f"Upstream of {branch.name} is {candidate}")
                return resolved
            self.logger.debug(f"Upstream candidate {candidate} does not exist")
        return None

    def fork_point(self, upstream: CommitRef, tip: CommitRef) -> Optional[CommitRef]:
        """Find the divergence point of tip from upstream.

        The upstream's reflog can name a fork point that the upstream has
        since dropped, when it was reset or rewritten after tip branched
        off. The result is always the merge base of tip with the upstream's
        live pointer, re-read here. A reflog candidate still in the live
        upstream is a common ancestor and so never differs from that merge
        base; one that differs is no longer in the upstream and is only
        reported.
        """
        live = self.try_resolve(upstream.ref or upstream.commit_hash)
        if live is None:
            live = upstream
        merge_base = self.merge_base(live, tip)

        if upstream.ref:
            fork_point = self.git_ops.fork_point(upstream.ref, tip.commit_hash)
            if fork_point and (merge_base is None or fork_point != merge_base.commit_hash):
                self.logger.info(
                    f"Reflog fork point {CommitRef(fork_point).short_hash} is no "
                    f"longer in {upstream}; using merge base with its current tip"
                )
        return merge_base
