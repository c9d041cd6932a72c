"""CLI entry point for git-rewrite."""

import argparse
import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional

from rich.logging import RichHandler

from git_rewrite import __version__, console
from git_rewrite.config import GitConfig, RewriteSettings
from git_rewrite.continuation import ContinuationStateMachine
from git_rewrite.driver import Outcome, PauseReason, RewriteDriver
from git_rewrite.editor import Editor
from git_rewrite.exceptions import (
    EmptyMessageError,
    ErrorReporter,
    GitRewriteError,
    PausedForOperator,
    RepositoryStateError,
    UsageError,
    UserCancelledError,
    handle_unexpected_error,
)
from git_rewrite.git_ops import GitOps
from git_rewrite.plan import ActionKind, PlanGenerator, RewritePlan
from git_rewrite.planner import DivergencePlanner
from git_rewrite.revision import RevisionResolver
from git_rewrite.session import SessionKind, SessionStore

logger = logging.getLogger(__name__)

_PAUSE_MESSAGES = {
    PauseReason.EDIT_STOP: "Stopped to edit",
    PauseReason.CONFLICT: "Conflicts while applying",
    PauseReason.DIRTY: "Stopped with uncommitted changes at",
    PauseReason.EMPTY_MESSAGE: "Commit message was empty; left paused at",
    PauseReason.UNKNOWN: "Rewrite stopped at",
}


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser whose errors go through the normal error reporting."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(
            f"{self.prog}: {message}",
            recovery_suggestion=f"Run '{self.prog} --help' for usage",
        )


@dataclass
class _Repository:
    """Everything one invocation needs, wired up once."""

    git_ops: GitOps
    config: GitConfig
    store: SessionStore
    resolver: RevisionResolver
    driver: RewriteDriver

    @property
    def comment_char(self) -> str:
        return self.config.comment_char


def _open_repository(settings: RewriteSettings, interactive: bool) -> _Repository:
    """Wire up one repository; only interactive commands get a message editor."""
    git_ops = GitOps(settings=settings)
    if not git_ops.is_git_available():
        raise RepositoryStateError(
            "Git is not installed or not available in PATH",
            recovery_suggestion="Install git or point GIT_REWRITE_GIT at it",
        )
    if not git_ops.is_git_repo():
        raise RepositoryStateError(
            "Not in a git repository",
            recovery_suggestion="Run this command from within a git repository",
        )

    config = GitConfig.parse(git_ops.read_config())
    store = SessionStore(git_ops, config.comment_char)
    driver = RewriteDriver(
        git_ops,
        store,
        editor_command=git_ops.var("GIT_EDITOR") if interactive else None,
        auto_continue=not interactive,
        comment_char=config.comment_char,
    )
    return _Repository(git_ops, config, store, RevisionResolver(git_ops, config), driver)


def _report_outcome(
    outcome: Outcome, command: str, success_message: str, expect_stop: bool
) -> int:
    """Print how a git run ended; raise PausedForOperator or EmptyMessageError for a pause."""
    for entry in outcome.amended:
        console.hint(f"  {entry.describe()}")

    if not outcome.paused:
        console.success(success_message)
        return 0

    session = outcome.session
    reason = outcome.pause_reason or PauseReason.UNKNOWN
    if reason is not PauseReason.EDIT_STOP:
        console.passthrough(outcome.stderr)
    for line in ErrorReporter.format_paths(outcome.conflicts):
        console.hint(line)
    step = session.describe_step() if session is not None else "unknown step"
    if reason is PauseReason.EMPTY_MESSAGE:
        raise EmptyMessageError(
            f"{_PAUSE_MESSAGES[reason]} {step}",
            current_state=step,
            recovery_suggestion=f"Run 'git-rewrite {command} -continue' to retry the "
            f"step, or 'git-rewrite {command} -abort'",
        )
    raise PausedForOperator(
        f"{_PAUSE_MESSAGES[reason]} {step}",
        session,
        requested=expect_stop and reason is PauseReason.EDIT_STOP,
        command=command,
    )


def cmd_rebase(args: argparse.Namespace, settings: RewriteSettings) -> int:
    """Move the current branch, or part of it, onto another commit."""
    if args.continue_ and args.abort:
        raise UsageError("-continue and -abort are mutually exclusive")
    if (args.continue_ or args.abort) and (args.src or args.base or args.dst):
        raise UsageError("-src, -base and -dst cannot be used with -continue or -abort")

    repo = _open_repository(settings, interactive=False)
    machine = ContinuationStateMachine(
        repo.git_ops, repo.store, repo.driver, SessionKind.REBASE
    )
    if args.abort:
        machine.abort()
        console.success("Rebase aborted")
        return 0
    if args.continue_:
        return _report_outcome(
            machine.continue_(), "rebase", "Rebase finished", expect_stop=False
        )

    upstream = repo.resolver.upstream_of(repo.resolver.current_branch())
    divergence = DivergencePlanner(repo.resolver).plan(
        src=args.src, base=args.base, dst=args.dst, upstream=upstream
    )
    plan = PlanGenerator().generate(divergence)
    where = "in place on" if divergence.is_in_place else "onto"
    console.info(
        f"Rebasing {len(plan.actions)} commit(s) {where} "
        f"{repo.git_ops.describe(divergence.target.commit_hash)}"
    )
    logger.debug(f"Plan onto {divergence.target.short_hash}:\n{plan.to_todo()}")
    outcome = repo.driver.execute(plan, divergence.base, SessionKind.REBASE)
    return _report_outcome(outcome, "rebase", "Rebase finished", expect_stop=False)


def _edit_requests(
    args: argparse.Namespace, resolver: RevisionResolver
) -> Dict[str, ActionKind]:
    requests: Dict[str, ActionKind] = {}
    for revs, kind in (
        (args.edit, ActionKind.EDIT),
        (args.reword, ActionKind.REWORD),
        (args.drop, ActionKind.DROP),
    ):
        for rev in revs or []:
            commit_hash = resolver.resolve(rev).commit_hash
            previous = requests.get(commit_hash)
            if previous is not None and previous is not kind:
                raise UsageError(
                    f"{rev} is marked for both {previous.keyword} and {kind.keyword}"
                )
            requests[commit_hash] = kind
    return requests


def cmd_histedit(args: argparse.Namespace, settings: RewriteSettings) -> int:
    """Interactively edit the commits the current branch adds to its upstream."""
    modes = [flag for flag in (args.continue_, args.abort, args.edit_plan) if flag]
    if len(modes) > 1:
        raise UsageError("-continue, -abort and -edit-plan are mutually exclusive")
    has_requests = bool(args.edit or args.reword or args.drop)
    if modes and has_requests:
        raise UsageError("-edit, -reword and -drop only apply when starting a histedit")
    if (args.abort or args.edit_plan) and args.args:
        raise UsageError("too many arguments")
    if not modes and len(args.args) > 1:
        raise UsageError("histedit takes at most one upstream")

    repo = _open_repository(settings, interactive=True)
    machine = ContinuationStateMachine(
        repo.git_ops, repo.store, repo.driver, SessionKind.HISTEDIT
    )
    if args.abort:
        machine.abort()
        console.success("Histedit aborted")
        return 0
    if args.edit_plan:
        session = machine.edit_plan()
        console.info(f"{len(session.pending)} step(s) remaining")
        return 0
    if args.continue_:
        return _report_outcome(
            machine.continue_(args.args), "histedit", "Histedit finished", expect_stop=True
        )

    repo.driver.check_can_start()
    if args.args:
        upstream = repo.resolver.resolve(args.args[0])
    else:
        upstream = repo.resolver.upstream_of(repo.resolver.current_branch())
    divergence = DivergencePlanner(repo.resolver).plan_in_place(upstream)
    generator = PlanGenerator()

    if has_requests:
        plan = generator.generate(divergence, _edit_requests(args, repo.resolver))
    else:
        initial = generator.histedit_default(divergence)
        editor = Editor.for_sequence(repo.git_ops, repo.config)
        edited = editor.edit(initial.to_todo(repo.comment_char), "git-rebase-todo")
        plan = RewritePlan.from_todo(edited, divergence, repo.comment_char)
        if not plan.actions:
            console.info("Plan is empty; nothing to do")
            return 0

    if ActionKind.REWORD in plan.kinds() and not repo.driver.editor_command:
        raise UsageError(
            "rewording needs an editor",
            recovery_suggestion="Set core.editor or the EDITOR environment variable",
        )
    logger.debug(f"Plan onto {divergence.target.short_hash}:\n{plan.to_todo()}")
    outcome = repo.driver.execute(plan, divergence.base, SessionKind.HISTEDIT)
    return _report_outcome(
        outcome, "histedit", "Histedit finished", expect_stop=plan.stops
    )


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Show progress (-v) or git commands (-vv)",
    )
    parser.add_argument(
        "-continue",
        "--continue",
        dest="continue_",
        action="store_true",
        help="Resume a paused rewrite",
    )
    parser.add_argument(
        "-abort",
        "--abort",
        action="store_true",
        help="Abandon a paused rewrite and restore the original branch",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="git-rewrite",
        description="Safer rebase and history editing on top of git",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    rebase = subparsers.add_parser(
        "rebase",
        help="Move local commits onto another commit",
        description="Replay the current branch's commits onto its upstream, "
        "or onto -dst. Merge commits are flattened.",
        allow_abbrev=False,
    )
    _add_common(rebase)
    rebase.add_argument("-src", "--src", metavar="REF", help="Oldest commit to move")
    rebase.add_argument(
        "-base", "--base", metavar="REF", help="Move commits after the merge base with REF"
    )
    rebase.add_argument("-dst", "--dst", metavar="REF", help="Commit to move onto")
    rebase.set_defaults(func=cmd_rebase)

    histedit = subparsers.add_parser(
        "histedit",
        help="Interactively edit local history",
        description="Edit, reword or drop the commits the current branch adds "
        "to its upstream (or UPSTREAM).",
        allow_abbrev=False,
    )
    _add_common(histedit)
    histedit.add_argument(
        "-edit-plan",
        "--edit-plan",
        dest="edit_plan",
        action="store_true",
        help="Edit the remaining steps of a paused histedit",
    )
    histedit.add_argument(
        "-edit", "--edit", metavar="REV", action="append", help="Stop to amend REV"
    )
    histedit.add_argument(
        "-reword", "--reword", metavar="REV", action="append", help="Edit REV's message"
    )
    histedit.add_argument(
        "-drop", "--drop", metavar="REV", action="append", help="Remove REV"
    )
    histedit.add_argument(
        "args",
        nargs="*",
        metavar="UPSTREAM|PATH",
        help="Upstream to edit against, or with -continue the paths to fold in",
    )
    histedit.set_defaults(func=cmd_histedit)
    return parser


def setup_logging(level: int) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=console.err_console, show_path=False, markup=False)
        ],
        force=True,
    )


def run(argv: Optional[List[str]] = None) -> int:
    """Run the CLI and return the process exit code."""
    try:
        settings = RewriteSettings.from_env()
        args = build_parser().parse_args(argv)
        setup_logging(settings.resolve_log_level(args.verbose))
        return args.func(args, settings)
    except GitRewriteError as e:
        ErrorReporter.report_error(e)
        return e.exit_code
    except KeyboardInterrupt:
        cancel_error = UserCancelledError("git-rewrite")
        ErrorReporter.report_error(cancel_error)
        return cancel_error.exit_code
    except (subprocess.SubprocessError, OSError) as e:
        wrapped = handle_unexpected_error(
            e, "git operation", "Check git installation and repository state"
        )
        ErrorReporter.report_error(wrapped)
        return wrapped.exit_code
    except Exception as e:
        wrapped = handle_unexpected_error(e, "git-rewrite execution")
        ErrorReporter.report_error(wrapped)
        return wrapped.exit_code


def main() -> None:
    """Main entry point for the git-rewrite command."""
    sys.exit(run())


if __name__ == "__main__":
    main()
