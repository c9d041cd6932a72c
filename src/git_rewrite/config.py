"""Configuration: environment overrides and parsed git config."""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

DEFAULT_TIMEOUT = 300.0

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _parse_timeout(value: Optional[str], default: Optional[float]) -> Optional[float]:
    if value is None or not value.strip():
        return default
    if value.strip().lower() in ("0", "none", "off"):
        return None
    try:
        seconds = float(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Ignoring invalid timeout value {value!r}"
        )
        return default
    return seconds if seconds > 0 else None


@dataclass(frozen=True)
class RewriteSettings:
    """Process-level settings, overridable through the environment.

    Attributes:
        git_executable: git binary to run (``GIT_REWRITE_GIT``)
        timeout: seconds allowed for non-interactive git commands
            (``GIT_REWRITE_TIMEOUT``); ``None`` disables the limit
        rebase_timeout: seconds allowed for a rebase step that may wait on
            an editor (``GIT_REWRITE_REBASE_TIMEOUT``); unlimited by default
        log_level: root log level name (``GIT_REWRITE_LOG_LEVEL``)
    """

    git_executable: str = "git"
    timeout: Optional[float] = DEFAULT_TIMEOUT
    rebase_timeout: Optional[float] = None
    log_level: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RewriteSettings":
        env = os.environ if environ is None else environ
        log_level = env.get("GIT_REWRITE_LOG_LEVEL")
        if log_level is not None and log_level.lower() not in _LOG_LEVELS:
            logging.getLogger(__name__).warning(
                f"Ignoring unknown GIT_REWRITE_LOG_LEVEL {log_level!r}"
            )
            log_level = None
        return cls(
            git_executable=env.get("GIT_REWRITE_GIT") or "git",
            timeout=_parse_timeout(env.get("GIT_REWRITE_TIMEOUT"), DEFAULT_TIMEOUT),
            rebase_timeout=_parse_timeout(env.get("GIT_REWRITE_REBASE_TIMEOUT"), None),
            log_level=log_level.lower() if log_level else None,
        )

    def resolve_log_level(self, verbosity: int) -> int:
        """Pick the effective log level for a ``-v`` count.

        An explicit ``GIT_REWRITE_LOG_LEVEL`` wins over the command line.
        """
        if self.log_level:
            return _LOG_LEVELS[self.log_level]
        if verbosity >= 2:
            return logging.DEBUG
        if verbosity == 1:
            return logging.INFO
        return logging.WARNING


@dataclass(frozen=True)
class Remote:
    """A configured remote and its fetch refspecs."""

    name: str
    fetch_specs: List[str] = field(default_factory=list)

    def map_fetch(self, ref: str) -> Optional[str]:
        """Map a ref on the remote to its local remote-tracking ref.

        Args:
            ref: Full ref name on the remote, e.g. ``refs/heads/main``

        Returns:
            Local ref the fetch refspecs store it under, or None if no
            refspec matches
        """
        for spec in self.fetch_specs:
            spec = spec[1:] if spec.startswith("+") else spec
            if spec.startswith("^") or ":" not in spec:
                continue
            src, dst = spec.split(":", 1)
            if "*" not in src:
                if src == ref:
                    return dst
                continue
            prefix, suffix = src.split("*", 1)
            if (
                ref.startswith(prefix)
                and ref.endswith(suffix)
                and len(ref) >= len(prefix) + len(suffix)
            ):
                middle = ref[len(prefix) : len(ref) - len(suffix)]
                return dst.replace("*", middle, 1)
        return None


class GitConfig:
    """Snapshot of ``git config --list`` for one invocation."""

    def __init__(self, values: Dict[str, List[str]]) -> None:
        self._values = values

    @classmethod
    def parse(cls, output: str) -> "GitConfig":
        """Parse the NUL-delimited output of ``git config -z --list``.

        Section and variable names are case-insensitive in git, the
        subsection is not, so only the outer parts of each key are folded.
        """
        values: Dict[str, List[str]] = {}
        for record in output.split("\0"):
            if not record:
                continue
            key, _, value = record.partition("\n")
            values.setdefault(cls._normalize_key(key), []).append(value)
        return cls(values)

    @staticmethod
    def _normalize_key(key: str) -> str:
        first = key.find(".")
        last = key.rfind(".")
        if first == -1:
            return key.lower()
        if first == last:
            return key.lower()
        return key[:first].lower() + key[first:last] + key[last:].lower()

    def value(self, key: str) -> Optional[str]:
        """Return the last value set for key, or None."""
        entries = self._values.get(self._normalize_key(key))
        return entries[-1] if entries else None

    def values(self, key: str) -> List[str]:
        return list(self._values.get(self._normalize_key(key), []))

    @property
    def comment_char(self) -> str:
        """The configured comment prefix for commit messages and todo lists.

        ``auto`` makes git pick a character not used in the message; the
        todo lists we generate only use ``#``, so that is used as well.
        """
        char = self.value("core.commentChar") or self.value("core.commentString")
        if not char or char == "auto":
            return "#"
        return char

    def remotes(self) -> Dict[str, Remote]:
        """All remotes that have a url or fetch refspec configured."""
        names: Dict[str, Remote] = {}
        for key in self._values:
            if not key.startswith("remote.") or key.count(".") < 2:
                continue
            name = key[len("remote.") : key.rfind(".")]
            if key.endswith(".url") or key.endswith(".fetch"):
                names.setdefault(
                    name, Remote(name, self.values(f"remote.{name}.fetch"))
                )
        return names
