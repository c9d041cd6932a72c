"""Diff status entries and partial-amend status reconciliation."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence


class DiffStatusCode(Enum):
    """Change kinds reported by ``git diff --name-status``."""

    ADDED = "A"
    COPIED = "C"
    DELETED = "D"
    MODIFIED = "M"
    RENAMED = "R"
    TYPE_CHANGED = "T"
    UNMERGED = "U"
    UNKNOWN = "X"

    @classmethod
    def from_letter(cls, letter: str) -> "DiffStatusCode":
        for code in cls:
            if code.value == letter:
                return code
        return cls.UNKNOWN

    @property
    def verb(self) -> str:
        return _VERBS[self]


_VERBS = {
    DiffStatusCode.ADDED: "added",
    DiffStatusCode.COPIED: "copied",
    DiffStatusCode.DELETED: "removed",
    DiffStatusCode.MODIFIED: "modified",
    DiffStatusCode.RENAMED: "renamed",
    DiffStatusCode.TYPE_CHANGED: "chmod",
    DiffStatusCode.UNMERGED: "unmerged",
    DiffStatusCode.UNKNOWN: "changed",
}


@dataclass(frozen=True)
class DiffStatusEntry:
    """One path in a diff, keyed by its name after the change."""

    code: DiffStatusCode
    name: str

    def describe(self) -> str:
        return f"{self.code.verb} {self.name}"


def parse_name_status(output: str) -> List[DiffStatusEntry]:
    """Parse ``git diff --name-status -z`` output.

    Renames and copies carry a score and two paths; the destination path
    is the one recorded.

    Args:
        output: Raw NUL-delimited output

    Returns:
        Entries in the order git reported them
    """
    fields = output.split("\0")
    if fields and not fields[-1]:
        fields.pop()
    entries: List[DiffStatusEntry] = []
    i = 0
    while i < len(fields):
        status = fields[i].strip()
        if not status:
            i += 1
            continue
        code = DiffStatusCode.from_letter(status[0])
        if code in (DiffStatusCode.RENAMED, DiffStatusCode.COPIED):
            if i + 2 >= len(fields):
                break
            entries.append(DiffStatusEntry(code, fields[i + 2]))
            i += 3
        else:
            if i + 1 >= len(fields):
                break
            entries.append(DiffStatusEntry(code, fields[i + 1]))
            i += 2
    return entries


def amended_status(
    base: Sequence[DiffStatusEntry],
    filtered_base: Sequence[DiffStatusEntry],
    local: Sequence[DiffStatusEntry],
) -> List[DiffStatusEntry]:
    """Compute the status a commit would have after a partial amend.

    Args:
        base: The commit's own changes against its parent
        filtered_base: The same diff restricted to the amend pathspecs
        local: The working copy against the parent, restricted to the
            amend pathspecs

    Returns:
        ``base`` with paths the pathspecs cover but that are no longer
        changed removed, every path present in ``local`` replaced by the
        ``local`` entry, and the remaining ``local`` entries appended in
        their original order.
    """
    reverted = {entry.name for entry in filtered_base}
    reverted.difference_update(entry.name for entry in local)

    local_by_name: Dict[str, DiffStatusEntry] = {}
    for entry in local:
        local_by_name.setdefault(entry.name, entry)

    result: List[DiffStatusEntry] = []
    used = set()
    for entry in base:
        if entry.name in reverted:
            continue
        replacement = local_by_name.get(entry.name)
        if replacement is not None:
            result.append(replacement)
            used.add(entry.name)
        else:
            result.append(entry)

    for entry in local:
        if entry.name not in used:
            result.append(entry)
            used.add(entry.name)
    return result
