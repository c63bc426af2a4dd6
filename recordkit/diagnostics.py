"""
Data-quality diagnostics.

Legacy data is messy. When a row cannot be linked to its owner, or several
owners are plausible, the engine does not raise: it stores a definite answer
(possibly NULL) and records what it saw here so the gap can be reviewed later.

Each diagnostic carries enough evidence to answer "why is this field NULL?"
without re-running the migration.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class IssueKind(Enum):
    """Kinds of data-quality gaps recovered during reconciliation."""
    AMBIGUOUS_IDENTITY = auto()      # Several candidates; deterministic tie-break applied
    UNRESOLVABLE_REFERENCE = auto()  # No candidate at all; dependent field set to NULL
    SKIPPED_ROW = auto()             # Row left untouched (collision, missing source)
    GRAPH_CYCLE = auto()             # part_tree contains a cycle


@dataclass
class Diagnostic:
    """A single recorded data-quality gap."""
    kind: IssueKind
    table: str
    key: Any
    message: str
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.name,
            "table": self.table,
            "key": self.key,
            "message": self.message,
            "evidence": self.evidence,
        }


class DiagnosticLog:
    """Collects diagnostics for one run and mirrors them to the logger."""

    def __init__(self):
        self.entries: List[Diagnostic] = []

    def record(
        self,
        kind: IssueKind,
        table: str,
        key: Any,
        message: str,
        **evidence: Any
    ) -> Diagnostic:
        entry = Diagnostic(kind=kind, table=table, key=key, message=message, evidence=evidence)
        self.entries.append(entry)
        logger.warning(f"[{kind.name}] {table} {key!r}: {message}")
        return entry

    def of_kind(self, kind: IssueKind) -> List[Diagnostic]:
        return [entry for entry in self.entries if entry.kind == kind]

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self.entries:
            counts[entry.kind.name] = counts.get(entry.kind.name, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


def ensure_log(log: Optional[DiagnosticLog]) -> DiagnosticLog:
    """Return ``log`` or a fresh DiagnosticLog when none was supplied."""
    return log if log is not None else DiagnosticLog()
