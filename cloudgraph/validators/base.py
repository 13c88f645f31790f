"""Issue and result types shared by the graph integrity checks."""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable


class Severity(str, Enum):
    """How bad an integrity issue is."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found in the stored graph, pinned to a node or an edge."""

    code: str
    message: str
    severity: Severity
    node_id: str | None = None
    edge_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def location(self) -> str:
        # Edge issues name the edge even when a node id is attached.
        if self.edge_id:
            return f"edge {self.edge_id}"
        return f"node {self.node_id}" if self.node_id else ""

    def __str__(self) -> str:
        where = f" [{self.location}]" if self.location else ""
        return f"{self.severity.value.upper()}: {self.code}{where} - {self.message}"


@dataclass
class ValidationResult:
    """Issues collected across every check, in the order they were found."""

    issues: list[ValidationIssue] = field(default_factory=list)

    def _with(self, severity: Severity) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == severity]

    @property
    def errors(self) -> list[ValidationIssue]:
        return self._with(Severity.ERROR)

    @property
    def warnings(self) -> list[ValidationIssue]:
        return self._with(Severity.WARNING)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == Severity.ERROR for issue in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(issue.severity == Severity.WARNING for issue in self.issues)

    @property
    def is_valid(self) -> bool:
        """A graph with warnings only is still valid."""
        return not self.has_errors

    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]

    def count_by_code(self) -> dict[str, int]:
        return dict(Counter(self.codes()))

    def add(
        self,
        severity: Severity,
        code: str,
        message: str,
        node_id: str | None = None,
        edge_id: str | None = None,
        **details: Any,
    ) -> ValidationIssue:
        """Record an issue; extra keyword arguments become its details."""
        issue = ValidationIssue(code, message, severity, node_id, edge_id, details)
        self.issues.append(issue)
        return issue

    def add_error(self, code: str, message: str, **kwargs: Any) -> ValidationIssue:
        return self.add(Severity.ERROR, code, message, **kwargs)

    def add_warning(self, code: str, message: str, **kwargs: Any) -> ValidationIssue:
        return self.add(Severity.WARNING, code, message, **kwargs)

    def extend(self, issues: Iterable[ValidationIssue]) -> None:
        self.issues.extend(issues)

    def merge(self, other: "ValidationResult") -> None:
        """Append another check's issues after this one's."""
        self.extend(other.issues)
