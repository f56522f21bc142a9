"""Issue report for transformation sessions.

Conditions a transformer absorbs instead of raising (dangling references under
the ``ignore`` policy, predecessors that were filtered out or stuck in a cycle,
relationships whose endpoints never arrived) are recorded as issues on a
``TransformReport``, so that nothing the transformer drops is dropped silently.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from imodel_transformer.core.constants import id_to_hex


class TransformIssueSeverity(Enum):
    """Severity level of transform issues."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class TransformIssueCategory(Enum):
    """Category of transform issues."""

    DANGLING_REFERENCE = "dangling_reference"  # predecessor no longer exists in the source
    EXCLUDED_REFERENCE = "excluded_reference"  # predecessor was filtered out of the export
    PREDECESSOR_CYCLE = "predecessor_cycle"  # predecessors waiting on each other
    SKIPPED_ELEMENT = "skipped_element"
    SKIPPED_RELATIONSHIP = "skipped_relationship"
    SCHEMA = "schema"


@dataclass
class TransformIssue:
    """A single issue encountered during a transformation."""

    severity: TransformIssueSeverity
    category: TransformIssueCategory
    message: str
    source_id: int | None = None
    missing_ids: list[int] = field(default_factory=list)
    action: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "source_id": self.source_id,
            "action": self.action,
        }
        if self.missing_ids:
            result["missing_ids"] = self.missing_ids
        return result

    def __str__(self) -> str:
        parts = [f"[{self.severity.value.upper()}]"]
        if self.source_id is not None:
            parts.append(f"{id_to_hex(self.source_id)}:")
        parts.append(self.message)
        if self.missing_ids:
            parts.append(f"(missing {', '.join(id_to_hex(i) for i in self.missing_ids)})")
        return " ".join(parts)


@dataclass
class TransformReport:
    """Report of one transformation session.

    Tracks the issues recorded while processing, together with the schemas
    imported and the number of entities handled by phase.
    """

    issues: list[TransformIssue] = field(default_factory=list)
    schemas_imported: list[str] = field(default_factory=list)
    elements_deferred: int = 0
    elements_exported_on_demand: int = 0

    def add_issue(self, issue: TransformIssue) -> None:
        self.issues.append(issue)

    def issues_in(self, category: TransformIssueCategory) -> list[TransformIssue]:
        return [i for i in self.issues if i.category == category]

    @property
    def has_issues(self) -> bool:
        """True when anything above INFO was recorded."""
        return any(i.severity != TransformIssueSeverity.INFO for i in self.issues)

    def to_dict(self) -> dict[str, Any]:
        """Return the report as a JSON-serializable dictionary."""
        return {
            "summary": {
                "total_issues": len(self.issues),
                "errors": len([i for i in self.issues if i.severity == TransformIssueSeverity.ERROR]),
                "warnings": len([i for i in self.issues if i.severity == TransformIssueSeverity.WARNING]),
                "schemas_imported": len(self.schemas_imported),
                "elements_deferred": self.elements_deferred,
                "elements_exported_on_demand": self.elements_exported_on_demand,
            },
            "issues": [i.to_dict() for i in self.issues],
            "schemas_imported": self.schemas_imported,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def to_text(self) -> str:
        """Return the report as human-readable text."""
        summary = self.to_dict()["summary"]
        lines = ["=" * 70, "TRANSFORM REPORT", "=" * 70, ""]
        lines.append("SUMMARY")
        lines.append("-" * 40)
        lines.append(f"Schemas imported:      {summary['schemas_imported']}")
        lines.append(f"Elements deferred:     {summary['elements_deferred']}")
        lines.append(f"Exported on demand:    {summary['elements_exported_on_demand']}")
        lines.append(f"Errors:                {summary['errors']}")
        lines.append(f"Warnings:              {summary['warnings']}")
        lines.append("")

        if self.issues:
            lines.append("ISSUES")
            lines.append("-" * 40)
            for severity in [TransformIssueSeverity.ERROR, TransformIssueSeverity.WARNING, TransformIssueSeverity.INFO]:
                severity_issues = [i for i in self.issues if i.severity == severity]
                if severity_issues:
                    lines.append(f"\n{severity.value.upper()} ({len(severity_issues)}):")
                    for issue in severity_issues:
                        lines.append(f"  - {issue}")
                        if issue.action:
                            lines.append(f"    Action: {issue.action}")
            lines.append("")

        lines.append("=" * 70)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.to_text()
