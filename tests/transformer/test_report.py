"""Tests for the transform issue report."""

import json

from imodel_transformer.transformer.report import (
    TransformIssue,
    TransformIssueCategory,
    TransformIssueSeverity,
    TransformReport,
)


def _issue(severity=TransformIssueSeverity.WARNING, category=TransformIssueCategory.DANGLING_REFERENCE):
    return TransformIssue(
        severity=severity,
        category=category,
        message="element 0x21 references element 0x20, which does not exist in the source",
        source_id=0x21,
        missing_ids=[0x20],
        action="Reference written as null",
    )


class TestTransformReport:
    def test_issue_str(self):
        assert str(_issue()) == (
            "[WARNING] 0x21: element 0x21 references element 0x20, which does not exist in the source (missing 0x20)"
        )

    def test_summary_counts(self):
        report = TransformReport()
        report.add_issue(_issue())
        report.add_issue(_issue(TransformIssueSeverity.INFO, TransformIssueCategory.EXCLUDED_REFERENCE))
        report.schemas_imported.append("Plant")
        report.elements_deferred = 3

        summary = report.to_dict()["summary"]
        assert summary["total_issues"] == 2
        assert summary["warnings"] == 1
        assert summary["errors"] == 0
        assert summary["schemas_imported"] == 1
        assert summary["elements_deferred"] == 3
        assert len(report.issues_in(TransformIssueCategory.EXCLUDED_REFERENCE)) == 1

    def test_has_issues_ignores_info(self):
        report = TransformReport()
        report.add_issue(_issue(TransformIssueSeverity.INFO, TransformIssueCategory.EXCLUDED_REFERENCE))
        assert not report.has_issues
        report.add_issue(_issue())
        assert report.has_issues

    def test_json_and_text(self):
        report = TransformReport()
        report.add_issue(_issue())
        data = json.loads(report.to_json())
        assert data["issues"][0]["missing_ids"] == [0x20]
        assert data["issues"][0]["category"] == "dangling_reference"

        text = report.to_text()
        assert "TRANSFORM REPORT" in text
        assert "WARNING (1):" in text
        assert "Action: Reference written as null" in text
