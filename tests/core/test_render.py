"""Tests for text renderings: table, file list, remediation prompt, summary."""

from __future__ import annotations

from sonar_coord.aggregate import summarize
from sonar_coord.core import CoordDB
from sonar_coord.filters import IssueFilter
from sonar_coord.render import RESOLVED_MARKER, _sanitize, format_file_list, format_prompt, format_summary, format_table
from tests._factory import raw_issue


class TestTable:
    def test_rows_and_count(self, seeded_db: CoordDB) -> None:
        lines = format_table(seeded_db.query())
        assert lines[-1] == "3 issues"
        assert "src/main/java/FileA.java:12" in lines[0]
        assert "java:S2095" in lines[0]

    def test_empty(self) -> None:
        assert format_table([]) == ["No matching issues"]

    def test_resolved_marker(self, seeded_db: CoordDB) -> None:
        seeded_db.resolve(IssueFilter(path="FileA"), "w")
        lines = format_table(seeded_db.query(IssueFilter(include_resolved=True)))
        marked = [line for line in lines if line.endswith(RESOLVED_MARKER)]
        assert len(marked) == 1
        assert "FileA.java" in marked[0]

    def test_lock_marker(self, seeded_db: CoordDB) -> None:
        seeded_db.lock(IssueFilter(rule="java:S2699"), "worker-2")
        lines = format_table(seeded_db.query(IssueFilter(rule="java:S2699")))
        assert lines[0].endswith("[L:worker-2]")


class TestFileList:
    def test_distinct_paths_in_order(self, db: CoordDB) -> None:
        db.reconcile(
            [
                raw_issue("java:S1", "b/Two.java", 1),
                raw_issue("java:S1", "a/One.java", 5),
                raw_issue("java:S1", "a/One.java", 9),
            ]
        )
        assert format_file_list(db.query()) == ["a/One.java", "b/Two.java"]


class TestPrompt:
    def test_groups_by_file(self, seeded_db: CoordDB) -> None:
        flt = IssueFilter(rule="java:S2095")
        text = format_prompt(seeded_db.query(flt), flt)
        assert text.startswith("# Remediation: rule=java:S2095")
        assert "## `src/main/java/FileA.java`" in text
        assert "## `src/main/java/FileB.java`" in text
        assert "- L12 `java:S2095` (MAJOR):" in text
        assert "2 finding(s) across 2 file(s)" in text

    def test_empty_group(self) -> None:
        assert "No matching issues." in format_prompt([], IssueFilter(rule="java:S0000"))

    def test_line_ranges(self, db: CoordDB) -> None:
        db.reconcile([raw_issue(line=3, end_line=8)])
        assert "- L3-8 " in format_prompt(db.query())

    def test_messages_are_single_line(self, db: CoordDB) -> None:
        db.reconcile([raw_issue(message="first line\nsecond\x07 line")])
        text = format_prompt(db.query())
        assert "first line second line" in text
        assert "\x07" not in text


class TestSanitize:
    def test_truncates(self) -> None:
        assert _sanitize("x" * 300, limit=10) == "xxxxxxx..."


class TestSummaryText:
    def test_include_resolved_cells(self, seeded_db: CoordDB) -> None:
        seeded_db.resolve(IssueFilter(rule="java:S2095"), "w")
        lines = format_summary(summarize(seeded_db, include_resolved=True))
        assert "java:S2095: 2 (2 resolved)" in lines
        assert "  src/main/java/FileA.java: 1 (1 resolved)" in lines
        assert lines[-1] == "Total: 3 (2 resolved)"

    def test_plain_counts(self, seeded_db: CoordDB) -> None:
        lines = format_summary(summarize(seeded_db))
        assert "java:S2699: 1" in lines
        assert lines[-1] == "Total: 3"

    def test_empty(self, db: CoordDB) -> None:
        assert format_summary(summarize(db)) == ["No matching issues"]
