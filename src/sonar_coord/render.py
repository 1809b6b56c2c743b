"""Text renderings of query results and summaries.

Pure formatting over the ordered sequence the store returns: a table,
a de-duplicated file list, a remediation prompt in markdown, and the
summary matrix. Resolved issues carry ``[R]``; locked ones ``[L:holder]``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sonar_coord.aggregate import Summary
    from sonar_coord.core import Issue
    from sonar_coord.filters import IssueFilter

RESOLVED_MARKER = "[R]"

# C0/C1 control characters except tab/newline
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def _sanitize(text: str, *, limit: int = 200) -> str:
    """Make untrusted server text safe for single-line interpolation."""
    text = _CONTROL_CHARS_RE.sub("", text)
    text = " ".join(text.replace("\r", " ").replace("\n", " ").split())
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def markers(issue: Issue) -> str:
    parts: list[str] = []
    if issue.resolved:
        parts.append(RESOLVED_MARKER)
    if issue.lock is not None:
        parts.append(f"[L:{issue.lock.holder}]")
    return " ".join(parts)


def format_table(issues: Sequence[Issue]) -> list[str]:
    if not issues:
        return ["No matching issues"]
    loc_width = min(max(len(i.location) for i in issues), 60)
    rule_width = max(len(i.rule) for i in issues)
    lines: list[str] = []
    for issue in issues:
        suffix = markers(issue)
        line = (
            f"{issue.key[:10]}  {issue.rule:<{rule_width}}  {issue.severity:<8}  "
            f"{issue.location:<{loc_width}}  {_sanitize(issue.message, limit=100)}"
        )
        lines.append(f"{line}  {suffix}" if suffix else line)
    lines.append("")
    lines.append(f"{len(issues)} issues")
    return lines


def format_file_list(issues: Sequence[Issue]) -> list[str]:
    """Distinct file paths, in first-seen order of the (already sorted) input."""
    return list(dict.fromkeys(i.path for i in issues))


def format_prompt(issues: Sequence[Issue], flt: IssueFilter | None = None) -> str:
    """Markdown brief listing every finding of a group, grouped by file."""
    scope = flt.describe() if flt is not None else "all issues"
    lines: list[str] = [f"# Remediation: {scope}", ""]
    if not issues:
        lines.append("No matching issues.")
        return "\n".join(lines) + "\n"

    rules = sorted({i.rule for i in issues})
    lines.append(f"{len(issues)} finding(s) across {len(format_file_list(issues))} file(s); rules: {', '.join(rules)}")
    lines.append("")
    by_path: dict[str, list[Issue]] = {}
    for issue in issues:
        by_path.setdefault(issue.path, []).append(issue)
    for path, group in by_path.items():
        lines.append(f"## `{path}`")
        for issue in group:
            where = f"L{issue.line}" if issue.line is not None else "file"
            if issue.end_line is not None and issue.line is not None and issue.end_line != issue.line:
                where = f"L{issue.line}-{issue.end_line}"
            suffix = f" {markers(issue)}" if markers(issue) else ""
            lines.append(f"- {where} `{issue.rule}` ({issue.severity}): {_sanitize(issue.message)}{suffix}")
        lines.append("")
    return "\n".join(lines)


def format_summary(summary: Summary) -> list[str]:
    if not summary.matrix:
        return ["No matching issues"]
    lines: list[str] = []
    for rule, row in summary.matrix.items():
        lines.append(f"{rule}: {summary.rule_totals[rule].render(summary.include_resolved)}")
        for value, cell in sorted(row.items()):
            lines.append(f"  {value}: {cell.render(summary.include_resolved)}")
    lines.append("")
    lines.append(f"Total: {summary.total.render(summary.include_resolved)}")
    return lines
