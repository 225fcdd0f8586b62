"""Markdown report written next to each reviewed change.

One file per review in the reports directory, named
`<reviewedAt>-<disposition>-<change base name>.md`. Reports are for human
operators; nothing reads them back.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional, Union

from jinja2 import BaseLoader, Environment

from src.analysis.schemas import ReviewerAnalysis
from src.changes.schemas import ReviewerAnnotation, StagedChange

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 80
MAX_TOOL_OUTPUT_CHARS = 1200

REPORT_TEMPLATE = """\
# Review: {{ change.file_name }}

- **Disposition:** {{ annotation.disposition.value }}
- **Course:** {{ change.course_code }}
- **Reviewed at:** {{ annotation.reviewed_at }}
- **Staged at:** {{ change.created_at }}
- **Reporter:** {{ change.reporter or "unknown" }}
{% if annotation.failure_reason %}
- **Failure reason:** {{ annotation.failure_reason }}
{% endif %}

## Summary

{{ annotation.summary }}

## Issue Summary

{{ change.issue_summary }}

## Recommended Fix

{{ change.recommended_fix }}
{% if change.supporting_notes %}

## Supporting Notes

{{ change.supporting_notes | bullets }}
{% endif %}
{% if analysis and analysis.preflight_issues %}

## Preflight Issues

{{ analysis.preflight_issues | bullets }}
{% endif %}
{% if analysis and analysis.assignment_deltas %}

## Assignment Changes

| Assignment | Title before | Title after | Week before | Week after |
|---|---|---|---|---|
{% for d in analysis.assignment_deltas %}
| {{ d.assignment_id or "?" }} | {{ d.assignment_title_before | cell }} | {{ d.assignment_title_after | cell }} | {{ d.week_number_before | cell }} | {{ d.week_number_after | cell }} |
{% endfor %}
{% endif %}
{% if analysis and analysis.question_deltas %}

## Question Changes
{% for d in analysis.question_deltas %}

### {{ d.assignment_title or "Unknown assignment" }} (week {{ d.week_number | cell }}), question {{ d.question_number_before | cell }} -> {{ d.question_number_after | cell }}

Operations: {{ d.operations | map(attribute="type") | join(", ") }}

{% if d.before %}
**Before:** {{ d.before.question_text or "" }}
Correct option: {{ d.before.correct_option or "n/a" }}

{% for o in d.before.options %}
- {{ o.option_number }}. {{ o.option_text }}
{% endfor %}

{% else %}
_No existing question matched._

{% endif %}
{% if d.after %}
**After:** {{ d.after.question_text or "" }}
Correct option: {{ d.after.correct_option or "n/a" }}

{% for o in d.after.options %}
- {{ o.option_number }}. {{ o.option_text }}
{% endfor %}
{% else %}
_Question deleted._
{% endif %}
{% for w in d.warnings %}

> Warning: {{ w }}
{% endfor %}
{% endfor %}
{% endif %}
{% if annotation.notes %}

## Reviewer Notes

{{ annotation.notes | bullets }}
{% endif %}
{% if annotation.tool_executions %}

## Tool Executions
{% for t in annotation.tool_executions %}

### {{ loop.index }}. {{ t.tool_name }} ({{ t.tool_call_id }})

```json
{{ t.output | tool_output }}
```
{% endfor %}
{% endif %}
"""


def slugify(value: str, limit: int = MAX_SLUG_LENGTH) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:limit].rstrip("-") or "review"


def _cell(value: Any) -> str:
    if value is None or value == "":
        return "n/a"
    return str(value).replace("|", "\\|").replace("\n", " ")


def _tool_output(value: Any) -> str:
    text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    if len(text) > MAX_TOOL_OUTPUT_CHARS:
        return text[:MAX_TOOL_OUTPUT_CHARS] + "\n... (truncated)"
    return text


class ReviewReportWriter:
    """Renders reviewer outcomes to markdown files.

    Usage:
        writer = ReviewReportWriter("agent/reviewer-reports")
        path = writer.write(change, annotation, analysis)
    """

    def __init__(self, reports_dir: Union[str, Path]):
        self.reports_dir = Path(reports_dir)
        self.env = Environment(
            loader=BaseLoader(),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["bullets"] = lambda items: "\n".join(f"- {item}" for item in items)
        self.env.filters["cell"] = _cell
        self.env.filters["tool_output"] = _tool_output
        self.template = self.env.from_string(REPORT_TEMPLATE)

    def file_name_for(self, change: StagedChange, annotation: ReviewerAnnotation) -> str:
        stamp = re.sub(r"[:.]", "-", annotation.reviewed_at)
        return f"{stamp}-{slugify(f'{annotation.disposition.value}-{change.base_name}')}.md"

    def render(
        self,
        change: StagedChange,
        annotation: ReviewerAnnotation,
        analysis: Optional[ReviewerAnalysis] = None,
    ) -> str:
        return self.template.render(change=change, annotation=annotation, analysis=analysis)

    def write(
        self,
        change: StagedChange,
        annotation: ReviewerAnnotation,
        analysis: Optional[ReviewerAnalysis] = None,
    ) -> Path:
        """Write the report and return its path.

        Raises:
            OSError: If the reports directory cannot be written
        """
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        path = self.reports_dir / self.file_name_for(change, annotation)
        path.write_text(self.render(change, annotation, analysis), encoding="utf-8")
        logger.info(f"[reports] Wrote reviewer report {path.name}")
        return path
