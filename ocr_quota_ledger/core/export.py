"""
Export formatting for the usage ledger.

Produces the flat-text log line, the text report and the JSON report.
"""

import json
from datetime import datetime
from typing import Sequence

from ..storage.models import QuotaSummary, UsageLogEntry

LOG_HEADER = "=== OCR API QUOTA USAGE LOG ==="


def format_log_line(entry: UsageLogEntry) -> str:
    """Format a single entry as a human-readable line.

    Fields are separated by `` | ``; the error field only appears on
    failed calls.
    """
    parts = [
        entry.timestamp.isoformat(),
        entry.session_id,
        entry.status.value.upper(),
        entry.model,
        f"files={entry.files_processed}",
        f"prompt_tokens={entry.prompt_tokens}",
        f"output_tokens={entry.output_tokens}",
        f"total_tokens={entry.total_tokens}",
        f"cost=${entry.estimated_cost:.6f}",
        f"time={entry.processing_time_ms}ms",
    ]
    if entry.error_message:
        parts.append(f'error="{entry.error_message}"')
    return " | ".join(parts)


def format_summary_block(summary: QuotaSummary, generated_at: datetime) -> str:
    """Render the summary header of the text export."""
    return "\n".join([
        "=== QUOTA USAGE SUMMARY ===",
        f"Generated: {generated_at.isoformat()}",
        f"Total Requests: {summary.total_requests}",
        f"Successful: {summary.successful_requests}",
        f"Failed: {summary.failed_requests}",
        f"Rate Limited: {summary.rate_limited_requests}",
        f"Total Tokens: {summary.total_tokens:,} "
        f"(Prompt: {summary.total_prompt_tokens:,}, Output: {summary.total_output_tokens:,})",
        f"Total Cost: ${summary.total_cost:.4f}",
        f"Average Processing Time: {summary.average_processing_time:.0f}ms",
        f"First Request: {summary.first_request}",
        f"Last Request: {summary.last_request}",
    ])


def render_text_export(
    summary: QuotaSummary,
    mirror_text: str,
    entries: Sequence[UsageLogEntry],
    generated_at: datetime
) -> str:
    """Build the full text report.

    The detail section is the flat-text mirror. When the mirror is empty
    but the ledger is not, the lines are regenerated from the entries.

    Args:
        summary: Summary over the full ledger
        mirror_text: Contents of the flat-text mirror
        entries: The full ledger, oldest first
        generated_at: Report timestamp

    Returns:
        Report text
    """
    details = mirror_text
    if not details and entries:
        details = LOG_HEADER + "\n\n" + "\n".join(format_log_line(e) for e in entries)

    return (
        format_summary_block(summary, generated_at)
        + "\n\n=== DETAILED LOGS ===\n\n"
        + details
    )


def render_json_export(
    summary: QuotaSummary,
    entries: Sequence[UsageLogEntry],
    exported_at: datetime
) -> str:
    """Build the JSON report: ``{summary, logs, exportedAt}``."""
    data = {
        "summary": summary.to_dict(),
        "logs": [e.to_dict() for e in entries],
        "exportedAt": exported_at.isoformat(),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def default_export_filename(extension: str, now: datetime) -> str:
    """Return ``ocr-quota-log-<YYYY-MM-DD>.<extension>``."""
    return f"ocr-quota-log-{now.date().isoformat()}.{extension}"
