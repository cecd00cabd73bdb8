"""
Aggregate statistics over usage entries.

Summaries are pure projections and are always recomputed from the ledger
or a caller-supplied subsequence.
"""

from typing import Sequence

from ..storage.models import QuotaSummary, UsageLogEntry, UsageStatus

EMPTY_SUMMARY = QuotaSummary(
    total_requests=0,
    successful_requests=0,
    failed_requests=0,
    rate_limited_requests=0,
    total_prompt_tokens=0,
    total_output_tokens=0,
    total_tokens=0,
    total_cost=0.0,
    average_processing_time=0.0,
    first_request="",
    last_request="",
)


def summarize(entries: Sequence[UsageLogEntry]) -> QuotaSummary:
    """Compute a QuotaSummary over entries.

    First and last request follow the order of ``entries`` as given; no
    re-sorting happens, so callers pass chronologically ordered input.

    Args:
        entries: Usage entries, oldest first

    Returns:
        QuotaSummary (all zero for an empty input)
    """
    if not entries:
        return EMPTY_SUMMARY

    counts = {status: 0 for status in UsageStatus}
    for entry in entries:
        counts[entry.status] += 1

    total_prompt = sum(e.prompt_tokens for e in entries)
    total_output = sum(e.output_tokens for e in entries)

    return QuotaSummary(
        total_requests=len(entries),
        successful_requests=counts[UsageStatus.SUCCESS],
        failed_requests=counts[UsageStatus.ERROR],
        rate_limited_requests=counts[UsageStatus.RATE_LIMITED],
        total_prompt_tokens=total_prompt,
        total_output_tokens=total_output,
        total_tokens=sum(e.total_tokens for e in entries),
        total_cost=sum(e.estimated_cost for e in entries),
        average_processing_time=sum(e.processing_time_ms for e in entries) / len(entries),
        first_request=entries[0].timestamp.isoformat(),
        last_request=entries[-1].timestamp.isoformat(),
    )
