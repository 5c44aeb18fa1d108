"""Templated run reports used when the oracle cannot write one."""

from collections.abc import Iterable

from reactloop.graph.context import HistoryEntry


def synthesize_summary(goal: str, history: Iterable[HistoryEntry]) -> str:
    """
    Build a summary from counts of successful and failed history entries.

    Pure function of ``goal`` and ``history``: the same inputs always give
    the same text.
    """
    entries = list(history)
    successful = sum(1 for entry in entries if entry.success)
    failed = len(entries) - successful
    request = goal.strip() or "your request"

    summary = f"I attempted to help with {request}.\n\n"

    if entries:
        summary += (
            f"**Actions taken:** {len(entries)} actions were performed to gather information "
            f"({successful} succeeded, {failed} failed).\n\n"
        )
        if successful:
            summary += "Some tools were successfully executed to gather relevant information.\n"
        if failed:
            summary += (
                "Some actions failed, but I've provided the best response possible "
                "with available information.\n"
            )
    else:
        summary += (
            "No specific tools were needed for this request. "
            "I've provided a response based on available knowledge.\n"
        )

    summary += (
        "\n*Note: Automatic summarization failed, so this is a simplified response "
        "based on the available information.*"
    )
    return summary


def cancellation_summary(goal: str, history: Iterable[HistoryEntry]) -> str:
    """Report for a run stopped by its caller."""
    entries = list(history)
    completed = sum(1 for entry in entries if entry.success)
    return (
        f'The request "{goal}" was cancelled before it finished.\n\n'
        f"{completed} of {len(entries)} recorded actions completed before cancellation."
    )


def error_response(goal: str, error: BaseException | str) -> str:
    """Apology text returned when a run aborts on an internal error."""
    return (
        f'I encountered an error while processing your request: "{goal}"\n\n'
        f"Error: {error}\n\n"
        "I apologize for the inconvenience. Please try rephrasing your request or "
        "contact support if the issue persists."
    )
