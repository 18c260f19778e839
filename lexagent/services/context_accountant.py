"""Approximate running context-usage estimate across turns.

The backend reports ``prompt_eval_count + eval_count`` per call.  With
provider-side prompt caching the prompt count can drop on a later turn,
because only the uncached suffix was evaluated.  When a turn reports *less*
than the running total, the number is treated as a delta on top of it;
otherwise it replaces the total.

This is a heuristic, not a measurement: a genuinely shorter prompt (for
example after the caller trimmed history) is also counted as a delta and
inflates the estimate.  It is only used for UI / telemetry.
"""

from lexagent.schemas import UsageStats


class ContextAccountant:
    """Accumulates an approximate token total for one chat session."""

    def __init__(self, total: int = 0) -> None:
        self.total = total
        self.turns = 0

    def record(self, stats: UsageStats | None) -> int:
        """Fold one turn's stats into the running total and return it."""
        if stats is None:
            return self.total
        turn_total = stats.total_tokens
        if turn_total < self.total:
            self.total = self.total + turn_total
        else:
            self.total = turn_total
        self.turns += 1
        return self.total

    def usage_percent(self, context_window: int) -> float:
        """Share of *context_window* used, capped at 100."""
        if context_window <= 0:
            return 0.0
        return min(self.total / context_window * 100, 100.0)

    def reset(self) -> None:
        self.total = 0
        self.turns = 0
