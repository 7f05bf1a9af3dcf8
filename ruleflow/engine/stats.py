"""Aggregate statistics over execution history."""

from typing import Iterable

from ruleflow.models.execution import ExecutionLogEntry, ExecutionStats, ExecutionStatus


class StatsAggregator:
    """Folds execution log entries into rollups."""

    def fold(self, entries: Iterable[ExecutionLogEntry]) -> ExecutionStats:
        """Compute statistics over ``entries``.

        An empty history yields zeros rather than NaN.
        """
        total = 0
        successes = 0
        duration_sum = 0
        for entry in entries:
            total += 1
            duration_sum += entry.duration_ms
            if entry.status == ExecutionStatus.SUCCESS:
                successes += 1

        if total == 0:
            return ExecutionStats()

        return ExecutionStats(
            total_runs=total,
            success_rate=successes / total * 100,
            avg_duration_ms=round(duration_sum / total),
        )

    def by_rule(self, entries: Iterable[ExecutionLogEntry]) -> dict[str, ExecutionStats]:
        """Per-rule rollups keyed by rule ID."""
        grouped: dict[str, list[ExecutionLogEntry]] = {}
        for entry in entries:
            grouped.setdefault(entry.rule_id, []).append(entry)
        return {rule_id: self.fold(items) for rule_id, items in grouped.items()}
