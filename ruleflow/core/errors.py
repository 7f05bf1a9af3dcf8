"""Domain exceptions."""

from typing import Any


class RuleFlowError(Exception):
    """Base exception for all rule engine errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging and API responses."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class RuleValidationError(RuleFlowError):
    """Rule definition rejected before persistence."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class MatchEvaluationError(RuleFlowError):
    """Condition evaluator failed to produce a decision."""


class StepExecutionError(RuleFlowError):
    """A single step could not be executed."""

    def __init__(self, message: str, step_index: int):
        super().__init__(message, {"step_index": step_index})
        self.step_index = step_index


class RunTimeoutError(RuleFlowError):
    """A run exceeded its overall deadline."""


class StorageError(RuleFlowError):
    """Rule or log storage is unavailable."""


class ManualInvocationError(RuleFlowError):
    """Manual invocation rejected before the rule ran.

    ``reason`` is one of ``not_found``, ``inactive`` or ``mode_not_allowed``.
    """

    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    MODE_NOT_ALLOWED = "mode_not_allowed"

    def __init__(self, message: str, reason: str, rule_id: str):
        super().__init__(message, {"reason": reason, "rule_id": rule_id})
        self.reason = reason
        self.rule_id = rule_id
