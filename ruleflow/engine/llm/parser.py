"""Parser for LLM condition responses."""

import json
import re

from ruleflow.core.logging import get_logger
from ruleflow.engine.interfaces import ConditionDecision

logger = get_logger(__name__)


def parse_condition_response(response: str) -> ConditionDecision:
    """Parse an LLM response into a condition decision.

    Args:
        response: Raw LLM response text

    Returns:
        Parsed decision

    Note:
        Unparseable output is a non-match, never an error
    """
    json_match = re.search(r"\{[^{}]*\}", response, re.DOTALL)
    if not json_match:
        logger.warning("No JSON found in LLM response", response=response[:200])
        return _fallback_decision("No JSON found in response")

    try:
        data = json.loads(json_match.group())
    except json.JSONDecodeError as e:
        logger.warning("JSON parse error in LLM response", error=str(e))
        return _fallback_decision(f"JSON parse error: {e}")

    matches = data.get("matches", data.get("should_trigger", False))
    if isinstance(matches, str):
        matches = matches.strip().lower() == "true"

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0

    return ConditionDecision(
        matches=bool(matches),
        confidence=max(0.0, min(1.0, confidence)),
        reason=str(data.get("reason", "No reason provided")),
    )


def _fallback_decision(reason: str) -> ConditionDecision:
    """Safe non-match used when parsing fails."""
    return ConditionDecision(
        matches=False,
        confidence=0.0,
        reason=f"Fallback decision: {reason}",
    )
