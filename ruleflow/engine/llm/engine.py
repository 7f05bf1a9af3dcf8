"""LLM-backed topic condition evaluation."""

import hashlib
import json
import time
from typing import Any

from openai import AsyncOpenAI

from ruleflow.core.config import Settings, get_settings
from ruleflow.core.errors import MatchEvaluationError
from ruleflow.core.logging import get_logger
from ruleflow.engine.interfaces import ConditionDecision
from ruleflow.engine.llm.parser import parse_condition_response
from ruleflow.engine.llm.prompt import build_condition_prompt
from ruleflow.observability.metrics import CONDITION_EVALUATIONS, LLM_LATENCY
from ruleflow.storage.auxiliary import ConditionCacheStore

logger = get_logger(__name__)


def create_openai_client(settings: Settings | None = None) -> AsyncOpenAI:
    """Create an OpenAI-compatible async client from settings."""
    settings = settings or get_settings()
    return AsyncOpenAI(
        api_key=settings.openai_api_key or "dummy-key",
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
    )


class LLMConditionEvaluator:
    """Evaluates free-text topic conditions with a language model."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        cache: ConditionCacheStore | None = None,
        settings: Settings | None = None,
    ):
        """Initialize evaluator.

        Args:
            client: OpenAI-compatible client (created from settings if omitted)
            cache: Decision cache (optional)
            settings: Application settings
        """
        self._settings = settings or get_settings()
        self._client = client or create_openai_client(self._settings)
        self._cache = cache

    async def evaluate(
        self,
        topic_condition: str,
        payload: dict[str, Any],
        rule_id: str | None = None,
    ) -> ConditionDecision:
        """Decide whether ``payload`` satisfies ``topic_condition``.

        Args:
            topic_condition: Natural language condition
            payload: Trigger payload
            rule_id: Rule being evaluated, used for caching and logging

        Returns:
            Decision with confidence threshold applied

        Raises:
            MatchEvaluationError: If the model could not be called
        """
        payload_json = json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
        cache_key = self._compute_cache_key(topic_condition, payload_json)

        if self._cache and rule_id:
            cached = await self._cache.get(rule_id, cache_key)
            if cached:
                logger.debug("Condition cache hit", rule_id=rule_id)
                CONDITION_EVALUATIONS.labels(outcome="cached").inc()
                return ConditionDecision(
                    matches=cached["matches"],
                    confidence=cached["confidence"],
                    reason=cached["reason"] + " (cached)",
                )

        system_prompt, user_prompt = build_condition_prompt(topic_condition, payload_json)

        start_time = time.time()
        try:
            response = await self._client.chat.completions.create(
                model=self._settings.openai_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.1,
                max_tokens=300,
            )
        except Exception as e:
            CONDITION_EVALUATIONS.labels(outcome="error").inc()
            raise MatchEvaluationError(f"LLM service error: {e}", {"rule_id": rule_id}) from e
        finally:
            LLM_LATENCY.labels(purpose="condition").observe(time.time() - start_time)

        decision = parse_condition_response(response.choices[0].message.content or "")

        threshold = self._settings.condition_confidence_threshold
        if decision.matches and (decision.confidence or 0.0) < threshold:
            decision = ConditionDecision(
                matches=False,
                confidence=decision.confidence,
                reason=f"Confidence {decision.confidence:.2f} below threshold {threshold}",
            )

        logger.info(
            "Condition evaluated",
            rule_id=rule_id,
            matches=decision.matches,
            confidence=decision.confidence,
        )
        CONDITION_EVALUATIONS.labels(outcome="match" if decision.matches else "no_match").inc()

        if self._cache and rule_id:
            await self._cache.set(
                rule_id,
                cache_key,
                {
                    "matches": decision.matches,
                    "confidence": decision.confidence,
                    "reason": decision.reason,
                },
            )

        return decision

    @staticmethod
    def _compute_cache_key(topic_condition: str, payload_json: str) -> str:
        data = f"{topic_condition}:{payload_json}"
        return hashlib.sha256(data.encode()).hexdigest()[:16]
