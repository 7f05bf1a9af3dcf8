"""Default step executor."""

import json
import time
from typing import Any

import httpx
from openai import AsyncOpenAI

from ruleflow.core.config import Settings, get_settings
from ruleflow.core.logging import get_logger
from ruleflow.engine.interfaces import StepOutcome
from ruleflow.engine.llm.engine import create_openai_client
from ruleflow.engine.llm.prompt import build_step_messages
from ruleflow.models.rule import ExecutionStep, InstructionStep, ToolCallStep
from ruleflow.observability.metrics import LLM_LATENCY

logger = get_logger(__name__)

# Keys of the run context that are not forwarded to the model as payload
_RESERVED_CONTEXT_KEYS = {"previous_results", "conversation_history"}


class DefaultStepExecutor:
    """Executes instruction steps with the LLM and tool calls via the tool gateway."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._client = client or create_openai_client(self._settings)
        self._http = http_client or httpx.AsyncClient(timeout=float(self._settings.tool_gateway_timeout))

    async def execute(self, step: ExecutionStep, context: dict[str, Any]) -> StepOutcome:
        """Execute one step.

        Business failures come back as ``StepOutcome(success=False)``.
        """
        match step:
            case InstructionStep():
                return await self._run_instruction(step, context)
            case ToolCallStep():
                return await self._run_tool_call(step, context)
        raise TypeError(f"Unsupported step type: {type(step).__name__}")

    async def _run_instruction(self, step: InstructionStep, context: dict[str, Any]) -> StepOutcome:
        payload = {k: v for k, v in context.items() if k not in _RESERVED_CONTEXT_KEYS}
        messages = build_step_messages(
            instruction=step.content,
            context=json.dumps(payload, ensure_ascii=False, default=str),
            previous_results="\n".join(str(r) for r in context.get("previous_results", [])),
            conversation_history=context.get("conversation_history"),
        )

        start_time = time.time()
        try:
            response = await self._client.chat.completions.create(
                model=self._settings.openai_model,
                messages=messages,
                temperature=0.3,
                max_tokens=1500,
            )
        except Exception as e:
            logger.error("Instruction step LLM call failed", step_index=step.index, error=str(e))
            return StepOutcome(success=False, error=f"LLM service error: {e}")
        finally:
            LLM_LATENCY.labels(purpose="step").observe(time.time() - start_time)

        content = (response.choices[0].message.content or "").strip()
        if not content:
            return StepOutcome(success=False, error="Empty response from model")
        return StepOutcome(success=True, result=content)

    async def _run_tool_call(self, step: ToolCallStep, context: dict[str, Any]) -> StepOutcome:
        headers = {}
        if self._settings.tool_gateway_api_key:
            headers["Authorization"] = f"Bearer {self._settings.tool_gateway_api_key}"

        body = {
            "tool": step.content.tool,
            "arguments": step.content.arguments,
            "user_id": context.get("user_id"),
            "rule_id": context.get("rule_id"),
        }

        try:
            response = await self._http.post(self._settings.tool_gateway_url, json=body, headers=headers)
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Tool call failed", tool=step.content.tool, error=str(e))
            return StepOutcome(success=False, error=f"Tool gateway error: {e}")

        if not isinstance(result, dict):
            logger.error("Malformed tool gateway response", tool=step.content.tool, status=response.status_code)
            return StepOutcome(
                success=False,
                error=f"Tool gateway returned {type(result).__name__} (HTTP {response.status_code}), expected an object",
            )

        if response.status_code >= 400 or not result.get("successful", result.get("success", False)):
            error = result.get("error") or f"HTTP {response.status_code}"
            logger.info("Tool reported failure", tool=step.content.tool, error=error)
            return StepOutcome(success=False, error=str(error))

        return StepOutcome(success=True, result=result.get("data"))

    async def close(self) -> None:
        """Close HTTP client."""
        await self._http.aclose()
